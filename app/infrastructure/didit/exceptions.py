"""Didit-specific exceptions for error handling."""

from typing import Any


class DiditError(Exception):
    """Base exception for Didit operations."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class DiditConnectionError(DiditError):
    """Raised when the provider cannot be reached (network error or timeout)."""

    pass


class DiditOperationError(DiditError):
    """Raised when the provider rejects a request (non-retryable 4xx)."""

    def __init__(self, status_code: int, message: str, body: dict | None = None):
        super().__init__(message, {"status_code": status_code, "body": body})
        self.status_code = status_code
        self.body = body


class DiditServerError(DiditOperationError):
    """Raised on 5xx or 429 responses, which are retried."""

    pass


class DiditSessionNotFoundError(DiditError):
    """Raised when a session is unknown to the provider (404), usually because it expired."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found", {"session_id": session_id})
        self.session_id = session_id


class DiditResponseError(DiditError):
    """Raised when a successful response cannot be parsed into the expected shape."""

    pass
