"""Registry-specific exceptions for error handling."""

from typing import Any


class RegistryError(Exception):
    """Base exception for registry lookups."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class RegistryTransientError(RegistryError):
    """Base class for failures worth retrying (timeouts, navigation)."""

    pass


class RegistryTimeoutError(RegistryTransientError):
    """Raised when the registry page neither shows results nor a not-found marker in time."""

    def __init__(self, document_number: str, timeout_ms: int):
        super().__init__(
            f"Registry search for {document_number} timed out after {timeout_ms}ms",
            {"document_number": document_number, "timeout_ms": timeout_ms},
        )
        self.document_number = document_number
        self.timeout_ms = timeout_ms


class RegistryNavigationError(RegistryTransientError):
    """Raised when the registry page cannot be loaded or the search cannot be submitted."""

    pass


class RegistryParseError(RegistryError):
    """Raised when the results table cannot be read at all."""

    pass


class BrowserPoolClosedError(RegistryError):
    """Raised when a page is requested from a pool that has been closed."""

    pass
