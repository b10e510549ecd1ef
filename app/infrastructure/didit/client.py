"""Async client for the Didit identity verification API (v2).

This module provides an async HTTP client for creating verification
sessions, reading their decision and cancelling them, with built-in retry
logic on transient failures, OpenTelemetry tracing, and error mapping to
provider-specific exceptions.
"""

import json
import logging
from typing import Any

import httpx
from opentelemetry import trace
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.infrastructure.didit.config import didit_settings
from app.infrastructure.didit.exceptions import (
    DiditConnectionError,
    DiditOperationError,
    DiditResponseError,
    DiditServerError,
    DiditSessionNotFoundError,
)
from app.schemas.identity import ExpectedDetails, ProviderDecision, ProviderSessionCreated

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RETRYABLE_STATUS_CODES = frozenset({429})


class DiditClient:
    """Async Didit client with retry and OpenTelemetry tracing.

    Network errors, timeouts, 429 and 5xx responses are retried with
    exponential backoff. A 404 on a session maps to
    ``DiditSessionNotFoundError``; other 4xx responses are not retried.

    Example:
        ```python
        client = DiditClient(api_key="...", workflow_id="...")
        created = await client.create_session(vendor_data="professional-42")
        decision = await client.get_decision(created.session_id)
        await client.close()
        ```
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        workflow_id: str | None = None,
        callback_url: str | None = None,
        timeout: int | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
    ):
        """Initialize the Didit client.

        Args:
            base_url: API base URL. Defaults to settings.
            api_key: API key sent as ``x-api-key``. Defaults to settings.
            workflow_id: Verification workflow. Defaults to settings.
            callback_url: Webhook callback URL. Defaults to settings.
            timeout: Request timeout in seconds. Defaults to settings.
            retry_attempts: Total attempts for transient failures. Defaults to settings.
            retry_delay: Backoff multiplier in seconds. Defaults to settings.
        """
        self.base_url = (base_url or didit_settings.DIDIT_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else didit_settings.DIDIT_API_KEY
        self.workflow_id = workflow_id or didit_settings.DIDIT_WORKFLOW_ID
        self.callback_url = callback_url or didit_settings.DIDIT_CALLBACK_URL
        self.timeout = timeout or didit_settings.DIDIT_TIMEOUT
        self.retry_attempts = retry_attempts or didit_settings.DIDIT_RETRY_ATTEMPTS
        self.retry_delay = (
            retry_delay if retry_delay is not None else didit_settings.DIDIT_RETRY_DELAY
        )
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "x-api-key": self.api_key,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self._client

    async def _send(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> httpx.Response:
        """Send one request, raising retryable exceptions for transient failures."""
        client = await self._get_client()
        try:
            response = await client.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            raise DiditConnectionError(f"Didit request timed out: {e}")
        except httpx.TransportError as e:
            raise DiditConnectionError(f"Failed to connect to Didit: {e}")

        if response.status_code in RETRYABLE_STATUS_CODES or response.status_code >= 500:
            raise DiditServerError(
                status_code=response.status_code,
                message=f"Didit returned {response.status_code} for {method} {path}",
                body=self._safe_json(response),
            )
        return response

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> httpx.Response:
        """Send a request with exponential backoff on transient failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_delay, max=10),
            retry=retry_if_exception_type((DiditConnectionError, DiditServerError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self._send(method, path, payload)
        raise DiditConnectionError("Didit retries exhausted")

    async def create_session(
        self,
        vendor_data: str,
        expected_details: ExpectedDetails | None = None,
        callback_url: str | None = None,
        workflow_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        language: str | None = None,
    ) -> ProviderSessionCreated:
        """Create a verification session.

        Args:
            vendor_data: Subject identifier echoed back in decisions and webhooks
            expected_details: Declared identity data for cross-checking
            callback_url: Webhook URL. Defaults to the client callback.
            workflow_id: Workflow to run. Defaults to the client workflow.
            metadata: Free-form metadata stored with the session
            language: Interface language for the subject

        Returns:
            Created session with its redirect URL

        Raises:
            DiditConnectionError: If the provider cannot be reached
            DiditOperationError: If the provider rejects the request
            DiditResponseError: If the response lacks session fields
        """
        payload: dict[str, Any] = {
            "workflow_id": workflow_id or self.workflow_id,
            "vendor_data": vendor_data,
            "language": language or didit_settings.DIDIT_LANGUAGE,
        }
        if callback_url or self.callback_url:
            payload["callback"] = callback_url or self.callback_url
        if metadata:
            payload["metadata"] = metadata
        if expected_details is not None:
            payload["expected_details"] = expected_details.model_dump(
                mode="json", exclude_none=True
            )

        with tracer.start_as_current_span("didit_create_session") as span:
            span.set_attribute("didit.workflow_id", payload["workflow_id"])

            response = await self._request("POST", "/session/", payload)
            if response.status_code not in (200, 201):
                self._handle_error_response(response, span)

            data = self._safe_json(response)
            if "session_url" not in data and "url" in data:
                data["session_url"] = data["url"]
            try:
                created = ProviderSessionCreated.model_validate(data)
            except ValidationError as e:
                span.record_exception(e)
                raise DiditResponseError(f"Unexpected session creation response: {e}")

            span.set_attribute("didit.session_id", created.session_id)
            span.add_event("Session created")
            return created

    async def get_decision(self, session_id: str) -> ProviderDecision:
        """Read the current decision of a session.

        Args:
            session_id: Provider session identifier

        Returns:
            Decision with overall status and sub-check results

        Raises:
            DiditSessionNotFoundError: If the session does not exist (404)
            DiditConnectionError: If the provider cannot be reached
            DiditOperationError: If the provider rejects the request
            DiditResponseError: If the decision cannot be parsed
        """
        with tracer.start_as_current_span("didit_get_decision") as span:
            span.set_attribute("didit.session_id", session_id)

            response = await self._request("GET", f"/session/{session_id}/decision/")
            if response.status_code == 404:
                span.add_event("Session not found")
                raise DiditSessionNotFoundError(session_id)
            if response.status_code != 200:
                self._handle_error_response(response, span)

            data = self._safe_json(response)
            data.setdefault("session_id", session_id)
            try:
                decision = ProviderDecision.model_validate(data)
            except ValidationError as e:
                span.record_exception(e)
                raise DiditResponseError(f"Malformed decision for session {session_id}: {e}")

            span.set_attribute("didit.status", decision.status)
            return decision

    async def cancel_session(self, session_id: str) -> None:
        """Cancel a session on the provider side.

        Raises:
            DiditSessionNotFoundError: If the session does not exist (404)
            DiditOperationError: If the provider rejects the request
        """
        with tracer.start_as_current_span("didit_cancel_session") as span:
            span.set_attribute("didit.session_id", session_id)

            response = await self._request("POST", f"/session/{session_id}/cancel/")
            if response.status_code == 404:
                raise DiditSessionNotFoundError(session_id)
            if response.status_code not in (200, 204):
                self._handle_error_response(response, span)
            span.add_event("Session cancelled")

    @staticmethod
    def _safe_json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except json.JSONDecodeError:
            return {"text": response.text}
        return data if isinstance(data, dict) else {"data": data}

    def _handle_error_response(self, response: httpx.Response, span: trace.Span) -> None:
        """Handle non-success HTTP responses.

        Raises:
            DiditOperationError: Always raised with error details
        """
        span.set_attribute("didit.error_status", response.status_code)
        span.add_event("Didit operation failed", {"status_code": response.status_code})
        raise DiditOperationError(
            status_code=response.status_code,
            message=f"Didit operation failed with status {response.status_code}",
            body=self._safe_json(response),
        )

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client:
            await self._client.aclose()
            self._client = None
