"""HTTP client for the backend transaction ledger.

Every response is a JSON envelope `{success, data, error, details}`. Non-2xx
statuses are mapped onto the BackendError hierarchy so callers can tell
retryable failures (429) from terminal ones (400/401/403/404).
"""

from __future__ import annotations

from typing import Any

import httpx

from agentic_escrow.client.transactions import TransactionsClient
from agentic_escrow.config import get_settings
from agentic_escrow.domain.exceptions import (
    AuthenticationError,
    BackendError,
    EscrowTimeoutError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    PaymentRequiredError,
    RateLimitError,
    ValidationError,
)
from agentic_escrow.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_RETRY_AFTER = 60


def _field_errors(details: Any) -> str:
    """Flatten `[{path: [...], message}]` into `a.b — msg; c — msg`."""
    parts = []
    for item in details:
        path = item.get("path") if isinstance(item, dict) else None
        field = ".".join(str(p) for p in path) if path else "unknown"
        message = item.get("message", "invalid") if isinstance(item, dict) else "invalid"
        parts.append(f"{field} — {message}")
    return "; ".join(parts)


def raise_for_envelope(response: httpx.Response, body: dict[str, Any]) -> None:
    """Raise the BackendError subclass matching a failed response."""
    status = response.status_code
    message = body.get("error") or f"HTTP {status}"
    details = body.get("details")

    if status == 401:
        raise AuthenticationError(message)
    if status == 402:
        raise PaymentRequiredError(message, body)
    if status == 403:
        raise ForbiddenError(message)
    if status == 404:
        raise NotFoundError(message)
    if status == 400:
        if isinstance(details, list) and details:
            message = f"{message}: {_field_errors(details)}"
        raise ValidationError(message, details)
    if status == 429:
        try:
            retry_after = int(response.headers.get("Retry-After", DEFAULT_RETRY_AFTER))
        except ValueError:
            retry_after = DEFAULT_RETRY_AFTER
        raise RateLimitError(message, retry_after)
    raise BackendError(status, message, details)


class BackendClient:
    """Async JSON client; use as an async context manager to close the pool.

    Example:
        async with BackendClient(api_key="aba_...") as backend:
            txn = await backend.transactions.get("txn_123")
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        api_key = api_key if api_key is not None else settings.backend_api_key
        if not api_key:
            raise ValueError("api_key is required")
        self._timeout = timeout if timeout is not None else settings.backend_timeout_seconds
        self._http = httpx.AsyncClient(
            base_url=(base_url or settings.backend_base_url).rstrip("/"),
            timeout=self._timeout,
            headers={"X-API-Key": api_key, "Accept": "application/json"},
            transport=transport,
        )
        self.transactions = TransactionsClient(self)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request and return the envelope's `data`."""
        query = {k: str(v) for k, v in (params or {}).items() if v not in (None, "")}
        try:
            response = await self._http.request(
                method,
                path,
                json=body if body is not None and method != "GET" else None,
                params=query or None,
            )
        except httpx.TimeoutException as err:
            logger.warning("backend.timeout", method=method, path=path, timeout=self._timeout)
            raise EscrowTimeoutError(f"{method} {path}", self._timeout) from err
        except httpx.TransportError as err:
            logger.warning("backend.network_error", method=method, path=path, error=str(err))
            raise NetworkError(f"Network error: {err}") from err

        try:
            envelope = response.json()
        except ValueError as err:
            raise BackendError(
                response.status_code, f"Invalid JSON response (HTTP {response.status_code})"
            ) from err
        if not isinstance(envelope, dict):
            raise BackendError(response.status_code, f"Unexpected response shape (HTTP {response.status_code})")

        if response.is_error:
            logger.info(
                "backend.error_response",
                method=method,
                path=path,
                status=response.status_code,
                error=envelope.get("error"),
            )
            raise_for_envelope(response, envelope)

        logger.debug("backend.request", method=method, path=path, status=response.status_code)
        return envelope.get("data")
