"""FastAPI middleware for request tracing and error handling.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from agentic_escrow.domain.exceptions import (
    BackendError,
    EscrowError,
    EscrowTimeoutError,
    InvalidCredentialError,
    NetworkError,
    PolicyViolationError,
    PreconditionNotMetError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
def _status_for(exc: EscrowError) -> int:
    if isinstance(exc, BackendError):
        return exc.status if 400 <= exc.status < 600 else 502
    if isinstance(exc, InvalidCredentialError):
        return 401
    if isinstance(exc, PolicyViolationError):
        return 403
    if isinstance(exc, PreconditionNotMetError):
        return 409
    if isinstance(exc, EscrowTimeoutError):
        return 504
    if isinstance(exc, NetworkError):
        return 502
    return 400


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except EscrowError as exc:
            status_code = _status_for(exc)
            log = logger.warning if status_code < 500 else logger.error
            log("domain.error", error=exc.message, code=exc.code, status=status_code)
            return JSONResponse(
                status_code=status_code,
                content={"error": exc.code, "message": exc.message, "retryable": exc.retryable},
            )
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    # Error handling (runs first)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
