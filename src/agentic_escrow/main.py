"""FastAPI application entry point for the delivery webhook listener.

Lifecycle:
    1. Startup: Initialize logging, report the signature verification mode.
    2. Running: Accept signed delivery notifications and hand them to the handler.
    3. Shutdown: Log and exit; the listener holds no connections of its own.

Run with:
    uv run uvicorn agentic_escrow.main:app --host 0.0.0.0 --port 8787
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Awaitable, Callable

from fastapi import FastAPI

from agentic_escrow.config import get_settings
from agentic_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from agentic_escrow.schemas.webhooks import WebhookEvent

WebhookHandler = Callable[["WebhookEvent"], Awaitable[None]]

logger = get_logger(__name__)


async def log_delivery(event: WebhookEvent) -> None:
    """Default handler: record the notification and do nothing else."""
    logger.info(
        "webhook.delivery_logged",
        transaction_id=event.transaction_id,
        delivered_at=event.delivered_at.isoformat(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger.info("app.starting", env=settings.app_env, path=app.state.webhook_path)
    if not app.state.signing_secret:
        logger.warning(
            "webhook.signature_verification_disabled",
            detail="no signing secret configured; notifications are accepted unverified",
        )

    yield

    logger.info("app.stopped")


def create_app(
    handler: WebhookHandler | None = None,
    *,
    signing_secret: str | None = None,
    path: str | None = None,
) -> FastAPI:
    """Application factory — creates and configures the listener app.

    Args:
        handler: Awaited with each verified WebhookEvent.
        signing_secret: Shared HMAC secret. Falls back to settings; empty
            means notifications are accepted in unverified mode.
        path: Route for notifications. Falls back to settings.
    """
    settings = get_settings()
    path = path or settings.webhook_path

    app = FastAPI(
        title="Agentic Escrow Webhook Listener",
        description="Receives signed delivery notifications for escrowed transactions.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url=None,
    )
    app.state.webhook_handler = handler or log_delivery
    app.state.signing_secret = (
        signing_secret if signing_secret is not None else settings.webhook_signing_secret
    )
    app.state.webhook_path = path

    # --- Middleware ---
    from agentic_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- Routes ---
    from agentic_escrow.api.routes.health import router as health_router
    from agentic_escrow.api.routes.webhook import build_webhook_router

    app.include_router(health_router)
    app.include_router(build_webhook_router(path))

    return app


# The app instance used by Uvicorn
app = create_app()
