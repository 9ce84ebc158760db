"""Inbound delivery notifications.

The route path is configurable, so the router is built per application.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError

from agentic_escrow.logging_config import get_logger
from agentic_escrow.schemas.webhooks import WebhookAck, WebhookEvent
from agentic_escrow.webhooks import SIGNATURE_HEADER, SignatureCheck, verify_signature

logger = get_logger(__name__)


def build_webhook_router(path: str) -> APIRouter:
    router = APIRouter(tags=["Webhooks"])

    @router.post(
        path,
        response_model=WebhookAck,
        summary="Receive a delivery notification",
        responses={401: {"description": "Missing or invalid signature"}},
    )
    async def receive_delivery(request: Request) -> WebhookAck:
        body = await request.body()
        check = verify_signature(
            body, request.headers.get(SIGNATURE_HEADER), request.app.state.signing_secret
        )
        if check is SignatureCheck.INVALID:
            logger.warning("webhook.signature_rejected", path=path)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing webhook signature",
            )
        if check is SignatureCheck.UNVERIFIED:
            logger.warning("webhook.unverified", path=path)

        try:
            event = WebhookEvent.model_validate_json(body)
        except PydanticValidationError as err:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=err.errors(include_url=False, include_context=False),
            ) from err

        logger.info(
            "webhook.delivery_received",
            transaction_id=event.transaction_id,
            service_id=event.service_id,
            signature=check.value,
        )
        await request.app.state.webhook_handler(event)
        return WebhookAck(verified=check is SignatureCheck.VERIFIED)

    return router
