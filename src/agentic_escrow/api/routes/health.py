"""Health check endpoint.

Reports whether the listener verifies webhook signatures, so operators can
see at a glance when it runs in the reduced-security unverified mode.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from agentic_escrow.schemas.webhooks import HealthResponse
from agentic_escrow.webhooks import SignatureCheck

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the listener status and its signature verification mode.",
)
async def health_check(request: Request) -> HealthResponse:
    secret = getattr(request.app.state, "signing_secret", None)
    mode = SignatureCheck.VERIFIED if secret else SignatureCheck.UNVERIFIED
    return HealthResponse(
        status="ok" if secret else "degraded",
        version="0.1.0",
        signature_mode=mode.value,
    )
