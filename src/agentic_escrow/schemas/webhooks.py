"""Webhook payloads and the listener's health response."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

from agentic_escrow.schemas.transactions import CamelModel


class WebhookEvent(CamelModel):
    """Delivery notification pushed by the seller side."""

    event: Literal["service.delivered"]
    transaction_id: str
    service_id: str
    response_payload: Any = None
    delivered_at: datetime


class WebhookAck(BaseModel):
    received: bool = True
    verified: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    signature_mode: str = "unverified"
