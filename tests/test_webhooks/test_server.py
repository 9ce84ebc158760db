"""Tests for the in-process webhook server and the buyer's delivery listener.

These bind a real socket on 127.0.0.1 with an ephemeral port.
"""

from __future__ import annotations

import json

import httpx
import pytest

from agentic_escrow.agents import BuyerAgent
from agentic_escrow.client import BackendClient
from agentic_escrow.schemas.webhooks import WebhookEvent
from agentic_escrow.server import WebhookServer
from agentic_escrow.webhooks import SIGNATURE_HEADER, sign_body

SECRET = "whsec_test"


def _event_body() -> bytes:
    return json.dumps(
        {
            "event": "service.delivered",
            "transactionId": "txn_042",
            "serviceId": "svc_translate",
            "responsePayload": {"text": "hola"},
            "deliveredAt": "2026-01-01T12:00:00Z",
        }
    ).encode()


async def _post_signed(url: str) -> httpx.Response:
    body = _event_body()
    async with httpx.AsyncClient(timeout=5.0) as client:
        return await client.post(url, content=body, headers={SIGNATURE_HEADER: sign_body(body, SECRET)})


class TestWebhookServer:
    @pytest.mark.asyncio
    async def test_start_serves_signed_events_then_stops(self) -> None:
        received: list[WebhookEvent] = []

        async def handler(event: WebhookEvent) -> None:
            received.append(event)

        server = WebhookServer(handler, signing_secret=SECRET, path="/hooks", host="127.0.0.1")
        url = await server.start(0)
        try:
            assert server.running
            assert url.startswith("http://127.0.0.1:")
            assert not url.startswith("http://127.0.0.1:0/")
            assert url.endswith("/hooks")

            response = await _post_signed(url)

            assert response.status_code == 200
            assert response.json() == {"received": True, "verified": True}
            assert [e.transaction_id for e in received] == ["txn_042"]
        finally:
            await server.stop()
        assert not server.running

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self) -> None:
        async def handler(event: WebhookEvent) -> None:
            return None

        server = WebhookServer(handler, signing_secret=SECRET, host="127.0.0.1")
        await server.start(0)
        try:
            with pytest.raises(RuntimeError, match="already started"):
                await server.start(0)
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self) -> None:
        async def handler(event: WebhookEvent) -> None:
            return None

        server = WebhookServer(handler)
        await server.stop()
        assert not server.running


class TestBuyerDeliveryListener:
    @pytest.fixture
    def buyer(self, backend: BackendClient, monkeypatch: pytest.MonkeyPatch) -> BuyerAgent:
        from agentic_escrow.config import get_settings

        monkeypatch.setenv("WEBHOOK_HOST", "127.0.0.1")
        get_settings.cache_clear()
        return BuyerAgent(chain="baseSepolia", backend=backend)

    @pytest.mark.asyncio
    async def test_on_delivery_and_stop_webhook(self, buyer: BuyerAgent) -> None:
        received: list[WebhookEvent] = []

        async def handler(event: WebhookEvent) -> None:
            received.append(event)

        url = await buyer.on_delivery(handler, 0, signing_secret=SECRET, path="/deliveries")
        try:
            response = await _post_signed(url)
            assert response.status_code == 200
            assert received[0].service_id == "svc_translate"

            with pytest.raises(RuntimeError, match="already running"):
                await buyer.on_delivery(handler, 0, signing_secret=SECRET)
        finally:
            await buyer.stop_webhook()

        with pytest.raises(httpx.TransportError):
            await _post_signed(url)

    @pytest.mark.asyncio
    async def test_close_stops_listener(self, buyer: BuyerAgent) -> None:
        async def handler(event: WebhookEvent) -> None:
            return None

        url = await buyer.on_delivery(handler, 0, signing_secret=SECRET)
        await buyer.close()

        with pytest.raises(httpx.TransportError):
            await _post_signed(url)
