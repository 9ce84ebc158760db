"""In-process webhook listener for agents.

    server = WebhookServer(handle_delivery, signing_secret=secret)
    url = await server.start(8787)
    ...
    await server.stop()
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import uvicorn

from agentic_escrow.config import get_settings
from agentic_escrow.logging_config import get_logger
from agentic_escrow.main import create_app

if TYPE_CHECKING:
    from agentic_escrow.main import WebhookHandler

logger = get_logger(__name__)

_STARTUP_POLL_INTERVAL = 0.05


class WebhookServer:
    """Runs the listener app on uvicorn inside the caller's event loop."""

    def __init__(
        self,
        handler: WebhookHandler,
        *,
        signing_secret: str | None = None,
        path: str | None = None,
        host: str | None = None,
    ) -> None:
        settings = get_settings()
        self._path = path or settings.webhook_path
        self._host = host or settings.webhook_host
        self._app = create_app(handler, signing_secret=signing_secret, path=self._path)
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._server is not None and self._server.started

    async def start(self, port: int | None = None) -> str:
        """Start serving and return the notification URL."""
        if self._server is not None:
            raise RuntimeError("Webhook server already started")
        port = port if port is not None else get_settings().webhook_port
        self._server = uvicorn.Server(
            uvicorn.Config(self._app, host=self._host, port=port, loop="asyncio", log_config=None)
        )
        self._task = asyncio.create_task(self._server.serve())
        while not self._server.started:
            if self._task.done():
                self._server = None
                raise RuntimeError(f"Webhook server failed to start on {self._host}:{port}")
            await asyncio.sleep(_STARTUP_POLL_INTERVAL)

        port = self._bound_port(port)
        url = f"http://{self._host}:{port}{self._path}"
        logger.info("webhook.server_started", url=url)
        return url

    def _bound_port(self, requested: int) -> int:
        """The port actually listened on; differs from `requested` when that was 0."""
        for server in self._server.servers:
            for sock in server.sockets:
                return sock.getsockname()[1]
        return requested

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._task is not None:
            await self._task
        self._server = None
        self._task = None
        logger.info("webhook.server_stopped")
