from __future__ import annotations

import asyncio
import logging

from aiohttp import web

from .bus import EventBus

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4880
KEEPALIVE_SECONDS = 30.0


class DebugServer:
    """Serves the Event Bus over HTTP as Server-Sent Events.

    Every connected client is its own bus subscriber, so a slow client only
    loses its own events.
    """

    def __init__(self, bus: EventBus, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
        self.bus = bus
        self.host = host
        self.port = port
        self._app = web.Application()
        self._app.router.add_get("/api/debug/events", self._handle_events)
        self._app.router.add_get("/health", self._handle_health)
        self._runner: web.AppRunner | None = None

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/api/debug/events"

    async def start(self) -> None:
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        await site.start()
        self._runner = runner
        logger.info("debug server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("debug server stopped")

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "subscribers": self.bus.subscriber_count})

    async def _handle_events(self, request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Access-Control-Allow-Origin": "*",
            },
        )
        await response.prepare(request)

        sub = self.bus.subscribe()
        logger.info("SSE client connected active_clients=%d", self.bus.subscriber_count)
        try:
            await response.write(b": connected\n\n")
            while True:
                try:
                    event = await asyncio.wait_for(sub.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    await response.write(b": keepalive\n\n")
                    continue
                await response.write(f"data: {event.to_json()}\n\n".encode("utf-8"))
        except (ConnectionResetError, ConnectionError):
            logger.debug("SSE client went away")
        finally:
            sub.close()
            logger.info("SSE client disconnected active_clients=%d", self.bus.subscriber_count)
        return response
