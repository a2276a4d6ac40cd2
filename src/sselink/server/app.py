"""Demo aiohttp application serving a resumable counter stream."""

from __future__ import annotations

import asyncio
import contextlib
import json

import structlog
from aiohttp import web

from sselink.codec.encoder import Encoder
from sselink.codec.event import Event
from sselink.config import SSELinkConfig

from .handler import EventStreamHandler, StreamCallback

log = structlog.get_logger()


def _next_id(last_event_id: str) -> int:
    """Resume after the id the client last saw; start from 0 otherwise."""
    try:
        return int(last_event_id) + 1
    except ValueError:
        return 0


def make_ticker(interval: float) -> StreamCallback:
    """Build a stream callback that emits one ``tick`` event per interval."""

    async def ticker(last_event_id: str, encoder: Encoder, disconnected: asyncio.Event) -> None:
        counter = _next_id(last_event_id)
        while not disconnected.is_set():
            payload = json.dumps({"count": counter})
            await encoder.encode(Event(type="tick", id=str(counter), data=payload.encode()))
            counter += 1
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(disconnected.wait(), timeout=interval)

    return ticker


async def handle_health(request: web.Request) -> web.Response:
    """GET /health — health check endpoint."""
    return web.json_response({"status": "ok"})


def create_app(config: SSELinkConfig | None = None) -> web.Application:
    """Create the demo application.

    Routes:
        GET /events  counter stream, resumes from Last-Event-Id
        GET /health  health check
    """
    if config is None:
        config = SSELinkConfig()

    app = web.Application()
    app["config"] = config
    app.router.add_get("/events", EventStreamHandler(make_ticker(config.tick_interval)))
    app.router.add_get("/health", handle_health)
    return app


def run_server(config: SSELinkConfig | None = None) -> None:
    """Run the demo server (blocking)."""
    if config is None:
        config = SSELinkConfig()

    async def _run() -> None:
        app = create_app(config)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, host=config.host, port=config.port)
        await site.start()
        log.info("server_listening", host=config.host, port=config.port)

        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    asyncio.run(_run())
