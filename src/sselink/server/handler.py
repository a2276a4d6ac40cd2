"""aiohttp request handler that serves an event stream.

Checks the Accept header, prepares a text/event-stream response, and hands
an Encoder to application code together with an asyncio.Event that is set
once the client has gone away.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from aiohttp import web

from sselink.client.outcome import EVENT_STREAM, media_type
from sselink.codec.encoder import Encoder

log = structlog.get_logger()

StreamCallback = Callable[[str, Encoder, asyncio.Event], Awaitable[None]]

_MATCHING_RANGES = {EVENT_STREAM, "text/*", "*/*"}


def acceptable(accept: str) -> bool:
    """Return True if an Accept header value admits text/event-stream.

    An absent or empty header accepts anything. Quality values are ignored.
    """
    if not accept.strip():
        return True
    return any(media_type(part) in _MATCHING_RANGES for part in accept.split(","))


class EventStreamHandler:
    """Serves one event stream per request by awaiting ``callback``.

    The callback receives the client's Last-Event-Id (possibly empty), an
    Encoder bound to the response, and an event set on disconnect.
    """

    def __init__(self, callback: StreamCallback) -> None:
        self.callback = callback

    async def __call__(self, request: web.Request) -> web.StreamResponse:
        if not acceptable(request.headers.get("Accept", "")):
            log.info("sse_not_acceptable", path=request.path, accept=request.headers.get("Accept"))
            raise web.HTTPNotAcceptable()

        response = web.StreamResponse(
            status=200,
            headers={"Content-Type": EVENT_STREAM, "Cache-Control": "no-cache"},
        )
        await response.prepare(request)

        last_event_id = request.headers.get("Last-Event-Id", "")
        disconnected = asyncio.Event()
        encoder = Encoder(response)

        log.info("sse_client_connected", path=request.path, last_event_id=last_event_id)
        watcher = asyncio.create_task(_watch_disconnect(request, disconnected))
        try:
            await self.callback(last_event_id, encoder, disconnected)
        except ConnectionResetError:
            log.info("sse_client_disconnected", path=request.path)
        finally:
            disconnected.set()
            watcher.cancel()

        return response


async def _watch_disconnect(
    request: web.Request, disconnected: asyncio.Event, interval: float = 0.5
) -> None:
    """Set ``disconnected`` once the client's transport goes away."""
    while not disconnected.is_set():
        transport = request.transport
        if transport is None or transport.is_closing():
            disconnected.set()
            return
        await asyncio.sleep(interval)
