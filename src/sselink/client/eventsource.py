"""EventSource: a pull-style event stream client with automatic reconnects.

Connects over httpx, decodes the response body, and reconnects after
recoverable failures, resuming from the last event id the server sent.
A terminal error stops the source for good; every later ``read()`` raises
that same error.
"""

from __future__ import annotations

import asyncio
import re

import httpx
import structlog

from sselink.codec.decoder import Decoder
from sselink.codec.event import Event
from sselink.config import SSELinkConfig
from sselink.errors import Closed, InvalidEncoding, TerminalError

from .outcome import EVENT_STREAM, Verdict, classify_error, classify_response
from .state_machine import ConnectionState, transition

log = structlog.get_logger()

# Optional sign and ASCII digits only, no surrounding whitespace.
_RETRY_MS = re.compile(r"[+-]?[0-9]+")


class EventSource:
    """Consumes server-sent events over HTTP with automatic recovery.

    Not safe for concurrent ``read()`` calls. ``close()`` may be awaited from
    another task to unblock a stalled read.
    """

    def __init__(
        self,
        request: httpx.Request | str,
        retry: float | None = None,
        client: httpx.AsyncClient | None = None,
        config: SSELinkConfig | None = None,
    ) -> None:
        """
        Args:
            request: URL or prepared request to stream from.
            retry: Initial reconnect interval in seconds. Values <= 0 fall
                back to ``config.retry_seconds``.
            client: Transport to use. If omitted, one is created from config
                and closed together with the source.
            config: Settings. Defaults to SSELinkConfig().
        """
        self.config = config or SSELinkConfig()

        self._owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.config.read_timeout, connect=self.config.connect_timeout
                ),
            )
        self._client = client

        if isinstance(request, str):
            request = client.build_request("GET", request)
        request.headers["Accept"] = EVENT_STREAM
        request.headers["Cache-Control"] = "no-cache"
        self.request = request

        if retry is None or retry <= 0:
            retry = self.config.retry_seconds
        self.retry: float = retry
        self.last_event_id: str = ""

        self._state = ConnectionState.DISCONNECTED
        self._error: TerminalError | None = None
        self._response: httpx.Response | None = None
        self._decoder: Decoder | None = None
        self._attempted = False

    @classmethod
    def from_config(cls, url: str, config: SSELinkConfig) -> EventSource:
        return cls(url, retry=config.retry_seconds, config=config)

    @property
    def url(self) -> str:
        return str(self.request.url)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def error(self) -> TerminalError | None:
        """The terminal error, once one has been recorded."""
        return self._error

    def _set_state(self, target: ConnectionState, trigger: str = "") -> None:
        self._state = transition(self._state, target, self.url, trigger)

    def _fail(self, error: TerminalError, reason: str) -> None:
        self._error = error
        self._set_state(ConnectionState.CLOSED, reason)
        log.error("sse_fatal", url=self.url, error=str(error), reason=reason)

    async def _release(self) -> None:
        response, self._response = self._response, None
        self._decoder = None
        if response is not None:
            await response.aclose()

    async def _connect(self) -> None:
        """Open the stream, retrying until it is bound or a fatal error is recorded."""
        while self._error is None:
            await self._release()
            if self._attempted:
                await asyncio.sleep(self.retry)
                if self._error is not None:
                    break
            self._attempted = True
            self._set_state(ConnectionState.CONNECTING, "connect")

            self.request.headers["Last-Event-Id"] = self.last_event_id

            try:
                response = await self._client.send(self.request, stream=True)
            except asyncio.CancelledError as exc:
                outcome = classify_error(exc)
                self._fail(outcome.error, outcome.reason)
                raise
            except httpx.RequestError as exc:
                if self._error is not None:
                    break
                outcome = classify_error(exc)
                log.warning(
                    "sse_connect_retry",
                    url=self.url,
                    reason=outcome.reason,
                    retry_seconds=self.retry,
                )
                continue
            except Exception:
                # close() tore down the client under an in-flight request.
                if self._error is not None:
                    break
                raise

            if self._error is not None:
                # Closed while the request was in flight.
                await response.aclose()
                break

            outcome = classify_response(
                response.status_code,
                response.headers.get("content-type", ""),
                response.reason_phrase,
            )

            if outcome.verdict is Verdict.STREAM:
                self._response = response
                self._decoder = Decoder(response.aiter_bytes())
                self._set_state(ConnectionState.STREAMING, outcome.reason)
                log.info("sse_connected", url=self.url, last_event_id=self.last_event_id)
                return

            await response.aclose()

            if outcome.verdict is Verdict.RETRY:
                log.warning(
                    "sse_connect_retry",
                    url=self.url,
                    reason=outcome.reason,
                    retry_seconds=self.retry,
                )
                continue

            self._fail(outcome.error, outcome.reason)

    def _remember(self, event: Event) -> None:
        if event.id or event.reset_id:
            self.last_event_id = event.id

        if event.retry:
            if _RETRY_MS.fullmatch(event.retry) and int(event.retry) >= 0:
                self.retry = int(event.retry) / 1000
                log.debug("sse_retry_updated", url=self.url, retry_seconds=self.retry)
            else:
                log.debug("sse_retry_ignored", url=self.url, retry=event.retry)

    async def read(self) -> Event:
        """Return the next event with a non-empty payload.

        Malformed lines are skipped and dropped connections are re-opened
        transparently. Raises the terminal error once one is recorded.
        """
        if self._decoder is None:
            await self._connect()

        while self._error is None:
            try:
                event = await self._decoder.decode()
            except InvalidEncoding:
                log.debug("sse_invalid_encoding_skipped", url=self.url)
                continue
            except Exception as exc:
                log.info("sse_stream_interrupted", url=self.url, error=repr(exc))
                await self._connect()
                continue

            if event.is_empty:
                continue

            self._remember(event)
            return event

        raise self._error

    async def close(self) -> None:
        """Close the source. Every later read() raises Closed."""
        self._error = Closed()
        self._set_state(ConnectionState.CLOSED, "close")
        await self._release()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> EventSource:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def __aiter__(self) -> EventSource:
        return self

    async def __anext__(self) -> Event:
        try:
            return await self.read()
        except Closed:
            raise StopAsyncIteration from None
