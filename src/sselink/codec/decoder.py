"""Incremental event stream decoder.

Reads an async stream of byte chunks (typically ``response.aiter_bytes()``)
and turns it into fields and events. Lines are buffered across chunk
boundaries, so a single field may be arbitrarily long.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator

from sselink.codec.event import Event
from sselink.errors import EndOfStream, InvalidEncoding

BOM = b"\xef\xbb\xbf"


async def _single_chunk(payload: bytes) -> AsyncIterator[bytes]:
    yield payload


class Decoder:
    """Reads and decodes events from one input stream."""

    def __init__(self, stream: AsyncIterable[bytes]) -> None:
        self._chunks = stream.__aiter__()
        self._buffer = bytearray()
        self._exhausted = False
        self._checked_bom = False

    @classmethod
    def from_bytes(cls, payload: bytes) -> Decoder:
        """Build a decoder over an in-memory payload."""
        return cls(_single_chunk(payload))

    async def _fill(self) -> bool:
        """Pull the next chunk into the buffer. Returns False once exhausted."""
        if self._exhausted:
            return False
        try:
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            return False
        self._buffer += chunk
        return True

    async def _check_bom(self) -> None:
        # Only wait for more bytes while what we have could still be a BOM.
        while len(self._buffer) < len(BOM) and BOM.startswith(self._buffer):
            if not await self._fill():
                break
        if self._buffer.startswith(BOM):
            del self._buffer[: len(BOM)]
        self._checked_bom = True

    async def _read_line(self) -> bytes:
        scanned = 0
        while True:
            end = self._buffer.find(b"\n", scanned)
            if end >= 0:
                line = bytes(self._buffer[:end])
                del self._buffer[: end + 1]
                break
            scanned = len(self._buffer)
            if not await self._fill():
                if not self._buffer:
                    raise EndOfStream()
                # Unterminated last line: hand it out, EOF comes next call.
                line = bytes(self._buffer)
                self._buffer.clear()
                break

        if line.endswith(b"\r"):
            line = line[:-1]
        return line

    async def read_field(self) -> tuple[str, bytes]:
        """Read one line and split it into a field name and value.

        An empty line returns ``("", b"")``, which marks the end of an event.
        Raises InvalidEncoding when the name or value is not UTF-8; the line
        is consumed either way, so decoding may continue. Errors from the
        underlying stream propagate unchanged, and EndOfStream is raised
        once the input is exhausted.
        """
        if not self._checked_bom:
            await self._check_bom()

        line = await self._read_line()
        if not line:
            return "", b""

        name, _, value = line.partition(b":")
        if value.startswith(b" "):
            value = value[1:]

        try:
            field = name.decode("utf-8")
            value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidEncoding() from exc

        return field, value

    async def decode(self) -> Event:
        """Read fields up to the next blank line and return them as an Event."""
        event = Event()
        data = bytearray()
        wrote_data = False

        while True:
            field, value = await self.read_field()
            if not field and not value:
                break

            if field == "id":
                event.id = value.decode("utf-8")
                if not event.id:
                    event.reset_id = True
            elif field == "retry":
                event.retry = value.decode("utf-8")
            elif field == "event":
                event.type = value.decode("utf-8")
            elif field == "data":
                if wrote_data:
                    data += b"\n"
                else:
                    wrote_data = True
                data += value

        event.data = bytes(data)
        return event

    def __aiter__(self) -> Decoder:
        return self

    async def __anext__(self) -> Event:
        try:
            return await self.decode()
        except EndOfStream:
            raise StopAsyncIteration from None
