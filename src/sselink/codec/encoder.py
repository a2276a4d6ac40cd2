"""Serialize events to the event stream wire format."""

from __future__ import annotations

import inspect
from typing import Any

from sselink.codec.event import Event
from sselink.errors import InvalidEncoding


def _validate(name: str, value: bytes | str) -> bytes:
    """Return value as bytes, raising InvalidEncoding unless both are UTF-8."""
    try:
        name.encode("utf-8")
        if isinstance(value, str):
            return value.encode("utf-8")
        value.decode("utf-8")
    except UnicodeError as exc:
        raise InvalidEncoding() from exc
    return bytes(value)


def encode_field(name: str, value: bytes | str) -> bytes:
    """Encode one field. Multi-line values become repeated fields."""
    raw = _validate(name, value)
    prefix = name.encode("utf-8")

    lines: list[bytes] = []
    for segment in raw.split(b"\n"):
        if segment.endswith(b"\r"):
            segment = segment[:-1]
        if segment:
            lines.append(prefix + b": " + segment + b"\n")
        else:
            lines.append(prefix + b"\n")
    return b"".join(lines)


def encode_event(event: Event) -> bytes:
    """Serialize a complete event, including the terminating blank line.

    Field order is id, retry, event, data. ``data`` is always written so
    that even an empty event is a well-formed block.
    """
    parts: list[bytes] = []
    if event.reset_id or event.id:
        parts.append(encode_field("id", event.id))
    if event.retry:
        parts.append(encode_field("retry", event.retry))
    if event.type:
        parts.append(encode_field("event", event.type))
    parts.append(encode_field("data", event.data))
    parts.append(b"\n")
    return b"".join(parts)


class Encoder:
    """Writes events to a sink.

    The sink needs a ``write(bytes)`` method and may have ``flush()``;
    either may be a coroutine function, so both ``io.BytesIO`` and an
    aiohttp ``StreamResponse`` work.
    """

    def __init__(self, sink: Any) -> None:
        self._sink = sink

    async def _write(self, data: bytes) -> None:
        result = self._sink.write(data)
        if inspect.isawaitable(result):
            await result

    async def flush(self) -> None:
        flush = getattr(self._sink, "flush", None)
        if flush is None:
            return
        result = flush()
        if inspect.isawaitable(result):
            await result

    async def write_field(self, name: str, value: bytes | str) -> None:
        """Write a single field. Nothing is written if it fails validation."""
        await self._write(encode_field(name, value))

    async def encode(self, event: Event) -> None:
        """Write an event followed by a blank line, then flush the sink."""
        await self._write(encode_event(event))
        await self.flush()
