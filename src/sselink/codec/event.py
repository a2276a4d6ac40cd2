"""The Event type exchanged over an event stream."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_EVENT_TYPE = "message"


@dataclass
class Event:
    """A single Server-Sent Event.

    ``reset_id`` is True when the wire carried an explicit empty ``id``
    field, which tells the client to forget its last event id. ``retry``
    is kept as text; the client decides whether it parses.
    """

    type: str = DEFAULT_EVENT_TYPE
    id: str = ""
    reset_id: bool = False
    retry: str = ""
    data: bytes = b""

    @property
    def text(self) -> str:
        return self.data.decode("utf-8")

    @property
    def is_empty(self) -> bool:
        return not self.data
