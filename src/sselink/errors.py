"""Exception taxonomy shared by the codec and the streaming client.

SSELinkError
├── InvalidEncoding        a field name or value is not valid UTF-8
├── EndOfStream            decoder input exhausted
└── TerminalError          fatal for an EventSource, returned forever after
    ├── Closed
    │   └── NoContent
    ├── Cancelled
    ├── InvalidContentType
    └── UnrecoverableStatus
"""

from __future__ import annotations


class SSELinkError(Exception):
    """Base class for all sselink errors."""


class InvalidEncoding(SSELinkError):
    """Raised when a field name or value is not valid UTF-8."""

    def __init__(self, message: str = "invalid UTF-8 sequence") -> None:
        super().__init__(message)


class EndOfStream(SSELinkError, EOFError):
    """Raised by the decoder once its input has no more lines."""

    def __init__(self, message: str = "end of stream") -> None:
        super().__init__(message)


class TerminalError(SSELinkError):
    """A fatal condition. Once recorded, an EventSource never reconnects."""


class Closed(TerminalError):
    """The event source has been permanently closed."""

    def __init__(self, message: str = "closed") -> None:
        super().__init__(message)


class NoContent(Closed):
    """Server answered 204 No Content: there is nothing more to stream."""

    def __init__(self) -> None:
        super().__init__("endpoint returned 204 No Content")


class Cancelled(TerminalError):
    """The transport call was cancelled by the caller."""

    def __init__(self) -> None:
        super().__init__("request cancelled")


class InvalidContentType(TerminalError):
    """A 200 response did not carry the text/event-stream media type."""

    def __init__(self, content_type: str) -> None:
        self.content_type = content_type
        super().__init__(f"invalid response Content-Type ({content_type})")


class UnrecoverableStatus(TerminalError):
    """The endpoint answered with a status the protocol cannot recover from."""

    def __init__(self, status_code: int, reason: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        status = f"{status_code} {reason}".strip()
        super().__init__(f"endpoint returned unrecoverable status {status}")
