"""Classification of connection attempts.

Every attempt to open the stream ends in exactly one verdict, decided here
and nowhere else:

    outcome                                   verdict   error
    ----------------------------------------  --------  -------------------
    caller cancelled the request              FATAL     Cancelled
    any other request/transport error         RETRY     -
    status >= 500                             RETRY     -
    status 204                                FATAL     NoContent
    status 200, text/event-stream             STREAM    -
    status 200, any other content type        FATAL     InvalidContentType
    any other status                          FATAL     UnrecoverableStatus
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass

from sselink.errors import (
    Cancelled,
    InvalidContentType,
    NoContent,
    TerminalError,
    UnrecoverableStatus,
)

EVENT_STREAM = "text/event-stream"


class Verdict(enum.Enum):
    STREAM = "STREAM"
    RETRY = "RETRY"
    FATAL = "FATAL"


@dataclass(frozen=True)
class Outcome:
    verdict: Verdict
    error: TerminalError | None = None
    reason: str = ""


def media_type(content_type: str) -> str:
    """Return the bare media type of a Content-Type value, without parameters."""
    return content_type.split(";", 1)[0].strip().lower()


def classify_error(exc: BaseException) -> Outcome:
    """Classify an exception raised while sending the request."""
    if isinstance(exc, asyncio.CancelledError):
        return Outcome(Verdict.FATAL, Cancelled(), reason="cancelled")
    # Errors that will never go away (bad DNS name, refused port) are
    # retried too; they are logged on every attempt.
    return Outcome(Verdict.RETRY, reason=f"{type(exc).__name__}: {exc}")


def classify_response(status_code: int, content_type: str = "", reason: str = "") -> Outcome:
    """Classify an HTTP response by status code and Content-Type."""
    if status_code >= 500:
        return Outcome(Verdict.RETRY, reason=f"status {status_code}")

    if status_code == 204:
        return Outcome(Verdict.FATAL, NoContent(), reason="status 204")

    if status_code == 200:
        if media_type(content_type) == EVENT_STREAM:
            return Outcome(Verdict.STREAM, reason="status 200")
        return Outcome(
            Verdict.FATAL,
            InvalidContentType(content_type),
            reason=f"content type {content_type!r}",
        )

    return Outcome(
        Verdict.FATAL,
        UnrecoverableStatus(status_code, reason),
        reason=f"status {status_code}",
    )
