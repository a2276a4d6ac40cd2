"""EventSource connection state machine.

DISCONNECTED ──[first read]──→ CONNECTING ──[200 text/event-stream]──→ STREAMING
                                   │  ↑                                    │
                                   │  └──[5xx / transport error, wait]     │
                                   │  ↑                                    │
                                   │  └────────[stream ended or failed]────┘
                                   │
                          [204 / bad status / wrong content type / cancelled]
                                   │
                                   v
                                CLOSED ←──[close()]── any state
"""

from __future__ import annotations

import enum

import structlog

log = structlog.get_logger()


class ConnectionState(enum.Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    STREAMING = "STREAMING"
    CLOSED = "CLOSED"


# Valid transitions: (from_state, to_state)
VALID_TRANSITIONS: set[tuple[ConnectionState, ConnectionState]] = {
    (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
    (ConnectionState.CONNECTING, ConnectionState.CONNECTING),  # retry after a recoverable failure
    (ConnectionState.CONNECTING, ConnectionState.STREAMING),
    (ConnectionState.CONNECTING, ConnectionState.CLOSED),
    (ConnectionState.STREAMING, ConnectionState.CONNECTING),
    # Explicit close
    (ConnectionState.DISCONNECTED, ConnectionState.CLOSED),
    (ConnectionState.STREAMING, ConnectionState.CLOSED),
    (ConnectionState.CLOSED, ConnectionState.CLOSED),
}


class InvalidTransition(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: ConnectionState, to_state: ConnectionState) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} → {to_state.value}")


def validate_transition(from_state: ConnectionState, to_state: ConnectionState) -> None:
    """Validate a state transition, raising InvalidTransition if not allowed."""
    if (from_state, to_state) not in VALID_TRANSITIONS:
        raise InvalidTransition(from_state, to_state)


def transition(
    current: ConnectionState,
    target: ConnectionState,
    url: str,
    trigger: str = "",
) -> ConnectionState:
    """Execute a validated state transition, logging the change."""
    validate_transition(current, target)
    if current != target:
        log.debug(
            "state_transition",
            url=url,
            from_state=current.value,
            to_state=target.value,
            trigger=trigger,
        )
    return target
