"""Session state value object for voice session lifecycle management."""

from enum import StrEnum


class SessionState(StrEnum):
    """Voice session lifecycle states.

    State machine:
        CONNECTING -> ACTIVE -> CLOSING -> CLOSED
             |                    ^
             +--------------------+  (provider never opened)

    States:
        CONNECTING: Upgrade accepted, provider channel being opened
        ACTIVE: Both channels open, timers running
        CLOSING: First close trigger seen, teardown in progress
        CLOSED: Terminal, no further channel traffic processed
    """

    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"

    def is_active(self) -> bool:
        """Check if the session relays traffic."""
        return self == SessionState.ACTIVE

    def is_shutting_down(self) -> bool:
        """Check if teardown has started (or finished)."""
        return self in (SessionState.CLOSING, SessionState.CLOSED)

    def is_terminal(self) -> bool:
        """Check if session is in a terminal state."""
        return self == SessionState.CLOSED
