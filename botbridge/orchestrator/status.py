"""Session Status - Connection states and their allowed transitions.

States:
- CONNECTING: Transport handle created or reconnecting
- CONNECTED: Transport authenticated
- LOGGED_OUT: Remote party ended the session (terminal)
- NOT_FOUND: No registry entry (reported, never stored)
"""

from dataclasses import dataclass
from enum import Enum


class SessionStatus(Enum):
    """Session status as reported to API clients and subscribers."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    LOGGED_OUT = "logged_out"
    NOT_FOUND = "not_found"


# Valid state transitions
VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.CONNECTING: {SessionStatus.CONNECTED, SessionStatus.LOGGED_OUT},
    SessionStatus.CONNECTED: {SessionStatus.CONNECTING, SessionStatus.LOGGED_OUT},
    SessionStatus.LOGGED_OUT: set(),
    SessionStatus.NOT_FOUND: set(),
}


@dataclass
class StateTransition:
    """Record of a state transition."""

    old_state: SessionStatus
    new_state: SessionStatus
    reason: str
    generation: int
