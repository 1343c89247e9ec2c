"""Session state machine for the backend connection."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone


class SessionState(enum.Enum):
    """Lifecycle of the single backend session."""

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


_ALLOWED: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.CONNECTING},
    SessionState.CONNECTING: {
        SessionState.CONNECTED,
        SessionState.CONNECTING,
        SessionState.CLOSING,
        SessionState.CLOSED,
    },
    SessionState.CONNECTED: {SessionState.CONNECTING, SessionState.CLOSING, SessionState.CLOSED},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: {SessionState.CONNECTING},
}


@dataclass
class SessionTracker:
    """In-memory session metadata."""

    state: SessionState = SessionState.IDLE
    retry_count: int = 0
    last_transition_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def transition(self, next_state: SessionState) -> None:
        """Move the session into a new state, validating allowed transitions."""

        if not self._is_valid_transition(self.state, next_state):
            raise ValueError(f"Invalid transition {self.state.value} → {next_state.value}")
        self.state = next_state
        self.last_transition_at = datetime.now(tz=timezone.utc)
        if next_state is SessionState.CONNECTED:
            self.retry_count = 0

    @staticmethod
    def _is_valid_transition(current: SessionState, nxt: SessionState) -> bool:
        return nxt in _ALLOWED.get(current, set())

    @property
    def is_active(self) -> bool:
        return self.state in {SessionState.CONNECTING, SessionState.CONNECTED}
