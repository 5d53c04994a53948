"""Session Models"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class SessionState(str, Enum):
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Session:
    principal_id: str
    role: str
    issued_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    state: SessionState = SessionState.ACTIVE
    ended_at: datetime | None = None

    def remaining(self, now: datetime) -> timedelta:
        if self.state == SessionState.EXPIRED:
            return timedelta(0)
        return max(self.expires_at - now, timedelta(0))

    def state_at(self, now: datetime, warning_threshold: timedelta) -> SessionState:
        """State the timers call for at `now`. Expired is terminal."""
        if self.state == SessionState.EXPIRED:
            return SessionState.EXPIRED
        left = self.expires_at - now
        if left <= timedelta(0):
            return SessionState.EXPIRED
        if left <= warning_threshold:
            return SessionState.WARNING
        return SessionState.ACTIVE
