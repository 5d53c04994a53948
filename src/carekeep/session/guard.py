"""Session Guard - per-principal timed state machine"""
from dataclasses import replace
from datetime import timedelta
from typing import Callable

import structlog

from carekeep.audit.models import AuditEntry, AuditResult, RiskLevel
from carekeep.audit.recorder import AuditRecorder
from carekeep.clock import ClockSource
from carekeep.config import SessionSettings
from carekeep.errors import SessionNotFoundError
from carekeep.session.models import Session, SessionState

logger = structlog.get_logger(__name__)

RESOURCE_TYPE = "session"

SessionListener = Callable[[Session, SessionState], None]


class SessionGuard:
    """
    Tracks at most one session per principal.

    active --(remaining <= warning threshold)--> warning --(remaining <= 0)--> expired

    Every mutating call appends exactly one audit event describing its
    outcome. When activity and expiry land on the same instant, expiry
    wins. Methods are synchronous, so each one is atomic on the event
    loop.
    """

    def __init__(
        self,
        audit: AuditRecorder,
        clock: ClockSource,
        settings: SessionSettings | None = None,
    ):
        self._audit = audit
        self._clock = clock
        self._settings = settings or SessionSettings()
        self._sessions: dict[str, Session] = {}
        self._listeners: list[SessionListener] = []

    @property
    def lifetime(self) -> timedelta:
        return self._settings.lifetime

    @property
    def warning_threshold(self) -> timedelta:
        return self._settings.warning_threshold

    def add_listener(self, listener: SessionListener) -> None:
        """Called with (session, previous_state) on warning and expiry transitions."""
        self._listeners.append(listener)

    # ==================== LIFECYCLE ====================

    def start(self, principal_id: str, role: str, correlation_id: str | None = None) -> Session:
        """Open a session at authentication, replacing any earlier one."""
        now = self._clock.now()
        previous = self._sessions.get(principal_id)
        session = Session(
            principal_id=principal_id,
            role=role,
            issued_at=now,
            last_activity_at=now,
            expires_at=now + self.lifetime,
        )
        self._sessions[principal_id] = session
        self._record("session.start", session, AuditResult.SUCCESS, correlation_id,
                     replaced=previous is not None and previous.state != SessionState.EXPIRED)
        logger.info("Session started", principal=principal_id, role=role,
                    expires_at=session.expires_at.isoformat())
        return session

    def touch(self, principal_id: str, correlation_id: str | None = None) -> Session:
        """Record activity. Does not extend the session."""
        session = self._live_or_raise(principal_id, "session.touch", correlation_id)
        now = self._clock.now()
        target = session.state_at(now, self.warning_threshold)

        if target == SessionState.EXPIRED:
            self._expire(session, "touch", correlation_id)
            raise SessionNotFoundError(principal_id, "session expired")

        updated = replace(session, last_activity_at=now, state=target)
        self._sessions[principal_id] = updated
        if target == SessionState.WARNING and session.state != SessionState.WARNING:
            self._record("session.warning", updated, AuditResult.SUCCESS, correlation_id,
                         trigger="touch")
            self._notify(updated, session.state)
        else:
            self._record("session.touch", updated, AuditResult.SUCCESS, correlation_id)
        return updated

    def refresh(self, principal_id: str, correlation_id: str | None = None) -> Session:
        """Extend a live session by the configured lifetime and return it to active."""
        session = self._live_or_raise(principal_id, "session.refresh", correlation_id)
        now = self._clock.now()

        if session.state_at(now, self.warning_threshold) == SessionState.EXPIRED:
            self._expire(session, "refresh", correlation_id)
            raise SessionNotFoundError(principal_id, "session expired")

        updated = replace(session, last_activity_at=now, expires_at=now + self.lifetime,
                          state=SessionState.ACTIVE)
        self._sessions[principal_id] = updated
        self._record("session.refresh", updated, AuditResult.SUCCESS, correlation_id,
                     previous_state=session.state.value)
        logger.info("Session refreshed", principal=principal_id,
                    expires_at=updated.expires_at.isoformat())
        return updated

    def expire(self, principal_id: str, correlation_id: str | None = None) -> Session:
        """Force the terminal state. Repeating it is a no-op."""
        session = self._sessions.get(principal_id)
        if session is None:
            self._record_missing("session.expire", principal_id, correlation_id)
            raise SessionNotFoundError(principal_id)
        if session.state == SessionState.EXPIRED:
            return session
        return self._expire(session, "forced", correlation_id)

    def check(self, principal_id: str) -> SessionState | None:
        """Apply any timer transition due for one principal."""
        session = self._sessions.get(principal_id)
        if session is None:
            return None
        if session.state == SessionState.EXPIRED:
            return SessionState.EXPIRED

        target = session.state_at(self._clock.now(), self.warning_threshold)
        if target == SessionState.EXPIRED:
            self._expire(session, "timeout", None)
        elif target == SessionState.WARNING and session.state == SessionState.ACTIVE:
            updated = replace(session, state=SessionState.WARNING)
            self._sessions[principal_id] = updated
            self._record("session.warning", updated, AuditResult.SUCCESS, None,
                         trigger="timer")
            logger.info("Session expiring soon", principal=principal_id,
                        remaining_seconds=updated.remaining(self._clock.now()).total_seconds())
            self._notify(updated, session.state)
        return target

    def check_all(self) -> dict[str, SessionState]:
        """Apply due transitions to every session. Returns only the changes."""
        changed = {}
        for principal_id, session in list(self._sessions.items()):
            before = session.state
            after = self.check(principal_id)
            if after is not None and after != before:
                changed[principal_id] = after
        self._evict_expired()
        return changed

    # ==================== READS ====================

    def get(self, principal_id: str) -> Session | None:
        return self._sessions.get(principal_id)

    def state(self, principal_id: str) -> SessionState:
        session = self._sessions.get(principal_id)
        if session is None:
            raise SessionNotFoundError(principal_id)
        return session.state

    def remaining(self, principal_id: str) -> timedelta:
        """Time left, clamped at zero."""
        session = self._sessions.get(principal_id)
        if session is None:
            raise SessionNotFoundError(principal_id)
        return session.remaining(self._clock.now())

    def is_authenticated(self, principal_id: str) -> bool:
        session = self._sessions.get(principal_id)
        if session is None or session.state == SessionState.EXPIRED:
            return False
        return session.expires_at > self._clock.now()

    def has_warning(self) -> bool:
        return any(s.state == SessionState.WARNING for s in self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    # ==================== INTERNALS ====================

    def _evict_expired(self) -> int:
        cutoff = self._clock.now() - self._settings.expired_retention
        stale = [pid for pid, s in self._sessions.items()
                 if s.state == SessionState.EXPIRED and s.ended_at is not None
                 and s.ended_at <= cutoff]
        for principal_id in stale:
            del self._sessions[principal_id]
        if stale:
            logger.debug("Expired sessions evicted", count=len(stale))
        return len(stale)

    def _live_or_raise(self, principal_id: str, action: str,
                       correlation_id: str | None) -> Session:
        session = self._sessions.get(principal_id)
        if session is None or session.state == SessionState.EXPIRED:
            self._record_missing(action, principal_id, correlation_id,
                                 role=session.role if session else None)
            raise SessionNotFoundError(
                principal_id, "session expired" if session else "no active session"
            )
        return session

    def _expire(self, session: Session, trigger: str, correlation_id: str | None) -> Session:
        expired = replace(session, state=SessionState.EXPIRED, ended_at=self._clock.now())
        self._sessions[session.principal_id] = expired
        self._record("session.expire", expired, AuditResult.SUCCESS, correlation_id,
                     trigger=trigger, previous_state=session.state.value)
        logger.info("Session expired", principal=session.principal_id, trigger=trigger)
        self._notify(expired, session.state)
        return expired

    def _notify(self, session: Session, previous: SessionState) -> None:
        for listener in self._listeners:
            try:
                listener(session, previous)
            except Exception as e:
                logger.error("Session listener failed", principal=session.principal_id,
                             error=str(e))

    def _record(self, action: str, session: Session, result: AuditResult,
                correlation_id: str | None, **details) -> str:
        return self._audit.append(AuditEntry(
            principal_id=session.principal_id,
            principal_role=session.role,
            action=action,
            resource_type=RESOURCE_TYPE,
            resource_id=session.principal_id,
            result=result,
            risk_level=RiskLevel.LOW,
            correlation_id=correlation_id,
            details=details,
        ))

    def _record_missing(self, action: str, principal_id: str, correlation_id: str | None,
                        role: str | None = None) -> str:
        return self._audit.append(AuditEntry(
            principal_id=principal_id,
            principal_role=role or "unknown",
            action=action,
            resource_type=RESOURCE_TYPE,
            resource_id=principal_id,
            result=AuditResult.FAILURE,
            risk_level=RiskLevel.MEDIUM,
            correlation_id=correlation_id,
            details={"error": "session not found"},
        ))
