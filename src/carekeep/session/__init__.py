"""Session Lifecycle - timed active/warning/expired state machine"""
from carekeep.session.guard import SessionGuard
from carekeep.session.models import Session, SessionState
from carekeep.session.monitor import SessionMonitor

__all__ = ["SessionGuard", "SessionMonitor", "Session", "SessionState"]
