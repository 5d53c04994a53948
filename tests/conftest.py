import pytest

from carekeep.access.authorizer import RoleAuthorizer
from carekeep.audit.recorder import AuditRecorder
from carekeep.clock import ManualClock
from carekeep.config import SessionSettings
from carekeep.consent.store import ConsentStore
from carekeep.session.guard import SessionGuard
from carekeep.storage import InMemoryRepository


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def recorder(clock):
    return AuditRecorder(clock)


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def store(recorder, clock):
    return ConsentStore(recorder, clock)


@pytest.fixture
def session_settings():
    return SessionSettings(lifetime_minutes=30, warning_threshold_minutes=5,
                           check_interval_seconds=30, warning_tick_seconds=1)


@pytest.fixture
def guard(recorder, clock, session_settings):
    return SessionGuard(recorder, clock, session_settings)


@pytest.fixture
def authorizer(recorder):
    return RoleAuthorizer(recorder)


def actions(recorder, action=None):
    """Audit events as (action, result) pairs, optionally for one action."""
    return [
        (e.action, e.result.value)
        for e in recorder.query()
        if action is None or e.action == action
    ]
