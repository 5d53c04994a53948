from datetime import timedelta

import pytest

from carekeep.errors import SessionNotFoundError
from carekeep.session.models import SessionState
from carekeep.session.monitor import SessionMonitor

from conftest import actions


def test_warning_then_refresh_scenario(guard, clock):
    guard.start("doc-1", "doctor")

    clock.advance(minutes=26)
    assert guard.check("doc-1") == SessionState.WARNING
    assert guard.state("doc-1") == SessionState.WARNING
    assert guard.remaining("doc-1") == timedelta(minutes=4)

    guard.refresh("doc-1")
    assert guard.state("doc-1") == SessionState.ACTIVE
    assert guard.remaining("doc-1") == timedelta(minutes=30)


def test_touch_records_activity_without_extending(guard, clock):
    guard.start("doc-1", "doctor")
    clock.advance(minutes=10)

    session = guard.touch("doc-1")

    assert session.last_activity_at == clock.now()
    assert guard.remaining("doc-1") == timedelta(minutes=20)
    assert session.state == SessionState.ACTIVE


def test_touch_crossing_warning_threshold(guard, clock, recorder):
    guard.start("doc-1", "doctor")
    clock.advance(minutes=25)

    assert guard.touch("doc-1").state == SessionState.WARNING
    assert actions(recorder)[-1] == ("session.warning", "success")


def test_expiry_wins_over_touch_at_same_instant(guard, clock, recorder):
    guard.start("doc-1", "doctor")
    clock.advance(minutes=30)

    with pytest.raises(SessionNotFoundError):
        guard.touch("doc-1")

    assert guard.state("doc-1") == SessionState.EXPIRED
    assert actions(recorder)[-1] == ("session.expire", "success")
    assert guard.remaining("doc-1") == timedelta(0)


def test_remaining_is_clamped_at_zero(guard, clock):
    guard.start("doc-1", "doctor")
    clock.advance(minutes=45)

    assert guard.remaining("doc-1") == timedelta(0)
    assert not guard.is_authenticated("doc-1")


def test_refresh_without_session(guard, recorder):
    with pytest.raises(SessionNotFoundError):
        guard.refresh("ghost")
    assert actions(recorder) == [("session.refresh", "failure")]


def test_refresh_after_expiry_fails(guard, clock, recorder):
    guard.start("doc-1", "doctor")
    guard.expire("doc-1")

    with pytest.raises(SessionNotFoundError):
        guard.refresh("doc-1")
    assert actions(recorder)[-1] == ("session.refresh", "failure")
    assert guard.state("doc-1") == SessionState.EXPIRED


def test_expire_is_idempotent(guard, recorder):
    guard.start("doc-1", "doctor")

    guard.expire("doc-1")
    guard.expire("doc-1")

    assert actions(recorder, "session.expire") == [("session.expire", "success")]


def test_expire_unknown_principal(guard, recorder):
    with pytest.raises(SessionNotFoundError):
        guard.expire("ghost")
    assert actions(recorder) == [("session.expire", "failure")]


def test_remaining_unknown_principal(guard):
    with pytest.raises(SessionNotFoundError):
        guard.remaining("ghost")


def test_each_mutation_appends_exactly_one_event(guard, clock, recorder):
    guard.start("doc-1", "doctor")
    for op in (guard.touch, guard.refresh, guard.touch, guard.expire):
        before = len(recorder)
        op("doc-1")
        assert len(recorder) == before + 1


def test_check_all_reports_only_changes(guard, clock):
    guard.start("doc-1", "doctor")
    clock.advance(minutes=10)
    guard.start("nurse-1", "nurse")

    clock.advance(minutes=16)
    assert guard.check_all() == {"doc-1": SessionState.WARNING}
    assert guard.check_all() == {}

    clock.advance(minutes=4)
    assert guard.check_all() == {"doc-1": SessionState.EXPIRED}


def test_listener_notified_on_expiry(guard, clock):
    seen = []
    guard.add_listener(lambda session, previous: seen.append((session.state, previous)))
    guard.start("doc-1", "doctor")

    clock.advance(minutes=26)
    guard.check("doc-1")
    clock.advance(minutes=4)
    guard.check("doc-1")

    assert seen == [
        (SessionState.WARNING, SessionState.ACTIVE),
        (SessionState.EXPIRED, SessionState.WARNING),
    ]


def test_new_sign_in_replaces_expired_session(guard):
    guard.start("doc-1", "doctor")
    guard.expire("doc-1")
    guard.start("doc-1", "doctor")
    assert guard.is_authenticated("doc-1")


@pytest.mark.asyncio
async def test_monitor_tightens_cadence_in_warning(guard, clock, session_settings):
    monitor = SessionMonitor(guard, clock, session_settings)
    guard.start("doc-1", "doctor")

    monitor.start()
    await clock.settle()
    assert monitor.runs == 1
    assert monitor.next_interval() == 30

    clock.advance(minutes=26)
    await clock.settle()
    assert guard.state("doc-1") == SessionState.WARNING
    assert monitor.next_interval() == 1

    runs = monitor.runs
    clock.advance(seconds=1)
    await clock.settle()
    assert monitor.runs == runs + 1

    clock.advance(minutes=4)
    await clock.settle()
    assert guard.state("doc-1") == SessionState.EXPIRED

    await monitor.stop()
    assert not monitor.running


def test_expired_sessions_evicted_after_retention(guard, clock):
    guard.start("doc-1", "doctor")
    guard.start("nurse-1", "nurse")
    guard.expire("doc-1")

    clock.advance(minutes=59)
    guard.check_all()
    assert guard.get("doc-1") is not None

    clock.advance(minutes=1)
    guard.check_all()
    assert guard.get("doc-1") is None
    assert guard.get("nurse-1") is not None
    assert not guard.is_authenticated("doc-1")
