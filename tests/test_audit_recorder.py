from dataclasses import replace

import pytest

from carekeep.audit.models import AuditEntry, AuditFilter, AuditResult, RiskLevel
from carekeep.audit.recorder import AUDIT_COLLECTION, AuditRecorder
from carekeep.config import AuditSettings
from carekeep.storage import InMemoryRepository


def entry(action="patient:read", result=AuditResult.SUCCESS, risk=RiskLevel.LOW,
          principal_id="doc-1"):
    return AuditEntry(
        principal_id=principal_id,
        principal_role="doctor",
        action=action,
        resource_type=action.split(":")[0].split(".")[0],
        resource_id="pat-1",
        result=result,
        risk_level=risk,
    )


class FlakySink(InMemoryRepository):
    """Repository that fails while `failing` is set."""

    def __init__(self):
        super().__init__()
        self.failing = True
        self.attempts = 0

    async def save(self, collection, key, entity, indexes=None):
        self.attempts += 1
        if self.failing:
            raise ConnectionError("audit store unreachable")
        await super().save(collection, key, entity, indexes)


def test_append_assigns_ids_and_orders_by_time(recorder, clock):
    first = recorder.append(entry())
    clock.advance(seconds=5)
    second = recorder.append(entry("consent.create"))

    events = list(recorder.query())
    assert [e.id for e in events] == [first, second]
    assert events[0].timestamp < events[1].timestamp
    assert events[0].sequence == 1 and events[1].sequence == 2
    assert recorder.get(second).action == "consent.create"
    assert events[0].correlation_id


def test_query_window_and_filters(recorder, clock):
    start = clock.now()
    recorder.append(entry())
    clock.advance(minutes=1)
    middle = clock.now()
    recorder.append(entry("consent.revoke", risk=RiskLevel.MEDIUM))
    clock.advance(minutes=1)
    recorder.append(entry("user:delete", AuditResult.DENIED, RiskLevel.CRITICAL))

    assert len(list(recorder.query(start=middle))) == 2
    assert len(list(recorder.query(end=middle))) == 2
    assert len(list(recorder.query(start, start))) == 1

    prefixed = recorder.query(filters=AuditFilter(action_prefix="consent."))
    assert [e.action for e in prefixed] == ["consent.revoke"]

    risky = recorder.query(filters=AuditFilter(min_risk=RiskLevel.MEDIUM))
    assert [e.risk_level for e in risky] == [RiskLevel.MEDIUM, RiskLevel.CRITICAL]

    denied = recorder.query(filters=AuditFilter(result=AuditResult.DENIED))
    assert [e.action for e in denied] == ["user:delete"]


def test_query_is_restartable_and_bounded(recorder):
    recorder.append(entry())
    recorder.append(entry())
    result = recorder.query()

    recorder.append(entry())

    assert len(list(result)) == 2
    assert len(list(result)) == 2
    assert len(list(recorder.query())) == 3


def test_events_are_immutable(recorder):
    event = recorder.get(recorder.append(entry()))
    with pytest.raises(AttributeError):
        event.action = "patient:delete"
    with pytest.raises(TypeError):
        event.details["tampered"] = True


def test_hash_chain_detects_tampering(recorder):
    for _ in range(3):
        recorder.append(entry())
    assert recorder.verify_integrity()

    events = recorder._events
    events[1] = replace(events[1], principal_id="someone-else")
    assert not recorder.verify_integrity()


def test_no_sink_means_nothing_pending(recorder):
    recorder.append(entry())
    assert recorder.pending_count == 0


@pytest.mark.asyncio
async def test_flush_delivers_to_sink(clock):
    sink = InMemoryRepository()
    recorder = AuditRecorder(clock, sink=sink)
    recorder.append(entry())
    recorder.append(entry())

    assert recorder.pending_count == 2
    assert await recorder.flush() == 2
    assert sink.count(AUDIT_COLLECTION) == 2
    assert recorder.pending_count == 0
    assert not recorder.degraded


@pytest.mark.asyncio
async def test_sink_outage_degrades_without_raising(clock):
    sink = FlakySink()
    settings = AuditSettings(retry_attempts=3, retry_min_wait_seconds=0,
                             retry_max_wait_seconds=0)
    recorder = AuditRecorder(clock, sink=sink, settings=settings)

    event_id = recorder.append(entry())
    assert recorder.get(event_id) is not None

    assert await recorder.flush() == 0
    assert sink.attempts == 3
    assert recorder.degraded
    assert "unreachable" in recorder.last_error
    assert recorder.pending_count == 1

    sink.failing = False
    assert await recorder.flush() == 1
    assert not recorder.degraded
    assert recorder.pending_count == 0
    assert sink.count(AUDIT_COLLECTION) == 1


@pytest.mark.asyncio
async def test_background_flusher(clock):
    sink = InMemoryRepository()
    recorder = AuditRecorder(clock, sink=sink, settings=AuditSettings(flush_interval_seconds=1))
    recorder.start()
    await clock.settle()

    recorder.append(entry())
    clock.advance(seconds=1)
    await clock.settle()
    assert sink.count(AUDIT_COLLECTION) == 1

    recorder.append(entry())
    await recorder.stop()
    assert sink.count(AUDIT_COLLECTION) == 2
