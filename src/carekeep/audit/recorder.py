"""Audit Trail Recorder - append-only, hash-chained"""
import asyncio
import bisect
import hashlib
import json
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime
from types import MappingProxyType
from typing import Iterator

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from carekeep.audit.models import AuditEntry, AuditEvent, AuditFilter, RiskLevel
from carekeep.clock import ClockSource
from carekeep.config import AuditSettings
from carekeep.errors import AuditWriteDegraded
from carekeep.scheduling import PeriodicTask
from carekeep.storage import Repository

logger = structlog.get_logger(__name__)

AUDIT_COLLECTION = "audit_events"


class AuditQueryResult:
    """
    Lazy, finite, restartable view over the log.

    The upper bound is fixed when the query is created, so events appended
    later never show up in (or extend) an iteration already in progress.
    """

    def __init__(self, events: list[AuditEvent], lo: int, hi: int,
                 end: datetime | None, filters: AuditFilter | None):
        self._events = events
        self._lo = lo
        self._hi = hi
        self._end = end
        self._filters = filters

    def __iter__(self) -> Iterator[AuditEvent]:
        for i in range(self._lo, self._hi):
            event = self._events[i]
            if self._end is not None and event.timestamp > self._end:
                return
            if self._filters is None or self._filters.matches(event):
                yield event


class AuditRecorder:
    """
    Immutable audit trail.

    `append` commits to the in-memory log synchronously and never raises
    on sink trouble. Durable delivery to the sink happens in `flush`,
    with bounded retry; events that still fail stay queued and the
    recorder reports degraded mode until a later flush succeeds.
    """

    def __init__(
        self,
        clock: ClockSource,
        sink: Repository | None = None,
        settings: AuditSettings | None = None,
    ):
        self._clock = clock
        self._sink = sink
        self._settings = settings or AuditSettings()
        self._events: list[AuditEvent] = []
        self._timestamps: list[datetime] = []
        self._pending: deque[AuditEvent] = deque()
        self._flush_lock = asyncio.Lock()
        self._last_hash: str | None = None
        self._flusher: PeriodicTask | None = None
        self.degraded = False
        self.last_error: str | None = None

    # ==================== WRITE SIDE ====================

    def append(self, entry: AuditEntry) -> str:
        """Append an audit event and return its id."""
        timestamp = self._clock.now()
        if self._timestamps and timestamp < self._timestamps[-1]:
            timestamp = self._timestamps[-1]

        event = AuditEvent(
            id=f"AUD-{uuid.uuid4().hex[:16].upper()}",
            sequence=len(self._events) + 1,
            timestamp=timestamp,
            principal_id=entry.principal_id,
            principal_role=entry.principal_role,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            result=entry.result,
            risk_level=entry.risk_level,
            correlation_id=entry.correlation_id or str(uuid.uuid4()),
            details=MappingProxyType(dict(entry.details)),
            prev_hash=self._last_hash,
        )
        event_hash = self._compute_hash(event)
        event = replace(event, hash=event_hash)

        self._events.append(event)
        self._timestamps.append(timestamp)
        self._last_hash = event_hash

        if self._sink is not None:
            self._pending.append(event)
            if len(self._pending) > self._settings.max_pending and not self.degraded:
                self._mark_degraded("pending queue above limit")

        if event.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            logger.warning("Audit alert", event_id=event.id, action=event.action,
                           result=event.result.value, risk=event.risk_level.value)
        else:
            logger.debug("Audit event", event_id=event.id, action=event.action,
                         result=event.result.value)
        return event.id

    # ==================== READ SIDE ====================

    def query(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        filters: AuditFilter | None = None,
    ) -> AuditQueryResult:
        """Events in [start, end], timestamp ascending."""
        lo = bisect.bisect_left(self._timestamps, start) if start is not None else 0
        return AuditQueryResult(self._events, lo, len(self._events), end, filters)

    def get(self, event_id: str) -> AuditEvent | None:
        for event in reversed(self._events):
            if event.id == event_id:
                return event
        return None

    def __len__(self) -> int:
        return len(self._events)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def verify_integrity(self) -> bool:
        """Verify audit trail integrity using the hash chain."""
        prev_hash = None
        for event in self._events:
            if event.prev_hash != prev_hash or event.hash != self._compute_hash(event):
                logger.error("Audit integrity violation", event_id=event.id)
                return False
            prev_hash = event.hash
        return True

    def _compute_hash(self, event: AuditEvent) -> str:
        data = {
            "id": event.id,
            "sequence": event.sequence,
            "timestamp": event.timestamp.isoformat(),
            "principal_id": event.principal_id,
            "action": event.action,
            "resource_id": event.resource_id,
            "result": event.result.value,
            "prev_hash": event.prev_hash,
        }
        return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()[:32]

    # ==================== DURABLE DELIVERY ====================

    async def flush(self) -> int:
        """Deliver queued events to the sink. Returns how many were delivered."""
        if self._sink is None:
            return 0
        delivered = 0
        async with self._flush_lock:
            while self._pending:
                event = self._pending[0]
                try:
                    await self._deliver(event)
                except Exception as e:
                    self._mark_degraded(str(e))
                    break
                self._pending.popleft()
                delivered += 1
            if not self._pending and self.degraded:
                self.degraded = False
                self.last_error = None
                logger.info("Audit sink recovered", delivered=delivered)
        return delivered

    async def _deliver(self, event: AuditEvent) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_wait_seconds,
                max=self._settings.retry_max_wait_seconds,
            ),
            sleep=self._clock.sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                await self._sink.save(
                    AUDIT_COLLECTION,
                    event.id,
                    event,
                    indexes={
                        "principal_id": event.principal_id,
                        "resource_id": event.resource_id,
                        "correlation_id": event.correlation_id,
                    },
                )

    def _mark_degraded(self, error: str) -> None:
        self.degraded = True
        self.last_error = error
        warning = AuditWriteDegraded(pending=len(self._pending), error=error)
        logger.warning("Audit write degraded", pending=warning.pending, error=warning.error)

    def start(self) -> None:
        """Start the background flusher."""
        if self._sink is None:
            return
        if self._flusher is None:
            self._flusher = PeriodicTask(
                "audit-flush", self.flush, self._settings.flush_interval_seconds, self._clock
            )
        self._flusher.start()

    async def stop(self) -> None:
        if self._flusher is not None:
            await self._flusher.stop()
        await self.flush()
