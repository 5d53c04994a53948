"""Session Monitor - scheduled threshold checks"""
import structlog

from carekeep.clock import ClockSource
from carekeep.config import SessionSettings
from carekeep.scheduling import PeriodicTask
from carekeep.session.guard import SessionGuard

logger = structlog.get_logger(__name__)


class SessionMonitor:
    """
    Periodically applies due session transitions.

    Checks every `check_interval_seconds`, tightening to
    `warning_tick_seconds` while any session is in warning so a
    countdown stays accurate.
    """

    def __init__(self, guard: SessionGuard, clock: ClockSource,
                 settings: SessionSettings | None = None):
        self._guard = guard
        self._settings = settings or SessionSettings()
        self._task = PeriodicTask("session-monitor", self.tick, self.next_interval, clock)

    def next_interval(self) -> float:
        if self._guard.has_warning():
            return self._settings.warning_tick_seconds
        return self._settings.check_interval_seconds

    def tick(self) -> dict:
        changed = self._guard.check_all()
        if changed:
            logger.debug("Session transitions applied", changed=len(changed))
        return changed

    @property
    def running(self) -> bool:
        return self._task.running

    @property
    def runs(self) -> int:
        return self._task.runs

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()
