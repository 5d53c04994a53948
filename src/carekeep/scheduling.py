"""
Scheduled Tasks

Cancelable periodic tasks that wait on the injected clock, so a virtual
clock drives them deterministically in tests.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable

import structlog

from carekeep.clock import ClockSource

logger = structlog.get_logger(__name__)


class PeriodicTask:
    """
    Run `func` now, then again after every interval.

    `interval` may be a number of seconds or a callable returning one,
    which lets a task tighten its cadence (e.g. once a session is in
    warning).

    Usage:
        task = PeriodicTask("consent-sweep", sweep, 3600, clock)
        task.start()
        ...
        await task.stop()
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any] | Any],
        interval: float | Callable[[], float],
        clock: ClockSource,
    ):
        self.name = name
        self._func = func
        self._interval = interval
        self._clock = clock
        self._task: asyncio.Task | None = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_interval(self) -> float:
        if callable(self._interval):
            return float(self._interval())
        return float(self._interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info("Scheduled task started", task=self.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduled task stopped", task=self.name, runs=self.runs)

    async def run_once(self) -> Any:
        result = self._func()
        if inspect.isawaitable(result):
            result = await result
        self.runs += 1
        return result

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failures += 1
                logger.error("Scheduled task failed", task=self.name, error=str(e))
            await self._clock.sleep(self.next_interval())
