from __future__ import annotations

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

import structlog

logger = structlog.get_logger()

Callback = Callable[[], None]


class ScheduledTask:
    """Handle for a delayed or repeating callback; cancel() is idempotent."""

    def __init__(self) -> None:
        self.cancelled = False
        self._on_cancel: Optional[Callback] = None

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()
            self._on_cancel = None


class Scheduler(ABC):
    """Clock plus cancellable delayed tasks.

    Expiry timers and periodic sweeps go through this interface so the
    production event loop and the virtual clock used in tests are
    interchangeable.
    """

    @abstractmethod
    def now(self) -> datetime:
        pass

    @abstractmethod
    def call_later(self, delay_seconds: float, callback: Callback) -> ScheduledTask:
        pass

    @abstractmethod
    def call_every(self, interval_seconds: float, callback: Callback) -> ScheduledTask:
        pass


def _run_safely(callback: Callback) -> None:
    # A failing timer callback must not take the sweep loop down with it
    try:
        callback()
    except Exception as e:
        logger.error("Scheduled callback failed", error=str(e), exc_info=True)


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay_seconds: float, callback: Callback) -> ScheduledTask:
        task = ScheduledTask()

        def fire() -> None:
            if not task.cancelled:
                _run_safely(callback)

        handle = self._get_loop().call_later(max(delay_seconds, 0.0), fire)
        task._on_cancel = handle.cancel
        return task

    def call_every(self, interval_seconds: float, callback: Callback) -> ScheduledTask:
        task = ScheduledTask()
        loop = self._get_loop()

        def fire() -> None:
            if task.cancelled:
                return
            _run_safely(callback)
            if not task.cancelled:
                handle = loop.call_later(interval_seconds, fire)
                task._on_cancel = handle.cancel

        first = loop.call_later(interval_seconds, fire)
        task._on_cancel = first.cancel
        return task


class VirtualScheduler(Scheduler):
    """Deterministic scheduler driven by advance(); time only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._queue: List[Tuple[datetime, int, ScheduledTask, Callback, Optional[float]]] = []
        self._counter = itertools.count()

    def now(self) -> datetime:
        return self._now

    def _push(self, due: datetime, task: ScheduledTask, callback: Callback, interval: Optional[float]) -> None:
        heapq.heappush(self._queue, (due, next(self._counter), task, callback, interval))

    def call_later(self, delay_seconds: float, callback: Callback) -> ScheduledTask:
        task = ScheduledTask()
        self._push(self._now + timedelta(seconds=max(delay_seconds, 0.0)), task, callback, None)
        return task

    def call_every(self, interval_seconds: float, callback: Callback) -> ScheduledTask:
        task = ScheduledTask()
        self._push(self._now + timedelta(seconds=interval_seconds), task, callback, interval_seconds)
        return task

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[2].cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due callbacks in order."""
        target = self._now + timedelta(seconds=seconds)
        while self._queue and self._queue[0][0] <= target:
            due, _, task, callback, interval = heapq.heappop(self._queue)
            if task.cancelled:
                continue
            self._now = max(self._now, due)
            _run_safely(callback)
            if interval is not None and not task.cancelled:
                self._push(due + timedelta(seconds=interval), task, callback, interval)
        self._now = target
