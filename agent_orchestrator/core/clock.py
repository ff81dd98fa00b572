"""
Time source and timer scheduling.

Services never read the wall clock or call ``asyncio.sleep`` directly for
scheduling; they go through a :class:`Clock` so tests can drive time with
:class:`ManualClock`.
"""

import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Any]


class TimerHandle:
    """Handle returned by the clock for a scheduled callback."""

    def __init__(self, on_cancel: Optional[Callable[[], Any]] = None) -> None:
        self._on_cancel = on_cancel
        self.cancelled = False

    def cancel(self) -> None:
        """Cancel the timer. Cancelling twice is a no-op."""
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()


class Clock(ABC):
    """Abstract time source with one-shot and periodic timers."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""

    @abstractmethod
    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""

    @abstractmethod
    def call_every(self, interval: float, callback: TimerCallback) -> TimerHandle:
        """Run ``callback`` every ``interval`` seconds until cancelled."""


class SystemClock(Clock):
    """Clock backed by the running asyncio event loop."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = TimerHandle()

        def fire() -> None:
            if not handle.cancelled:
                self._invoke(callback)

        loop_handle = loop.call_later(max(0.0, delay), fire)
        handle._on_cancel = loop_handle.cancel
        return handle

    def call_every(self, interval: float, callback: TimerCallback) -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"Timer interval must be positive, got {interval}")

        async def periodic() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    result = callback()
                    if asyncio.iscoroutine(result):
                        await result
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Periodic timer callback failed: {e}")

        task = asyncio.get_running_loop().create_task(periodic())
        self._track(task)
        return TimerHandle(on_cancel=task.cancel)

    def _invoke(self, callback: TimerCallback) -> None:
        try:
            result = callback()
        except Exception as e:
            logger.error(f"Timer callback failed: {e}")
            return

        if asyncio.iscoroutine(result):
            self._track(asyncio.ensure_future(result))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Timer callback failed: {error}")


class _ManualTimer:
    def __init__(self, callback: TimerCallback, interval: Optional[float]) -> None:
        self.callback = callback
        self.interval = interval
        self.handle = TimerHandle()


class ManualClock(Clock):
    """
    Deterministic clock for tests and simulations.

    Time only moves when :meth:`advance` is awaited. Due timers fire in
    due-time order (ties in scheduling order) and coroutine callbacks are
    awaited before the next timer fires.
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._elapsed = 0.0
        self._timers: List[Tuple[float, int, _ManualTimer]] = []
        self._sequence = itertools.count()

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    @property
    def elapsed(self) -> float:
        """Seconds advanced since the clock was created."""
        return self._elapsed

    @property
    def pending_timers(self) -> int:
        """Number of scheduled timers that have not been cancelled."""
        return sum(1 for _, _, timer in self._timers if not timer.handle.cancelled)

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        return self._schedule(max(0.0, delay), callback, None)

    def call_every(self, interval: float, callback: TimerCallback) -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"Timer interval must be positive, got {interval}")
        return self._schedule(interval, callback, interval)

    def _schedule(self, delay: float, callback: TimerCallback, interval: Optional[float]) -> TimerHandle:
        timer = _ManualTimer(callback, interval)
        heapq.heappush(self._timers, (self._elapsed + delay, next(self._sequence), timer))
        return timer.handle

    async def advance(self, seconds: float) -> None:
        """Move time forward, firing every timer that falls due on the way."""
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")

        target = self._elapsed + seconds
        while self._timers and self._timers[0][0] <= target:
            due, _, timer = heapq.heappop(self._timers)
            if timer.handle.cancelled:
                continue

            self._elapsed = max(self._elapsed, due)
            if timer.interval is not None:
                heapq.heappush(self._timers, (due + timer.interval, next(self._sequence), timer))

            try:
                result = timer.callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Timer callback failed: {e}")

        self._elapsed = target
        # let tasks spawned by callbacks make progress
        await asyncio.sleep(0)
