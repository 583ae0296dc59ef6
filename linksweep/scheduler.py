"""Bounded-concurrency task runner with per-task delays."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Set

LOGGER = logging.getLogger(__name__)

AsyncTask = Callable[[], Awaitable[None]]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(order=True)
class CrawlTask:
    """A deferred unit of work and the earliest time it may start."""

    not_before: float
    seq: int
    run: AsyncTask = field(compare=False)


class Scheduler:
    """Run queued coroutines with at most ``concurrency`` of them in flight.

    Tasks may be added with a delay; they stay pending until the clock
    reaches their start time. Running tasks may add further tasks, which is
    how the crawl expands. ``on_idle`` resolves once nothing is pending and
    nothing is running.

    ``clock`` and ``sleep`` default to wall-clock time and ``asyncio.sleep``
    and can be swapped for simulated time.
    """

    def __init__(
        self,
        concurrency: int = 100,
        *,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self._clock: Clock = clock or time.time
        self._sleep: Sleep = sleep or asyncio.sleep
        self._pending: List[CrawlTask] = []
        self._running: Set[asyncio.Task] = set()
        self._timers: Set[asyncio.Task] = set()
        self._counter = itertools.count()
        self._idle = asyncio.Event()
        self._idle.set()
        self._errors: List[BaseException] = []

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def in_flight(self) -> int:
        return len(self._running)

    def add(self, task: AsyncTask, delay: float = 0.0) -> None:
        """Queue ``task`` to start no earlier than ``delay`` seconds from now."""
        delay = max(0.0, delay)
        item = CrawlTask(self._clock() + delay, next(self._counter), task)
        heapq.heappush(self._pending, item)
        self._idle.clear()
        if delay > 0:
            self._arm_timer(item.not_before)
        self._pump()

    async def on_idle(self) -> None:
        """Wait until the queue drains; re-raise the first task failure."""
        await self._idle.wait()
        if self._errors:
            error = self._errors[0]
            self._errors.clear()
            raise error

    def _arm_timer(self, not_before: float) -> None:
        timer = asyncio.ensure_future(self._wake_at(not_before))
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)

    async def _wake_at(self, not_before: float) -> None:
        # Sleep again if the timer fired before the deadline.
        remaining = not_before - self._clock()
        while remaining > 0:
            await self._sleep(remaining)
            remaining = not_before - self._clock()
        self._pump()

    def _pump(self) -> None:
        now = self._clock()
        while self._pending and len(self._running) < self.concurrency:
            if self._pending[0].not_before > now:
                break
            item = heapq.heappop(self._pending)
            running = asyncio.ensure_future(item.run())
            self._running.add(running)
            running.add_done_callback(self._on_done)
        self._check_idle()

    def _on_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            LOGGER.error("Queued task failed: %s", error, exc_info=error)
            self._errors.append(error)
        self._pump()

    def _check_idle(self) -> None:
        if not self._pending and not self._running and not self._idle.is_set():
            self._idle.set()
