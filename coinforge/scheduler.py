"""Clocks and the fixed-interval scheduler that drives trading cycles.

``SystemClock`` is used in production; ``ManualClock`` lets tests
fast-forward time deterministically without real sleeps.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

logger = logging.getLogger("coinforge.scheduler")


class Clock(Protocol):
    def time(self) -> float: ...

    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock backed by ``time`` and ``asyncio.sleep``."""

    def time(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock:
    """A clock that only moves when ``advance`` is awaited.

    Sleepers wake in deadline order; each wake-up lets the event loop run
    pending callbacks before time moves on.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start
        self._sleepers: list[tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def monotonic(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        fut = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), fut))
        await fut

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        await _drain()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, fut = heapq.heappop(self._sleepers)
            if fut.done():
                continue
            self._now = max(self._now, deadline)
            fut.set_result(None)
            await _drain()
        self._now = target
        await _drain()


async def _drain(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class IntervalScheduler:
    """Fires *job* every *interval* seconds until stopped.

    Each tick is launched as its own task. A tick that fires while the
    previous one is still running is skipped rather than overlapped.
    ``stop()`` prevents further ticks but never cancels one in flight.
    """

    def __init__(
        self,
        interval: float,
        job: Callable[[], Awaitable[Any]],
        clock: Optional[Clock] = None,
        name: str = "cycle",
        on_skip: Optional[Callable[[], Any]] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._interval = interval
        self._job = job
        self._clock = clock or SystemClock()
        self._name = name
        self._on_skip = on_skip
        self._busy = False
        self._stopping = False
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_tasks: set[asyncio.Task] = set()
        self.tick_count = 0
        self.skipped_count = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._busy

    def start(self) -> None:
        """Start ticking; the first tick fires immediately. No-op if running."""
        if self.running:
            return
        self._stopping = False
        self._loop_task = asyncio.create_task(self._loop())

    async def _loop(self) -> None:
        while not self._stopping:
            task = asyncio.create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await self._clock.sleep(self._interval)

    async def tick(self) -> bool:
        """Run the job once unless a previous run is still in progress.

        Returns ``True`` if the job ran.
        """
        if self._busy:
            self.skipped_count += 1
            logger.warning("%s still running; skipping overlapping tick", self._name)
            if self._on_skip is not None:
                self._on_skip()
            return False
        self._busy = True
        self.tick_count += 1
        try:
            await self._job()
        except Exception as exc:
            logger.error("%s tick %d failed: %s", self._name, self.tick_count, exc)
        finally:
            self._busy = False
        return True

    def stop(self) -> None:
        """Stop scheduling new ticks. Idempotent; in-flight ticks finish."""
        self._stopping = True
        task, self._loop_task = self._loop_task, None
        if task is not None and not task.done():
            task.cancel()

    async def drain(self) -> None:
        """Wait for in-flight ticks to complete."""
        if self._tick_tasks:
            await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)
