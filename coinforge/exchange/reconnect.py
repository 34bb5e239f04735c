"""Reconnection scheduling with capped exponential backoff."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from coinforge.events import EventBus, EventKind

logger = logging.getLogger("coinforge.exchange")

Sleep = Callable[[float], Awaitable[None]]

_DEFAULT_BASE_DELAY = 5.0
_DEFAULT_BACKOFF_FACTOR = 1.5
_MAX_DELAY = 30.0
_DEFAULT_MAX_ATTEMPTS = 5


def backoff_delay(
    attempt: int,
    base_delay: float = _DEFAULT_BASE_DELAY,
    factor: float = _DEFAULT_BACKOFF_FACTOR,
    cap: float = _MAX_DELAY,
) -> float:
    """Delay before reconnection *attempt* (1-based): ``min(base × factor^(k-1), cap)``."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(base_delay * factor ** (attempt - 1), cap)


class ReconnectionScheduler:
    """Runs *on_reconnect* after a backoff delay until it succeeds.

    Gives up after ``max_attempts`` and stays exhausted until
    ``cancel()``/``reset()``; there is no silent infinite retry.
    """

    def __init__(
        self,
        on_reconnect: Callable[[], Awaitable[bool]],
        base_delay: float = _DEFAULT_BASE_DELAY,
        backoff_factor: float = _DEFAULT_BACKOFF_FACTOR,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        sleep: Optional[Sleep] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self._on_reconnect = on_reconnect
        self._base_delay = base_delay
        self._factor = backoff_factor
        self._max_attempts = max_attempts
        self._sleep = sleep or asyncio.sleep
        self._events = events
        self._attempts = 0
        self._task: Optional[asyncio.Task] = None
        self.exhausted = False

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def delay_for(self, attempt: int) -> float:
        return backoff_delay(attempt, self._base_delay, self._factor)

    def schedule(self) -> bool:
        """Queue the next attempt. Returns ``False`` once attempts are exhausted."""
        if self._attempts >= self._max_attempts:
            if not self.exhausted:
                self.exhausted = True
                logger.error(
                    "Max reconnection attempts (%d) reached; check API settings",
                    self._max_attempts,
                )
                if self._events:
                    self._events.emit(
                        EventKind.RECONNECT_EXHAUSTED, attempts=self._attempts,
                    )
            return False

        current = asyncio.current_task()
        if self._task is not None and self._task is not current and not self._task.done():
            self._task.cancel()

        self._attempts += 1
        delay = self.delay_for(self._attempts)
        logger.info(
            "Scheduling reconnection attempt %d/%d in %.1fs",
            self._attempts, self._max_attempts, delay,
        )
        if self._events:
            self._events.emit(
                EventKind.RECONNECT_SCHEDULED, attempt=self._attempts, delay=delay,
            )
        self._task = asyncio.create_task(self._run(delay))
        return True

    async def _run(self, delay: float) -> None:
        await self._sleep(delay)
        try:
            ok = await self._on_reconnect()
        except Exception as exc:
            logger.error("Reconnection attempt %d raised: %s", self._attempts, exc)
            ok = False

        if ok:
            logger.info("Reconnected after %d attempt(s)", self._attempts)
            self.reset()
        else:
            self.schedule()

    def reset(self) -> None:
        self._attempts = 0
        self.exhausted = False

    def cancel(self) -> None:
        """Cancel any pending attempt and reset the counter. Idempotent."""
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self.reset()
