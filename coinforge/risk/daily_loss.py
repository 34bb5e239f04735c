"""Daily loss tracking and circuit breaker — no I/O.

Tracks the equity at the start of the trading day (UTC) and the change
since. Once the loss exceeds the configured limit, new entries stay
blocked until the next day starts.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from coinforge.events import EventBus, EventKind

logger = logging.getLogger("coinforge.risk")


def utc_today(now: Callable[[], float]) -> date:
    return datetime.fromtimestamp(now(), tz=timezone.utc).date()


class DailyLossTracker:
    """Daily P/L state and breach latch.

    Args:
        max_daily_loss_pct: Loss threshold in percent (e.g. 10.0).
        events: Receives ``daily_loss_limit_hit`` once per breached day.
    """

    def __init__(
        self,
        max_daily_loss_pct: float = 10.0,
        events: Optional[EventBus] = None,
    ) -> None:
        self._max_loss = max_daily_loss_pct
        self._events = events
        self._day: Optional[date] = None
        self._day_start_equity: Optional[float] = None
        self._pnl_pct = 0.0
        self._breached = False

    # ── Mutation ─────────────────────────────────────────────────────────

    def set_limit(self, max_daily_loss_pct: float) -> None:
        self._max_loss = max_daily_loss_pct

    def roll(self, equity: float, today: date) -> bool:
        """Start a new day if *today* differs from the tracked day.

        Returns ``True`` when a reset happened.
        """
        if self._day == today and self._day_start_equity is not None:
            return False
        self._day = today
        self._day_start_equity = equity
        self._pnl_pct = 0.0
        self._breached = False
        logger.info("Daily metrics reset for %s; start equity %.2f", today, equity)
        return True

    def check(self, equity: float) -> bool:
        """Record *equity* and return ``True`` if the daily limit is breached."""
        if self._day_start_equity is None or self._day_start_equity <= 0:
            return self._breached

        self._pnl_pct = (equity - self._day_start_equity) / self._day_start_equity * 100.0
        if not self._breached and self._pnl_pct < -self._max_loss:
            self._breached = True
            logger.warning(
                "Daily loss limit reached: %.2f%% vs limit of -%.2f%%",
                self._pnl_pct, self._max_loss,
            )
            if self._events:
                self._events.emit(
                    EventKind.DAILY_LOSS_LIMIT_HIT,
                    daily_pnl_pct=round(self._pnl_pct, 4),
                    limit_pct=self._max_loss,
                )
        return self._breached

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def breached(self) -> bool:
        return self._breached

    @property
    def day_start_equity(self) -> Optional[float]:
        return self._day_start_equity

    @property
    def daily_pnl_pct(self) -> float:
        return self._pnl_pct

    def snapshot(self) -> dict:
        return {
            "day": self._day.isoformat() if self._day else None,
            "day_start_equity": self._day_start_equity,
            "daily_pnl_pct": self._pnl_pct,
            "breached": self._breached,
            "max_daily_loss_pct": self._max_loss,
        }
