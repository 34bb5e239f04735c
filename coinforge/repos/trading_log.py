"""User-facing trading log — a bounded, most-recent-first ring buffer."""

import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from coinforge.events import EventKind, TradingEvent
from coinforge.repos.kv_store import KeyValueStore

LOG_KEY = "trading_logs"
MAX_ENTRIES = 100
_LEVELS = ("info", "success", "warning", "error")


@dataclass(frozen=True)
class TradingLog:
    timestamp: float
    message: str
    level: str  # "info", "success", "warning" or "error"


class TradingLogBook:
    """Keeps the last ``max_entries`` messages, newest first, in the store."""

    def __init__(
        self,
        store: KeyValueStore,
        max_entries: int = MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._max = max_entries
        self._clock = clock
        raw = store.get(LOG_KEY, []) or []
        self._entries: list[TradingLog] = [TradingLog(**r) for r in raw][: self._max]

    def add(self, message: str, level: str = "info") -> TradingLog:
        if level not in _LEVELS:
            raise ValueError(f"level must be one of {_LEVELS}, got '{level}'")
        entry = TradingLog(timestamp=self._clock(), message=message, level=level)
        self._entries.insert(0, entry)
        del self._entries[self._max:]
        self._store.set(LOG_KEY, [asdict(e) for e in self._entries])
        return entry

    def entries(self, limit: Optional[int] = None) -> list[TradingLog]:
        return list(self._entries[:limit] if limit else self._entries)

    def clear(self) -> None:
        self._entries = []
        self._store.remove(LOG_KEY)

    def __len__(self) -> int:
        return len(self._entries)

    # ── Event bridge ─────────────────────────────────────────────────────

    def on_event(self, event: TradingEvent) -> None:
        """Event-bus listener that records user-relevant events."""
        message = _describe(event)
        if message is not None:
            self.add(*message)


def _describe(event: TradingEvent) -> Optional[tuple[str, str]]:
    data = event.data
    kind = event.kind
    if kind is EventKind.TRADE_EXECUTED:
        sim = " (SIMULATED)" if data.get("is_simulated") else ""
        return (
            f"{data.get('side', 'TRADE')} {event.symbol} at {event.price}{sim}",
            "warning" if sim else "success",
        )
    if kind is EventKind.TRADE_REJECTED:
        return f"{data.get('side', 'Trade')} {event.symbol} rejected: {data.get('reason')}", "info"
    if kind is EventKind.TRADING_DEGRADED:
        if data.get("reason") == "user":
            return "Simulation mode enabled; orders are simulated locally", "info"
        return "Automatically switched to simulation mode due to network issues", "warning"
    if kind is EventKind.TRADING_RESTORED:
        return "Simulation mode disabled; orders go to the exchange", "info"
    if kind is EventKind.DAILY_LOSS_LIMIT_HIT:
        return f"Daily loss limit reached ({data.get('daily_pnl_pct', 0.0):.2f}%). Trading paused.", "error"
    if kind is EventKind.RECONNECT_SCHEDULED:
        return f"Connection failed, retrying in {round(data.get('delay', 0))} seconds...", "info"
    if kind is EventKind.RECONNECT_EXHAUSTED:
        return "Max reconnection attempts reached. Please check your API settings.", "error"
    if kind is EventKind.PERMISSIONS_DETECTED:
        read = "Yes" if data.get("read") else "No"
        trading = "Yes" if data.get("trading") else "No"
        return f"API permissions detected - Read: {read}, Trading: {trading}", "info"
    if kind is EventKind.CONNECTION_STATUS_CHANGED and data.get("status") == "connected":
        return "Successfully connected to exchange API", "success"
    return None
