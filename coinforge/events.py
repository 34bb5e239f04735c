"""Trading event channel — typed pub/sub with unsubscribe handles.

Components publish immutable ``TradingEvent`` facts; the API layer, the
trading log and tests subscribe. Delivery is synchronous, in
subscription order, and a failing subscriber never blocks the others.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

logger = logging.getLogger("coinforge.events")


class EventKind(str, Enum):
    TRADING_STARTED = "trading_started"
    TRADING_STOPPED = "trading_stopped"
    CYCLE_COMPLETED = "cycle_completed"
    CYCLE_SKIPPED = "cycle_skipped"
    SIGNAL_GENERATED = "signal_generated"
    TRADE_EXECUTED = "trade_executed"
    TRADE_REJECTED = "trade_rejected"
    POSITION_UPDATED = "position_updated"
    TRADING_DEGRADED = "trading_degraded"
    TRADING_RESTORED = "trading_restored"
    DAILY_LOSS_LIMIT_HIT = "daily_loss_limit_hit"
    RISK_SETTINGS_UPDATED = "risk_settings_updated"
    CONNECTION_STATUS_CHANGED = "connection_status_changed"
    PERMISSIONS_DETECTED = "permissions_detected"
    RECONNECT_SCHEDULED = "reconnect_scheduled"
    RECONNECT_EXHAUSTED = "reconnect_exhausted"
    STRATEGY_ADDED = "strategy_added"
    STRATEGY_UPDATED = "strategy_updated"
    STRATEGY_DELETED = "strategy_deleted"
    BACKTEST_STARTED = "backtest_started"
    BACKTEST_COMPLETED = "backtest_completed"


_EMPTY: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True)
class TradingEvent:
    """An immutable fact broadcast to listeners."""

    kind: EventKind
    symbol: Optional[str] = None
    price: Optional[float] = None
    strategy: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    data: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    def to_dict(self) -> dict:
        return {
            "event": self.kind.value,
            "symbol": self.symbol,
            "price": self.price,
            "strategy": self.strategy,
            "time": self.timestamp,
            **dict(self.data),
        }


EventListener = Callable[[TradingEvent], None]


class Subscription:
    """Handle returned by ``EventBus.subscribe``; ``unsubscribe`` is idempotent."""

    def __init__(self, bus: "EventBus", entry: "_Entry") -> None:
        self._bus = bus
        self._entry = entry

    @property
    def active(self) -> bool:
        return self._entry in self._bus._entries

    def unsubscribe(self) -> None:
        self._bus._remove(self._entry)


@dataclass(eq=False)
class _Entry:
    listener: EventListener
    kinds: Optional[frozenset[EventKind]]


class EventBus:
    """In-process event channel.

    Example::

        bus = EventBus()
        sub = bus.subscribe(print, kinds=[EventKind.TRADE_EXECUTED])
        bus.emit(EventKind.TRADE_EXECUTED, symbol="BTCUSDT", price=50_000.0)
        sub.unsubscribe()
    """

    def __init__(self) -> None:
        self._entries: list[_Entry] = []

    def subscribe(
        self,
        listener: EventListener,
        kinds: Optional[Iterable[EventKind]] = None,
    ) -> Subscription:
        """Register *listener*, optionally filtered to *kinds*."""
        entry = _Entry(listener, frozenset(kinds) if kinds is not None else None)
        self._entries.append(entry)
        return Subscription(self, entry)

    def _remove(self, entry: _Entry) -> None:
        # Copy-on-write so a publish in progress keeps its snapshot
        self._entries = [e for e in self._entries if e is not entry]

    def publish(self, event: TradingEvent) -> None:
        """Deliver *event* to every matching listener in subscription order.

        If a listener raises, the exception is logged and the remaining
        listeners still run.
        """
        for entry in self._entries:
            if entry.kinds is not None and event.kind not in entry.kinds:
                continue
            try:
                entry.listener(event)
            except Exception:
                logger.exception(
                    "Event listener %r failed for %s",
                    entry.listener, event.kind.value,
                )

    def emit(
        self,
        kind: EventKind,
        *,
        symbol: Optional[str] = None,
        price: Optional[float] = None,
        strategy: Optional[str] = None,
        **data: Any,
    ) -> TradingEvent:
        """Build and publish a ``TradingEvent``; returns it."""
        event = TradingEvent(
            kind=kind,
            symbol=symbol,
            price=price,
            strategy=strategy,
            data=MappingProxyType(dict(data)) if data else _EMPTY,
        )
        self.publish(event)
        return event

    def subscriber_count(self) -> int:
        return len(self._entries)
