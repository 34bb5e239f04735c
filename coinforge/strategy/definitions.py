"""Strategy definitions — validated configuration records and their book.

A strategy definition names the assets, timeframe and indicators a user
wants traded. The orchestrator only analyses markets while at least one
definition is enabled.
"""

import logging
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Callable, Optional

from coinforge.events import EventBus, EventKind
from coinforge.repos.kv_store import KeyValueStore

logger = logging.getLogger("coinforge.strategy")

STRATEGIES_KEY = "strategies"
RISK_LEVELS = ("low", "medium", "high")
TIMEFRAMES = ("1m", "5m", "15m", "30m", "1h", "4h", "1d")


@dataclass(frozen=True)
class StrategyDefinition:
    """A user-defined strategy. Use ``from_dict`` to load persisted data."""

    id: str
    name: str
    description: str = ""
    assets: tuple[str, ...] = ()
    enabled: bool = False
    risk_level: str = "medium"
    timeframe: str = "1h"
    indicators: tuple[str, ...] = ()
    created_at: float = field(default_factory=time.time)

    def validate(self) -> None:
        if not self.id:
            raise ValueError("strategy id must not be empty")
        if not self.name.strip():
            raise ValueError("strategy name must not be empty")
        if self.risk_level not in RISK_LEVELS:
            raise ValueError(
                f"risk_level must be one of {RISK_LEVELS}, got '{self.risk_level}'"
            )
        if self.timeframe not in TIMEFRAMES:
            raise ValueError(
                f"timeframe must be one of {TIMEFRAMES}, got '{self.timeframe}'"
            )

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "StrategyDefinition":
        """Build from a loosely-typed mapping, applying defaults once."""
        definition = cls(
            id=str(raw.get("id") or uuid.uuid4().hex[:12]),
            name=str(raw.get("name", "")),
            description=str(raw.get("description", "")),
            assets=tuple(str(a).upper() for a in raw.get("assets", ()) or ()),
            enabled=bool(raw.get("enabled", False)),
            risk_level=str(raw.get("risk_level", raw.get("riskLevel", "medium"))),
            timeframe=str(raw.get("timeframe", "1h")),
            indicators=tuple(str(i) for i in raw.get("indicators", ()) or ()),
            created_at=float(raw.get("created_at", time.time())),
        )
        definition.validate()
        return definition

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["assets"] = list(self.assets)
        data["indicators"] = list(self.indicators)
        return data


DEFAULT_STRATEGIES: tuple[StrategyDefinition, ...] = (
    StrategyDefinition(
        id="1",
        name="Moving Average Crossover",
        description="Buys when the 9-period EMA crosses above the 21-period EMA, sells on the opposite cross",
        assets=("BTCUSDT", "ETHUSDT"),
        timeframe="1h",
        indicators=("EMA9", "EMA21"),
        created_at=0.0,
    ),
    StrategyDefinition(
        id="2",
        name="RSI Oversold Bounce",
        description="Buys when RSI falls below 30 and then rises back above it",
        assets=("BTCUSDT", "ETHUSDT", "SOLUSDT"),
        timeframe="15m",
        indicators=("RSI14",),
        created_at=0.0,
    ),
    StrategyDefinition(
        id="3",
        name="MACD Momentum Strategy",
        description="Trades MACD signal line crossovers to catch momentum shifts",
        assets=("BTCUSDT", "ETHUSDT", "BNBUSDT"),
        risk_level="high",
        timeframe="4h",
        indicators=("MACD",),
        created_at=0.0,
    ),
)


class StrategyBook:
    """CRUD over strategy definitions, persisted in the key-value store.

    Seeds ``DEFAULT_STRATEGIES`` when the store holds none.
    """

    def __init__(
        self,
        store: KeyValueStore,
        events: Optional[EventBus] = None,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex[:12],
    ) -> None:
        self._store = store
        self._events = events
        self._new_id = id_factory
        raw = store.get(STRATEGIES_KEY) or []
        loaded: list[StrategyDefinition] = []
        for item in raw:
            try:
                loaded.append(StrategyDefinition.from_dict(item))
            except ValueError as exc:
                logger.warning("Dropping invalid stored strategy %r: %s", item.get("id"), exc)
        self._strategies = loaded or list(DEFAULT_STRATEGIES)
        if not loaded:
            self._save()

    def _save(self) -> None:
        self._store.set(STRATEGIES_KEY, [s.to_dict() for s in self._strategies])

    def _emit(self, kind: EventKind, strategy: StrategyDefinition) -> None:
        if self._events:
            self._events.emit(kind, strategy=strategy.name, strategy_id=strategy.id)

    def all(self) -> list[StrategyDefinition]:
        return list(self._strategies)

    def enabled(self) -> list[StrategyDefinition]:
        return [s for s in self._strategies if s.enabled]

    def get(self, strategy_id: str) -> StrategyDefinition:
        """Raises ``KeyError`` for an unknown id."""
        for s in self._strategies:
            if s.id == strategy_id:
                return s
        raise KeyError(f"Unknown strategy '{strategy_id}'")

    def add(self, raw: dict[str, Any]) -> StrategyDefinition:
        """Create a strategy from *raw*; a fresh id is always assigned."""
        definition = StrategyDefinition.from_dict({**raw, "id": self._new_id()})
        self._strategies.append(definition)
        self._save()
        logger.info("Strategy added: %s (%s)", definition.name, definition.id)
        self._emit(EventKind.STRATEGY_ADDED, definition)
        return definition

    def update(self, definition: StrategyDefinition) -> StrategyDefinition:
        definition.validate()
        for i, existing in enumerate(self._strategies):
            if existing.id == definition.id:
                self._strategies[i] = definition
                self._save()
                self._emit(EventKind.STRATEGY_UPDATED, definition)
                return definition
        raise KeyError(f"Unknown strategy '{definition.id}'")

    def set_enabled(self, strategy_id: str, enabled: bool) -> StrategyDefinition:
        return self.update(replace(self.get(strategy_id), enabled=enabled))

    def delete(self, strategy_id: str) -> None:
        definition = self.get(strategy_id)
        self._strategies = [s for s in self._strategies if s.id != strategy_id]
        self._save()
        logger.info("Strategy deleted: %s (%s)", definition.name, definition.id)
        self._emit(EventKind.STRATEGY_DELETED, definition)
