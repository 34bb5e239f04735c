"""Backtest simulator — synthetic trade series for a strategy definition.

Generates alternating buy/sell trades across the strategy's assets over
the requested window. Every sell realises a profit (1–6% of notional)
or a loss (0.5–3.5%) drawn against a per-run success rate. Runs are
deterministic for a seeded ``random.Random``.
"""

import logging
import random
from dataclasses import asdict, dataclass, field
from typing import Optional

from coinforge.backtest.stats import calculate_stats
from coinforge.events import EventBus, EventKind
from coinforge.repos.kv_store import KeyValueStore
from coinforge.strategy.definitions import StrategyBook

logger = logging.getLogger("coinforge.backtest")

RESULTS_KEY = "backtest_results"
TRADE_FRACTION = 0.1

_BASE_PRICES = {"BTC": 50_000.0, "ETH": 2_000.0}
_PRICE_SPREAD = {"BTC": 10_000.0, "ETH": 500.0}
_OTHER_BASE = 500.0
_OTHER_SPREAD = 100.0


@dataclass(frozen=True)
class BacktestTrade:
    timestamp: int
    side: str
    asset: str
    price: float
    amount: float
    profit: Optional[float] = None


@dataclass(frozen=True)
class BacktestResult:
    strategy_id: str
    start_ms: int
    end_ms: int
    initial_balance: float
    final_balance: float
    trades: tuple[BacktestTrade, ...]
    metrics: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["trades"] = [asdict(t) for t in self.trades]
        return data


def _synthetic_price(asset: str, rng: random.Random) -> float:
    for base_asset, base in _BASE_PRICES.items():
        if base_asset in asset:
            spread = _PRICE_SPREAD[base_asset]
            return base + (rng.random() * spread - spread / 2)
    return _OTHER_BASE + (rng.random() * _OTHER_SPREAD - _OTHER_SPREAD / 2)


class BacktestSimulator:
    """Runs synthetic backtests and keeps the latest result per strategy.

    Args:
        strategies: Source of strategy definitions.
        store: Persists results under ``backtest_results``.
        events: Receives ``backtest_started`` / ``backtest_completed``.
    """

    def __init__(
        self,
        strategies: StrategyBook,
        store: KeyValueStore,
        events: Optional[EventBus] = None,
    ) -> None:
        self._strategies = strategies
        self._store = store
        self._events = events

    # ── Public API ───────────────────────────────────────────────────────

    def results(self) -> list[dict]:
        return list(self._store.get(RESULTS_KEY) or [])

    def result_for(self, strategy_id: str) -> Optional[dict]:
        for item in self.results():
            if item.get("strategy_id") == strategy_id:
                return item
        return None

    def run(
        self,
        strategy_id: str,
        start_ms: int,
        end_ms: int,
        initial_balance: float,
        rng: Optional[random.Random] = None,
    ) -> BacktestResult:
        """Simulate *strategy_id* between *start_ms* and *end_ms*.

        Raises:
            KeyError: Unknown strategy id.
            ValueError: Empty window or non-positive balance.
        """
        strategy = self._strategies.get(strategy_id)
        if end_ms <= start_ms:
            raise ValueError("end_ms must be after start_ms")
        if initial_balance <= 0:
            raise ValueError("initial_balance must be positive")
        rng = rng or random.Random()

        logger.info("Backtest started for %s (%s)", strategy.name, strategy_id)
        self._emit(EventKind.BACKTEST_STARTED, strategy.name, strategy_id=strategy_id)

        num_trades = rng.randint(20, 49)
        success_rate = rng.random() * 0.3 + 0.5
        interval = (end_ms - start_ms) / num_trades
        assets = strategy.assets or ("BTCUSDT",)

        balance = initial_balance
        trades: list[BacktestTrade] = []
        profits: list[float] = []
        returns: list[float] = []
        for i in range(num_trades):
            asset = rng.choice(assets)
            price = _synthetic_price(asset, rng)
            amount = balance * TRADE_FRACTION / price
            profit = None
            if i % 2 == 1:
                notional = amount * price
                if rng.random() < success_rate:
                    rate = rng.random() * 0.05 + 0.01
                else:
                    rate = -(rng.random() * 0.03 + 0.005)
                profit = notional * rate
                balance += profit
                profits.append(profit)
                returns.append(rate)
            trades.append(BacktestTrade(
                timestamp=int(start_ms + i * interval),
                side="sell" if i % 2 else "buy",
                asset=asset,
                price=price,
                amount=amount,
                profit=profit,
            ))

        result = BacktestResult(
            strategy_id=strategy_id,
            start_ms=start_ms,
            end_ms=end_ms,
            initial_balance=initial_balance,
            final_balance=balance,
            trades=tuple(trades),
            metrics=calculate_stats(profits, initial_balance, returns),
        )
        self._save(result)

        logger.info(
            "Backtest completed for %s: %d trades, win rate %.1f%%, final %.2f",
            strategy.name, result.metrics["total_trades"],
            result.metrics["win_rate"], balance,
        )
        self._emit(
            EventKind.BACKTEST_COMPLETED, strategy.name,
            strategy_id=strategy_id, final_balance=round(balance, 2),
        )
        return result

    # ── Helpers ──────────────────────────────────────────────────────────

    def _save(self, result: BacktestResult) -> None:
        results = [r for r in self.results() if r.get("strategy_id") != result.strategy_id]
        results.append(result.to_dict())
        self._store.set(RESULTS_KEY, results)

    def _emit(self, kind: EventKind, strategy: str, **data) -> None:
        if self._events:
            self._events.emit(kind, strategy=strategy, **data)
