"""CoinForge — Trading orchestrator (the fixed-interval analysis loop).

One cycle: refresh prices → per-symbol multi-timeframe analysis →
fusion → risk-gated execution → position maintenance. Cycles never
overlap; stopping prevents new cycles without interrupting one in flight.
"""

import asyncio
import logging
from typing import Optional

from coinforge.config import Config
from coinforge.events import EventBus, EventKind
from coinforge.exchange.errors import ExchangeError
from coinforge.exchange.models import Candle
from coinforge.execution.executor import TradeExecutor
from coinforge.market.fallback import DEFAULT_TRADING_PAIRS
from coinforge.market.provider import MarketDataProvider, PriceSnapshot
from coinforge.scheduler import Clock, IntervalScheduler, SystemClock
from coinforge.strategy.definitions import StrategyBook
from coinforge.strategy.fusion import DEFAULT_POLICY, FusionPolicy, fuse
from coinforge.strategy.indicators import split_candles
from coinforge.strategy.models import Aggressiveness, IndicatorSet, Signal, Trend
from coinforge.strategy.rules import build_indicator_set, evaluate_timeframe

logger = logging.getLogger("coinforge")

TREND_TIMEFRAME = "1h"


class Orchestrator:
    """Drives trading cycles on a fixed interval.

    Args:
        config: Application configuration (symbols, timeframes,
            aggressiveness, kline limit, poll interval).
        market: Market data source.
        executor: Position ledger and order execution.
        strategies: Strategy definitions; analysis runs only while one
            is enabled.
        events: Lifecycle event channel.
        clock: Time source; drives the interval scheduler.
        policy: Rule and fusion thresholds.
    """

    def __init__(
        self,
        config: Config,
        market: MarketDataProvider,
        executor: TradeExecutor,
        strategies: StrategyBook,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        policy: FusionPolicy = DEFAULT_POLICY,
    ) -> None:
        self._config = config
        self._market = market
        self._executor = executor
        self._strategies = strategies
        self._events = events
        self._clock = clock or SystemClock()
        self._policy = policy
        self._aggressiveness = Aggressiveness(config.aggressiveness)
        self._scheduler = IntervalScheduler(
            config.poll_interval_seconds,
            self.run_once,
            clock=self._clock,
            name="trading cycle",
            on_skip=self._on_skipped_tick,
        )
        self._trading_pairs: list[str] = list(config.symbols)
        self._analysis: dict[str, dict[str, IndicatorSet]] = {}
        self._trends: dict[str, Trend] = {}
        self._signals: dict[str, Signal] = {}
        self._in_cycle = False
        self._cycle_count = 0
        self._last_cycle_at: Optional[float] = None

    # ── Status ───────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def trading_pairs(self) -> list[str]:
        return list(self._trading_pairs)

    @property
    def aggressiveness(self) -> Aggressiveness:
        return self._aggressiveness

    def set_aggressiveness(self, level: Aggressiveness | str) -> None:
        self._aggressiveness = Aggressiveness(level)

    def market_analysis(self) -> dict[str, dict[str, IndicatorSet]]:
        """Latest indicator readings per symbol and timeframe (a copy)."""
        return {symbol: dict(frames) for symbol, frames in self._analysis.items()}

    def market_trends(self) -> dict[str, Trend]:
        """Latest 1h trend per symbol."""
        return dict(self._trends)

    def last_signals(self) -> dict[str, Signal]:
        return dict(self._signals)

    def status(self) -> dict:
        return {
            "running": self.running,
            "cycle_count": self._cycle_count,
            "last_cycle_at": self._last_cycle_at,
            "trading_pairs": self.trading_pairs,
            "aggressiveness": self._aggressiveness.value,
            "open_positions": self._executor.open_count,
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Initialise trading pairs and start cycling. No-op if running."""
        if self.running:
            return
        await self.initialize_trading_pairs()
        await self._executor.roll_day()
        self._scheduler.start()
        logger.info(
            "Trading started: %d pairs, every %ds, %s",
            len(self._trading_pairs), self._config.poll_interval_seconds,
            self._aggressiveness.value,
        )
        self._emit(EventKind.TRADING_STARTED, pairs=self.trading_pairs)

    def stop(self) -> None:
        """Stop scheduling cycles. Idempotent; a cycle in flight completes."""
        if not self.running:
            return
        self._scheduler.stop()
        logger.info("Trading stopped after %d cycles", self._cycle_count)
        self._emit(EventKind.TRADING_STOPPED, cycle_count=self._cycle_count)

    async def drain(self) -> None:
        await self._scheduler.drain()

    async def initialize_trading_pairs(self) -> list[str]:
        """Derive tracked pairs from held assets, else use the configured symbols.

        Placeholder balances never drive pair selection.
        """
        balances = await self._market.account_balance()
        if any(b.is_default for b in balances.values()):
            pairs: list[str] = []
        else:
            pairs = [
                f"{asset}USDT"
                for asset, info in balances.items()
                if info.total > 0 and asset != "USDT"
            ]

        self._trading_pairs = pairs or list(self._config.symbols or DEFAULT_TRADING_PAIRS)
        logger.info("Trading pairs: %s", ", ".join(self._trading_pairs))
        return self.trading_pairs

    def _emit(self, kind: EventKind, symbol: Optional[str] = None,
              price: Optional[float] = None, **data) -> None:
        if self._events:
            self._events.emit(kind, symbol=symbol, price=price, **data)

    def _on_skipped_tick(self) -> None:
        self._emit(EventKind.CYCLE_SKIPPED, reason="cycle_in_progress")

    # ── Single cycle ─────────────────────────────────────────────────────

    async def run_once(self) -> dict:
        """Execute one trading cycle.

        Returns a dict describing what happened:

        - ``{"action": "skipped", "reason": "cycle_in_progress"}``
        - ``{"action": "error", "reason": "..."}``
        - ``{"action": "maintained", "reason": "no_enabled_strategy", ...}``
        - ``{"action": "completed", "signals": {...}, "exits": n}``
        """
        if self._in_cycle:
            logger.warning("Cycle already in progress; skipping")
            self._on_skipped_tick()
            return {"action": "skipped", "reason": "cycle_in_progress"}

        self._in_cycle = True
        try:
            return await self._cycle()
        finally:
            self._in_cycle = False

    async def _cycle(self) -> dict:
        self._cycle_count += 1
        self._last_cycle_at = self._clock.time()

        try:
            prices = await self._market.prices()
        except ExchangeError as exc:
            logger.error("Cycle %d: price refresh failed: %s", self._cycle_count, exc)
            return {"action": "error", "reason": str(exc)}

        await self._executor.roll_day()

        signals: dict[str, Signal] = {}
        enabled = self._strategies.enabled()
        if enabled:
            logger.debug(
                "Cycle %d: analysing %d pairs with %d strategies",
                self._cycle_count, len(self._trading_pairs), len(enabled),
            )
            strategy_name = enabled[0].name if len(enabled) == 1 else "multi_strategy"
            results = await asyncio.gather(
                *(self.analyze_pair(pair, prices, strategy_name) for pair in self._trading_pairs)
            )
            signals = {pair: sig for pair, sig in zip(self._trading_pairs, results) if sig}
        else:
            logger.info("No enabled strategies; maintaining positions only")

        exits = await self._executor.update_positions(prices)

        result = {
            "action": "completed" if enabled else "maintained",
            "cycle": self._cycle_count,
            "signals": {pair: sig.value for pair, sig in signals.items()},
            "exits": len(exits),
        }
        if not enabled:
            result["reason"] = "no_enabled_strategy"
        self._emit(EventKind.CYCLE_COMPLETED, **result)
        return result

    async def analyze_pair(
        self,
        pair: str,
        prices: PriceSnapshot,
        strategy: str = "multi_timeframe",
    ) -> Optional[Signal]:
        """Analyse *pair* across the configured timeframes and act on the fused signal.

        Returns the fused signal, or ``None`` when no price is available.
        """
        raw_price = prices.get(pair)
        if not raw_price:
            logger.info("No price available for %s, skipping analysis", pair)
            return None
        price = float(raw_price)

        votes: dict[str, Optional[Signal]] = {}
        readings: dict[str, IndicatorSet] = {}
        history: dict[str, list[Candle]] = {}

        for timeframe in self._config.timeframes:
            try:
                candles = await self._market.klines(pair, timeframe, self._config.kline_limit)
            except ExchangeError as exc:
                logger.warning("Skipping %s %s: %s", pair, timeframe, exc)
                votes[timeframe] = None
                continue
            data = build_indicator_set(pair, timeframe, candles, price)
            readings[timeframe] = data
            history[timeframe] = candles
            votes[timeframe] = evaluate_timeframe(data, self._policy)
            logger.debug(
                "%s %s: RSI %.2f, MACD hist %.5f, trend %s -> %s",
                pair, timeframe, data.rsi, data.macd.histogram, data.trend.value,
                votes[timeframe].value,
            )

        self._analysis[pair] = readings
        if TREND_TIMEFRAME in readings:
            self._trends[pair] = readings[TREND_TIMEFRAME].trend

        decision = fuse(votes, self._aggressiveness, self._policy)
        self._signals[pair] = decision
        logger.info("%s final signal: %s", pair, decision.value)

        if decision is Signal.HOLD:
            return decision

        self._emit(
            EventKind.SIGNAL_GENERATED, pair, price,
            signal=decision.value,
            votes={tf: (v.value if v else None) for tf, v in votes.items()},
        )

        if decision is Signal.BUY:
            candles = history.get(TREND_TIMEFRAME) or next(iter(history.values()), [])
            highs, lows, closes = split_candles(candles)
            await self._executor.buy(
                pair, price, highs or None, lows or None, closes or None, strategy=strategy,
            )
        elif self._executor.position(pair) is not None:
            await self._executor.sell(pair, price, strategy=strategy)
        return decision
