"""Tests for coinforge.engine — the trading cycle orchestrator."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from coinforge.config import Config
from coinforge.engine import Orchestrator
from coinforge.events import EventBus, EventKind
from coinforge.exchange.errors import NetworkError
from coinforge.exchange.models import BalanceInfo, Candle
from coinforge.execution.executor import TradeExecutor
from coinforge.execution.models import RejectReason
from coinforge.execution.order_router import OrderRouter
from coinforge.repos.kv_store import InMemoryStore
from coinforge.risk.manager import RiskManager
from coinforge.scheduler import ManualClock
from coinforge.strategy.definitions import StrategyBook
from coinforge.strategy.models import Signal, Trend


# ── Helpers ──────────────────────────────────────────────────────────────

_PRICES = {"BTCUSDT": "100.0", "ETHUSDT": "200.0"}


def _config(**overrides) -> Config:
    values = dict(
        api_key="",
        api_secret="",
        use_proxy=False,
        direct_base_url="https://api.binance.com/api/v3",
        proxy_base_url="https://proxy.example/api",
        stream_url="wss://stream.example/stream",
        symbols=("BTCUSDT", "ETHUSDT"),
        timeframes=("15m", "1h", "4h"),
        poll_interval_seconds=60,
        aggressiveness="moderate",
        kline_limit=60,
        db_path=":memory:",
        log_level="INFO",
        health_port=8080,
        test_mode=True,
    )
    values.update(overrides)
    return Config(**values)


def _candles(close: float, n: int = 60) -> list[Candle]:
    return [
        Candle(open_time=i * 60_000, open=close, high=close + 1, low=close - 1,
               close=close, volume=1.0)
        for i in range(n)
    ]


def _market(balances: dict = None) -> MagicMock:
    market = MagicMock()
    market.prices = AsyncMock(return_value=dict(_PRICES))

    async def klines(symbol, interval, limit=100):
        return _candles(float(_PRICES[symbol]))

    market.klines = AsyncMock(side_effect=klines)
    market.account_balance = AsyncMock(return_value=balances or {
        "USDT": BalanceInfo(asset="USDT", available=10_000.0, total=10_000.0, usd_value=10_000.0),
    })
    return market


def _orchestrator(market=None, enabled: bool = True, events=None, clock=None, **config):
    clock = clock or ManualClock()
    market = market or _market()
    store = InMemoryStore()
    strategies = StrategyBook(store)
    if enabled:
        strategies.set_enabled("1", True)
    executor = TradeExecutor(
        OrderRouter(MagicMock(), test_mode=True, clock=clock),
        market, RiskManager(), events=events, clock=clock,
    )
    orchestrator = Orchestrator(
        _config(**config), market, executor, strategies, events=events, clock=clock,
    )
    return orchestrator, executor, market


# ── Single cycle ─────────────────────────────────────────────────────────


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_no_enabled_strategy_only_maintains(self):
        orchestrator, _, market = _orchestrator(enabled=False)
        result = await orchestrator.run_once()
        assert result["action"] == "maintained"
        assert result["reason"] == "no_enabled_strategy"
        market.klines.assert_not_called()

    @pytest.mark.asyncio
    async def test_flat_market_holds(self):
        orchestrator, executor, market = _orchestrator()
        result = await orchestrator.run_once()

        assert result["action"] == "completed"
        assert result["signals"] == {"BTCUSDT": "HOLD", "ETHUSDT": "HOLD"}
        assert market.klines.await_count == 6
        assert executor.open_count == 0
        assert set(orchestrator.market_analysis()["BTCUSDT"]) == {"15m", "1h", "4h"}
        assert orchestrator.market_trends()["BTCUSDT"] is Trend.NEUTRAL
        assert orchestrator.cycle_count == 1

    @pytest.mark.asyncio
    async def test_price_failure_ends_cycle(self):
        market = _market()
        market.prices.side_effect = NetworkError("down")
        orchestrator, _, _ = _orchestrator(market=market)
        result = await orchestrator.run_once()
        assert result["action"] == "error"
        assert "down" in result["reason"]

    @pytest.mark.asyncio
    async def test_failed_timeframe_is_skipped(self):
        market = _market()

        async def klines(symbol, interval, limit=100):
            if interval == "4h":
                raise NetworkError("timeout")
            return _candles(float(_PRICES[symbol]))

        market.klines.side_effect = klines
        orchestrator, _, _ = _orchestrator(market=market)
        result = await orchestrator.run_once()
        assert result["action"] == "completed"
        assert set(orchestrator.market_analysis()["ETHUSDT"]) == {"15m", "1h"}

    @pytest.mark.asyncio
    async def test_pair_without_price_skipped(self):
        market = _market()
        market.prices.return_value = {"BTCUSDT": "100.0"}
        orchestrator, _, _ = _orchestrator(market=market)
        result = await orchestrator.run_once()
        assert result["signals"] == {"BTCUSDT": "HOLD"}

    @pytest.mark.asyncio
    async def test_buy_signal_opens_position(self, monkeypatch):
        monkeypatch.setattr("coinforge.engine.evaluate_timeframe", lambda data, policy: Signal.BUY)
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append)
        orchestrator, executor, _ = _orchestrator(events=bus)

        result = await orchestrator.run_once()

        assert result["signals"] == {"BTCUSDT": "BUY", "ETHUSDT": "BUY"}
        assert executor.open_count == 2
        assert executor.position("BTCUSDT").stop_loss == pytest.approx(95.0)
        kinds = [e.kind for e in seen]
        assert kinds.count(EventKind.SIGNAL_GENERATED) == 2
        trade = next(e for e in seen if e.kind is EventKind.TRADE_EXECUTED)
        assert trade.strategy == "Moving Average Crossover"
        assert kinds[-1] is EventKind.CYCLE_COMPLETED

    @pytest.mark.asyncio
    async def test_sell_signal_closes_open_position(self, monkeypatch):
        orchestrator, executor, _ = _orchestrator()
        await executor.buy("BTCUSDT", 100.0)

        monkeypatch.setattr("coinforge.engine.evaluate_timeframe", lambda data, policy: Signal.SELL)
        await orchestrator.run_once()

        assert executor.position("BTCUSDT") is None
        assert orchestrator.last_signals()["ETHUSDT"] is Signal.SELL

    @pytest.mark.asyncio
    async def test_overlapping_call_skipped(self):
        release = asyncio.Event()
        market = _market()

        async def slow_prices():
            await release.wait()
            return dict(_PRICES)

        market.prices.side_effect = slow_prices
        orchestrator, _, _ = _orchestrator(market=market, enabled=False)

        first = asyncio.create_task(orchestrator.run_once())
        await asyncio.sleep(0)
        assert await orchestrator.run_once() == {
            "action": "skipped", "reason": "cycle_in_progress",
        }
        release.set()
        assert (await first)["action"] == "maintained"


# ── Lifecycle ────────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_cycles_and_stop_is_idempotent(self):
        clock = ManualClock()
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append)
        orchestrator, _, _ = _orchestrator(enabled=False, events=bus, clock=clock)

        await orchestrator.start()
        assert orchestrator.running is True
        await clock.advance(0)
        await clock.advance(60)
        assert orchestrator.cycle_count == 2

        orchestrator.stop()
        orchestrator.stop()
        await orchestrator.drain()
        await clock.advance(120)

        assert orchestrator.running is False
        assert orchestrator.cycle_count == 2
        kinds = [e.kind for e in seen]
        assert kinds.count(EventKind.TRADING_STARTED) == 1
        assert kinds.count(EventKind.TRADING_STOPPED) == 1

    @pytest.mark.asyncio
    async def test_status(self):
        orchestrator, _, _ = _orchestrator(aggressiveness="aggressive")
        status = orchestrator.status()
        assert status["running"] is False
        assert status["aggressiveness"] == "aggressive"
        assert status["open_positions"] == 0


class TestTradingPairs:
    @pytest.mark.asyncio
    async def test_pairs_from_held_assets(self):
        balances = {
            "BTC": BalanceInfo("BTC", 0.1, 0.1, 5_000.0),
            "USDT": BalanceInfo("USDT", 100.0, 100.0, 100.0),
            "ETH": BalanceInfo("ETH", 0.0, 0.0, 0.0),
        }
        orchestrator, _, _ = _orchestrator(market=_market(balances))
        assert await orchestrator.initialize_trading_pairs() == ["BTCUSDT"]

    @pytest.mark.asyncio
    async def test_placeholder_balances_use_configured_symbols(self):
        balances = {"SOL": BalanceInfo("SOL", 20.0, 20.0, 3_000.0, is_default=True)}
        orchestrator, _, _ = _orchestrator(market=_market(balances))
        assert await orchestrator.initialize_trading_pairs() == ["BTCUSDT", "ETHUSDT"]


class TestEndToEndSignal:
    @pytest.mark.asyncio
    async def test_bounce_after_selloff_opens_position(self):
        # 59 bars falling by 1.0, then a 2.0 bounce: MACD turns up with RSI oversold
        closes = [200.0 - i for i in range(59)] + [144.0]
        candles = [
            Candle(open_time=i * 60_000, open=c, high=c + 1, low=c - 1, close=c, volume=1.0)
            for i, c in enumerate(closes)
        ]
        market = _market()
        market.prices.return_value = {"BTCUSDT": "144.0"}
        market.klines.side_effect = None
        market.klines.return_value = candles
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append)
        orchestrator, executor, _ = _orchestrator(
            market=market, events=bus, symbols=("BTCUSDT",),
        )

        result = await orchestrator.analyze_pair("BTCUSDT", {"BTCUSDT": "144.0"})

        assert result is Signal.BUY
        reading = orchestrator.market_analysis()["BTCUSDT"]["1h"]
        assert reading.rsi < 30
        assert reading.macd.histogram > 0
        position = executor.position("BTCUSDT")
        assert position is not None
        assert position.entry_price == 144.0
        assert position.stop_loss < 144.0
        signal = next(e for e in seen if e.kind is EventKind.SIGNAL_GENERATED)
        assert signal.data["votes"] == {"15m": "BUY", "1h": "BUY", "4h": "BUY"}


class TestTradingDay:
    @pytest.mark.asyncio
    async def test_cycle_rolls_day_before_exits(self):
        clock = ManualClock()
        market = _market()
        orchestrator, executor, _ = _orchestrator(market=market, enabled=False, clock=clock)
        assert (await executor.buy("BTCUSDT", 100.0)).accepted is True

        await clock.advance(86_400)
        market.prices.return_value = {"BTCUSDT": "90.0", "ETHUSDT": "200.0"}
        result = await orchestrator.run_once()
        assert result["exits"] == 1

        market.account_balance.return_value = {
            "USDT": BalanceInfo(asset="USDT", available=8_800.0, total=8_800.0, usd_value=8_800.0),
        }
        blocked = await executor.buy("ETHUSDT", 200.0)
        assert blocked.reason is RejectReason.DAILY_LOSS_LIMIT_REACHED
