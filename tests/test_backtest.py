"""Tests for coinforge.backtest — synthetic runs, persistence and statistics."""

import math
import random

import pytest

from coinforge.backtest.simulator import RESULTS_KEY, BacktestSimulator
from coinforge.backtest.stats import calculate_stats, max_drawdown_pct, sharpe_ratio
from coinforge.events import EventBus, EventKind
from coinforge.repos.kv_store import InMemoryStore
from coinforge.strategy.definitions import StrategyBook


# ── Helpers ──────────────────────────────────────────────────────────────

_START = 1_700_000_000_000
_END = _START + 30 * 86_400_000


def _simulator(events=None):
    store = InMemoryStore()
    return BacktestSimulator(StrategyBook(store), store, events=events), store


# ── Simulator ────────────────────────────────────────────────────────────


class TestBacktestSimulator:
    def test_deterministic_for_seed(self):
        sim, _ = _simulator()
        first = sim.run("1", _START, _END, 10_000.0, rng=random.Random(42))
        second = sim.run("1", _START, _END, 10_000.0, rng=random.Random(42))
        assert first.to_dict() == second.to_dict()

    @pytest.mark.parametrize("seed", range(5))
    def test_trade_series_shape(self, seed):
        sim, _ = _simulator()
        result = sim.run("2", _START, _END, 10_000.0, rng=random.Random(seed))

        assert 20 <= len(result.trades) <= 49
        assert [t.side for t in result.trades[:4]] == ["buy", "sell", "buy", "sell"]
        assert all(t.profit is None for t in result.trades if t.side == "buy")
        assert all(t.profit for t in result.trades if t.side == "sell")
        assert all(_START <= t.timestamp < _END for t in result.trades)
        assert {t.asset for t in result.trades} <= {"BTCUSDT", "ETHUSDT", "SOLUSDT"}

        profit = sum(t.profit for t in result.trades if t.profit is not None)
        assert result.final_balance == pytest.approx(10_000.0 + profit)
        assert result.metrics["total_trades"] == len(result.trades) // 2

    def test_result_persisted_one_per_strategy(self):
        sim, store = _simulator()
        sim.run("1", _START, _END, 5_000.0, rng=random.Random(1))
        latest = sim.run("1", _START, _END, 7_000.0, rng=random.Random(2))
        sim.run("3", _START, _END, 5_000.0, rng=random.Random(3))

        assert len(store.get(RESULTS_KEY)) == 2
        assert sim.result_for("1")["initial_balance"] == 7_000.0
        assert sim.result_for("1")["final_balance"] == latest.final_balance
        assert sim.result_for("missing") is None

    def test_events(self):
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append)
        sim, _ = _simulator(events=bus)
        result = sim.run("3", _START, _END, 1_000.0, rng=random.Random(9))

        assert [e.kind for e in seen] == [EventKind.BACKTEST_STARTED, EventKind.BACKTEST_COMPLETED]
        assert seen[0].strategy == "MACD Momentum Strategy"
        assert seen[1].data["final_balance"] == round(result.final_balance, 2)

    def test_invalid_requests(self):
        sim, _ = _simulator()
        with pytest.raises(KeyError):
            sim.run("nope", _START, _END, 1_000.0)
        with pytest.raises(ValueError):
            sim.run("1", _END, _START, 1_000.0)
        with pytest.raises(ValueError):
            sim.run("1", _START, _END, 0.0)


# ── Statistics ───────────────────────────────────────────────────────────


class TestCalculateStats:
    def test_mixed_run(self):
        stats = calculate_stats([100.0, -50.0, 200.0], 1_000.0)
        assert stats["total_trades"] == 3
        assert stats["winning_trades"] == 2
        assert stats["losing_trades"] == 1
        assert stats["win_rate"] == pytest.approx(66.6667)
        assert stats["profit_factor"] == pytest.approx(6.0)
        assert stats["max_drawdown"] == pytest.approx(4.5455)
        assert stats["net_profit"] == 250.0

    def test_all_winners_report_net_as_profit_factor(self):
        assert calculate_stats([10.0, 20.0], 1_000.0)["profit_factor"] == pytest.approx(30.0)

    def test_break_even_trades_excluded(self):
        stats = calculate_stats([0.0, 10.0], 1_000.0)
        assert stats["total_trades"] == 1
        assert stats["win_rate"] == 100.0

    def test_empty(self):
        stats = calculate_stats([], 1_000.0)
        assert stats["total_trades"] == 0
        assert stats["sharpe_ratio"] == 0.0


class TestSharpeAndDrawdown:
    def test_sharpe_uses_sample_deviation(self):
        expected = 0.02 / math.sqrt(0.0002) * math.sqrt(252)
        assert sharpe_ratio([0.01, 0.03]) == pytest.approx(expected)

    def test_sharpe_degenerate(self):
        assert sharpe_ratio([0.01]) == 0.0
        assert sharpe_ratio([0.01, 0.01]) == 0.0

    def test_drawdown(self):
        assert max_drawdown_pct([100.0, -50.0, 200.0], 1_000.0) == pytest.approx(4.545454, rel=1e-5)
        assert max_drawdown_pct([10.0, 20.0], 1_000.0) == 0.0
        assert max_drawdown_pct([], 1_000.0) == 0.0
