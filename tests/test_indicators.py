"""Tests for coinforge.strategy — indicators, trend detection and S/R levels."""

import math
import random

import pytest

from coinforge.strategy import indicators
from coinforge.strategy.models import Trend
from coinforge.strategy.sr_levels import cluster_levels, detect_sr_levels
from coinforge.strategy.trend import detect_trend


# ── Helpers ──────────────────────────────────────────────────────────────


def _random_walk(n: int, seed: int = 7, start: float = 100.0) -> list[float]:
    rng = random.Random(seed)
    out = [start]
    for _ in range(n - 1):
        out.append(max(1.0, out[-1] + rng.uniform(-2.0, 2.0)))
    return out


# ── Moving averages ──────────────────────────────────────────────────────


class TestMovingAverages:
    def test_sma_values(self):
        assert indicators.sma([1, 2, 3, 4, 5], 3) == pytest.approx([2.0, 3.0, 4.0])

    def test_sma_insufficient_data(self):
        assert indicators.sma([1, 2], 3) == []

    def test_ema_seeded_with_sma(self):
        values = indicators.ema([1, 2, 3, 4, 5], 3)
        # seed = mean(1,2,3) = 2; k = 0.5
        assert values == pytest.approx([2.0, 3.0, 4.0])

    def test_ema_aligned_on_tail(self):
        series = _random_walk(40)
        assert len(indicators.ema(series, 10)) == 40 - 10 + 1

    def test_deterministic(self):
        series = _random_walk(120)
        assert indicators.ema(series, 12) == indicators.ema(list(series), 12)
        assert indicators.sma(series, 20) == indicators.sma(list(series), 20)


# ── RSI ──────────────────────────────────────────────────────────────────


class TestRsi:
    @pytest.mark.parametrize("seed", range(10))
    def test_bounded(self, seed):
        values = indicators.rsi(_random_walk(200, seed=seed), 14)
        assert values
        assert all(0.0 <= v <= 100.0 for v in values)

    def test_empty_for_short_series(self):
        assert indicators.rsi(list(range(15)), 14) == []
        assert len(indicators.rsi([float(x) for x in range(16)], 14)) == 2

    def test_all_gains_near_100(self):
        values = indicators.rsi([float(x) for x in range(1, 40)], 14)
        assert values[-1] > 99.0

    def test_all_losses_is_zero(self):
        values = indicators.rsi([float(x) for x in range(40, 1, -1)], 14)
        assert values[-1] == pytest.approx(0.0)


# ── MACD / Bollinger ─────────────────────────────────────────────────────


class TestMacd:
    def test_lengths_aligned_on_tail(self):
        series = _random_walk(100)
        result = indicators.macd(series)
        assert len(result.line) == 100 - 26 + 1
        assert len(result.signal) == len(result.line) - 9 + 1
        assert len(result.histogram) == len(result.signal)
        assert result.histogram[-1] == pytest.approx(result.line[-1] - result.signal[-1])

    def test_insufficient_history(self):
        result = indicators.macd(_random_walk(20))
        assert result.line == [] and result.histogram == []

    def test_fast_must_be_shorter(self):
        with pytest.raises(ValueError, match="fast"):
            indicators.macd(_random_walk(60), fast=26, slow=12)


class TestBollinger:
    def test_flat_series_collapses_bands(self):
        result = indicators.bollinger([5.0] * 25, 20, 2.0)
        assert result.upper[-1] == result.middle[-1] == result.lower[-1] == 5.0

    def test_population_sigma(self):
        series = [1.0, 2.0, 3.0, 4.0]
        result = indicators.bollinger(series, 4, 1.0)
        sigma = math.sqrt(sum((x - 2.5) ** 2 for x in series) / 4)
        assert result.upper[-1] == pytest.approx(2.5 + sigma)
        assert result.lower[-1] == pytest.approx(2.5 - sigma)


# ── ATR / Stochastic ─────────────────────────────────────────────────────


class TestAtr:
    def test_constant_range(self):
        closes = [100.0] * 30
        highs = [101.0] * 30
        lows = [99.0] * 30
        values = indicators.atr(highs, lows, closes, 14)
        assert values[-1] == pytest.approx(2.0)
        assert len(values) == 29 - 14 + 1

    def test_gap_uses_previous_close(self):
        assert indicators.true_ranges([10, 20], [9, 19], [9.5, 19.5]) == [10.5]

    def test_insufficient(self):
        assert indicators.atr([1.0] * 5, [1.0] * 5, [1.0] * 5, 14) == []


class TestStochastic:
    def test_close_at_high_reads_100(self):
        highs = [float(x) for x in range(1, 21)]
        lows = [h - 1 for h in highs]
        result = indicators.stochastic(highs, lows, highs, 14, 3)
        assert result.k[-1] == pytest.approx(100.0)
        assert len(result.d) == len(result.k) - 2

    def test_flat_range(self):
        result = indicators.stochastic([5.0] * 14, [5.0] * 14, [5.0] * 14)
        assert result.k == [100.0]


# ── Trend ────────────────────────────────────────────────────────────────


class TestDetectTrend:
    def test_rising_series_is_strong_uptrend(self):
        closes = [100.0 + i for i in range(80)]
        assert detect_trend(closes) is Trend.STRONG_UPTREND

    def test_falling_series_is_strong_downtrend(self):
        closes = [200.0 - i for i in range(80)]
        assert detect_trend(closes) is Trend.STRONG_DOWNTREND

    def test_short_series_is_neutral(self):
        assert detect_trend([100.0 + i for i in range(49)]) is Trend.NEUTRAL

    def test_flat_series_is_neutral(self):
        assert detect_trend([100.0] * 60) is Trend.NEUTRAL


# ── Support / Resistance ─────────────────────────────────────────────────


class TestSrLevels:
    def test_cluster_levels_merges_close_values(self):
        assert cluster_levels([100.0, 101.0, 110.0]) == pytest.approx([100.5, 110.0])

    def test_cluster_empty(self):
        assert cluster_levels([]) == []

    def test_detects_peak_and_trough(self):
        highs = [10, 11, 12, 15, 12, 11, 10, 11, 12]
        lows = [9, 8, 7, 8, 9, 8, 5, 8, 9]
        levels = detect_sr_levels([float(h) for h in highs], [float(x) for x in lows], window=2)
        assert levels.resistances == [15.0]
        assert levels.supports == pytest.approx([5.0, 7.0])

    def test_short_series_empty(self):
        levels = detect_sr_levels([1.0, 2.0], [1.0, 2.0], window=14)
        assert levels.supports == [] and levels.resistances == []

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            detect_sr_levels([1.0], [1.0], window=0)
