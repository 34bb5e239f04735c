"""Tests for coinforge.strategy.rules and coinforge.strategy.fusion."""

import pytest

from coinforge.exchange.models import Candle
from coinforge.strategy.fusion import FusionPolicy, VoteTally, fuse
from coinforge.strategy.models import (
    Aggressiveness,
    BandSnapshot,
    IndicatorSet,
    MacdSnapshot,
    Signal,
    Trend,
)
from coinforge.strategy.rules import build_indicator_set, evaluate_timeframe


# ── Helpers ──────────────────────────────────────────────────────────────


def _reading(
    rsi: float = 50.0,
    price: float = 100.0,
    line: float = 0.5,
    signal: float = 0.3,
    histogram: float = 0.2,
    prev_line: float | None = 0.4,
    prev_histogram: float | None = 0.15,
    trend: Trend = Trend.NEUTRAL,
) -> IndicatorSet:
    return IndicatorSet(
        symbol="BTCUSDT",
        timeframe="1h",
        price=price,
        rsi=rsi,
        macd=MacdSnapshot(line, signal, histogram, prev_line, prev_histogram),
        bollinger=BandSnapshot(upper=110.0, middle=100.0, lower=90.0),
        trend=trend,
    )


def _candles(closes: list[float]) -> list[Candle]:
    return [
        Candle(open_time=i * 60_000, open=c, high=c + 1.0, low=c - 1.0, close=c, volume=10.0)
        for i, c in enumerate(closes)
    ]


B, S, H = Signal.BUY, Signal.SELL, Signal.HOLD


# ── Per-timeframe rules ──────────────────────────────────────────────────


class TestEvaluateTimeframe:
    def test_oversold_with_fresh_bullish_cross_buys(self):
        data = _reading(rsi=25.0, prev_histogram=-0.1)
        assert evaluate_timeframe(data) is Signal.BUY

    def test_overbought_with_bearish_macd_sells(self):
        data = _reading(rsi=75.0, line=-0.5, signal=-0.3, histogram=-0.2)
        assert evaluate_timeframe(data) is Signal.SELL

    def test_bullish_macd_alone_holds(self):
        assert evaluate_timeframe(_reading(rsi=55.0)) is Signal.HOLD

    def test_uptrend_pullback_buys(self):
        data = _reading(rsi=40.0, trend=Trend.UPTREND)
        assert evaluate_timeframe(data) is Signal.BUY

    def test_price_near_lower_band_buys(self):
        assert evaluate_timeframe(_reading(rsi=45.0, price=90.5)) is Signal.BUY

    def test_zero_line_crossover(self):
        crossing = dict(line=0.2, signal=0.1, histogram=0.1, prev_line=-0.1, prev_histogram=-0.05)
        assert evaluate_timeframe(_reading(rsi=55.0, **crossing)) is Signal.BUY
        assert evaluate_timeframe(_reading(rsi=75.0, **crossing)) is Signal.HOLD

    def test_missing_reading_holds(self):
        assert evaluate_timeframe(_reading(rsi=float("nan"))) is Signal.HOLD

    def test_custom_thresholds(self):
        data = _reading(rsi=33.0)
        assert evaluate_timeframe(data) is Signal.HOLD
        assert evaluate_timeframe(data, FusionPolicy(rsi_oversold=35.0)) is Signal.BUY


class TestBuildIndicatorSet:
    def test_complete_with_enough_history(self):
        closes = [100.0 + (i % 7) - 3 for i in range(100)]
        data = build_indicator_set("ETHUSDT", "4h", _candles(closes))
        assert data.complete is True
        assert data.price == closes[-1]
        assert data.atr is not None and data.atr >= 2.0
        assert data.macd.prev_histogram is not None

    def test_price_override(self):
        data = build_indicator_set("ETHUSDT", "4h", _candles([100.0] * 60), price=123.0)
        assert data.price == 123.0

    def test_short_history_is_incomplete_and_holds(self):
        data = build_indicator_set("ETHUSDT", "1d", _candles([100.0 + i for i in range(10)]))
        assert data.complete is False
        assert data.levels.supports == [] and data.levels.resistances == []
        assert evaluate_timeframe(data) is Signal.HOLD


# ── Fusion ───────────────────────────────────────────────────────────────


class TestFuse:
    def test_single_buy_triggers_when_aggressive(self):
        votes = {"1h": B, "4h": H, "1d": H}
        assert fuse(votes, Aggressiveness.AGGRESSIVE) is Signal.BUY
        assert fuse(votes, "aggressive") is Signal.BUY

    def test_single_buy_holds_when_moderate(self):
        assert fuse({"1h": B, "4h": H, "1d": H}, Aggressiveness.MODERATE) is Signal.HOLD

    def test_opposing_vote_blocks_confirmation(self):
        assert fuse({"1h": B, "4h": S, "1d": H}, Aggressiveness.AGGRESSIVE) is Signal.HOLD

    def test_two_confirming_moderate(self):
        assert fuse({"1h": B, "4h": B, "1d": H}, Aggressiveness.MODERATE) is Signal.BUY
        assert fuse({"1h": S, "4h": S, "1d": H}, Aggressiveness.MODERATE) is Signal.SELL

    def test_majority_fallback(self):
        assert fuse({"1h": S, "4h": S, "1d": B}, Aggressiveness.MODERATE) is Signal.SELL

    def test_majority_tie_holds(self):
        assert fuse({"1h": B, "4h": S}, Aggressiveness.MODERATE) is Signal.HOLD

    def test_conservative_needs_three_timeframes(self):
        strict = FusionPolicy(majority_fallback=False)
        assert fuse({"1h": B, "4h": B}, Aggressiveness.CONSERVATIVE, strict) is Signal.HOLD
        assert fuse({"1h": B, "4h": B, "1d": None}, Aggressiveness.CONSERVATIVE, strict) is Signal.HOLD
        assert fuse({"1h": B, "4h": B, "1d": H}, Aggressiveness.CONSERVATIVE, strict) is Signal.BUY

    def test_failed_timeframes_are_skipped(self):
        assert fuse({"1h": None, "4h": None, "1d": None}, Aggressiveness.AGGRESSIVE) is Signal.HOLD
        assert fuse({"1h": B, "4h": None, "1d": None}, Aggressiveness.AGGRESSIVE) is Signal.BUY
        assert fuse({}, Aggressiveness.MODERATE) is Signal.HOLD

    @pytest.mark.parametrize("level", list(Aggressiveness))
    def test_deterministic_and_order_independent(self, level):
        votes = {"1h": B, "4h": S, "1d": B}
        reordered = {"1d": B, "4h": S, "1h": B}
        first = fuse(votes, level)
        assert fuse(votes, level) is first
        assert fuse(reordered, level) is first

    def test_unknown_aggressiveness_rejected(self):
        with pytest.raises(ValueError):
            fuse({"1h": B}, "reckless")


class TestVoteTally:
    def test_counts_skip_none(self):
        tally = VoteTally.from_votes({"1h": B, "4h": None, "1d": H, "15m": B})
        assert (tally.buy, tally.sell, tally.hold) == (2, 0, 1)
        assert tally.evaluated == 3


# ── Oversold bounce across timeframes ────────────────────────────────────


class TestOversoldBounce:
    def test_hourly_cross_drives_aggressive_buy(self):
        hourly = _reading(rsi=25.0, prev_histogram=-0.1)
        quiet = _reading(rsi=55.0)
        votes = {
            "1h": evaluate_timeframe(hourly),
            "4h": evaluate_timeframe(quiet),
            "1d": evaluate_timeframe(quiet),
        }
        assert votes == {"1h": B, "4h": H, "1d": H}
        assert fuse(votes, Aggressiveness.AGGRESSIVE) is Signal.BUY
        assert fuse(votes, Aggressiveness.MODERATE) is Signal.HOLD
