"""Per-timeframe trading rules over an ``IndicatorSet``."""

import logging
from typing import Optional

from coinforge.exchange.models import Candle
from coinforge.strategy import indicators
from coinforge.strategy.fusion import DEFAULT_POLICY, FusionPolicy
from coinforge.strategy.models import (
    BandSnapshot,
    IndicatorSet,
    MacdSnapshot,
    Signal,
)
from coinforge.strategy.sr_levels import detect_sr_levels
from coinforge.strategy.trend import detect_trend

logger = logging.getLogger("coinforge.strategy")


def build_indicator_set(
    symbol: str,
    timeframe: str,
    candles: list[Candle],
    price: Optional[float] = None,
) -> IndicatorSet:
    """Compute the latest indicator readings for one candle series.

    *price* defaults to the last close. Readings that lack history are
    NaN; ``IndicatorSet.complete`` reports whether all are present.
    """
    highs, lows, closes = indicators.split_candles(candles)
    if price is None:
        price = indicators.last(closes)

    macd = indicators.macd(closes)
    bands = indicators.bollinger(closes, 20, 2.0)
    atr_values = indicators.atr(highs, lows, closes, 14)

    return IndicatorSet(
        symbol=symbol,
        timeframe=timeframe,
        price=price,
        rsi=indicators.last(indicators.rsi(closes, 14)),
        macd=MacdSnapshot(
            line=indicators.last(macd.line),
            signal=indicators.last(macd.signal),
            histogram=indicators.last(macd.histogram),
            prev_line=indicators.previous(macd.line),
            prev_histogram=indicators.previous(macd.histogram),
        ),
        bollinger=BandSnapshot(
            upper=indicators.last(bands.upper),
            middle=indicators.last(bands.middle),
            lower=indicators.last(bands.lower),
        ),
        trend=detect_trend(closes),
        atr=atr_values[-1] if atr_values else None,
        levels=detect_sr_levels(highs, lows),
    )


def evaluate_timeframe(data: IndicatorSet, policy: FusionPolicy = DEFAULT_POLICY) -> Signal:
    """Apply the entry/exit rules to one timeframe's readings.

    BUY when MACD is bullish and any of: RSI oversold, price near the
    lower band, an uptrend with RSI in (oversold, 50), or a fresh
    bullish crossover above the zero line. SELL mirrors it.
    """
    if not data.complete:
        return Signal.HOLD

    m = data.macd
    macd_up = m.line > m.signal and m.histogram > 0
    macd_down = m.line < m.signal and m.histogram < 0

    # Histogram sign change marks a signal-line crossover on this bar
    bull_cross = m.prev_histogram is not None and m.prev_histogram <= 0 < m.histogram
    bear_cross = m.prev_histogram is not None and m.prev_histogram >= 0 > m.histogram
    zero_up = m.prev_line is not None and m.prev_line <= 0 < m.line
    zero_down = m.prev_line is not None and m.prev_line >= 0 > m.line

    oversold = data.rsi < policy.rsi_oversold
    overbought = data.rsi > policy.rsi_overbought
    near_lower = data.price < data.bollinger.lower * (1 + policy.band_proximity)
    near_upper = data.price > data.bollinger.upper * (1 - policy.band_proximity)

    if macd_up and (
        oversold
        or near_lower
        or (data.trend.is_up and policy.rsi_oversold < data.rsi < 50)
        or (bull_cross and zero_up and not overbought)
    ):
        return Signal.BUY

    if macd_down and (
        overbought
        or near_upper
        or (data.trend.is_down and data.rsi > 50)
        or (bear_cross and zero_down and not oversold)
    ):
        return Signal.SELL

    return Signal.HOLD
