"""Trend detection — EMA alignment with RSI confirmation."""

from coinforge.strategy.indicators import ema, rsi
from coinforge.strategy.models import Trend


def detect_trend(
    closes: list[float],
    short_period: int = 10,
    medium_period: int = 20,
    long_period: int = 50,
    rsi_period: int = 14,
) -> Trend:
    """Classify the trend of *closes* (oldest first).

    Rules:
        - **Uptrend**: EMA(short) > EMA(medium) > EMA(long); strong when
          RSI > 50.
        - **Downtrend**: EMA(short) < EMA(medium) < EMA(long); strong when
          RSI < 50.
        - **Neutral**: mixed EMAs, or fewer than *long_period* closes.
    """
    if len(closes) < long_period:
        return Trend.NEUTRAL

    short = ema(closes, short_period)[-1]
    medium = ema(closes, medium_period)[-1]
    long = ema(closes, long_period)[-1]
    rsi_values = rsi(closes, rsi_period)
    last_rsi = rsi_values[-1] if rsi_values else 50.0

    if short > medium > long:
        return Trend.STRONG_UPTREND if last_rsi > 50 else Trend.UPTREND
    if short < medium < long:
        return Trend.STRONG_DOWNTREND if last_rsi < 50 else Trend.DOWNTREND
    return Trend.NEUTRAL
