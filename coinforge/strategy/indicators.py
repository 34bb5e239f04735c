"""Technical indicators — SMA, EMA, RSI, MACD, Bollinger, ATR, Stochastic.

Pure functions over plain float series, no I/O. Output series are
aligned on the input's tail: the last element always corresponds to
the last input bar. Insufficient input yields an empty result, never
an exception.
"""

import math

from coinforge.exchange.models import Candle
from coinforge.strategy.models import BollingerResult, MacdResult, StochasticResult

RSI_EPSILON = 0.001


def sma(series: list[float], period: int) -> list[float]:
    """Rolling simple moving average; ``len(series) - period + 1`` values."""
    if period <= 0 or len(series) < period:
        return []
    window_sum = sum(series[:period])
    out = [window_sum / period]
    for i in range(period, len(series)):
        window_sum += series[i] - series[i - period]
        out.append(window_sum / period)
    return out


def ema(series: list[float], period: int) -> list[float]:
    """Exponential moving average seeded with the first *period* SMA.

        ``ema[i] = (price[i] - ema[i-1]) × k + ema[i-1]``, ``k = 2 / (period + 1)``

    The first output value corresponds to input index ``period - 1``.
    """
    if period <= 0 or len(series) < period:
        return []
    k = 2.0 / (period + 1)
    out = [sum(series[:period]) / period]
    for price in series[period:]:
        out.append((price - out[-1]) * k + out[-1])
    return out


# ── RSI ──────────────────────────────────────────────────────────────────


def rsi(series: list[float], period: int = 14) -> list[float]:
    """Wilder's Relative Strength Index.

    Algorithm:
        1. delta = close[i] - close[i-1], split into gains and losses.
        2. Seed average gain/loss = SMA of the first *period* deltas.
        3. Subsequent: avg = (prev_avg × (period-1) + current) / period
        4. RS = avg_gain / avg_loss, with a zero loss replaced by epsilon.
        5. RSI = 100 - 100 / (1 + RS)

    Returns an empty list unless ``len(series) > period + 1``.
    """
    if period <= 0 or len(series) <= period + 1:
        return []

    deltas = [series[i] - series[i - 1] for i in range(1, len(series))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [max(-d, 0.0) for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    out = [_rsi_value(avg_gain, avg_loss)]

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        out.append(_rsi_value(avg_gain, avg_loss))
    return out


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    rs = avg_gain / (avg_loss if avg_loss != 0 else RSI_EPSILON)
    return min(100.0, max(0.0, 100.0 - 100.0 / (1.0 + rs)))


# ── MACD ─────────────────────────────────────────────────────────────────


def macd(
    series: list[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MacdResult:
    """MACD line, signal line and histogram.

    The fast EMA is trimmed to the slow EMA's length so both end on the
    last bar. The histogram is aligned on the signal line's tail.
    """
    if fast >= slow:
        raise ValueError(f"fast period ({fast}) must be shorter than slow ({slow})")
    fast_ema = ema(series, fast)
    slow_ema = ema(series, slow)
    if not slow_ema:
        return MacdResult()

    offset = len(fast_ema) - len(slow_ema)
    line = [f - s for f, s in zip(fast_ema[offset:], slow_ema)]
    signal_line = ema(line, signal)
    offset = len(line) - len(signal_line)
    histogram = [m - s for m, s in zip(line[offset:], signal_line)]
    return MacdResult(line=line, signal=signal_line, histogram=histogram)


# ── Bollinger Bands ──────────────────────────────────────────────────────


def bollinger(series: list[float], period: int = 20, k: float = 2.0) -> BollingerResult:
    """Middle = SMA(*period*); upper/lower = middle ± *k* × population σ."""
    if period <= 0 or len(series) < period:
        return BollingerResult()

    upper: list[float] = []
    middle: list[float] = []
    lower: list[float] = []
    for i in range(period - 1, len(series)):
        window = series[i - period + 1 : i + 1]
        mean = sum(window) / period
        sigma = math.sqrt(sum((x - mean) ** 2 for x in window) / period)
        middle.append(mean)
        upper.append(mean + k * sigma)
        lower.append(mean - k * sigma)
    return BollingerResult(upper=upper, middle=middle, lower=lower)


# ── ATR ──────────────────────────────────────────────────────────────────


def true_ranges(highs: list[float], lows: list[float], closes: list[float]) -> list[float]:
    """TR = max(high - low, |high - prev_close|, |low - prev_close|)."""
    n = min(len(highs), len(lows), len(closes))
    return [
        max(
            highs[i] - lows[i],
            abs(highs[i] - closes[i - 1]),
            abs(lows[i] - closes[i - 1]),
        )
        for i in range(1, n)
    ]


def atr(
    highs: list[float],
    lows: list[float],
    closes: list[float],
    period: int = 14,
) -> list[float]:
    """Average True Range, Wilder-smoothed after an SMA seed."""
    trs = true_ranges(highs, lows, closes)
    if period <= 0 or len(trs) < period:
        return []
    out = [sum(trs[:period]) / period]
    for tr in trs[period:]:
        out.append((out[-1] * (period - 1) + tr) / period)
    return out


# ── Stochastic ───────────────────────────────────────────────────────────


def stochastic(
    highs: list[float],
    lows: list[float],
    closes: list[float],
    k_period: int = 14,
    d_period: int = 3,
) -> StochasticResult:
    """%K from the rolling high/low range (a flat range reads 100); %D = SMA(%K)."""
    n = min(len(highs), len(lows), len(closes))
    if k_period <= 0 or n < k_period:
        return StochasticResult()

    k_values: list[float] = []
    for i in range(k_period - 1, n):
        highest = max(highs[i - k_period + 1 : i + 1])
        lowest = min(lows[i - k_period + 1 : i + 1])
        if highest == lowest:
            k_values.append(100.0)
        else:
            k_values.append((closes[i] - lowest) / (highest - lowest) * 100.0)
    return StochasticResult(k=k_values, d=sma(k_values, d_period))


# ── Helpers ──────────────────────────────────────────────────────────────


def last(series: list[float]) -> float:
    """Final element, or NaN for an empty series."""
    return series[-1] if series else float("nan")


def previous(series: list[float]) -> float | None:
    return series[-2] if len(series) >= 2 else None


def split_candles(candles: list[Candle]) -> tuple[list[float], list[float], list[float]]:
    """Return ``(highs, lows, closes)`` for a candle series."""
    return (
        [c.high for c in candles],
        [c.low for c in candles],
        [c.close for c in candles],
    )
