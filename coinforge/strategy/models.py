"""Strategy data models — typed representations for indicator and signal outputs."""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Signal(str, Enum):
    """A trade decision, per timeframe or fused."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class Trend(str, Enum):
    STRONG_UPTREND = "strong_uptrend"
    UPTREND = "uptrend"
    NEUTRAL = "neutral"
    DOWNTREND = "downtrend"
    STRONG_DOWNTREND = "strong_downtrend"

    @property
    def is_up(self) -> bool:
        return self in (Trend.UPTREND, Trend.STRONG_UPTREND)

    @property
    def is_down(self) -> bool:
        return self in (Trend.DOWNTREND, Trend.STRONG_DOWNTREND)


class Aggressiveness(str, Enum):
    AGGRESSIVE = "aggressive"
    MODERATE = "moderate"
    CONSERVATIVE = "conservative"


@dataclass(frozen=True)
class MacdResult:
    """MACD series, each aligned on its own tail."""

    line: list[float] = field(default_factory=list)
    signal: list[float] = field(default_factory=list)
    histogram: list[float] = field(default_factory=list)


@dataclass(frozen=True)
class BollingerResult:
    upper: list[float] = field(default_factory=list)
    middle: list[float] = field(default_factory=list)
    lower: list[float] = field(default_factory=list)


@dataclass(frozen=True)
class StochasticResult:
    k: list[float] = field(default_factory=list)
    d: list[float] = field(default_factory=list)


@dataclass(frozen=True)
class SRLevels:
    """Clustered support and resistance price levels, ascending."""

    supports: list[float] = field(default_factory=list)
    resistances: list[float] = field(default_factory=list)


@dataclass(frozen=True)
class MacdSnapshot:
    """Latest MACD values plus the previous bar for cross detection."""

    line: float
    signal: float
    histogram: float
    prev_line: Optional[float] = None
    prev_histogram: Optional[float] = None


@dataclass(frozen=True)
class BandSnapshot:
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class IndicatorSet:
    """Indicator readings for one (symbol, timeframe) at the latest bar."""

    symbol: str
    timeframe: str
    price: float
    rsi: float
    macd: MacdSnapshot
    bollinger: BandSnapshot
    trend: Trend = Trend.NEUTRAL
    atr: Optional[float] = None
    levels: SRLevels = field(default_factory=SRLevels)

    @property
    def complete(self) -> bool:
        """``False`` when any reading is missing (NaN)."""
        values = (
            self.rsi, self.macd.line, self.macd.signal, self.macd.histogram,
            self.bollinger.upper, self.bollinger.lower,
        )
        return not any(math.isnan(v) for v in values)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "price": self.price,
            "rsi": self.rsi,
            "macd": {
                "line": self.macd.line,
                "signal": self.macd.signal,
                "histogram": self.macd.histogram,
            },
            "bollinger": {
                "upper": self.bollinger.upper,
                "middle": self.bollinger.middle,
                "lower": self.bollinger.lower,
            },
            "trend": self.trend.value,
            "atr": self.atr,
            "support": list(self.levels.supports),
            "resistance": list(self.levels.resistances),
        }
