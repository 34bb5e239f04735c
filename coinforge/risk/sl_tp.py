"""Stop-loss and take-profit calculation — pure math, no I/O.

Fixed-percentage approach:
    SL = entry × (1 ∓ stop_pct/100), TP = entry × (1 ± target_pct/100).

Volatility-adjusted approach (preferred when bar history is available):
    SL = entry ∓ ATR × multiplier; TP stays percentage-based.
"""

from dataclasses import dataclass
from typing import Optional

from coinforge.strategy.indicators import atr

ATR_MULTIPLIER = 2.5
_SIDES = ("long", "short")


@dataclass(frozen=True)
class RiskLevels:
    """Computed stop-loss and take-profit for a trade."""

    stop_loss: float
    take_profit: float
    source: str  # "atr" or "fixed"


def _check_side(side: str) -> None:
    if side not in _SIDES:
        raise ValueError(f"side must be 'long' or 'short', got '{side}'")


def fixed_stop_loss(entry_price: float, side: str, stop_loss_pct: float) -> float:
    _check_side(side)
    if side == "long":
        return entry_price * (1 - stop_loss_pct / 100.0)
    return entry_price * (1 + stop_loss_pct / 100.0)


def fixed_take_profit(entry_price: float, side: str, take_profit_pct: float) -> float:
    _check_side(side)
    if side == "long":
        return entry_price * (1 + take_profit_pct / 100.0)
    return entry_price * (1 - take_profit_pct / 100.0)


def volatility_stop_loss(
    entry_price: float,
    side: str,
    atr_value: float,
    multiplier: float = ATR_MULTIPLIER,
) -> float:
    """Stop placed *multiplier* × ATR beyond entry."""
    _check_side(side)
    distance = atr_value * multiplier
    return entry_price - distance if side == "long" else entry_price + distance


def calculate_levels(
    entry_price: float,
    side: str,
    stop_loss_pct: float,
    take_profit_pct: float,
    highs: Optional[list[float]] = None,
    lows: Optional[list[float]] = None,
    closes: Optional[list[float]] = None,
    atr_period: int = 14,
    multiplier: float = ATR_MULTIPLIER,
) -> RiskLevels:
    """Compute SL/TP, volatility-adjusted when enough history is supplied.

    The ATR stop is discarded in favour of the fixed stop when it would
    not sit strictly on the losing side of entry (zero ATR, or an ATR
    distance at least as large as the entry price for a long).

    Args:
        entry_price: Trade entry price.
        side: ``"long"`` or ``"short"``.
        stop_loss_pct: Fixed stop distance in percent.
        take_profit_pct: Target distance in percent.
        highs, lows, closes: Optional bar history, oldest first.
        atr_period: ATR look-back.
        multiplier: ATR multiple for the stop distance.

    Returns:
        ``RiskLevels`` with ``source`` ``"atr"`` or ``"fixed"``.
    """
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")

    take_profit = fixed_take_profit(entry_price, side, take_profit_pct)

    if highs and lows and closes:
        atr_values = atr(highs, lows, closes, atr_period)
        if atr_values:
            stop = volatility_stop_loss(entry_price, side, atr_values[-1], multiplier)
            valid = 0 < stop < entry_price if side == "long" else stop > entry_price
            if valid:
                return RiskLevels(stop_loss=stop, take_profit=take_profit, source="atr")

    return RiskLevels(
        stop_loss=fixed_stop_loss(entry_price, side, stop_loss_pct),
        take_profit=take_profit,
        source="fixed",
    )
