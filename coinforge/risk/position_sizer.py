"""Position sizing — pure math, no I/O.

Calculates the quantity to trade from portfolio equity, the entry and
stop prices, and the risk parameters.
"""

MIN_QUANTITY = 0.001
QUANTITY_DECIMALS = 6


def calculate_quantity(
    equity: float,
    entry_price: float,
    stop_price: float,
    max_position_size_pct: float,
    dynamic: bool = True,
    risk_per_trade_pct: float = 1.0,
) -> float:
    """Calculate position size in base-asset units.

    Formula::

        cap          = equity × (max_position_size_pct / 100) / entry
        fixed mode   : size = cap
        dynamic mode : size = equity × (risk_per_trade_pct / 100) / |entry − stop|
                       clipped to cap; cap when entry == stop

    Args:
        equity: Portfolio value in quote currency.
        entry_price: Expected fill price.
        stop_price: Planned stop-loss price.
        max_position_size_pct: Largest position as % of equity.
        dynamic: Size by risk-per-trade instead of the fixed cap.
        risk_per_trade_pct: % of equity risked between entry and stop.

    Returns:
        Quantity (non-negative).

    Raises:
        ValueError: If *entry_price* is non-positive or *equity* negative.
    """
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    if equity < 0:
        raise ValueError(f"equity must be non-negative, got {equity}")

    cap = equity * (max_position_size_pct / 100.0) / entry_price
    if not dynamic:
        return cap

    risk_per_unit = abs(entry_price - stop_price)
    if risk_per_unit == 0:
        return cap

    risk_amount = equity * (risk_per_trade_pct / 100.0)
    return min(risk_amount / risk_per_unit, cap)


def round_quantity(quantity: float) -> float:
    """Apply the exchange minimum and round to the order precision."""
    return round(max(quantity, MIN_QUANTITY), QUANTITY_DECIMALS)


def format_quantity(quantity: float) -> str:
    return f"{quantity:.{QUANTITY_DECIMALS}f}"
