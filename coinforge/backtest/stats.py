"""Backtest statistics — pure functions over a closed-trade series."""

import math
from typing import Optional

import numpy as np


def calculate_stats(
    profits: list[float],
    initial_balance: float,
    returns: Optional[list[float]] = None,
) -> dict:
    """Summary statistics for a run of closed trades.

    Args:
        profits: Realised profit (quote currency) of each closing trade.
        initial_balance: Equity before the first trade.
        returns: Per-trade fractional returns for the Sharpe ratio; derived
            from *profits* and the running balance when omitted.

    Returns:
        Dict with ``total_trades``, ``winning_trades``, ``losing_trades``,
        ``win_rate`` (percent), ``profit_factor``, ``max_drawdown``
        (percent), ``sharpe_ratio`` and ``net_profit``.
    """
    if not profits:
        return {
            "total_trades": 0,
            "winning_trades": 0,
            "losing_trades": 0,
            "win_rate": 0.0,
            "profit_factor": 0.0,
            "max_drawdown": 0.0,
            "sharpe_ratio": 0.0,
            "net_profit": 0.0,
        }

    pnl = np.asarray(profits, dtype=float)
    winners = pnl[pnl > 0]
    losers = pnl[pnl < 0]
    decided = len(winners) + len(losers)
    win_rate = len(winners) / decided * 100.0 if decided else 0.0

    gross_profit = float(winners.sum())
    gross_loss = float(-losers.sum())
    net = float(pnl.sum())
    # All-winning runs report the net profit itself.
    profit_factor = net if gross_loss == 0 else gross_profit / gross_loss

    if returns is None:
        returns = _returns(profits, initial_balance)

    return {
        "total_trades": decided,
        "winning_trades": int(len(winners)),
        "losing_trades": int(len(losers)),
        "win_rate": round(win_rate, 4),
        "profit_factor": round(profit_factor, 4),
        "max_drawdown": round(max_drawdown_pct(profits, initial_balance), 4),
        "sharpe_ratio": round(sharpe_ratio(returns), 4),
        "net_profit": round(net, 2),
    }


# ── Helpers ──────────────────────────────────────────────────────────────


def _returns(profits: list[float], initial_balance: float) -> list[float]:
    balance = initial_balance
    out = []
    for p in profits:
        out.append(p / balance if balance else 0.0)
        balance += p
    return out


def sharpe_ratio(returns: list[float], periods_per_year: int = 252) -> float:
    """Annualised Sharpe ratio of per-trade returns.

    Uses the sample standard deviation (n − 1). Returns 0.0 for fewer than
    two observations or zero variance.
    """
    if len(returns) < 2:
        return 0.0
    arr = np.asarray(returns, dtype=float)
    std = float(arr.std(ddof=1))
    if std == 0 or math.isnan(std):
        return 0.0
    return float(arr.mean()) / std * math.sqrt(periods_per_year)


def max_drawdown_pct(profits: list[float], initial_balance: float) -> float:
    """Largest peak-to-trough decline of the equity curve, in percent."""
    if initial_balance <= 0 or not profits:
        return 0.0
    equity = initial_balance + np.cumsum(np.asarray(profits, dtype=float))
    curve = np.concatenate(([initial_balance], equity))
    peaks = np.maximum.accumulate(curve)
    drawdowns = (peaks - curve) / peaks
    return float(drawdowns.max()) * 100.0
