"""Placeholder market and account data served when the exchange is unavailable.

Everything here is flagged ``is_default`` by the provider so it can never be
mistaken for real holdings.
"""

DEFAULT_BALANCES: tuple[tuple[str, float, float], ...] = (
    ("BTC", 0.01, 0.0),
    ("ETH", 0.5, 0.0),
    ("USDT", 1000.0, 0.0),
    ("BNB", 5.0, 0.0),
    ("ADA", 500.0, 0.0),
    ("DOT", 50.0, 0.0),
    ("SOL", 20.0, 0.0),
)

DEFAULT_PRICES: dict[str, str] = {
    "BTCUSDT": "56000.00",
    "ETHUSDT": "3200.00",
    "BNBUSDT": "500.00",
    "ADAUSDT": "1.20",
    "DOTUSDT": "20.00",
    "SOLUSDT": "150.00",
    "XRPUSDT": "0.75",
    "DOGEUSDT": "0.12",
    "LTCUSDT": "120.00",
    "UNIUSDT": "10.00",
}

DEFAULT_TRADING_PAIRS: tuple[str, ...] = ("BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT")


def default_account() -> list[dict]:
    """Raw ``account.balances`` rows for the placeholder portfolio."""
    return [
        {"asset": asset, "free": str(free), "locked": str(locked)}
        for asset, free, locked in DEFAULT_BALANCES
    ]


def is_valid_balance_rows(rows) -> bool:
    """Check that the first few rows look like ``{asset, free, locked}``."""
    if not isinstance(rows, list) or not rows:
        return False
    for row in rows[:3]:
        if not isinstance(row, dict):
            return False
        if not {"asset", "free", "locked"} <= row.keys():
            return False
    return True
