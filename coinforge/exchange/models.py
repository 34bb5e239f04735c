"""Exchange data models — typed representations of Binance REST objects."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ConnectionStatus(str, Enum):
    """Observable state of the exchange connection."""

    UNKNOWN = "unknown"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


def mask_secret(value: str) -> str:
    """Return a log-safe rendering of a key or secret."""
    if not value:
        return "<unset>"
    return value[:4] + "…"


@dataclass(frozen=True)
class Credentials:
    """An exchange API key pair. ``repr`` never shows either half."""

    api_key: str
    secret_key: str = field(repr=False)

    @property
    def is_valid(self) -> bool:
        return bool(self.api_key and self.secret_key)

    def __repr__(self) -> str:
        return f"Credentials(api_key={mask_secret(self.api_key)!r})"


@dataclass(frozen=True)
class Candle:
    """A single kline bar.

    Prices stay as floats after parsing the exchange's decimal strings.
    """

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int = 0
    trades: int = 0

    @classmethod
    def from_kline(cls, row: list) -> "Candle":
        """Build from the positional array returned by ``klines``."""
        return cls(
            open_time=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            close_time=int(row[6]) if len(row) > 6 else 0,
            trades=int(row[8]) if len(row) > 8 else 0,
        )


@dataclass(frozen=True)
class SymbolInfo:
    """One row of 24h ticker statistics."""

    symbol: str
    price_change_percent: float
    last_price: float = 0.0
    quote_volume: float = 0.0


@dataclass(frozen=True)
class BalanceInfo:
    """Holdings of a single asset, valued in USD."""

    asset: str
    available: float
    total: float
    usd_value: float
    is_default: bool = False
    is_limited_access: bool = False


@dataclass(frozen=True)
class ApiPermissions:
    """Result of a permission probe."""

    read: bool
    trading: bool
    checked_at: float = 0.0


@dataclass(frozen=True)
class OrderResponse:
    """Confirmation of a market order, real or simulated."""

    symbol: str
    order_id: str
    client_order_id: str
    side: str  # "BUY" or "SELL"
    status: str
    quantity: float
    executed_qty: float
    price: float
    transact_time: int
    commission: float = 0.0
    is_simulated: bool = False

    @classmethod
    def from_api(cls, data: dict, reference_price: float) -> "OrderResponse":
        """Parse an ``order`` response; average fill price when fills exist."""
        fills = data.get("fills") or []
        qty = float(data.get("executedQty") or data.get("origQty") or 0.0)
        price = float(data.get("price") or 0.0)
        commission = 0.0
        if fills:
            filled = sum(float(f["qty"]) for f in fills)
            if filled > 0:
                price = sum(float(f["price"]) * float(f["qty"]) for f in fills) / filled
            commission = sum(float(f.get("commission", 0.0)) for f in fills)
        if price <= 0:
            price = reference_price
        return cls(
            symbol=data.get("symbol", ""),
            order_id=str(data.get("orderId", "")),
            client_order_id=str(data.get("clientOrderId", "")),
            side=data.get("side", ""),
            status=data.get("status", "UNKNOWN"),
            quantity=float(data.get("origQty") or qty),
            executed_qty=qty,
            price=price,
            transact_time=int(data.get("transactTime") or 0),
            commission=commission,
            is_simulated=bool(data.get("isSimulated", False)),
        )


@dataclass(frozen=True)
class ConnectionReport:
    """Outcome of one connection probe."""

    status: ConnectionStatus
    direct_ok: bool
    proxy_ok: bool
    error: Optional[str] = None
