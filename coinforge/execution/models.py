"""Execution data models — positions and trade outcomes."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional

from coinforge.exchange.models import OrderResponse


class RejectReason(str, Enum):
    DAILY_LOSS_LIMIT_REACHED = "daily_loss_limit_reached"
    POSITION_ALREADY_OPEN = "position_already_open"
    MAX_POSITIONS_REACHED = "max_positions_reached"
    EXPOSURE_LIMIT_REACHED = "exposure_limit_reached"
    NO_POSITION = "no_position"
    ORDER_FAILED = "order_failed"
    INVALID_PRICE = "invalid_price"


@dataclass(frozen=True)
class Position:
    """An open position. Replaced, never mutated, when its stops move."""

    symbol: str
    entry_price: float
    quantity: float
    stop_loss: float
    take_profit: float
    trailing_stop: Optional[float]
    entry_time: float
    side: str = "long"
    is_simulated: bool = False

    def market_value(self, price: float) -> float:
        return self.quantity * price

    def pnl_pct(self, price: float) -> float:
        return (price - self.entry_price) / self.entry_price * 100.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a ``buy`` or ``sell`` call.

    Rejections are results, not exceptions; ``reason`` says why.
    """

    accepted: bool
    reason: Optional[RejectReason] = None
    order: Optional[OrderResponse] = None
    position: Optional[Position] = None
    pnl_pct: Optional[float] = None
    detail: str = ""

    @property
    def is_simulated(self) -> bool:
        return self.order is not None and self.order.is_simulated

    @classmethod
    def rejected(cls, reason: RejectReason, detail: str = "") -> "ExecutionResult":
        return cls(accepted=False, reason=reason, detail=detail)
