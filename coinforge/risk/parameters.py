"""Risk parameters — a validated, immutable configuration record."""

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Mapping

# Persisted settings may use the camelCase keys of older stores
_ALIASES = {
    "maxPositionSize": "max_position_size_pct",
    "stopLossPercentage": "stop_loss_pct",
    "takeProfitPercentage": "take_profit_pct",
    "maxDailyLoss": "max_daily_loss_pct",
    "maxOpenPositions": "max_open_positions",
    "trailingStopEnabled": "trailing_stop_enabled",
    "trailingStopPercentage": "trailing_stop_pct",
    "dynamicPositionSizing": "dynamic_position_sizing",
    "riskPerTrade": "risk_per_trade_pct",
}


@dataclass(frozen=True)
class RiskParameters:
    """Risk configuration. All percentages are in percent (2.5 = 2.5 %)."""

    max_position_size_pct: float = 5.0
    stop_loss_pct: float = 2.5
    take_profit_pct: float = 5.0
    max_daily_loss_pct: float = 10.0
    max_open_positions: int = 3
    trailing_stop_enabled: bool = True
    trailing_stop_pct: float = 1.5
    dynamic_position_sizing: bool = True
    risk_per_trade_pct: float = 1.0

    def validate(self) -> None:
        """Raise ``ValueError`` for out-of-range values."""
        for name in (
            "max_position_size_pct", "stop_loss_pct", "take_profit_pct",
            "max_daily_loss_pct", "trailing_stop_pct", "risk_per_trade_pct",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.max_position_size_pct > 100:
            raise ValueError(
                f"max_position_size_pct must be <= 100, got {self.max_position_size_pct}"
            )
        if self.stop_loss_pct >= 100:
            raise ValueError(f"stop_loss_pct must be < 100, got {self.stop_loss_pct}")
        if self.max_open_positions < 1:
            raise ValueError(
                f"max_open_positions must be >= 1, got {self.max_open_positions}"
            )

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "RiskParameters":
        """Build from persisted or user-supplied settings; unknown keys are ignored."""
        return cls().merged(raw)

    def merged(self, updates: Mapping[str, Any]) -> "RiskParameters":
        """Return a validated copy with *updates* applied."""
        known = {f.name for f in fields(self)}
        changes: dict[str, Any] = {}
        for key, value in updates.items():
            name = _ALIASES.get(key, key)
            if name not in known or value is None:
                continue
            current = getattr(self, name)
            if isinstance(current, bool):
                changes[name] = bool(value)
            elif isinstance(current, int):
                changes[name] = int(value)
            else:
                changes[name] = float(value)
        updated = replace(self, **changes)
        updated.validate()
        return updated

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
