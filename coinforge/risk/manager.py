"""RiskManager — owns the risk parameters and answers sizing/gating questions.

Parameters are held as one immutable ``RiskParameters`` snapshot that is
replaced wholesale on update, so readers always see a complete value.
"""

import logging
from datetime import date
from typing import Optional

from coinforge.events import EventBus, EventKind
from coinforge.repos.settings_repo import SettingsRepo
from coinforge.risk.daily_loss import DailyLossTracker
from coinforge.risk.parameters import RiskParameters
from coinforge.risk.position_sizer import calculate_quantity
from coinforge.risk.sl_tp import RiskLevels, calculate_levels
from coinforge.risk.trailing_stop import TrailingStop

logger = logging.getLogger("coinforge.risk")


class RiskManager:
    """Risk configuration plus the calculations that depend on it.

    Args:
        settings: Optional repo; persisted parameters are loaded from it
            and every update is written back.
        events: Receives ``risk_settings_updated`` and daily-loss events.
        parameters: Explicit starting parameters (overrides the repo).
    """

    def __init__(
        self,
        settings: Optional[SettingsRepo] = None,
        events: Optional[EventBus] = None,
        parameters: Optional[RiskParameters] = None,
    ) -> None:
        self._settings = settings
        self._events = events

        if parameters is None:
            parameters = self._load()
        parameters.validate()
        self._params = parameters
        self.daily = DailyLossTracker(parameters.max_daily_loss_pct, events)

    def _load(self) -> RiskParameters:
        raw = self._settings.load_risk_settings() if self._settings else None
        if not raw:
            params = RiskParameters()
            if self._settings:
                self._settings.save_risk_settings(params.to_dict())
            return params
        try:
            return RiskParameters.from_dict(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Stored risk settings invalid (%s); using defaults", exc)
            return RiskParameters()

    # ── Parameters ───────────────────────────────────────────────────────

    @property
    def parameters(self) -> RiskParameters:
        return self._params

    def update_parameters(self, updates: dict) -> RiskParameters:
        """Validate and apply *updates*; raises ``ValueError`` on bad input."""
        updated = self._params.merged(updates)
        self._params = updated
        self.daily.set_limit(updated.max_daily_loss_pct)
        if self._settings:
            self._settings.save_risk_settings(updated.to_dict())
        logger.info("Risk parameters updated: %s", updated.to_dict())
        if self._events:
            self._events.emit(EventKind.RISK_SETTINGS_UPDATED, **updated.to_dict())
        return updated

    # ── Calculations ─────────────────────────────────────────────────────

    def levels(
        self,
        entry_price: float,
        side: str = "long",
        highs: Optional[list[float]] = None,
        lows: Optional[list[float]] = None,
        closes: Optional[list[float]] = None,
    ) -> RiskLevels:
        params = self._params
        return calculate_levels(
            entry_price, side, params.stop_loss_pct, params.take_profit_pct,
            highs=highs, lows=lows, closes=closes,
        )

    def position_size(self, equity: float, entry_price: float, stop_price: float) -> float:
        params = self._params
        return calculate_quantity(
            equity,
            entry_price,
            stop_price,
            params.max_position_size_pct,
            dynamic=params.dynamic_position_sizing,
            risk_per_trade_pct=params.risk_per_trade_pct,
        )

    def trailing_stop(self) -> Optional[TrailingStop]:
        """A trailing policy for the current parameters, or ``None`` if disabled."""
        params = self._params
        if not params.trailing_stop_enabled:
            return None
        return TrailingStop(params.trailing_stop_pct)

    # ── Gates ────────────────────────────────────────────────────────────

    def max_exposure_pct(self) -> float:
        return self._params.max_position_size_pct * self._params.max_open_positions

    def can_open(self, open_positions: int, open_exposure_pct: float) -> bool:
        """``False`` once the position count or total exposure limit is reached."""
        if open_positions >= self._params.max_open_positions:
            return False
        if open_exposure_pct >= self.max_exposure_pct():
            return False
        return True

    @staticmethod
    def current_exposure_pct(position_values: list[float], portfolio_value: float) -> float:
        """Open position value as a percentage of the portfolio."""
        if portfolio_value <= 0:
            return 0.0
        return sum(position_values) / portfolio_value * 100.0

    def roll_day(self, equity: float, today: date) -> bool:
        return self.daily.roll(equity, today)

    def daily_loss_breached(self, current_equity: float) -> bool:
        """Compare against the day-start equity; latched until the next roll."""
        return self.daily.check(current_equity)
