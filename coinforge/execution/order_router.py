"""OrderRouter — places market orders, degrading to simulation on network loss.

Three consecutive network-class failures switch the router into
simulated execution: orders are synthesised locally and flagged
``is_simulated``. The switch is announced once on the event channel and
persisted; only an explicit ``set_simulation_mode(False)`` reverses it.
"""

import itertools
import logging
from typing import Optional

from coinforge.events import EventBus, EventKind
from coinforge.exchange.connection import ConnectionManager
from coinforge.exchange.errors import ExchangeError, NoCredentialsError, is_network_error
from coinforge.exchange.models import OrderResponse
from coinforge.repos.settings_repo import SettingsRepo
from coinforge.risk.position_sizer import format_quantity
from coinforge.scheduler import Clock, SystemClock

logger = logging.getLogger("coinforge.execution")

MAX_CONSECUTIVE_NETWORK_ERRORS = 3
SIMULATED_COMMISSION_RATE = 0.001


class OrderRouter:
    """Routes orders to the exchange or to the local simulator.

    Args:
        connection: Exchange connection used for real orders.
        events: Receives ``trading_degraded`` / ``trading_restored``.
        settings: Persists the simulation flag across restarts.
        test_mode: Simulate every order; errors are never counted.
        clock: Time source for simulated timestamps.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        events: Optional[EventBus] = None,
        settings: Optional[SettingsRepo] = None,
        test_mode: bool = False,
        clock: Optional[Clock] = None,
        max_network_errors: int = MAX_CONSECUTIVE_NETWORK_ERRORS,
    ) -> None:
        self._conn = connection
        self._events = events
        self._settings = settings
        self._clock = clock or SystemClock()
        self._max_errors = max_network_errors
        self.test_mode = test_mode
        self._simulation = settings.load_simulation_mode() if settings else False
        self._consecutive_errors = 0
        self._sim_ids = itertools.count(1)

    @property
    def simulation_mode(self) -> bool:
        return self._simulation

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    def set_simulation_mode(self, enabled: bool, reason: str = "user") -> None:
        """Switch simulated execution on or off. Emits only on an actual change."""
        if enabled == self._simulation:
            return
        self._simulation = enabled
        self._consecutive_errors = 0
        if self._settings:
            self._settings.save_simulation_mode(enabled)
        logger.warning("Simulation mode %s (%s)", "enabled" if enabled else "disabled", reason)
        if self._events:
            kind = EventKind.TRADING_DEGRADED if enabled else EventKind.TRADING_RESTORED
            self._events.emit(kind, reason=reason)

    async def place_market_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        reference_price: float,
    ) -> OrderResponse:
        """Place a MARKET order and return its confirmation.

        Raises ``ExchangeError`` when a real order fails; the failure that
        reaches the error limit still raises, later calls are simulated.
        """
        if self.test_mode or self._simulation:
            return self._simulate(symbol, side, quantity, reference_price)

        if not self._conn.has_credentials():
            raise NoCredentialsError()

        params = {
            "symbol": symbol,
            "side": side,
            "type": "MARKET",
            "quantity": format_quantity(quantity),
        }
        logger.info("Placing %s market order for %s %s", side, params["quantity"], symbol)
        try:
            data = await self._conn.request("order", params, method="POST", signed=True)
        except ExchangeError as exc:
            self._record_failure(exc)
            raise

        self._consecutive_errors = 0
        order = OrderResponse.from_api(data if isinstance(data, dict) else {}, reference_price)
        logger.info("Order %s %s", order.order_id or "unknown", order.status)
        return order

    def _record_failure(self, exc: ExchangeError) -> None:
        if not is_network_error(exc):
            self._consecutive_errors = 0
            return
        self._consecutive_errors += 1
        logger.error(
            "Order placement network failure %d/%d: %s",
            self._consecutive_errors, self._max_errors, exc,
        )
        if self._consecutive_errors >= self._max_errors:
            self.set_simulation_mode(True, reason="consecutive_network_errors")

    def _simulate(
        self, symbol: str, side: str, quantity: float, reference_price: float,
    ) -> OrderResponse:
        now_ms = int(self._clock.time() * 1000)
        qty = float(format_quantity(quantity))
        order = OrderResponse(
            symbol=symbol,
            order_id=f"sim-{next(self._sim_ids)}",
            client_order_id=f"sim_{now_ms}",
            side=side,
            status="FILLED",
            quantity=qty,
            executed_qty=qty,
            price=reference_price,
            transact_time=now_ms,
            commission=qty * reference_price * SIMULATED_COMMISSION_RATE,
            is_simulated=True,
        )
        logger.info(
            "Simulated %s %s %s at %.8g", side, format_quantity(qty), symbol, reference_price,
        )
        return order
