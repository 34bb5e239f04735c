"""TradeExecutor — the position ledger and its buy/sell/maintenance operations.

State machine per symbol: ``flat → (BUY confirmed) → open → (exit) → flat``.
All mutations of one symbol's position run under that symbol's lock;
different symbols proceed concurrently.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import replace
from typing import Mapping, Optional

from coinforge.events import EventBus, EventKind
from coinforge.exchange.errors import ExchangeError
from coinforge.execution.models import ExecutionResult, Position, RejectReason
from coinforge.execution.order_router import OrderRouter
from coinforge.market.provider import MarketDataProvider, total_equity
from coinforge.risk.daily_loss import utc_today
from coinforge.risk.manager import RiskManager
from coinforge.risk.position_sizer import round_quantity
from coinforge.risk.trailing_stop import initial_trailing_stop
from coinforge.scheduler import Clock, SystemClock

logger = logging.getLogger("coinforge.execution")

DEFAULT_STRATEGY = "multi_timeframe"


class TradeExecutor:
    """Opens, maintains and closes long positions.

    Args:
        router: Places (or simulates) orders.
        market: Supplies balances for equity-based sizing and the daily gate.
        risk: Risk parameters and calculations.
        events: Receives ``trade_executed``, ``trade_rejected`` and
            ``position_updated``.
        clock: Time source for entry times and the trading day.
    """

    def __init__(
        self,
        router: OrderRouter,
        market: MarketDataProvider,
        risk: RiskManager,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._router = router
        self._market = market
        self._risk = risk
        self._events = events
        self._clock = clock or SystemClock()
        self._positions: dict[str, Position] = {}
        self._pending: set[str] = set()
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_prices: dict[str, float] = {}

    # ── Queries ──────────────────────────────────────────────────────────

    def positions(self) -> list[Position]:
        return list(self._positions.values())

    def position(self, symbol: str) -> Optional[Position]:
        return self._positions.get(symbol)

    @property
    def open_count(self) -> int:
        return len(self._positions)

    def exposure_pct(self, equity: float) -> float:
        values = [
            p.market_value(self._last_prices.get(p.symbol, p.entry_price))
            for p in self._positions.values()
        ]
        return self._risk.current_exposure_pct(values, equity)

    async def _equity(self) -> float:
        return total_equity(await self._market.account_balance())

    async def roll_day(self) -> bool:
        """Start a new trading day at the current equity once the UTC date changes."""
        return self._risk.roll_day(await self._equity(), utc_today(self._clock.time))

    def _emit(self, kind: EventKind, symbol: str, price: float, strategy: str, **data) -> None:
        if self._events:
            self._events.emit(kind, symbol=symbol, price=price, strategy=strategy, **data)

    def _reject(
        self, symbol: str, side: str, price: float, strategy: str,
        reason: RejectReason, detail: str = "",
    ) -> ExecutionResult:
        logger.info("%s %s rejected: %s %s", side, symbol, reason.value, detail)
        self._emit(
            EventKind.TRADE_REJECTED, symbol, price, strategy,
            side=side, reason=reason.value, detail=detail,
        )
        return ExecutionResult.rejected(reason, detail)

    # ── Buy ──────────────────────────────────────────────────────────────

    async def buy(
        self,
        symbol: str,
        price: float,
        highs: Optional[list[float]] = None,
        lows: Optional[list[float]] = None,
        closes: Optional[list[float]] = None,
        strategy: str = DEFAULT_STRATEGY,
    ) -> ExecutionResult:
        """Open a long position on *symbol* at *price*.

        Rejected when the daily loss limit is breached, a position on
        *symbol* is already open, the position count or exposure limit
        is reached, or the order fails. The position is recorded only
        after the order is confirmed.
        """
        if price <= 0:
            return self._reject(symbol, "BUY", price, strategy, RejectReason.INVALID_PRICE)

        async with self._locks[symbol]:
            equity = await self._equity()
            self._risk.roll_day(equity, utc_today(self._clock.time))
            if self._risk.daily_loss_breached(equity):
                return self._reject(
                    symbol, "BUY", price, strategy, RejectReason.DAILY_LOSS_LIMIT_REACHED,
                    f"daily P/L {self._risk.daily.daily_pnl_pct:.2f}%",
                )

            if symbol in self._positions:
                return self._reject(
                    symbol, "BUY", price, strategy, RejectReason.POSITION_ALREADY_OPEN,
                )

            params = self._risk.parameters
            in_use = len(self._positions) + len(self._pending)
            if in_use >= params.max_open_positions:
                return self._reject(
                    symbol, "BUY", price, strategy, RejectReason.MAX_POSITIONS_REACHED,
                    f"{in_use}/{params.max_open_positions} open",
                )
            exposure = self.exposure_pct(equity)
            if not self._risk.can_open(in_use, exposure):
                return self._reject(
                    symbol, "BUY", price, strategy, RejectReason.EXPOSURE_LIMIT_REACHED,
                    f"exposure {exposure:.2f}%",
                )

            levels = self._risk.levels(price, "long", highs, lows, closes)
            quantity = round_quantity(
                self._risk.position_size(equity, price, levels.stop_loss)
            )

            self._pending.add(symbol)
            try:
                order = await self._router.place_market_order(symbol, "BUY", quantity, price)
            except ExchangeError as exc:
                logger.error("Error executing buy for %s: %s", symbol, exc)
                return self._reject(
                    symbol, "BUY", price, strategy, RejectReason.ORDER_FAILED, str(exc),
                )
            finally:
                self._pending.discard(symbol)

            entry = order.price if order.price > 0 else price
            position = Position(
                symbol=symbol,
                entry_price=entry,
                quantity=order.executed_qty or quantity,
                stop_loss=levels.stop_loss,
                take_profit=levels.take_profit,
                trailing_stop=(
                    initial_trailing_stop(entry, params.trailing_stop_pct)
                    if params.trailing_stop_enabled else None
                ),
                entry_time=self._clock.time(),
                is_simulated=order.is_simulated,
            )
            self._positions[symbol] = position
            self._last_prices[symbol] = entry

        logger.info(
            "Bought %s %s at %.8g (SL %.8g, TP %.8g, %s stop)%s",
            position.quantity, symbol, entry, position.stop_loss, position.take_profit,
            levels.source, " [simulated]" if order.is_simulated else "",
        )
        self._emit(
            EventKind.TRADE_EXECUTED, symbol, entry, strategy,
            side="BUY", quantity=position.quantity, is_simulated=order.is_simulated,
            stop_loss=position.stop_loss, take_profit=position.take_profit,
        )
        return ExecutionResult(accepted=True, order=order, position=position)

    # ── Sell ─────────────────────────────────────────────────────────────

    async def sell(
        self,
        symbol: str,
        price: float,
        strategy: str = DEFAULT_STRATEGY,
        exit_reason: str = "signal",
    ) -> ExecutionResult:
        """Close the open position on *symbol* at *price*.

        Never gated by the daily loss limit.
        """
        if price <= 0:
            return self._reject(symbol, "SELL", price, strategy, RejectReason.INVALID_PRICE)
        async with self._locks[symbol]:
            return await self._close(symbol, price, strategy, exit_reason)

    async def _close(
        self, symbol: str, price: float, strategy: str, exit_reason: str,
    ) -> ExecutionResult:
        position = self._positions.get(symbol)
        if position is None:
            return self._reject(symbol, "SELL", price, strategy, RejectReason.NO_POSITION)

        try:
            order = await self._router.place_market_order(
                symbol, "SELL", position.quantity, price,
            )
        except ExchangeError as exc:
            logger.error("Error executing sell for %s: %s", symbol, exc)
            return self._reject(
                symbol, "SELL", price, strategy, RejectReason.ORDER_FAILED, str(exc),
            )

        exit_price = order.price if order.price > 0 else price
        pnl_pct = position.pnl_pct(exit_price)
        del self._positions[symbol]
        self._last_prices.pop(symbol, None)

        logger.info(
            "Closed %s (%s) with %.2f%% %s", symbol, exit_reason, pnl_pct,
            "profit" if pnl_pct >= 0 else "loss",
        )
        self._emit(
            EventKind.TRADE_EXECUTED, symbol, exit_price, strategy,
            side="SELL", quantity=position.quantity, is_simulated=order.is_simulated,
            pnl_pct=round(pnl_pct, 4), exit_reason=exit_reason,
        )
        return ExecutionResult(accepted=True, order=order, position=position, pnl_pct=pnl_pct)

    # ── Maintenance ──────────────────────────────────────────────────────

    async def update_positions(self, latest_prices: Mapping[str, str]) -> list[ExecutionResult]:
        """Check exits and ratchet trailing stops for every open position.

        Exits at ``price >= take_profit`` or ``price <= stop_loss``.
        Otherwise the trailing stop may move up and, once above the stop
        loss, becomes the new stop loss. Symbols without a usable price
        are skipped. The trading day is rolled before any exit.
        """
        exits: list[ExecutionResult] = []
        if self._positions:
            await self.roll_day()
        for symbol in list(self._positions):
            try:
                price = float(latest_prices.get(symbol, 0) or 0)
            except (TypeError, ValueError):
                price = 0.0
            if price <= 0:
                continue

            async with self._locks[symbol]:
                position = self._positions.get(symbol)
                if position is None:
                    continue
                self._last_prices[symbol] = price

                if price >= position.take_profit:
                    logger.info("Take profit triggered for %s at %.8g", symbol, price)
                    exits.append(await self._close(symbol, price, DEFAULT_STRATEGY, "take_profit"))
                    continue
                if price <= position.stop_loss:
                    logger.info("Stop loss triggered for %s at %.8g", symbol, price)
                    exits.append(await self._close(symbol, price, DEFAULT_STRATEGY, "stop_loss"))
                    continue

                self._ratchet(position, price)
        return exits

    def _ratchet(self, position: Position, price: float) -> None:
        trail = self._risk.trailing_stop()
        if trail is None:
            return
        new_trailing = trail.update(position.entry_price, position.trailing_stop, price)
        if new_trailing is None:
            return

        updated = replace(
            position,
            trailing_stop=new_trailing,
            stop_loss=max(position.stop_loss, new_trailing),
        )
        self._positions[position.symbol] = updated
        logger.debug(
            "Trailing stop for %s %.8g -> %.8g",
            position.symbol, position.trailing_stop, new_trailing,
        )
        self._emit(
            EventKind.POSITION_UPDATED, position.symbol, price, DEFAULT_STRATEGY,
            trailing_stop=new_trailing, stop_loss=updated.stop_loss,
        )
