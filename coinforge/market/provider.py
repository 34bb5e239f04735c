"""MarketDataProvider — prices, symbols, klines and cached account balances.

Does not retry on its own: the connection layer already did. Failures
either fall back to cache/placeholder data (balances) or propagate as
typed ``ExchangeError`` with a trading-log entry (market data).
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from coinforge.exchange.connection import ConnectionManager
from coinforge.exchange.errors import ExchangeError, InvalidResponseShapeError
from coinforge.exchange.models import BalanceInfo, Candle, SymbolInfo
from coinforge.market.fallback import DEFAULT_PRICES, default_account, is_valid_balance_rows
from coinforge.repos.trading_log import TradingLogBook

logger = logging.getLogger("coinforge.market")

PriceSnapshot = dict[str, str]

_BALANCE_TTL = 30.0
_SINGLE_FLIGHT_TIMEOUT = 10.0
_STABLECOINS = frozenset({"USDT", "BUSD", "USDC", "DAI"})
_QUOTES = ("USDT", "BUSD", "USDC")
_ALWAYS_LISTED = ("BTC", "ETH", "BNB", "USDT")


class _AccountSnapshot:
    __slots__ = ("rows", "is_default", "is_limited_access")

    def __init__(self, rows: list[dict], is_default: bool, is_limited_access: bool) -> None:
        self.rows = rows
        self.is_default = is_default
        self.is_limited_access = is_limited_access


class MarketDataProvider:
    """Read-side access to the exchange.

    Args:
        connection: The ``ConnectionManager`` used for every request.
        log_book: Optional user-facing trading log.
        clock: Monotonic time source for the balance cache TTL.
        balance_ttl: Seconds a balance snapshot stays fresh.
        wait_timeout: How long a caller waits on an in-flight refresh.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        log_book: Optional[TradingLogBook] = None,
        clock: Callable[[], float] = time.monotonic,
        balance_ttl: float = _BALANCE_TTL,
        wait_timeout: float = _SINGLE_FLIGHT_TIMEOUT,
    ) -> None:
        self._conn = connection
        self._log = log_book
        self._clock = clock
        self._ttl = balance_ttl
        self._wait_timeout = wait_timeout
        self._balance_cache: Optional[dict[str, BalanceInfo]] = None
        self._cache_time = 0.0
        self._inflight: Optional[asyncio.Task] = None
        self.refresh_count = 0

    def _note(self, message: str, level: str) -> None:
        if self._log is not None:
            self._log.add(message, level)

    # ── Market data ──────────────────────────────────────────────────────

    async def prices(self) -> PriceSnapshot:
        """Latest price for every symbol, as the exchange's decimal strings."""
        try:
            data = await self._conn.request("ticker/price")
            if not isinstance(data, list):
                raise InvalidResponseShapeError("ticker/price did not return a list")
            return {
                item["symbol"]: str(item["price"])
                for item in data
                if "symbol" in item and "price" in item
            }
        except ExchangeError as exc:
            logger.error("Failed to fetch prices: %s", exc)
            self._note("Failed to fetch current prices", "error")
            raise

    async def symbols(self) -> list[SymbolInfo]:
        """24h ticker statistics for every symbol."""
        try:
            data = await self._conn.request("ticker/24hr")
            if not isinstance(data, list):
                raise InvalidResponseShapeError("ticker/24hr did not return a list")
            return [
                SymbolInfo(
                    symbol=item["symbol"],
                    price_change_percent=float(item.get("priceChangePercent", 0.0)),
                    last_price=float(item.get("lastPrice", 0.0)),
                    quote_volume=float(item.get("quoteVolume", 0.0)),
                )
                for item in data
            ]
        except ExchangeError as exc:
            logger.error("Failed to fetch symbols: %s", exc)
            self._note("Could not fetch market symbols", "error")
            raise

    async def klines(self, symbol: str, interval: str, limit: int = 100) -> list[Candle]:
        """Candle series for *symbol*, oldest first."""
        try:
            data = await self._conn.request(
                "klines", {"symbol": symbol, "interval": interval, "limit": limit},
            )
            if not isinstance(data, list) or any(
                not isinstance(row, list) or len(row) < 6 for row in data
            ):
                raise InvalidResponseShapeError(f"klines for {symbol} malformed")
            try:
                candles = [Candle.from_kline(row) for row in data]
            except (TypeError, ValueError) as exc:
                raise InvalidResponseShapeError(f"klines for {symbol}: {exc}") from exc
            candles.sort(key=lambda c: c.open_time)
            return candles
        except ExchangeError as exc:
            logger.error("Failed to fetch klines for %s %s: %s", symbol, interval, exc)
            self._note(f"Failed to fetch klines for {symbol}", "error")
            raise

    # ── Account balances ─────────────────────────────────────────────────

    def reset_cache(self) -> None:
        self._balance_cache = None
        self._cache_time = 0.0

    def _cache_fresh(self) -> bool:
        return (
            self._balance_cache is not None
            and self._clock() - self._cache_time < self._ttl
        )

    async def account_balance(self, force_refresh: bool = False) -> dict[str, BalanceInfo]:
        """Balances keyed by asset, sorted by USD value descending.

        Served from a 30s cache unless *force_refresh*. Concurrent callers
        share a single in-flight refresh; a caller that waits longer than
        the timeout gets the last good cache instead.
        """
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Balance refresh already in flight; waiting")
            try:
                return await asyncio.wait_for(
                    asyncio.shield(self._inflight), timeout=self._wait_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Waited %.1fs for balance refresh; serving cache", self._wait_timeout,
                )
                return self._balance_cache or self._fallback_balances()

        if not force_refresh and self._cache_fresh():
            logger.debug("Using cached balance data")
            return self._balance_cache  # type: ignore[return-value]

        self._inflight = asyncio.create_task(self._refresh_balances())
        return await asyncio.shield(self._inflight)

    async def _refresh_balances(self) -> dict[str, BalanceInfo]:
        self.refresh_count += 1
        try:
            account = await self._account_snapshot()
            try:
                prices = await self.prices()
            except ExchangeError:
                logger.warning("Valuing balances with placeholder prices")
                prices = dict(DEFAULT_PRICES)
            balances = self._value_balances(account, prices)
        except ExchangeError as exc:
            logger.error("Balance refresh failed: %s", exc)
            self._note("Error fetching balance data. Using cached or sample data.", "error")
            if self._balance_cache is not None:
                return self._balance_cache
            balances = self._fallback_balances()

        self._balance_cache = balances
        self._cache_time = self._clock()
        return balances

    async def _account_snapshot(self) -> _AccountSnapshot:
        if not self._conn.has_credentials():
            logger.info("No API credentials; using placeholder account data")
            return _AccountSnapshot(default_account(), is_default=True, is_limited_access=True)

        try:
            data = await self._conn.request("account", {"recvWindow": 30000}, signed=True)
            rows = data.get("balances") if isinstance(data, dict) else None
            if not isinstance(rows, list):
                raise InvalidResponseShapeError("account response has no balances list")
            return _AccountSnapshot(rows, is_default=False, is_limited_access=False)
        except ExchangeError as exc:
            logger.warning("account endpoint failed (%s); trying capital/config/getall", exc)

        data = await self._conn.request("capital/config/getall", signed=True)
        if not isinstance(data, list) or not data:
            raise InvalidResponseShapeError("capital/config/getall returned no assets")
        rows = [
            {"asset": item["coin"], "free": item.get("free") or "0", "locked": item.get("locked") or "0"}
            for item in data
            if "coin" in item and item.get("free") is not None
        ]
        return _AccountSnapshot(rows, is_default=False, is_limited_access=True)

    def _value_balances(
        self, account: _AccountSnapshot, prices: PriceSnapshot,
    ) -> dict[str, BalanceInfo]:
        if not is_valid_balance_rows(account.rows):
            raise InvalidResponseShapeError("balance rows malformed")

        balances: dict[str, BalanceInfo] = {}
        for row in account.rows:
            try:
                free = float(row["free"])
                total = free + float(row["locked"])
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed balance row: %r", row)
                continue
            if total <= 0:
                continue
            balances[row["asset"]] = BalanceInfo(
                asset=row["asset"],
                available=free,
                total=total,
                usd_value=usd_value(row["asset"], total, prices),
                is_default=account.is_default,
                is_limited_access=account.is_limited_access,
            )

        for asset in _ALWAYS_LISTED:
            balances.setdefault(
                asset,
                BalanceInfo(
                    asset=asset, available=0.0, total=0.0, usd_value=0.0,
                    is_default=account.is_default,
                    is_limited_access=account.is_limited_access,
                ),
            )

        ordered = sorted(balances.values(), key=lambda b: b.usd_value, reverse=True)
        return {b.asset: b for b in ordered}

    def _fallback_balances(self) -> dict[str, BalanceInfo]:
        account = _AccountSnapshot(default_account(), is_default=True, is_limited_access=True)
        return self._value_balances(account, dict(DEFAULT_PRICES))


def usd_value(asset: str, amount: float, prices: PriceSnapshot) -> float:
    """Value *amount* of *asset* in USD using the best available pair."""
    if asset in _STABLECOINS:
        return amount
    for quote in _QUOTES:
        price = prices.get(f"{asset}{quote}")
        if price is not None:
            return amount * float(price)
    via_btc = prices.get(f"{asset}BTC")
    btc_usd = prices.get("BTCUSDT")
    if via_btc is not None and btc_usd is not None:
        return amount * float(via_btc) * float(btc_usd)
    return 0.0


def total_equity(balances: dict[str, BalanceInfo]) -> float:
    """Sum of USD values across all balances."""
    return sum(b.usd_value for b in balances.values())
