"""API permission probing with a cooldown cache."""

import logging
import time
from typing import Any, Awaitable, Callable, Optional

from coinforge.events import EventBus, EventKind
from coinforge.exchange.errors import ExchangeError, UnauthorizedError
from coinforge.exchange.models import ApiPermissions

logger = logging.getLogger("coinforge.exchange")

_DEFAULT_COOLDOWN = 60.0
_PROBE_SYMBOL = "BTCUSDT"

Request = Callable[..., Awaitable[Any]]


class PermissionProbe:
    """Determines read and trading permission for the configured key.

    Results are cached for ``cooldown`` seconds. Trading permission is
    only probed once read permission is confirmed.
    """

    def __init__(
        self,
        request: Request,
        has_credentials: Callable[[], bool],
        cooldown: float = _DEFAULT_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
        events: Optional[EventBus] = None,
    ) -> None:
        if cooldown < _DEFAULT_COOLDOWN:
            raise ValueError(f"cooldown must be >= {_DEFAULT_COOLDOWN}s, got {cooldown}")
        self._request = request
        self._has_credentials = has_credentials
        self._cooldown = cooldown
        self._clock = clock
        self._events = events
        self._cached: Optional[ApiPermissions] = None

    @property
    def cached(self) -> Optional[ApiPermissions]:
        return self._cached

    def invalidate(self) -> None:
        self._cached = None

    def seed(self, read: bool, trading: bool) -> None:
        """Restore a previously persisted result; it still expires normally."""
        self._cached = ApiPermissions(read=read, trading=trading and read, checked_at=self._clock())

    async def detect(self, force: bool = False) -> ApiPermissions:
        """Return the current permissions, probing the exchange if the cache is stale."""
        if not self._has_credentials():
            return ApiPermissions(read=False, trading=False, checked_at=self._clock())

        now = self._clock()
        if (
            not force
            and self._cached is not None
            and now - self._cached.checked_at < self._cooldown
        ):
            return self._cached

        read = await self._probe_read()
        trading = await self._probe_trading() if read else False

        self._cached = ApiPermissions(read=read, trading=trading, checked_at=self._clock())
        logger.info(
            "API permissions detected: read=%s trading=%s", read, trading,
        )
        if self._events:
            self._events.emit(EventKind.PERMISSIONS_DETECTED, read=read, trading=trading)
        return self._cached

    async def _probe_read(self) -> bool:
        try:
            data = await self._request("account", signed=True)
        except UnauthorizedError as exc:
            logger.warning("Read permission denied: %s. %s", exc, exc.hint)
            return False
        except ExchangeError as exc:
            logger.warning("Read permission probe failed: %s", exc)
            return False
        return isinstance(data, dict) and isinstance(data.get("balances"), list)

    async def _probe_trading(self) -> bool:
        try:
            data = await self._request(
                "allOrders", {"symbol": _PROBE_SYMBOL, "limit": 1}, signed=True,
            )
        except UnauthorizedError as exc:
            logger.warning("Trading permission denied: %s. %s", exc, exc.hint)
            return False
        except ExchangeError as exc:
            logger.warning("Trading permission probe failed: %s", exc)
            return False
        return isinstance(data, list)
