"""ConnectionManager — credentials, dual-path transport, probing, reconnection.

The only component that talks HTTP to the exchange. Everything above it
calls ``request()`` and receives decoded JSON or a typed
``ExchangeError``.
"""

import logging
from typing import Any, Optional

from coinforge.events import EventBus, EventKind
from coinforge.exchange.errors import (
    ExchangeError,
    InvalidResponseShapeError,
    NoCredentialsError,
)
from coinforge.exchange.models import (
    ApiPermissions,
    ConnectionReport,
    ConnectionStatus,
    Credentials,
    mask_secret,
)
from coinforge.exchange.permissions import PermissionProbe
from coinforge.exchange.reconnect import ReconnectionScheduler
from coinforge.exchange.signing import RequestSigner
from coinforge.exchange.transport import DirectTransport, ProxyTransport
from coinforge.scheduler import Clock, SystemClock

logger = logging.getLogger("coinforge.exchange")

# Read-only endpoints that may fall back to the direct path when the proxy fails
FALLBACK_ALLOWLIST = frozenset({"ping", "ticker/price", "ticker/24hr", "klines"})

# Endpoints that need no credentials; sent direct when no key pair is set
PUBLIC_ENDPOINTS = frozenset({"ping", "time", "ticker/price", "ticker/24hr", "klines", "exchangeInfo"})


class ConnectionManager:
    """Owns the exchange connection.

    Args:
        direct_base_url: REST base, e.g. ``https://api.binance.com/api/v3``.
        proxy_base_url: Base URL of the signing proxy.
        credentials: Initial key pair, or ``None``.
        use_proxy: Route requests through the proxy when ``True``.
        events: Event channel for status/reconnect/permission events.
        clock: Time source; its ``sleep`` paces retries and reconnects.
    """

    def __init__(
        self,
        direct_base_url: str,
        proxy_base_url: str,
        credentials: Optional[Credentials] = None,
        use_proxy: bool = True,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        max_reconnect_attempts: int = 5,
        reconnect_base_delay: float = 5.0,
        reconnect_backoff_factor: float = 1.5,
        permission_cooldown: float = 60.0,
    ) -> None:
        self._clock = clock or SystemClock()
        self._events = events
        self._signer = RequestSigner(credentials)
        self._direct = DirectTransport(direct_base_url, self._signer, sleep=self._clock.sleep)
        self._proxy = ProxyTransport(proxy_base_url, self._signer, sleep=self._clock.sleep)
        self._use_proxy = use_proxy
        self._status = ConnectionStatus.UNKNOWN
        self._direct_reachable = False
        self._error_count = 0
        self.last_error: Optional[str] = None
        self._reconnect = ReconnectionScheduler(
            self._reconnect_attempt,
            base_delay=reconnect_base_delay,
            backoff_factor=reconnect_backoff_factor,
            max_attempts=max_reconnect_attempts,
            sleep=self._clock.sleep,
            events=events,
        )
        self._permissions = PermissionProbe(
            self.request,
            self.has_credentials,
            cooldown=permission_cooldown,
            clock=self._clock.monotonic,
            events=events,
        )

    # ── Credentials ──────────────────────────────────────────────────────

    def has_credentials(self) -> bool:
        return self._signer.has_credentials()

    def set_credentials(self, credentials: Optional[Credentials]) -> None:
        """Swap the key pair. Cached permissions are discarded."""
        self._signer.set_credentials(credentials)
        self._permissions.invalidate()
        logger.info(
            "Credentials %s",
            f"set for key {mask_secret(credentials.api_key)}" if credentials else "cleared",
        )

    @property
    def api_key_hint(self) -> str:
        creds = self._signer.credentials
        return mask_secret(creds.api_key) if creds else mask_secret("")

    def sign(self, query: str) -> str:
        """HMAC-SHA256 signature of *query*; raises ``NoCredentialsError`` if unset."""
        return self._signer.sign(query)

    # ── Mode and status ──────────────────────────────────────────────────

    @property
    def use_proxy(self) -> bool:
        return self._use_proxy

    def set_proxy_mode(self, enabled: bool) -> None:
        self._use_proxy = enabled
        self._proxy.last_ok = False
        logger.info("Proxy mode %s", "enabled" if enabled else "disabled")

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def direct_reachable(self) -> bool:
        return self._direct_reachable

    @property
    def proxy_working(self) -> bool:
        return self._proxy.last_ok

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect.attempts

    @property
    def reconnect_exhausted(self) -> bool:
        return self._reconnect.exhausted

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        previous, self._status = self._status, status
        logger.info("Connection status %s -> %s", previous.value, status.value)
        if self._events:
            self._events.emit(
                EventKind.CONNECTION_STATUS_CHANGED,
                status=status.value,
                previous=previous.value,
            )

    # ── Requests ─────────────────────────────────────────────────────────

    async def request(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        method: str = "GET",
        signed: bool = False,
    ) -> Any:
        """Send a request over the configured transport.

        In proxy mode a failed allow-listed read falls back to the direct
        path once, provided direct access was previously confirmed.
        Public endpoints go direct when no credentials are configured.
        """
        via_proxy = self._use_proxy and (
            self.has_credentials() or endpoint not in PUBLIC_ENDPOINTS
        )
        try:
            if not via_proxy:
                if signed and not self.has_credentials():
                    raise NoCredentialsError()
                data = await self._direct.request(endpoint, params, method, signed)
                self._direct_reachable = True
            else:
                try:
                    data = await self._proxy.request(endpoint, params, method, signed)
                except ExchangeError as exc:
                    if not self._may_fall_back(endpoint, exc):
                        raise
                    logger.warning(
                        "Proxy failed for %s (%s); falling back to direct API",
                        endpoint, exc,
                    )
                    data = await self._direct.request(endpoint, params, method, signed)
        except ExchangeError as exc:
            self._error_count += 1
            self.last_error = str(exc)
            raise
        self._error_count = 0
        return data

    def _may_fall_back(self, endpoint: str, exc: ExchangeError) -> bool:
        return (
            exc.retryable
            and endpoint in FALLBACK_ALLOWLIST
            and self._direct_reachable
        )

    async def sync_time(self) -> int:
        """Align signed timestamps with the exchange clock. Returns the offset in ms."""
        data = await self.request("time")
        if not isinstance(data, dict) or "serverTime" not in data:
            raise InvalidResponseShapeError("time response missing serverTime")
        local_ms = int(self._clock.time() * 1000)
        self._signer.time_offset_ms = int(data["serverTime"]) - local_ms
        logger.info("Server time offset %d ms", self._signer.time_offset_ms)
        return self._signer.time_offset_ms

    # ── Probing ──────────────────────────────────────────────────────────

    async def test_connection(self, schedule_on_failure: bool = True) -> ConnectionReport:
        """Probe both transports and update the connection state.

        Success on either marks ``connected`` and resets error counters.
        Failure on both marks ``disconnected`` and schedules a reconnect.
        """
        if not self.has_credentials():
            self.last_error = "No API credentials found"
            self._set_status(ConnectionStatus.DISCONNECTED)
            return ConnectionReport(ConnectionStatus.DISCONNECTED, False, False, self.last_error)

        self._set_status(ConnectionStatus.CONNECTING)

        direct_ok = await self._probe(self._direct)
        self._direct_reachable = direct_ok
        proxy_ok = await self._probe(self._proxy)

        if direct_ok or proxy_ok:
            self._error_count = 0
            self.last_error = None
            self._reconnect.cancel()
            self._set_status(ConnectionStatus.CONNECTED)
            if not proxy_ok and self._use_proxy:
                self.last_error = "Direct API reachable but proxy is failing"
            try:
                permissions = await self.detect_permissions()
                if not permissions.read:
                    self.last_error = (
                        "Connected, but read permission could not be verified; "
                        "portfolio data may be limited"
                    )
            except ExchangeError as exc:
                logger.warning("Permission detection failed: %s", exc)
            return ConnectionReport(ConnectionStatus.CONNECTED, direct_ok, proxy_ok, self.last_error)

        self.last_error = (
            "Both direct API and proxy connections failed"
            if self._use_proxy
            else "Direct API connection failed; consider enabling proxy mode"
        )
        logger.error(self.last_error)
        self._set_status(ConnectionStatus.DISCONNECTED)
        if schedule_on_failure:
            self._reconnect.schedule()
        return ConnectionReport(ConnectionStatus.DISCONNECTED, False, False, self.last_error)

    async def _probe(self, transport) -> bool:
        try:
            await transport.request("ping")
        except ExchangeError as exc:
            logger.warning("%s ping failed: %s", transport.name, exc)
            return False
        return True

    async def _reconnect_attempt(self) -> bool:
        report = await self.test_connection(schedule_on_failure=False)
        return report.status is ConnectionStatus.CONNECTED

    def schedule_reconnect(self) -> bool:
        return self._reconnect.schedule()

    def reconnect_delay(self, attempt: int) -> float:
        return self._reconnect.delay_for(attempt)

    # ── Permissions ──────────────────────────────────────────────────────

    async def detect_permissions(self, force: bool = False) -> ApiPermissions:
        return await self._permissions.detect(force=force)

    @property
    def permissions(self) -> ApiPermissions:
        cached = self._permissions.cached
        return cached if cached is not None else ApiPermissions(read=False, trading=False)

    def restore_permissions(self, read: bool, trading: bool) -> None:
        self._permissions.seed(read, trading)

    def close(self) -> None:
        """Release the reconnect timer. Idempotent."""
        self._reconnect.cancel()
