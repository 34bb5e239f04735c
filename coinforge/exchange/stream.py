"""MarketStream — combined-stream WebSocket client with reconnect and watchdog.

Listeners subscribe per ``<symbol>@<stream>`` key. One socket carries
every subscribed key; a silent socket is considered stale after 60s and
is recycled. Reconnects back off exponentially and give up after a
fixed number of attempts.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

import websockets
from websockets.exceptions import WebSocketException

from coinforge.exchange.reconnect import backoff_delay
from coinforge.scheduler import Clock, SystemClock

logger = logging.getLogger("coinforge.exchange.stream")

_BASE_DELAY = 3.0
_BACKOFF_FACTOR = 1.5
_MAX_DELAY = 30.0
_MAX_ATTEMPTS = 5
_STALE_AFTER = 60.0
_HEARTBEAT_INTERVAL = 30.0


class StreamStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class StreamMessage:
    stream: str
    data: Any
    timestamp: float = field(default_factory=time.time)


StreamListener = Callable[[StreamMessage], None]


def stream_key(symbol: str, stream_name: str) -> str:
    return f"{symbol.lower()}@{stream_name}"


class StreamSubscription:
    """Handle returned by ``MarketStream.subscribe``; ``unsubscribe`` is idempotent."""

    def __init__(self, stream: "MarketStream", key: str, listener: StreamListener) -> None:
        self._stream = stream
        self.key = key
        self._listener = listener

    def unsubscribe(self) -> None:
        self._stream._remove(self.key, self._listener)


class MarketStream:
    """Streams market data for subscribed keys.

    Args:
        stream_url: Combined-stream endpoint, e.g.
            ``wss://stream.binance.com:9443/stream``.
        clock: Time source for backoff sleeps and staleness checks.
        connect: Factory returning an async context manager yielding the
            socket; defaults to ``websockets.connect``.
    """

    def __init__(
        self,
        stream_url: str,
        clock: Optional[Clock] = None,
        connect: Callable[[str], Any] = websockets.connect,
        max_attempts: int = _MAX_ATTEMPTS,
        base_delay: float = _BASE_DELAY,
        backoff_factor: float = _BACKOFF_FACTOR,
        stale_after: float = _STALE_AFTER,
        heartbeat_interval: float = _HEARTBEAT_INTERVAL,
    ) -> None:
        self._url = stream_url.rstrip("/")
        self._clock = clock or SystemClock()
        self._connect = connect
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._factor = backoff_factor
        self._stale_after = stale_after
        self._heartbeat_interval = heartbeat_interval
        self._listeners: dict[str, list[StreamListener]] = {}
        self._status = StreamStatus.DISCONNECTED
        self._task: Optional[asyncio.Task] = None
        self._ws: Any = None
        self._closed = False
        self._resubscribe = False
        self._attempts = 0
        self._last_message = 0.0
        self.messages_received = 0

    # ── Subscriptions ────────────────────────────────────────────────────

    @property
    def status(self) -> StreamStatus:
        return self._status

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def streams(self) -> list[str]:
        return sorted(self._listeners)

    def url(self) -> str:
        return f"{self._url}?streams={'/'.join(self.streams)}"

    def subscribe(
        self, symbol: str, stream_name: str, listener: StreamListener,
    ) -> StreamSubscription:
        """Register *listener* for ``symbol@stream_name``.

        A new key on a live socket triggers a reconnect with the
        extended stream list.
        """
        key = stream_key(symbol, stream_name)
        is_new = key not in self._listeners
        self._listeners.setdefault(key, []).append(listener)
        if is_new and self._ws is not None:
            self._request_resubscribe()
        return StreamSubscription(self, key, listener)

    def _remove(self, key: str, listener: StreamListener) -> None:
        listeners = self._listeners.get(key)
        if not listeners or listener not in listeners:
            return
        listeners.remove(listener)
        if not listeners:
            del self._listeners[key]
            logger.info("No listeners left for %s", key)

    def _request_resubscribe(self) -> None:
        self._resubscribe = True
        if self._ws is not None:
            asyncio.ensure_future(self._ws.close())

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        """Open the socket in the background. No-op if already running."""
        if self._task is not None and not self._task.done():
            return
        self._closed = False
        self._attempts = 0
        self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        """Close the socket and stop reconnecting. Idempotent."""
        if self._closed:
            return
        self._closed = True
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._status = StreamStatus.DISCONNECTED
        logger.info("Market stream closed")

    async def wait(self) -> None:
        """Wait until the stream gives up or is closed."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        while not self._closed:
            if not self._listeners:
                logger.info("No streams subscribed; market stream idle")
                self._status = StreamStatus.DISCONNECTED
                return

            await self._session()
            if self._closed:
                return
            if self._resubscribe:
                self._resubscribe = False
                continue

            self._attempts += 1
            if self._attempts > self._max_attempts:
                self._status = StreamStatus.ERROR
                logger.error(
                    "Market stream gave up after %d reconnect attempts", self._max_attempts,
                )
                return
            delay = backoff_delay(self._attempts, self._base_delay, self._factor, _MAX_DELAY)
            logger.warning(
                "Market stream reconnecting in %.1fs (attempt %d/%d)",
                delay, self._attempts, self._max_attempts,
            )
            await self._clock.sleep(delay)

    async def _session(self) -> None:
        url = self.url()
        self._status = StreamStatus.CONNECTING
        logger.info("Connecting to %s", url)
        watchdog: Optional[asyncio.Task] = None
        try:
            async with self._connect(url) as ws:
                self._ws = ws
                self._status = StreamStatus.CONNECTED
                self._attempts = 0
                self._last_message = self._clock.monotonic()
                watchdog = asyncio.create_task(self._watchdog(ws))
                async for raw in ws:
                    self._handle(raw)
        except (OSError, WebSocketException) as exc:
            logger.error("Market stream error: %s", exc)
            self._status = StreamStatus.ERROR
        finally:
            self._ws = None
            if watchdog is not None:
                watchdog.cancel()
            if self._status is not StreamStatus.ERROR:
                self._status = StreamStatus.DISCONNECTED

    async def _watchdog(self, ws: Any) -> None:
        while True:
            await self._clock.sleep(self._heartbeat_interval)
            silent_for = self._clock.monotonic() - self._last_message
            if silent_for > self._stale_after:
                logger.warning(
                    "No stream data for %.0fs; forcing reconnect", silent_for,
                )
                await ws.close()
                return

    def _handle(self, raw: Any) -> None:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.error("Dropping unparsable stream message: %s", exc)
            return

        self._last_message = self._clock.monotonic()
        self.messages_received += 1
        if isinstance(payload, dict) and "stream" in payload:
            key, data = payload["stream"], payload.get("data")
        elif len(self._listeners) == 1:
            key, data = next(iter(self._listeners)), payload
        else:
            logger.debug("Stream message without a stream key dropped")
            return

        message = StreamMessage(stream=key, data=data, timestamp=self._clock.time())
        for listener in list(self._listeners.get(key, ())):
            try:
                listener(message)
            except Exception:
                logger.exception("Stream listener failed for %s", key)
