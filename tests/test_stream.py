"""Tests for coinforge.exchange.stream — combined-stream client with a fake socket."""

import asyncio
import json

import pytest

from coinforge.exchange.stream import MarketStream, StreamStatus, stream_key
from coinforge.scheduler import ManualClock


# ── Helpers ──────────────────────────────────────────────────────────────


class _FakeSocket:
    """Yields *messages*, then either ends or blocks until closed."""

    def __init__(self, messages=(), hold_open: bool = False) -> None:
        self.messages = list(messages)
        self.hold_open = hold_open
        self.closed = False
        self._closed_event = asyncio.Event()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def close(self):
        self.closed = True
        self._closed_event.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        if self.hold_open:
            await self._closed_event.wait()


class _Connector:
    def __init__(self, sockets=()) -> None:
        self.sockets = list(sockets)
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        if not self.sockets:
            raise OSError("connection refused")
        return self.sockets.pop(0)


def _frame(stream: str, data) -> str:
    return json.dumps({"stream": stream, "data": data})


# ── Subscriptions ────────────────────────────────────────────────────────


class TestSubscriptions:
    def test_url_lists_sorted_streams(self):
        stream = MarketStream("wss://stream.example/stream/")
        stream.subscribe("ETHUSDT", "kline_1m", lambda m: None)
        stream.subscribe("BTCUSDT", "ticker", lambda m: None)
        assert stream.url() == "wss://stream.example/stream?streams=btcusdt@ticker/ethusdt@kline_1m"

    def test_unsubscribe_is_idempotent(self):
        stream = MarketStream("wss://stream.example/stream")
        sub = stream.subscribe("BTCUSDT", "ticker", lambda m: None)
        sub.unsubscribe()
        sub.unsubscribe()
        assert stream.streams == []

    def test_stream_key(self):
        assert stream_key("BTCUSDT", "depth") == "btcusdt@depth"


# ── Session handling ─────────────────────────────────────────────────────


class TestMarketStream:
    @pytest.mark.asyncio
    async def test_dispatches_to_matching_listeners(self):
        clock = ManualClock()
        socket = _FakeSocket([
            _frame("btcusdt@ticker", {"c": "50000.00"}),
            "not json",
            _frame("ethusdt@ticker", {"c": "3000.00"}),
            _frame("btcusdt@ticker", {"c": "50100.00"}),
        ])
        stream = MarketStream("wss://stream.example/stream", clock=clock,
                              connect=_Connector([socket]))
        received = []

        def broken(message):
            raise RuntimeError("listener bug")

        stream.subscribe("BTCUSDT", "ticker", broken)
        stream.subscribe("BTCUSDT", "ticker", received.append)

        stream.start()
        await clock.advance(0)

        assert [m.data["c"] for m in received] == ["50000.00", "50100.00"]
        assert received[0].stream == "btcusdt@ticker"
        assert stream.messages_received == 3
        await stream.close()

    @pytest.mark.asyncio
    async def test_unkeyed_payload_goes_to_sole_stream(self):
        clock = ManualClock()
        socket = _FakeSocket([json.dumps({"e": "24hrTicker", "c": "1.0"})])
        stream = MarketStream("wss://stream.example/stream", clock=clock,
                              connect=_Connector([socket]))
        received = []
        stream.subscribe("ADAUSDT", "ticker", received.append)
        stream.start()
        await clock.advance(0)
        assert received[0].data["c"] == "1.0"
        await stream.close()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        clock = ManualClock()
        connector = _Connector()
        stream = MarketStream("wss://stream.example/stream", clock=clock,
                              connect=connector, max_attempts=2)
        stream.subscribe("BTCUSDT", "ticker", lambda m: None)

        stream.start()
        await clock.advance(100)
        await stream.wait()

        assert stream.status is StreamStatus.ERROR
        assert len(connector.urls) == 3

    @pytest.mark.asyncio
    async def test_reconnects_after_socket_ends(self):
        clock = ManualClock()
        second = _FakeSocket(hold_open=True)
        connector = _Connector([_FakeSocket(), second])
        stream = MarketStream("wss://stream.example/stream", clock=clock, connect=connector)
        stream.subscribe("BTCUSDT", "ticker", lambda m: None)

        stream.start()
        await clock.advance(0)
        assert stream.reconnect_attempts == 1

        await clock.advance(3.0)
        assert stream.status is StreamStatus.CONNECTED
        assert stream.reconnect_attempts == 0
        await stream.close()
        assert second.closed is True

    @pytest.mark.asyncio
    async def test_silent_socket_recycled_by_watchdog(self):
        clock = ManualClock()
        silent = _FakeSocket(hold_open=True)
        connector = _Connector([silent, _FakeSocket(hold_open=True)])
        stream = MarketStream("wss://stream.example/stream", clock=clock, connect=connector)
        stream.subscribe("BTCUSDT", "ticker", lambda m: None)

        stream.start()
        await clock.advance(0)
        await clock.advance(60)
        assert silent.closed is False

        await clock.advance(30)
        assert silent.closed is True
        await stream.close()

    @pytest.mark.asyncio
    async def test_idle_without_subscriptions(self):
        stream = MarketStream("wss://stream.example/stream", clock=ManualClock(),
                              connect=_Connector())
        stream.start()
        await stream.wait()
        assert stream.status is StreamStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        clock = ManualClock()
        socket = _FakeSocket(hold_open=True)
        stream = MarketStream("wss://stream.example/stream", clock=clock,
                              connect=_Connector([socket]))
        stream.subscribe("BTCUSDT", "ticker", lambda m: None)
        stream.start()
        await clock.advance(0)

        await stream.close()
        await stream.close()
        assert stream.status is StreamStatus.DISCONNECTED
        assert socket.closed is True
