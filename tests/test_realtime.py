"""Tests for the realtime order-update client.

Tests:
- Linear reconnect backoff (1..5s), GIVEN_UP after the fifth, no sixth try
- Successful connect resets the counter
- Subscriptions queued while offline, re-sent after reconnect
- disconnect() cancels a pending reconnect
- Overlapping or interrupted connects never leave a second transport open
- order-status-updated frames reach the callbacks
"""

from __future__ import annotations

import asyncio
import json

import pytest

from storefront.notifications.realtime import (
    ORDER_STATUS_UPDATED,
    SUBSCRIBE_USER_ORDERS,
    ConnectionState,
    RealtimeClient,
    RealtimeEvent,
    TransportClosed,
    decode_frame,
    encode_frame,
)

URL = "ws://realtime.test"


class FakeTransport:
    """In-memory transport; ``drop()`` simulates the server going away."""

    _CLOSE = object()

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise TransportClosed("closed")
        self.sent.append(message)

    async def recv(self) -> str:
        item = await self._inbox.get()
        if item is self._CLOSE:
            raise TransportClosed("server went away")
        return item

    async def close(self) -> None:
        self.closed = True

    def push(self, frame: str) -> None:
        self._inbox.put_nowait(frame)

    def drop(self) -> None:
        self._inbox.put_nowait(self._CLOSE)


class FakeServer:
    """Transport factory that can be told to refuse connections."""

    def __init__(self, refuse: bool = False) -> None:
        self.refuse = refuse
        self.attempts = 0
        self.transports: list[FakeTransport] = []

    async def __call__(self, url: str, timeout: float) -> FakeTransport:
        self.attempts += 1
        if self.refuse:
            raise TransportClosed(f"refused {url}")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport


class GatedServer(FakeServer):
    """Factory that parks every connect until ``gate`` is set."""

    def __init__(self, refuse: bool = False) -> None:
        super().__init__(refuse)
        self.gate = asyncio.Event()
        self.waiting = 0

    async def __call__(self, url: str, timeout: float) -> FakeTransport:
        self.waiting += 1
        await self.gate.wait()
        return await super().__call__(url, timeout)


async def spin(turns: int = 20) -> None:
    for _ in range(turns):
        await asyncio.sleep(0)


async def settle(client: RealtimeClient) -> None:
    """Let read loops and reconnect chains run to completion."""
    for _ in range(5):
        await asyncio.sleep(0)
    await client.wait_until_idle()


def subscriptions_sent(transport: FakeTransport) -> list[str]:
    frames = [decode_frame(raw) for raw in transport.sent]
    return [data for event, data in frames if event == SUBSCRIBE_USER_ORDERS]


# ── Reconnect backoff ──────────────────────────────────────────────────────


class TestReconnect:
    """Linear backoff, bounded attempts."""

    @pytest.mark.asyncio
    async def test_delays_then_gives_up(self, fake_sleep):
        server = FakeServer(refuse=True)
        client = RealtimeClient(server, sleep=fake_sleep)
        gave_up = []
        client.on(RealtimeEvent.GIVEN_UP, gave_up.append)

        assert await client.connect(URL) is False
        await settle(client)

        assert fake_sleep.delays == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert server.attempts == 6
        assert client.state is ConnectionState.GIVEN_UP
        assert gave_up == [{"url": URL, "attempts": 5}]

    @pytest.mark.asyncio
    async def test_no_sixth_attempt(self, fake_sleep):
        server = FakeServer(refuse=True)
        client = RealtimeClient(server, sleep=fake_sleep)
        await client.connect(URL)
        await settle(client)
        await settle(client)
        assert server.attempts == 6
        assert len(fake_sleep.delays) == 5

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, fake_sleep):
        server = FakeServer(refuse=True)

        async def recovering_sleep(seconds: float) -> None:
            fake_sleep.delays.append(seconds)
            if len(fake_sleep.delays) == 2:
                server.refuse = False

        client = RealtimeClient(server, sleep=recovering_sleep)
        await client.connect(URL)
        await settle(client)

        assert client.is_connected
        assert client.reconnect_attempts == 0
        assert fake_sleep.delays == [1.0, 2.0]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_server_drop_triggers_reconnect(self, fake_sleep):
        server = FakeServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        dropped = []
        client.on(RealtimeEvent.DISCONNECTED, dropped.append)

        assert await client.connect(URL) is True
        server.transports[0].drop()
        await settle(client)

        assert dropped and dropped[0]["url"] == URL
        assert fake_sleep.delays == [1.0]
        assert server.attempts == 2
        assert client.is_connected
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_connect_replaces_existing_connection(self, fake_sleep):
        server = FakeServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        await client.connect(URL)
        await client.connect(URL)

        first, second = server.transports
        assert first.closed is True
        assert second.closed is False
        assert fake_sleep.delays == []
        await client.disconnect()


# ── Disconnect ─────────────────────────────────────────────────────────────


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_cancels_pending_reconnect(self):
        server = FakeServer(refuse=True)
        blocked = asyncio.Event()

        async def never_wakes(seconds: float) -> None:
            await blocked.wait()

        client = RealtimeClient(server, sleep=never_wakes)
        await client.connect(URL)
        await asyncio.sleep(0)
        assert client.state is ConnectionState.RECONNECTING

        await client.disconnect()
        blocked.set()
        await asyncio.sleep(0)

        assert server.attempts == 1
        assert client.state is ConnectionState.DISCONNECTED
        assert client.reconnect_attempts == 0

    @pytest.mark.asyncio
    async def test_disconnect_does_not_reconnect(self, fake_sleep):
        server = FakeServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        await client.connect(URL)
        await client.disconnect()
        await settle(client)

        assert server.transports[0].closed is True
        assert server.attempts == 1
        assert client.url is None


# ── Overlapping connects ───────────────────────────────────────────────────


class TestConnectInFlight:
    """A connect still opening its transport must not outlive a newer call."""

    @pytest.mark.asyncio
    async def test_disconnect_while_opening(self, fake_sleep):
        server = GatedServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        pending = asyncio.create_task(client.connect(URL))
        await spin()
        assert server.waiting == 1

        await client.disconnect()
        server.gate.set()

        assert await pending is False
        assert client.state is ConnectionState.DISCONNECTED
        assert client.is_connected is False
        assert server.transports[0].closed is True
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_concurrent_connects_keep_one_transport(self, fake_sleep):
        server = GatedServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        first = asyncio.create_task(client.connect(URL))
        second = asyncio.create_task(client.connect(URL))
        await spin()
        assert server.waiting == 2

        server.gate.set()
        assert await asyncio.gather(first, second) == [False, True]
        assert [t.closed for t in server.transports].count(False) == 1
        assert client.is_connected

        await client.disconnect()
        assert all(t.closed for t in server.transports)

    @pytest.mark.asyncio
    async def test_disconnect_during_woken_reconnect(self, fake_sleep):
        server = GatedServer(refuse=True)
        server.gate.set()
        client = RealtimeClient(server, sleep=fake_sleep)
        assert await client.connect(URL) is False

        # the retry wakes at once and parks inside the factory
        server.refuse = False
        server.gate.clear()
        await spin()
        assert server.waiting == 2

        await client.disconnect()
        server.gate.set()
        await spin()

        assert client.state is ConnectionState.DISCONNECTED
        assert client.is_connected is False
        assert len(server.transports) == 1
        assert server.transports[0].closed is True


# ── Subscriptions ──────────────────────────────────────────────────────────


class TestOrderSubscriptions:
    @pytest.mark.asyncio
    async def test_sent_immediately_when_connected(self, fake_sleep):
        server = FakeServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        await client.connect(URL)
        await client.subscribe_to_order_updates("user-1", lambda update: None)

        assert subscriptions_sent(server.transports[0]) == ["user-1"]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_queued_until_connected(self, fake_sleep):
        server = FakeServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        await client.subscribe_to_order_updates("user-1", lambda update: None)
        assert client.subscriptions == ["user-1"]

        await client.connect(URL)
        assert subscriptions_sent(server.transports[0]) == ["user-1"]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_resent_after_reconnect(self, fake_sleep):
        server = FakeServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        await client.connect(URL)
        await client.subscribe_to_order_updates("user-1", lambda update: None)

        server.transports[0].drop()
        await settle(client)

        assert subscriptions_sent(server.transports[1]) == ["user-1"]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_updates_reach_callback(self, fake_sleep):
        server = FakeServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        updates = []
        await client.connect(URL)
        await client.subscribe_to_order_updates("user-1", updates.append)

        update = {"orderId": "ORD-1", "status": "shipped"}
        server.transports[0].push(encode_frame(ORDER_STATUS_UPDATED, update))
        server.transports[0].push("not json")
        server.transports[0].push(encode_frame("something-else", {}))
        await settle(client)

        assert updates == [update]
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_unsubscribe_removes_callbacks(self, fake_sleep):
        server = FakeServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        updates = []
        await client.connect(URL)
        await client.subscribe_to_order_updates("user-1", updates.append)
        client.unsubscribe_from_order_updates()

        server.transports[0].push(encode_frame(ORDER_STATUS_UPDATED, {"orderId": "ORD-1"}))
        await settle(client)

        assert updates == []
        assert client.subscriptions == []
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_others(self, fake_sleep):
        server = FakeServer()
        client = RealtimeClient(server, sleep=fake_sleep)
        received = []

        def broken(update):
            raise RuntimeError("boom")

        await client.connect(URL)
        await client.subscribe_to_order_updates("user-1", broken)
        await client.subscribe_to_order_updates("user-1", received.append)
        server.transports[0].push(encode_frame(ORDER_STATUS_UPDATED, {"orderId": "ORD-2"}))
        await settle(client)

        assert received == [{"orderId": "ORD-2"}]
        assert subscriptions_sent(server.transports[0]) == ["user-1", "user-1"]
        await client.disconnect()


class TestFrames:
    def test_encode_decode(self):
        raw = encode_frame(SUBSCRIBE_USER_ORDERS, "user-9")
        assert json.loads(raw) == {"event": SUBSCRIBE_USER_ORDERS, "data": "user-9"}
        assert decode_frame(raw) == (SUBSCRIBE_USER_ORDERS, "user-9")

    def test_signature_included_when_given(self):
        raw = encode_frame("new_order", {"a": 1}, signature="sha256=abc")
        assert json.loads(raw)["signature"] == "sha256=abc"

    def test_decode_rejects_non_object(self):
        with pytest.raises(ValueError):
            decode_frame("[1, 2]")
