"""Realtime order-update client — one shared connection per process.

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTED -> DISCONNECTED (server close / error) -> RECONNECTING
    RECONNECTING -> CONNECTED | GIVEN_UP

Contract:
- connect() tears down any existing connection (and any pending reconnect
  timer) before opening a new one. This is the only serialization of the
  shared connection handle.
- A successful connect resets the reconnect counter.
- After a disconnect or connect error, up to 5 reconnects are scheduled with
  linear backoff (1s, 2s, 3s, 4s, 5s). After that the client moves to
  GIVEN_UP and fires RealtimeEvent.GIVEN_UP; no further attempt is made.
- disconnect() cancels pending reconnect timers so an intentional teardown
  never reconnects.
- Subscriptions made while disconnected are queued and sent on the next
  successful connect (and re-sent after every reconnect).

Wire frames are JSON objects: {"event": <name>, "data": <payload>}.
The transport is injected (TransportFactory) so tests can use a fake.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from storefront.retry import RetryPolicy

logger = logging.getLogger(__name__)

SUBSCRIBE_USER_ORDERS = "subscribe-user-orders"
ORDER_STATUS_UPDATED = "order-status-updated"

DEFAULT_CONNECT_TIMEOUT = 10.0
MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_BASE_DELAY = 1.0


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TransportClosed(ConnectionError):
    """The realtime connection is closed or could not be opened."""


class Transport(Protocol):
    """Bidirectional text-frame connection."""

    async def send(self, message: str) -> None:
        ...

    async def recv(self) -> str:
        """Next frame. Raises TransportClosed when the peer goes away."""
        ...

    async def close(self) -> None:
        ...


TransportFactory = Callable[[str, float], Awaitable[Transport]]


class WebSocketTransport:
    """Transport over a ``websockets`` client connection."""

    def __init__(self, connection: Any) -> None:
        self._ws = connection

    @classmethod
    async def open(cls, url: str, timeout: float) -> WebSocketTransport:
        try:
            connection = await websockets.connect(url, open_timeout=timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise TransportClosed(f"Cannot connect to {url}: {exc}") from exc
        return cls(connection)

    async def send(self, message: str) -> None:
        try:
            await self._ws.send(message)
        except ConnectionClosed as exc:
            raise TransportClosed(str(exc)) from exc

    async def recv(self) -> str:
        try:
            message = await self._ws.recv()
        except ConnectionClosed as exc:
            raise TransportClosed(str(exc)) from exc
        if isinstance(message, bytes):
            return message.decode("utf-8")
        return message

    async def close(self) -> None:
        await self._ws.close()


async def open_websocket(url: str, timeout: float) -> Transport:
    return await WebSocketTransport.open(url, timeout)


def encode_frame(event: str, data: Any, signature: str | None = None) -> str:
    frame: dict[str, Any] = {"event": event, "data": data}
    if signature:
        frame["signature"] = signature
    return json.dumps(frame, default=str)


def decode_frame(raw: str) -> tuple[str, Any]:
    """Parse a frame. Raises ValueError on malformed input."""
    frame = json.loads(raw)
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise ValueError("frame must be an object with a string 'event'")
    return frame["event"], frame.get("data")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    GIVEN_UP = "given_up"


class RealtimeEvent(Enum):
    """Events observable on a RealtimeClient."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ORDER_STATUS_UPDATED = ORDER_STATUS_UPDATED
    GIVEN_UP = "given_up"


RealtimeListener = Callable[[Any], None]


class RealtimeClient:
    """Connection manager for live order-status updates.

    Create one per process and pass it to whatever needs it; tests build
    their own with a fake transport factory.
    """

    def __init__(
        self,
        transport_factory: TransportFactory = open_websocket,
        *,
        policy: RetryPolicy | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._factory = transport_factory
        self._policy = policy or RetryPolicy.linear(
            max_retries=MAX_RECONNECT_ATTEMPTS, base_delay=RECONNECT_BASE_DELAY
        )
        self._connect_timeout = connect_timeout
        self._sleep = sleep

        self._transport: Transport | None = None
        self._reader: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        # Bumped by every connect() and disconnect(); a connect that finds it
        # changed after opening its transport has been superseded
        self._generation = 0
        self._url: str | None = None
        self._state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0

        self._subscriptions: list[str] = []
        self._listeners: dict[RealtimeEvent, list[RealtimeListener]] = {
            event: [] for event in RealtimeEvent
        }

    # -- observation --------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._transport is not None

    @property
    def url(self) -> str | None:
        return self._url

    @property
    def subscriptions(self) -> list[str]:
        return list(self._subscriptions)

    def on(self, event: RealtimeEvent, callback: RealtimeListener) -> Callable[[], None]:
        """Register a listener. Returns a function that removes it."""
        self._listeners[event].append(callback)

        def _off() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[event].remove(callback)

        return _off

    def _fire(self, event: RealtimeEvent, payload: Any = None) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception:
                logger.exception("Realtime listener for %s raised", event.value)

    # -- connection lifecycle -----------------------------------------------

    async def connect(self, url: str) -> bool:
        """Open a connection to ``url``, replacing any existing one.

        Returns True when connected. On failure a reconnect is scheduled
        (or the client gives up) and False is returned.
        """
        await self._cancel_reconnect()
        await self._teardown()

        self._generation += 1
        generation = self._generation
        self._url = url
        self._state = ConnectionState.CONNECTING
        try:
            transport = await asyncio.wait_for(
                self._factory(url, self._connect_timeout), self._connect_timeout
            )
        except (TransportClosed, OSError, asyncio.TimeoutError) as exc:
            if generation != self._generation:
                return False
            logger.warning("Realtime connection error (%s): %s", url, exc or "timed out")
            self._state = ConnectionState.DISCONNECTED
            self._handle_reconnect(url)
            return False

        if generation != self._generation:
            logger.debug("Connect to %s superseded; closing its transport", url)
            await self._close_transport(transport)
            return False

        self._transport = transport
        self.reconnect_attempts = 0
        self._state = ConnectionState.CONNECTED
        logger.info("Connected to realtime order server %s", url)

        self._reader = asyncio.create_task(self._read_loop(transport, url))
        for user_id in list(self._subscriptions):
            await self._send_subscription(transport, user_id)
        self._fire(RealtimeEvent.CONNECTED, {"url": url})
        return True

    async def disconnect(self) -> None:
        """Close the connection and reset state; pending reconnects are dropped."""
        self._generation += 1
        await self._cancel_reconnect()
        await self._teardown()
        self._subscriptions.clear()
        self._listeners[RealtimeEvent.ORDER_STATUS_UPDATED].clear()
        self.reconnect_attempts = 0
        self._url = None
        self._state = ConnectionState.DISCONNECTED
        logger.info("Realtime client disconnected")

    async def wait_until_idle(self) -> None:
        """Wait for any chain of scheduled reconnects to settle."""
        while (task := self._reconnect_task) is not None and not task.done():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _handle_reconnect(self, url: str) -> None:
        if self._policy.can_retry(self.reconnect_attempts):
            delay = self._policy.delay_for(self.reconnect_attempts)
            self.reconnect_attempts += 1
            logger.info(
                "Attempting to reconnect (%d/%d) in %.1fs",
                self.reconnect_attempts,
                self._policy.max_retries,
                delay,
            )
            self._state = ConnectionState.RECONNECTING
            self._reconnect_task = asyncio.create_task(self._reconnect_after(url, delay))
            return

        logger.error(
            "Max reconnection attempts reached (%d) for %s, giving up",
            self.reconnect_attempts,
            url,
        )
        self._state = ConnectionState.GIVEN_UP
        self._fire(RealtimeEvent.GIVEN_UP, {"url": url, "attempts": self.reconnect_attempts})

    async def _reconnect_after(self, url: str, delay: float) -> None:
        await self._sleep(delay)
        self._reconnect_task = None
        await self.connect(url)

    async def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task is asyncio.current_task() or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _teardown(self) -> None:
        """Stop the reader and close the transport without triggering reconnects."""
        reader, self._reader = self._reader, None
        transport, self._transport = self._transport, None

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        if transport is not None:
            await self._close_transport(transport)

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await transport.close()
        except (TransportClosed, OSError) as exc:
            logger.debug("Error closing realtime transport: %s", exc)

    async def _read_loop(self, transport: Transport, url: str) -> None:
        try:
            while True:
                raw = await transport.recv()
                self._handle_frame(raw)
        except (TransportClosed, OSError) as exc:
            reason = str(exc) or type(exc).__name__

        if self._transport is not transport:
            return
        self._transport = None
        self._reader = None
        self._state = ConnectionState.DISCONNECTED
        logger.info("Disconnected from realtime order server: %s", reason)
        self._fire(RealtimeEvent.DISCONNECTED, {"url": url, "reason": reason})
        self._handle_reconnect(url)

    def _handle_frame(self, raw: str) -> None:
        try:
            event, data = decode_frame(raw)
        except ValueError:
            logger.warning("Ignoring malformed realtime frame: %.200s", raw)
            return
        if event == ORDER_STATUS_UPDATED:
            self._fire(RealtimeEvent.ORDER_STATUS_UPDATED, data)
        else:
            logger.debug("Ignoring realtime event %s", event)

    # -- subscriptions -------------------------------------------------------

    async def subscribe_to_order_updates(
        self, user_id: str, callback: RealtimeListener
    ) -> Callable[[], None]:
        """Follow ``user_id``'s order updates; ``callback`` gets each update.

        Queued until the next connect when not currently connected.
        """
        off = self.on(RealtimeEvent.ORDER_STATUS_UPDATED, callback)
        if user_id not in self._subscriptions:
            self._subscriptions.append(user_id)
        if self.is_connected:
            await self._send_subscription(self._transport, user_id)
        else:
            logger.debug("Not connected; queued order subscription for %s", user_id)
        return off

    def unsubscribe_from_order_updates(self) -> None:
        self._listeners[RealtimeEvent.ORDER_STATUS_UPDATED].clear()
        self._subscriptions.clear()

    async def _send_subscription(self, transport: Transport | None, user_id: str) -> None:
        if transport is None:
            return
        try:
            await transport.send(encode_frame(SUBSCRIBE_USER_ORDERS, user_id))
        except (TransportClosed, OSError) as exc:
            # The read loop notices the closed transport and reconnects
            logger.warning("Could not send order subscription for %s: %s", user_id, exc)
