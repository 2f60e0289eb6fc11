"""In-process order event fan-out.

Provides:
- LocalEventBus: typed (EventKind -> listeners) publish/subscribe for code
  running in the same process. A failing listener never blocks the others.
- OrderEventHub: fans order events out to connected SSE/WebSocket clients,
  one bounded asyncio.Queue per connection, optionally filtered by user.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from storefront.models import EventKind

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


class LocalEventBus:
    """Synchronous listener registry keyed by EventKind."""

    def __init__(self) -> None:
        self._listeners: dict[EventKind, list[Listener]] = {kind: [] for kind in EventKind}

    def subscribe(self, kind: EventKind, callback: Listener) -> Callable[[], None]:
        """Register ``callback`` for ``kind``. Returns an unsubscribe function."""
        self._listeners[kind].append(callback)

        def _unsubscribe() -> None:
            try:
                self._listeners[kind].remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def subscribe_all(self, callback: Listener) -> Callable[[], None]:
        """Register ``callback`` for every order event kind."""
        undo = [self.subscribe(kind, callback) for kind in EventKind]

        def _unsubscribe() -> None:
            for fn in undo:
                fn()

        return _unsubscribe

    def emit(self, kind: EventKind, data: dict[str, Any]) -> int:
        """Invoke every listener for ``kind``. Returns the number that raised."""
        failures = 0
        for callback in list(self._listeners[kind]):
            try:
                callback(data)
            except Exception:
                failures += 1
                logger.exception("Local listener for %s raised", kind.value)
        return failures

    def listener_count(self, kind: EventKind) -> int:
        return len(self._listeners[kind])

    def clear(self) -> None:
        for listeners in self._listeners.values():
            listeners.clear()


@dataclass
class _Connection:
    queue: asyncio.Queue
    user_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)


class OrderEventHub:
    """Fans out order events to every connected SSE/WebSocket client."""

    def __init__(self, max_queue: int = 500) -> None:
        self._max_queue = max_queue
        self._connections: dict[str, _Connection] = {}

    def subscribe(self, user_id: str | None = None, **meta: Any) -> tuple[str, asyncio.Queue]:
        """Register a connection. Returns (connection_id, queue).

        A connection with a ``user_id`` only receives that user's events.
        """
        conn_id = uuid.uuid4().hex[:8]
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._connections[conn_id] = _Connection(queue=queue, user_id=user_id, meta=meta)
        logger.info(
            "Order event connection opened: %s (total: %d)", conn_id, len(self._connections)
        )
        return conn_id, queue

    def set_user(self, conn_id: str, user_id: str | None) -> None:
        conn = self._connections.get(conn_id)
        if conn is not None:
            conn.user_id = user_id

    def unsubscribe(self, conn_id: str) -> None:
        self._connections.pop(conn_id, None)
        logger.info(
            "Order event connection closed: %s (total: %d)", conn_id, len(self._connections)
        )

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connection_ids(self) -> list[str]:
        return list(self._connections)

    def broadcast(self, event: dict[str, Any], user_id: str | None = None) -> int:
        """Queue ``event`` for matching connections (non-blocking).

        Returns the number of connections the event was queued for.
        """
        delivered = 0
        for conn in list(self._connections.values()):
            if conn.user_id is not None and conn.user_id != user_id:
                continue
            try:
                conn.queue.put_nowait(event)
            except asyncio.QueueFull:
                # Drop oldest event to make room
                try:
                    conn.queue.get_nowait()
                    conn.queue.put_nowait(event)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    continue
            delivered += 1
        return delivered


# Process-wide instances shared by the dispatcher and the HTTP endpoints
bus = LocalEventBus()
hub = OrderEventHub()
