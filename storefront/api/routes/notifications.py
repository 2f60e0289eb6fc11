"""Realtime order notifications — SSE stream and WebSocket endpoint.

SSE (GET /api/orders/notifications):
- Requires a bearer token. Admins receive every order event, customers
  only their own.
- First frame is ``{"type": "connected"}``, then a heartbeat frame whenever
  no event arrived for ``sse_heartbeat_seconds``.

WebSocket (/ws/orders):
- Clients connect with a bearer token (``?token=`` or an Authorization
  header), send ``subscribe-user-orders`` with their own user id and then
  receive ``order-status-updated`` frames for that user. Only admins may
  follow another user's orders.
- Producers push ``new_order`` / ``order_status_update`` frames signed with
  the webhook secret; unsigned or mis-signed frames are refused.
"""

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from storefront.api.auth import is_admin, require_user, websocket_user
from storefront.api.services import Services, get_services
from storefront.models import EventKind
from storefront.notifications.events import OrderEventHub
from storefront.notifications.realtime import (
    ORDER_STATUS_UPDATED,
    SUBSCRIBE_USER_ORDERS,
    decode_frame,
    encode_frame,
)
from storefront.webhooks.signing import serialize_payload, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])

_PRODUCER_EVENTS = {kind.value for kind in EventKind}


def _sse(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data, default=str)}\n\n"


async def order_event_stream(
    hub: OrderEventHub,
    user_id: str | None,
    *,
    heartbeat: float = 30.0,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncIterator[str]:
    """SSE frames for one client. ``user_id=None`` receives every event."""
    conn_id, queue = hub.subscribe(user_id=user_id, transport="sse")
    try:
        yield _sse({"type": "connected", "message": "Connected to order notifications"})
        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                yield _sse({"type": "heartbeat", "timestamp": int(time.time() * 1000)})
                continue
            yield _sse(event)
    finally:
        hub.unsubscribe(conn_id)


@router.get("/api/orders/notifications")
async def order_notifications(
    request: Request,
    claims: dict[str, Any] = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Server-Sent Events stream of order events."""
    user_id = None if is_admin(claims) else claims["sub"]
    stream = order_event_stream(
        services.hub,
        user_id,
        heartbeat=services.settings.sse_heartbeat_seconds,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------


async def _forward_events(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        event = await queue.get()
        await websocket.send_text(encode_frame(ORDER_STATUS_UPDATED, event))


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_text(encode_frame("error", {"message": message}))


def _producer_target(data: Any) -> str | None:
    """User id an event belongs to, read from the event payload."""
    if not isinstance(data, dict):
        return None
    inner = data.get("data")
    if isinstance(inner, dict) and inner.get("userId"):
        return str(inner["userId"])
    return str(data["userId"]) if data.get("userId") else None


@router.websocket("/ws/orders")
async def order_updates_socket(websocket: WebSocket):
    """Order update subscriptions for browsers, event intake for producers."""
    services: Services = websocket.app.state.services
    hub = services.hub
    secret = services.settings.webhook_secret
    claims = websocket_user(websocket)
    await websocket.accept()

    conn_id: str | None = None
    forwarder: asyncio.Task | None = None
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                event, data = decode_frame(raw)
            except ValueError as exc:
                await _send_error(websocket, str(exc))
                continue

            if event == SUBSCRIBE_USER_ORDERS:
                user_id = data.get("userId") if isinstance(data, dict) else data
                if not user_id:
                    await _send_error(websocket, "userId required")
                    continue
                if claims is None:
                    await _send_error(websocket, "Authentication required")
                    continue
                if str(user_id) != claims["sub"] and not is_admin(claims):
                    logger.warning(
                        "Refused subscription to %s orders from %s", user_id, claims["sub"]
                    )
                    await _send_error(websocket, "You do not have access to these orders")
                    continue
                if conn_id is None:
                    conn_id, queue = hub.subscribe(user_id=str(user_id), transport="ws")
                    forwarder = asyncio.create_task(_forward_events(websocket, queue))
                else:
                    hub.set_user(conn_id, str(user_id))
                await websocket.send_text(encode_frame("subscribed", {"userId": str(user_id)}))

            elif event in _PRODUCER_EVENTS:
                signature = json.loads(raw).get("signature")
                if not verify_signature(serialize_payload(data), signature, secret):
                    logger.warning("Rejected unsigned %s frame on /ws/orders", event)
                    await _send_error(websocket, "Invalid signature")
                    continue
                delivered = hub.broadcast(data, user_id=_producer_target(data))
                await websocket.send_text(encode_frame("ack", {"delivered": delivered}))

            else:
                await _send_error(websocket, f"Unknown event: {event}")
    except WebSocketDisconnect:
        logger.debug("Order socket closed")
    finally:
        if forwarder is not None:
            forwarder.cancel()
        if conn_id is not None:
            hub.unsubscribe(conn_id)
