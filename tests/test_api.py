"""Tests for the storefront HTTP API.

Tests:
- Order placement (guest and customer), validation errors, inventory forward
- Order access: owner, admin, other customer (403), unknown (404)
- Signed status updates and cancellation
- SSE event stream and the /ws/orders socket, including subscriber authentication
- Products and share cards
- Bank transfer requests and the signed bank notification webhook
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import httpx
import pytest
from fastapi.testclient import TestClient

from storefront.api.app import create_app
from storefront.api.auth import create_access_token
from storefront.api.middleware import limiter
from storefront.api.routes.notifications import order_event_stream
from storefront.api.services import Services
from storefront.checkout.bank_transfer import BankTransferService
from storefront.config import Settings
from storefront.models import EventKind, OrderStatus
from storefront.notifications.dispatcher import NotificationDispatcher
from storefront.notifications.realtime import encode_frame
from storefront.receipts.mailer import OrderMailer
from storefront.storage.memory import MemoryOrderStore, MemoryProductCatalog
from storefront.webhooks.signing import SIGNATURE_HEADER, serialize_payload, sign

TEST_SECRET = "test-webhook-secret"
INVENTORY_URL = "http://inventory.test/api/orders/receive-webhook"


class Inventory:
    """MockTransport handler standing in for the inventory app."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(200, json={"received": True})


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture()
def inventory() -> Inventory:
    return Inventory()


@pytest.fixture()
def services(products, event_bus, event_hub, memory_redis, inventory) -> Services:
    cfg = Settings(
        webhook_secret=TEST_SECRET,
        inventory_webhook_url=INVENTORY_URL,
        bank_transfer_secret="",
        notification_webhook_url="",
        site_url="https://shop.test",
    )
    return Services(
        settings=cfg,
        orders=MemoryOrderStore(),
        catalog=MemoryProductCatalog(products),
        dispatcher=NotificationDispatcher(local_bus=event_bus, event_hub=event_hub),
        mailer=OrderMailer(smtp_host="", smtp_user=""),
        bank_transfers=BankTransferService(memory_redis, account_number="0123456789"),
        hub=event_hub,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(inventory)),
    )


@pytest.fixture()
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def _seed(services: Services, order) -> None:
    asyncio.run(services.orders.add(order))


def _stored(services: Services, order_id: str):
    return asyncio.run(services.orders.get(order_id))


def _auth(user_id: str = "user-1", role: str = "customer") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}


def _signed(payload: dict, secret: str = TEST_SECRET) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    return body, {SIGNATURE_HEADER: sign(body, secret), "Content-Type": "application/json"}


def _order_body(shipping, **overrides) -> dict:
    body = {
        "items": [
            {"productId": "p-1", "name": "Cordless Drill", "price": 25.99, "quantity": 2},
            {"productId": "p-2", "name": "Tape Measure", "price": 10.00, "quantity": 1},
        ],
        "shippingDetails": shipping.to_dict(),
        "paymentMethod": "bank_transfer",
        "shippingFee": 3500,
    }
    body.update(overrides)
    return body


# ── Placement ──────────────────────────────────────────────────────────────


class TestCreateOrder:
    def test_guest_order(self, client, services, shipping, inventory):
        resp = client.post("/api/orders", json=_order_body(shipping))

        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        order = _stored(services, body["orderId"])
        assert order.user_id == "guest"
        assert order.status is OrderStatus.PENDING
        assert order.total == round(2 * 25.99 + 10.00 + 3500, 2)

        assert len(inventory.requests) == 1
        sent = inventory.requests[0]
        assert str(sent.url) == INVENTORY_URL
        assert sent.headers[SIGNATURE_HEADER].startswith("sha256=")

    def test_total_recomputed(self, client, services, shipping):
        resp = client.post("/api/orders", json=_order_body(shipping, total=1))
        order = _stored(services, resp.json()["orderId"])
        assert order.total == 3561.98

    def test_customer_order(self, client, services, shipping):
        resp = client.post("/api/orders", json=_order_body(shipping), headers=_auth("user-7"))
        assert _stored(services, resp.json()["orderId"]).user_id == "user-7"

    def test_invalid_token_rejected(self, client, shipping):
        resp = client.post(
            "/api/orders",
            json=_order_body(shipping),
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert resp.status_code == 401

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"items": []}, "Order must contain at least one item"),
            ({"shippingDetails": {}}, "Shipping details are required"),
            ({"paymentMethod": "card"}, "Payment method card is not available"),
            ({"items": ["p-1"]}, "Invalid line item: expected an object"),
            ({"shippingFee": -3500}, "shippingFee must be a non-negative number"),
        ],
    )
    def test_rejected(self, client, services, shipping, overrides, message):
        resp = client.post("/api/orders", json=_order_body(shipping, **overrides))
        assert resp.status_code == 400
        assert resp.json() == {"error": message}
        assert len(services.orders) == 0

    @pytest.mark.parametrize("fee", [[3500], {"amount": 3500}, "free"])
    def test_malformed_shipping_fee(self, client, services, shipping, fee):
        resp = client.post("/api/orders", json=_order_body(shipping, shippingFee=fee))
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Invalid order")
        assert len(services.orders) == 0

    def test_unknown_payment_method(self, client, shipping):
        resp = client.post("/api/orders", json=_order_body(shipping, paymentMethod="crypto"))
        assert resp.status_code == 400

    def test_non_object_body(self, client):
        resp = client.post("/api/orders", json=["not", "an", "order"])
        assert resp.status_code == 400

    def test_price_validation_when_enabled(self, client, services, shipping):
        services.settings.validate_prices = True
        resp = client.post("/api/orders", json=_order_body(shipping))
        assert resp.status_code == 400
        assert "Only 0 of Tape Measure in stock" in resp.json()["error"]


# ── Lookup ─────────────────────────────────────────────────────────────────


class TestOrderAccess:
    def test_owner_reads_order(self, client, services, order):
        _seed(services, order)
        resp = client.get(f"/api/orders/{order.order_id}", headers=_auth("user-1"))
        assert resp.status_code == 200
        assert resp.json()["orderId"] == order.order_id

    def test_other_customer_forbidden(self, client, services, order):
        _seed(services, order)
        resp = client.get(f"/api/orders/{order.order_id}", headers=_auth("user-2"))
        assert resp.status_code == 403

    def test_anonymous_forbidden_on_customer_order(self, client, services, order):
        _seed(services, order)
        assert client.get(f"/api/orders/{order.order_id}").status_code == 403

    def test_admin_reads_any_order(self, client, services, order):
        _seed(services, order)
        resp = client.get(f"/api/orders/{order.order_id}", headers=_auth("ops", role="admin"))
        assert resp.status_code == 200

    def test_guest_order_readable_by_id(self, client, services, order):
        _seed(services, replace(order, user_id="guest"))
        assert client.get(f"/api/orders/{order.order_id}").status_code == 200

    def test_unknown_order(self, client):
        resp = client.get("/api/orders/ORD-000000-0000")
        assert resp.status_code == 404
        assert "not found" in resp.json()["error"]

    def test_list_requires_token(self, client):
        resp = client.get("/api/orders")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_list_own_orders(self, client, services, order):
        _seed(services, order)
        _seed(services, replace(order, order_id="ORD-2", user_id="user-2"))
        resp = client.get("/api/orders", headers=_auth("user-1"))
        assert [o["orderId"] for o in resp.json()["orders"]] == [order.order_id]


# ── Status changes ─────────────────────────────────────────────────────────


class TestUpdateStatus:
    def test_invalid_signature(self, client, services, order):
        _seed(services, order)
        body, headers = _signed({"orderId": order.order_id, "newStatus": "shipped"}, "wrong")
        resp = client.post("/api/orders/update-status", content=body, headers=headers)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid signature"}
        assert _stored(services, order.order_id).status is OrderStatus.PENDING

    def test_missing_signature(self, client, services, order):
        _seed(services, order)
        resp = client.post(
            "/api/orders/update-status",
            json={"orderId": order.order_id, "newStatus": "shipped"},
        )
        assert resp.status_code == 401

    def test_signed_update_applies(self, client, services, order, event_bus):
        _seed(services, order)
        seen = []
        event_bus.subscribe(EventKind.ORDER_STATUS_UPDATE, seen.append)

        body, headers = _signed({"orderId": order.order_id, "newStatus": "SHIPPED"})
        resp = client.post("/api/orders/update-status", content=body, headers=headers)

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "message": "Order status updated to shipped",
            "orderId": order.order_id,
            "newStatus": "shipped",
        }
        assert _stored(services, order.order_id).status is OrderStatus.SHIPPED
        assert seen[0]["data"]["previousStatus"] == "pending"
        assert seen[0]["data"]["userId"] == "user-1"

    def test_missing_fields(self, client):
        body, headers = _signed({"orderId": "ORD-1"})
        resp = client.post("/api/orders/update-status", content=body, headers=headers)
        assert resp.status_code == 400

    def test_unknown_status(self, client, services, order):
        _seed(services, order)
        body, headers = _signed({"orderId": order.order_id, "newStatus": "lost"})
        resp = client.post("/api/orders/update-status", content=body, headers=headers)
        assert resp.status_code == 400


class TestCancel:
    def test_cancel_pending(self, client, services, order):
        _seed(services, order)
        resp = client.post(f"/api/orders/{order.order_id}/cancel", headers=_auth("user-1"))
        assert resp.json() == {"success": True, "orderId": order.order_id, "status": "cancelled"}
        assert _stored(services, order.order_id).status is OrderStatus.CANCELLED

    def test_shipped_order_not_cancellable(self, client, services, order):
        _seed(services, replace(order, status=OrderStatus.SHIPPED))
        resp = client.post(f"/api/orders/{order.order_id}/cancel", headers=_auth("user-1"))
        assert resp.status_code == 400

    def test_other_customer_cannot_cancel(self, client, services, order):
        _seed(services, order)
        resp = client.post(f"/api/orders/{order.order_id}/cancel", headers=_auth("user-2"))
        assert resp.status_code == 403


class TestResendWebhook:
    def test_requires_token(self, client, services, order):
        _seed(services, order)
        resp = client.post("/api/orders/webhook", json={"orderId": order.order_id})
        assert resp.status_code == 401

    def test_resend(self, client, services, order, inventory):
        _seed(services, order)
        resp = client.post(
            "/api/orders/webhook", json={"orderId": order.order_id}, headers=_auth("user-1")
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        sent = json.loads(inventory.requests[0].content)
        assert sent["event"] == "new_order"
        assert sent["data"]["orderId"] == order.order_id


# ── Realtime ───────────────────────────────────────────────────────────────


def _sse_data(frame: str) -> dict:
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])


class TestEventStream:
    @pytest.mark.asyncio
    async def test_connected_event_then_user_events(self, event_hub):
        stream = order_event_stream(event_hub, "user-1", heartbeat=5)
        assert _sse_data(await stream.__anext__())["type"] == "connected"

        event_hub.broadcast({"event": "order_status_update", "n": 1}, user_id="user-2")
        event_hub.broadcast({"event": "order_status_update", "n": 2}, user_id="user-1")
        assert _sse_data(await stream.__anext__())["n"] == 2

        await stream.aclose()
        assert event_hub.connection_count == 0

    @pytest.mark.asyncio
    async def test_heartbeat_when_idle(self, event_hub):
        stream = order_event_stream(event_hub, None, heartbeat=0.01)
        await stream.__anext__()
        frame = _sse_data(await stream.__anext__())
        assert frame["type"] == "heartbeat"
        assert isinstance(frame["timestamp"], int)
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_stops_on_disconnect(self, event_hub):
        async def disconnected():
            return True

        stream = order_event_stream(event_hub, None, is_disconnected=disconnected)
        frames = [frame async for frame in stream]
        assert len(frames) == 1
        assert event_hub.connection_count == 0

    def test_stream_requires_token(self, client):
        assert client.get("/api/orders/notifications").status_code == 401


class TestOrderSocket:
    def _producer_payload(self) -> dict:
        return {
            "event": "order_status_update",
            "data": {"orderId": "ORD-1", "userId": "user-1", "status": "shipped"},
        }

    def test_subscriber_receives_signed_producer_event(self, client):
        payload = self._producer_payload()
        token = create_access_token("user-1")
        with client.websocket_connect(f"/ws/orders?token={token}") as subscriber:
            subscriber.send_text(encode_frame("subscribe-user-orders", "user-1"))
            assert subscriber.receive_json() == {
                "event": "subscribed",
                "data": {"userId": "user-1"},
            }

            with client.websocket_connect("/ws/orders") as producer:
                signature = sign(serialize_payload(payload), TEST_SECRET)
                producer.send_text(encode_frame("order_status_update", payload, signature))
                assert producer.receive_json() == {"event": "ack", "data": {"delivered": 1}}

            assert subscriber.receive_json() == {"event": "order-status-updated", "data": payload}

    def test_unsigned_producer_frame_refused(self, client):
        with client.websocket_connect("/ws/orders") as producer:
            producer.send_text(encode_frame("new_order", self._producer_payload()))
            assert producer.receive_json() == {
                "event": "error",
                "data": {"message": "Invalid signature"},
            }

    def test_subscribe_with_object_payload(self, client):
        with client.websocket_connect("/ws/orders", headers=_auth("user-9")) as ws:
            ws.send_text(encode_frame("subscribe-user-orders", {"userId": "user-9"}))
            assert ws.receive_json()["data"] == {"userId": "user-9"}

    def test_malformed_and_unknown_frames(self, client):
        with client.websocket_connect("/ws/orders") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["event"] == "error"
            ws.send_text(encode_frame("dance", {}))
            assert ws.receive_json()["data"] == {"message": "Unknown event: dance"}
            ws.send_text(encode_frame("subscribe-user-orders", ""))
            assert ws.receive_json()["data"] == {"message": "userId required"}

    def test_anonymous_subscribe_refused(self, client, event_hub):
        with client.websocket_connect("/ws/orders") as ws:
            ws.send_text(encode_frame("subscribe-user-orders", "user-1"))
            assert ws.receive_json() == {
                "event": "error",
                "data": {"message": "Authentication required"},
            }
            assert event_hub.connection_count == 0

    def test_other_users_orders_refused(self, client, event_hub):
        token = create_access_token("user-2")
        with client.websocket_connect(f"/ws/orders?token={token}") as ws:
            ws.send_text(encode_frame("subscribe-user-orders", {"userId": "user-1"}))
            assert ws.receive_json()["data"] == {
                "message": "You do not have access to these orders"
            }
            assert event_hub.connection_count == 0

    def test_admin_may_follow_any_user(self, client):
        with client.websocket_connect("/ws/orders", headers=_auth("ops", role="admin")) as ws:
            ws.send_text(encode_frame("subscribe-user-orders", "user-1"))
            assert ws.receive_json() == {"event": "subscribed", "data": {"userId": "user-1"}}

    def test_bad_token_treated_as_anonymous(self, client):
        with client.websocket_connect("/ws/orders?token=not-a-jwt") as ws:
            ws.send_text(encode_frame("subscribe-user-orders", "user-1"))
            assert ws.receive_json()["data"] == {"message": "Authentication required"}


# ── Products ───────────────────────────────────────────────────────────────


class TestProducts:
    def test_list_and_filter(self, client):
        assert len(client.get("/api/products").json()["products"]) == 2
        filtered = client.get("/api/products", params={"category": "hand tools"}).json()
        assert [p["id"] for p in filtered["products"]] == ["p-2"]

    def test_unknown_product(self, client):
        assert client.get("/api/products/p-404").status_code == 404

    def test_share_card_json_for_browsers(self, client):
        resp = client.get("/api/social-meta/product/p-1")
        assert resp.json()["url"] == "https://shop.test/product/p-1"

    def test_share_card_html_for_crawlers(self, client):
        resp = client.get(
            "/api/social-meta/product/p-1", headers={"User-Agent": "Twitterbot/1.0"}
        )
        assert resp.headers["content-type"].startswith("text/html")
        assert 'property="og:url" content="https://shop.test/product/p-1"' in resp.text

    def test_store_card(self, client):
        resp = client.get("/api/social-meta/store", headers={"User-Agent": "WhatsApp/2.0"})
        assert "og-image-store.jpg" in resp.text


# ── Bank transfer ──────────────────────────────────────────────────────────


class TestBankTransfer:
    def _request_transfer(self, client, services, order) -> dict:
        _seed(services, replace(order, user_id="guest"))
        resp = client.post("/api/payments/bank-transfer", json={"orderId": order.order_id})
        assert resp.status_code == 201
        return resp.json()

    def test_create_and_status(self, client, services, order):
        details = self._request_transfer(client, services, order)
        assert details["accountNumber"] == "0123456789"
        assert details["amount"] == 3561.98

        status = client.get(f"/api/payments/bank-transfer/{details['reference']}").json()
        assert status["status"] == "pending"
        assert status["orderId"] == order.order_id

    def test_unknown_reference(self, client):
        assert client.get("/api/payments/bank-transfer/TRF-000000-00000000").status_code == 404

    def test_customer_order_needs_owner(self, client, services, order):
        _seed(services, order)
        resp = client.post("/api/payments/bank-transfer", json={"orderId": order.order_id})
        assert resp.status_code == 403

    def test_invalid_signature(self, client, services, order):
        details = self._request_transfer(client, services, order)
        body, headers = _signed(
            {"narration": details["reference"], "amount": 3561.98}, secret="wrong"
        )
        resp = client.post("/webhooks/bank-transfer", content=body, headers=headers)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid signature"}

    def test_matching_transfer_moves_order_to_processing(self, client, services, order, event_hub):
        details = self._request_transfer(client, services, order)
        body, headers = _signed(
            {"narration": f"TRANSFER {details['reference']}", "amount": "3561.98"}
        )

        resp = client.post("/webhooks/bank-transfer", content=body, headers=headers)

        assert resp.json() == {"success": True, "matched": True, "orderId": order.order_id}
        assert _stored(services, order.order_id).status is OrderStatus.PROCESSING

        # duplicate notice is acknowledged without another change
        resp = client.post("/webhooks/bank-transfer", content=body, headers=headers)
        assert resp.json()["matched"] is True
        assert _stored(services, order.order_id).status is OrderStatus.PROCESSING

    def test_unmatched_transfer(self, client):
        body, headers = _signed({"description": "rent", "amount": 100})
        resp = client.post("/webhooks/bank-transfer", content=body, headers=headers)
        assert resp.json() == {"success": True, "matched": False}


# ── Health ─────────────────────────────────────────────────────────────────


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "realtimeConnections": 0}
