"""Order domain model.

Wire format is camelCase JSON (``orderId``, ``shippingDetails`` ...), the
shape the inventory app and the browser checkout already exchange.
"""

from __future__ import annotations

import random
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from storefront.errors import OrderValidationError


class OrderStatus(str, Enum):
    """Order lifecycle. Orders are never deleted, only moved along."""
    PENDING = "pending"
    PROCESSING = "processing"
    FULFILLED = "fulfilled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """Checkout payment methods. Card is listed but disabled."""
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    PAY_ON_DELIVERY = "pay_on_delivery"
    PAY_ON_PICKUP = "pay_on_pickup"

    @classmethod
    def _missing_(cls, value: object) -> PaymentMethod | None:
        # Older checkout builds send "pay_at_pickup"
        if value == "pay_at_pickup":
            return cls.PAY_ON_PICKUP
        return None

    @property
    def enabled(self) -> bool:
        return self is not PaymentMethod.CARD


class EventKind(str, Enum):
    """Order notification kinds."""
    NEW_ORDER = "new_order"
    ORDER_STATUS_UPDATE = "order_status_update"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Order ids
# ---------------------------------------------------------------------------

_recent_order_ids: deque[str] = deque(maxlen=10_000)


def generate_order_id() -> str:
    """ORD-<last 6 digits of epoch ms>-<4 random digits>, unique per process."""
    while True:
        stamp = str(int(time.time() * 1000))[-6:]
        order_id = f"ORD-{stamp}-{random.randint(0, 9999):04d}"
        if order_id not in _recent_order_ids:
            _recent_order_ids.append(order_id)
            return order_id


# ---------------------------------------------------------------------------
# Line items / shipping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineItem:
    """A product line attached to an order. Immutable once created."""

    product_id: str
    name: str
    price: float
    quantity: int = 1
    image_url: str | None = None

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise OrderValidationError(
                f"Quantity for {self.product_id or self.name!r} must be at least 1"
            )
        if self.price < 0:
            raise OrderValidationError(f"Price for {self.product_id!r} cannot be negative")

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "productId": self.product_id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
        }
        if self.image_url:
            data["imageUrl"] = self.image_url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        if not isinstance(data, dict):
            raise OrderValidationError("Invalid line item: expected an object")
        try:
            return cls(
                product_id=str(data.get("productId") or data.get("id") or ""),
                name=str(data.get("name", "")),
                price=float(data.get("price", 0)),
                quantity=int(data.get("quantity", 1)),
                image_url=data.get("imageUrl") or None,
            )
        except (TypeError, ValueError) as exc:
            raise OrderValidationError(f"Invalid line item: {exc}") from exc


@dataclass
class ShippingDetails:
    """Customer contact and delivery address."""

    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    lga: str = ""
    town: str = ""
    zip: str = ""
    additional_info: str = ""

    _WIRE_KEYS = {
        "full_name": "fullName",
        "email": "email",
        "phone": "phone",
        "address": "address",
        "city": "city",
        "state": "state",
        "lga": "lga",
        "town": "town",
        "zip": "zip",
        "additional_info": "additionalInfo",
    }

    def to_dict(self) -> dict[str, str]:
        return {wire: getattr(self, attr) for attr, wire in self._WIRE_KEYS.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShippingDetails:
        return cls(**{
            attr: str(data.get(wire) or "")
            for attr, wire in cls._WIRE_KEYS.items()
        })


def compute_total(items: list[LineItem], shipping_fee: float) -> float:
    """Subtotal of all lines plus shipping, rounded to 2 decimals."""
    return round(sum(item.line_total for item in items) + shipping_fee, 2)


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


@dataclass
class Order:
    """A placed order. Mutated only by status updates."""

    order_id: str
    items: list[LineItem]
    shipping: ShippingDetails
    payment_method: PaymentMethod
    total: float
    shipping_fee: float = 0.0
    status: OrderStatus = OrderStatus.PENDING
    created_at: str = field(default_factory=utcnow_iso)
    user_id: str = "guest"
    currency: str = "NGN"

    @property
    def subtotal(self) -> float:
        return round(sum(item.line_total for item in self.items), 2)

    @property
    def is_guest(self) -> bool:
        return self.user_id == "guest"

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "userId": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "shippingDetails": self.shipping.to_dict(),
            "paymentMethod": self.payment_method.value,
            "shippingFee": self.shipping_fee,
            "total": self.total,
            "currency": self.currency,
            "status": self.status.value,
            "orderDate": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Order:
        try:
            return cls(
                order_id=str(data["orderId"]),
                items=[LineItem.from_dict(i) for i in data.get("items", [])],
                shipping=ShippingDetails.from_dict(data.get("shippingDetails") or {}),
                payment_method=PaymentMethod(data.get("paymentMethod", "pay_on_delivery")),
                total=float(data.get("total", 0)),
                shipping_fee=float(data.get("shippingFee", 0)),
                status=OrderStatus(str(data.get("status", "pending")).lower()),
                created_at=data.get("orderDate") or utcnow_iso(),
                user_id=data.get("userId") or "guest",
                currency=data.get("currency") or "NGN",
            )
        except (KeyError, ValueError) as exc:
            raise OrderValidationError(f"Invalid order record: {exc}") from exc


# ---------------------------------------------------------------------------
# Notification events
# ---------------------------------------------------------------------------


@dataclass
class NotificationEvent:
    """An order event in flight. Never persisted."""

    kind: EventKind
    payload: dict[str, Any]
    timestamp: str = field(default_factory=utcnow_iso)

    def to_payload(self) -> dict[str, Any]:
        return {
            "event": self.kind.value,
            "timestamp": self.timestamp,
            "data": self.payload,
        }


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


@dataclass
class Product:
    """A catalog product as listed on the storefront."""

    id: str
    name: str
    price: float
    description: str = ""
    category: str = ""
    image_url: str = ""
    stock: int = 0

    @property
    def in_stock(self) -> bool:
        return self.stock > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "category": self.category,
            "imageUrl": self.image_url,
            "stock": self.stock,
            "inStock": self.in_stock,
        }

    @classmethod
    def from_row(cls, row: list[Any]) -> Product:
        """Build from a sheet row: id, name, description, price, category, imageUrl, stock."""
        cells = [str(cell).strip() if cell is not None else "" for cell in row]
        cells += [""] * (7 - len(cells))
        return cls(
            id=cells[0],
            name=cells[1],
            description=cells[2],
            price=_to_float(cells[3]),
            category=cells[4],
            image_url=cells[5],
            stock=int(_to_float(cells[6])),
        )


def _to_float(value: Any) -> float:
    try:
        return float(str(value).replace(",", ""))
    except (TypeError, ValueError):
        return 0.0
