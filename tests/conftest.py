"""Shared fixtures for the storefront test suite."""

from __future__ import annotations

import fnmatch
from typing import Any

import pytest

from storefront.models import (
    LineItem,
    Order,
    OrderStatus,
    PaymentMethod,
    Product,
    ShippingDetails,
)
from storefront.notifications.events import LocalEventBus, OrderEventHub


class MemoryRedis:
    """The slice of the redis-py client the bank transfer service uses."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def scan_iter(self, match: str = "*"):
        return iter([k for k in list(self.data) if fnmatch.fnmatch(k, match)])


@pytest.fixture()
def memory_redis() -> MemoryRedis:
    return MemoryRedis()


@pytest.fixture()
def shipping() -> ShippingDetails:
    return ShippingDetails(
        full_name="Ada Obi",
        email="ada@example.com",
        phone="08030000000",
        address="12 Allen Avenue",
        city="Ikeja",
        state="Lagos",
    )


@pytest.fixture()
def line_items() -> list[LineItem]:
    return [
        LineItem(product_id="p-1", name="Cordless Drill", price=25.99, quantity=2),
        LineItem(product_id="p-2", name="Tape Measure", price=10.00, quantity=1),
    ]


@pytest.fixture()
def order(line_items, shipping) -> Order:
    return Order(
        order_id="ORD-123456-0001",
        items=line_items,
        shipping=shipping,
        payment_method=PaymentMethod.BANK_TRANSFER,
        total=round(2 * 25.99 + 10.00 + 3500, 2),
        shipping_fee=3500.0,
        status=OrderStatus.PENDING,
        created_at="2026-10-17T14:05:00Z",
        user_id="user-1",
    )


@pytest.fixture()
def order_dict(order: Order) -> dict[str, Any]:
    return order.to_dict()


@pytest.fixture()
def products() -> list[Product]:
    return [
        Product(id="p-1", name="Cordless Drill", price=25.99, category="Power Tools", stock=4),
        Product(id="p-2", name="Tape Measure", price=10.00, category="Hand Tools", stock=0),
    ]


@pytest.fixture()
def event_bus() -> LocalEventBus:
    return LocalEventBus()


@pytest.fixture()
def event_hub() -> OrderEventHub:
    return OrderEventHub()


class RecordingSleep:
    """Stands in for asyncio.sleep; records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture()
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()
