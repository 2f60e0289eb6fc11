"""In-memory stores, used when no spreadsheet is configured (and in tests)."""

from __future__ import annotations

import copy
import logging
from typing import Iterable

from storefront.errors import OrderNotFound, ProductNotFound
from storefront.models import Order, OrderStatus, Product

logger = logging.getLogger(__name__)


class MemoryOrderStore:
    """Orders kept in a dict for the life of the process."""

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}

    async def add(self, order: Order) -> Order:
        self._orders[order.order_id] = copy.deepcopy(order)
        return order

    async def get(self, order_id: str) -> Order:
        try:
            return copy.deepcopy(self._orders[order_id])
        except KeyError:
            raise OrderNotFound(f"Order {order_id} not found") from None

    async def list_for_user(self, user_id: str) -> list[Order]:
        orders = [o for o in self._orders.values() if o.user_id == user_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return [copy.deepcopy(o) for o in orders]

    async def update_status(self, order_id: str, status: OrderStatus) -> Order:
        if order_id not in self._orders:
            raise OrderNotFound(f"Order {order_id} not found")
        self._orders[order_id].status = status
        logger.debug("Order %s -> %s", order_id, status.value)
        return copy.deepcopy(self._orders[order_id])

    def __len__(self) -> int:
        return len(self._orders)


class MemoryProductCatalog:
    """Fixed product list."""

    def __init__(self, products: Iterable[Product] = ()) -> None:
        self._products = {p.id: p for p in products}

    async def list_products(self) -> list[Product]:
        return list(self._products.values())

    async def get_product(self, product_id: str) -> Product:
        try:
            return self._products[product_id]
        except KeyError:
            raise ProductNotFound(f"Product {product_id} not found") from None
