"""Storage protocols for orders and products."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from storefront.models import Order, OrderStatus, Product


@runtime_checkable
class OrderStore(Protocol):
    """Persistence for placed orders. Orders are never deleted."""

    async def add(self, order: Order) -> Order:
        ...

    async def get(self, order_id: str) -> Order:
        """Raises OrderNotFound."""
        ...

    async def list_for_user(self, user_id: str) -> list[Order]:
        ...

    async def update_status(self, order_id: str, status: OrderStatus) -> Order:
        """Raises OrderNotFound."""
        ...


@runtime_checkable
class ProductCatalog(Protocol):
    """Read-only product listing."""

    async def list_products(self) -> list[Product]:
        ...

    async def get_product(self, product_id: str) -> Product:
        """Raises ProductNotFound."""
        ...
