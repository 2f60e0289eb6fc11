"""Server-side re-validation of cart lines against the catalog."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from storefront.errors import OrderValidationError, ProductNotFound
from storefront.models import LineItem
from storefront.storage.base import ProductCatalog

logger = logging.getLogger(__name__)

# Prices within half a kobo are considered equal
_PRICE_TOLERANCE = 0.005


def price_validator(catalog: ProductCatalog) -> Callable[[list[LineItem]], Awaitable[None]]:
    """Hook rejecting lines whose price or quantity disagrees with the catalog."""

    async def validate(items: list[LineItem]) -> None:
        problems = []
        for item in items:
            try:
                product = await catalog.get_product(item.product_id)
            except ProductNotFound:
                problems.append(f"{item.name or item.product_id} is no longer available")
                continue
            if abs(product.price - item.price) > _PRICE_TOLERANCE:
                problems.append(f"Price of {product.name} changed to {product.price:.2f}")
            if item.quantity > product.stock:
                problems.append(f"Only {product.stock} of {product.name} in stock")
        if problems:
            logger.info("Cart failed catalog validation: %s", "; ".join(problems))
            raise OrderValidationError("; ".join(problems))

    return validate
