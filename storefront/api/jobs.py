"""Background jobs run from the API lifespan.

expire_stale_transfers() is the bank transfer sweep: requests past their
validity are marked expired and their still-pending orders are cancelled,
with a status update sent through the notification dispatcher.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import redis

from storefront.api.services import Services
from storefront.errors import OrderNotFound, StorefrontError
from storefront.models import OrderStatus
from storefront.notifications.dispatcher import format_order_notification

logger = logging.getLogger(__name__)

EXPIRED_TRANSFER_REASON = "Bank transfer window expired"


async def expire_stale_transfers(services: Services) -> list[str]:
    """Cancel pending orders whose bank transfer expired. Returns their ids."""
    cancelled: list[str] = []
    for order_id in services.bank_transfers.expire_stale():
        try:
            order = await services.orders.get(order_id)
        except OrderNotFound:
            logger.warning("Expired transfer points at unknown order %s", order_id)
            continue
        if order.status is not OrderStatus.PENDING:
            continue

        order = await services.orders.update_status(order_id, OrderStatus.CANCELLED)
        await services.dispatcher.send_status_update_notification({
            "orderId": order.order_id,
            "userId": order.user_id,
            "status": OrderStatus.CANCELLED.value,
            "previousStatus": OrderStatus.PENDING.value,
            "reason": EXPIRED_TRANSFER_REASON,
            "summary": format_order_notification(order),
        })
        cancelled.append(order_id)
    return cancelled


async def run_transfer_sweeps(
    services: Services,
    interval: float,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Run expire_stale_transfers() every ``interval`` seconds until cancelled."""
    while True:
        await sleep(interval)
        try:
            cancelled = await expire_stale_transfers(services)
        except (redis.RedisError, StorefrontError):
            logger.warning("Bank transfer expiry sweep failed", exc_info=True)
            continue
        if cancelled:
            logger.info(
                "Transfer sweep complete: %d order(s) cancelled (%s)",
                len(cancelled),
                ", ".join(cancelled),
            )
