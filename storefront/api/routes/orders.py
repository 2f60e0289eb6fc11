"""Order API routes — placement, lookup, status changes, cancellation.

Security contract:
- Guest orders (userId "guest") are readable by anyone holding the id
- Customer orders are readable only by their owner or an admin (403)
- update-status is called by the inventory backend and must carry a valid
  X-Webhook-Signature over the raw body (401, no details)
"""

import logging
import math
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from storefront.api.auth import GUEST_USER_ID, is_admin, optional_user, require_user
from storefront.api.middleware import limiter
from storefront.api.services import Services, get_services
from storefront.catalog.pricing import price_validator
from storefront.config import settings
from storefront.errors import OrderAccessDenied, OrderValidationError
from storefront.models import (
    LineItem,
    Order,
    OrderStatus,
    PaymentMethod,
    ShippingDetails,
    compute_total,
    generate_order_id,
    utcnow_iso,
)
from storefront.receipts.mailer import STATUS_MESSAGES
from storefront.webhooks.sender import send_order_webhook
from storefront.webhooks.signing import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

CANCELLABLE = (OrderStatus.PENDING, OrderStatus.PROCESSING)


def check_order_access(order: Order, claims: dict[str, Any] | None) -> None:
    """Raise OrderAccessDenied unless the caller may see ``order``."""
    if order.is_guest or is_admin(claims):
        return
    if claims is None or claims.get("sub") != order.user_id:
        raise OrderAccessDenied("You do not have access to this order")


def _parse_order(body: dict[str, Any], user_id: str) -> Order:
    raw_items = body.get("items") or []
    shipping = body.get("shippingDetails")
    if not isinstance(raw_items, list) or not raw_items:
        raise OrderValidationError("Order must contain at least one item")
    if not isinstance(shipping, dict) or not shipping:
        raise OrderValidationError("Shipping details are required")

    try:
        method = PaymentMethod(body.get("paymentMethod") or PaymentMethod.PAY_ON_DELIVERY.value)
        shipping_fee = round(float(body.get("shippingFee") or 0), 2)
    except (TypeError, ValueError) as exc:
        raise OrderValidationError(f"Invalid order: {exc}") from exc
    if not math.isfinite(shipping_fee) or shipping_fee < 0:
        raise OrderValidationError("shippingFee must be a non-negative number")
    if not method.enabled:
        raise OrderValidationError(f"Payment method {method.value} is not available")

    items = [LineItem.from_dict(item) for item in raw_items]
    return Order(
        order_id=generate_order_id(),
        items=items,
        shipping=ShippingDetails.from_dict(shipping),
        payment_method=method,
        total=compute_total(items, shipping_fee),
        shipping_fee=shipping_fee,
        status=OrderStatus.PENDING,
        created_at=body.get("orderDate") or utcnow_iso(),
        user_id=user_id,
    )


async def _forward_to_inventory(services: Services, order: Order) -> None:
    result = await send_order_webhook(
        order,
        url=services.settings.inventory_webhook_url,
        secret=services.settings.webhook_secret,
        timeout=services.settings.webhook_timeout_seconds,
        client=services.http_client,
    )
    if not result.success:
        logger.warning("Order %s not forwarded to inventory: %s", order.order_id, result.error)


# ---------------------------------------------------------------------------
# Placement and lookup
# ---------------------------------------------------------------------------


@router.post("", status_code=201)
@limiter.limit(settings.order_rate_limit)
async def create_order(
    request: Request,
    background: BackgroundTasks,
    claims: dict[str, Any] | None = Depends(optional_user),
    services: Services = Depends(get_services),
):
    """Place an order for a guest or an authenticated customer."""
    try:
        body = await request.json()
    except ValueError as exc:
        raise OrderValidationError("Request body must be JSON") from exc
    if not isinstance(body, dict):
        raise OrderValidationError("Request body must be a JSON object")

    user_id = claims["sub"] if claims else GUEST_USER_ID
    order = _parse_order(body, user_id)
    if services.settings.validate_prices:
        await price_validator(services.catalog)(order.items)

    await services.orders.add(order)
    logger.info(
        "Order %s created for %s: %d item(s), total %.2f",
        order.order_id,
        user_id,
        len(order.items),
        order.total,
    )
    background.add_task(_forward_to_inventory, services, order)
    return JSONResponse({"success": True, "orderId": order.order_id}, status_code=201)


@router.get("")
async def list_orders(
    claims: dict[str, Any] = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Orders of the authenticated customer, newest first."""
    orders = await services.orders.list_for_user(claims["sub"])
    return {"orders": [order.to_dict() for order in orders]}


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    claims: dict[str, Any] | None = Depends(optional_user),
    services: Services = Depends(get_services),
):
    order = await services.orders.get(order_id)
    check_order_access(order, claims)
    return order.to_dict()


# ---------------------------------------------------------------------------
# Status changes
# ---------------------------------------------------------------------------


@router.post("/update-status")
async def update_status(request: Request, services: Services = Depends(get_services)):
    """Status change pushed by the inventory backend."""
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not verify_signature(body, signature, services.settings.webhook_secret):
        logger.warning("Rejected status update with invalid signature")
        return JSONResponse({"error": "Invalid signature"}, status_code=401)

    try:
        payload = await request.json()
    except ValueError as exc:
        raise OrderValidationError("Request body must be JSON") from exc
    order_id = payload.get("orderId") if isinstance(payload, dict) else None
    new_status = payload.get("newStatus") if isinstance(payload, dict) else None
    if not order_id or not new_status:
        raise OrderValidationError("orderId and newStatus are required")
    try:
        status = OrderStatus(str(new_status).lower())
    except ValueError as exc:
        raise OrderValidationError(f"Unknown order status: {new_status}") from exc

    previous = (await services.orders.get(order_id)).status
    order = await services.orders.update_status(order_id, status)

    if status in STATUS_MESSAGES and order.shipping.email:
        mail = await services.mailer.send_status_update(
            order.order_id, status, order.shipping.email, order.shipping.full_name
        )
        if not mail.success:
            logger.warning("Status email for %s not sent: %s", order_id, mail.error)

    await services.dispatcher.send_status_update_notification({
        "orderId": order.order_id,
        "userId": order.user_id,
        "status": status.value,
        "previousStatus": previous.value,
        "orderDetails": payload.get("orderDetails") or order.to_dict(),
    })
    return {
        "success": True,
        "message": f"Order status updated to {status.value}",
        "orderId": order.order_id,
        "newStatus": status.value,
    }


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    claims: dict[str, Any] | None = Depends(optional_user),
    services: Services = Depends(get_services),
):
    """Cancel a pending or processing order."""
    order = await services.orders.get(order_id)
    check_order_access(order, claims)
    if order.status not in CANCELLABLE:
        raise OrderValidationError(f"Order cannot be cancelled once {order.status.value}")

    previous = order.status
    order = await services.orders.update_status(order_id, OrderStatus.CANCELLED)
    await services.dispatcher.send_status_update_notification({
        "orderId": order.order_id,
        "userId": order.user_id,
        "status": OrderStatus.CANCELLED.value,
        "previousStatus": previous.value,
    })
    return {"success": True, "orderId": order.order_id, "status": order.status.value}


# ---------------------------------------------------------------------------
# Manual inventory webhook
# ---------------------------------------------------------------------------


@router.post("/webhook")
async def resend_order_webhook(
    request: Request,
    claims: dict[str, Any] = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Re-send an order to the inventory webhook."""
    body = await request.json()
    order_id = body.get("orderId") if isinstance(body, dict) else None
    if not order_id:
        raise OrderValidationError("orderId is required")

    order = await services.orders.get(order_id)
    check_order_access(order, claims)
    result = await send_order_webhook(
        order,
        url=services.settings.inventory_webhook_url,
        secret=services.settings.webhook_secret,
        timeout=services.settings.webhook_timeout_seconds,
        client=services.http_client,
    )
    return JSONResponse(result.as_dict(), status_code=200 if result.success else 502)
