"""Bank transfer payment routes.

Security contract:
- Inbound transfer notices (POST /webhooks/bank-transfer) must carry an
  X-Webhook-Signature over the raw body, keyed by bank_transfer_secret
  (falls back to webhook_secret)
- Invalid signature -> 401 with no details
- A confirmed transfer moves the order to processing exactly once;
  duplicate notices are acknowledged without a second status change
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from storefront.api.auth import optional_user
from storefront.api.routes.orders import check_order_access
from storefront.api.services import Services, get_services
from storefront.errors import OrderValidationError
from storefront.models import OrderStatus
from storefront.webhooks.signing import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/api/payments/bank-transfer")
async def create_bank_transfer(
    request: Request,
    claims: dict[str, Any] | None = Depends(optional_user),
    services: Services = Depends(get_services),
):
    """Issue a transfer reference and the account to pay into."""
    body = await request.json()
    order_id = body.get("orderId") if isinstance(body, dict) else None
    if not order_id:
        raise OrderValidationError("orderId is required")

    order = await services.orders.get(order_id)
    check_order_access(order, claims)
    details = services.bank_transfers.create_request(
        order.order_id,
        order.total,
        customer=order.shipping,
        customer_id=None if order.is_guest else order.user_id,
    )
    return JSONResponse(details, status_code=201)


@router.get("/api/payments/bank-transfer/{reference}")
async def bank_transfer_status(reference: str, services: Services = Depends(get_services)):
    return services.bank_transfers.check_status(reference)


@router.post("/webhooks/bank-transfer")
async def bank_transfer_webhook(request: Request, services: Services = Depends(get_services)):
    """Inbound transfer notice from the bank."""
    body = await request.body()
    secret = services.settings.bank_transfer_secret or services.settings.webhook_secret
    if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning("Rejected bank transfer notice with invalid signature")
        return JSONResponse({"error": "Invalid signature"}, status_code=401)

    payload = await request.json()
    if not isinstance(payload, dict):
        raise OrderValidationError("Request body must be a JSON object")
    narration = str(payload.get("narration") or payload.get("description") or "")
    order_id = services.bank_transfers.handle_transfer_notification(
        narration, payload.get("amount")
    )
    if order_id is None:
        return {"success": True, "matched": False}

    order = await services.orders.get(order_id)
    if order.status is OrderStatus.PENDING:
        await services.orders.update_status(order_id, OrderStatus.PROCESSING)
        await services.dispatcher.send_status_update_notification({
            "orderId": order_id,
            "userId": order.user_id,
            "status": OrderStatus.PROCESSING.value,
            "previousStatus": OrderStatus.PENDING.value,
            "paymentMethod": order.payment_method.value,
        })
    return {"success": True, "matched": True, "orderId": order_id}
