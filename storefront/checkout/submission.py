"""Cart and order submission.

OrderSubmitter.submit() turns a cart, shipping details and the checkout
payment state into an order:

1. Presence checks (non-empty cart, shipping details, payment method) and
   the optional validation hook
2. Total = sum(price * quantity) + shipping fee, rounded to 2 decimals
3. POST /api/orders, read {orderId}
4. On success: clear the cart, dispatch a new_order notification, render
   the PDF receipt and email it (where configured)

Step 4 failures are logged and never undo the order. A failed POST raises
OrderSubmissionError and leaves the cart intact; nothing is resubmitted
automatically.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Iterator

import httpx

from storefront.checkout.payment import CheckoutPayment
from storefront.errors import OrderSubmissionError, OrderValidationError
from storefront.models import (
    LineItem,
    Order,
    OrderStatus,
    ShippingDetails,
    compute_total,
    utcnow_iso,
)
from storefront.notifications.dispatcher import NotificationDispatcher
from storefront.receipts.mailer import OrderMailer

logger = logging.getLogger(__name__)

ORDERS_PATH = "/api/orders"

ValidationHook = Callable[[list[LineItem]], "Awaitable[None] | None"]


class Cart:
    """Line items keyed by product id, in insertion order."""

    def __init__(self, items: Iterable[LineItem] | None = None) -> None:
        self._items: dict[str, LineItem] = {}
        for item in items or ():
            self.add(item)

    def add(self, item: LineItem) -> LineItem:
        """Add ``item``; an existing line for the same product gains its quantity."""
        existing = self._items.get(item.product_id)
        if existing is not None:
            item = LineItem(
                product_id=existing.product_id,
                name=existing.name,
                price=existing.price,
                quantity=existing.quantity + item.quantity,
                image_url=existing.image_url,
            )
        self._items[item.product_id] = item
        return item

    def update_quantity(self, product_id: str, quantity: int) -> None:
        """Set a line's quantity; anything below 1 removes the line."""
        existing = self._items.get(product_id)
        if existing is None:
            return
        if quantity < 1:
            self.remove(product_id)
            return
        self._items[product_id] = LineItem(
            product_id=existing.product_id,
            name=existing.name,
            price=existing.price,
            quantity=quantity,
            image_url=existing.image_url,
        )

    def remove(self, product_id: str) -> None:
        self._items.pop(product_id, None)

    def clear(self) -> None:
        self._items.clear()

    @property
    def items(self) -> list[LineItem]:
        return list(self._items.values())

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self._items.values())

    @property
    def subtotal(self) -> float:
        return round(sum(item.line_total for item in self._items.values()), 2)

    @property
    def is_empty(self) -> bool:
        return not self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[LineItem]:
        return iter(self.items)

    def to_list(self) -> list[dict[str, Any]]:
        return [item.to_dict() for item in self._items.values()]


class OrderSubmitter:
    """Submits checkout orders to the storefront API.

    Args:
        http: httpx client whose base_url points at the storefront API
        dispatcher: Notification fan-out for the new order (optional)
        mailer: Sends the confirmation email (optional)
        render_pdf: Builds the PDF receipt attached to the email (optional)
        validate: Extra check on the line items before submission, e.g.
            price and stock re-validation; raises OrderValidationError
        user_id: Customer id, ``"guest"`` for guest checkout
        auth_token: Bearer token for authenticated customers
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        dispatcher: NotificationDispatcher | None = None,
        mailer: OrderMailer | None = None,
        render_pdf: Callable[[Order], bytes] | None = None,
        validate: ValidationHook | None = None,
        user_id: str = "guest",
        auth_token: str | None = None,
        orders_path: str = ORDERS_PATH,
    ) -> None:
        self._http = http
        self._dispatcher = dispatcher
        self._mailer = mailer
        self._render_pdf = render_pdf
        self._validate = validate
        self.user_id = user_id or "guest"
        self._auth_token = auth_token
        self._orders_path = orders_path
        self.last_order: Order | None = None

    async def submit(
        self,
        cart: Cart,
        shipping: ShippingDetails | dict[str, Any] | None,
        payment: CheckoutPayment | None,
    ) -> str:
        """Place the order. Returns the order id assigned by the API."""
        if cart.is_empty:
            raise OrderValidationError("Your cart is empty")
        if not shipping:
            raise OrderValidationError("Shipping details are required")
        if payment is None:
            raise OrderValidationError("Select a payment method")
        if payment.expired:
            raise OrderValidationError("Bank transfer window expired, select payment again")
        if isinstance(shipping, dict):
            shipping = ShippingDetails.from_dict(shipping)

        items = cart.items
        if self._validate is not None:
            outcome = self._validate(items)
            if inspect.isawaitable(outcome):
                await outcome

        order = Order(
            order_id="",
            items=items,
            shipping=shipping,
            payment_method=payment.method,
            total=compute_total(items, payment.shipping_fee),
            shipping_fee=payment.shipping_fee,
            status=OrderStatus.PENDING,
            created_at=utcnow_iso(),
            user_id=self.user_id,
        )
        order.order_id = await self._post_order(order)

        cart.clear()
        self.last_order = order
        logger.info(
            "Order %s placed: %d item(s), total %.2f, %s",
            order.order_id,
            len(items),
            order.total,
            order.payment_method.value,
        )
        await self._after_submit(order)
        return order.order_id

    async def _post_order(self, order: Order) -> str:
        payload = order.to_dict()
        payload.pop("orderId")
        headers = {"Authorization": f"Bearer {self._auth_token}"} if self._auth_token else {}

        try:
            response = await self._http.post(self._orders_path, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Order submission failed: %s", exc)
            raise OrderSubmissionError(f"Could not reach the order service: {exc}") from exc

        if not response.is_success:
            detail = _error_detail(response)
            logger.warning("Order submission rejected (%d): %s", response.status_code, detail)
            raise OrderSubmissionError(detail)

        try:
            order_id = response.json()["orderId"]
        except (ValueError, KeyError, TypeError) as exc:
            raise OrderSubmissionError("Order service returned no order id") from exc
        return str(order_id)

    async def _after_submit(self, order: Order) -> None:
        if self._dispatcher is not None:
            result = await self._dispatcher.send_order_notification(order)
            if not result.delivered_anywhere:
                logger.warning("New order %s was not pushed to any remote channel", order.order_id)

        pdf: bytes | None = None
        if self._render_pdf is not None:
            try:
                pdf = self._render_pdf(order)
            except Exception:
                logger.exception("Receipt PDF generation failed for %s", order.order_id)

        if self._mailer is not None and order.shipping.email:
            mail = await self._mailer.send_order_confirmation(order, pdf=pdf)
            if not mail.success:
                logger.warning(
                    "Confirmation email for %s not sent: %s", order.order_id, mail.error
                )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"Order service returned HTTP {response.status_code}"
