"""Outbound webhook delivery.

Two entry points:
- send_order_webhook(): one signed POST of a ``new_order`` event to the
  inventory app. No retry at this layer.
- send_webhook(): generic POST with bounded retries and exponential backoff
  (2^attempt seconds), used by the notification dispatcher.

Neither raises on delivery failure. Callers receive a WebhookResult with
``success=False`` and the error message. Each request carries its own
timeout; a timed-out request is aborted by httpx and counts as a failed
attempt.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx

from storefront.config import settings
from storefront.models import EventKind, NotificationEvent, Order
from storefront.retry import RetryPolicy
from storefront.webhooks.signing import SIGNATURE_HEADER, serialize_payload, sign

logger = logging.getLogger(__name__)

ORDER_WEBHOOK_USER_AGENT = "StoreFront-Webhook/1.0"
NOTIFICATION_USER_AGENT = "NotificationService/1.0"

Sleep = Callable[[float], Awaitable[None]]


class WebhookDeliveryError(Exception):
    """Receiver answered with a non-2xx status."""


@dataclass
class WebhookResult:
    """Outcome of a webhook delivery."""

    success: bool
    data: Any = None
    error: str = ""
    status: int | None = None
    attempts: int = 0

    def as_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "attempts": self.attempts}
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error
        if self.status is not None:
            result["status"] = self.status
        return result


_DELIVERY_ERRORS = (httpx.HTTPError, httpx.InvalidURL, WebhookDeliveryError)


@asynccontextmanager
async def _client_scope(
    client: httpx.AsyncClient | None, timeout: float
) -> AsyncIterator[httpx.AsyncClient]:
    """Use the caller's client, or own one for the duration of the send."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


async def _post(
    http: httpx.AsyncClient,
    url: str,
    body: bytes,
    headers: dict[str, str],
    timeout: float,
) -> httpx.Response:
    response = await http.post(url, content=body, headers=headers, timeout=timeout)
    if not response.is_success:
        raise WebhookDeliveryError(
            f"HTTP {response.status_code}: {response.reason_phrase}"
        )
    return response


def _read_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _describe(exc: Exception, timeout: float) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return f"Timed out after {timeout:g}s"
    return str(exc) or type(exc).__name__


# ---------------------------------------------------------------------------
# Order webhook (single attempt)
# ---------------------------------------------------------------------------


async def send_order_webhook(
    order: Order | dict[str, Any],
    *,
    url: str | None = None,
    secret: str | None = None,
    timeout: float | None = None,
    client: httpx.AsyncClient | None = None,
) -> WebhookResult:
    """POST a signed ``new_order`` event to the inventory webhook.

    Args:
        order: Order (or its wire dict); contents are not validated
        url: Receiver URL (default: settings.inventory_webhook_url)
        secret: Shared secret (default: settings.webhook_secret)
        timeout: Request timeout in seconds (default 10)
        client: Optional shared httpx client

    Returns:
        WebhookResult(success, data | error). Never raises for delivery errors.
    """
    url = url or settings.inventory_webhook_url
    secret = settings.webhook_secret if secret is None else secret
    timeout = timeout or settings.webhook_timeout_seconds

    data = order.to_dict() if isinstance(order, Order) else order
    body = serialize_payload(NotificationEvent(EventKind.NEW_ORDER, data).to_payload())
    headers = {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: sign(body, secret),
        "User-Agent": ORDER_WEBHOOK_USER_AGENT,
    }

    try:
        async with _client_scope(client, timeout) as http:
            response = await _post(http, url, body, headers, timeout)
    except _DELIVERY_ERRORS as exc:
        error = _describe(exc, timeout)
        logger.warning("Order webhook to %s failed: %s", url, error)
        return WebhookResult(success=False, error=error, attempts=1)

    logger.info(
        "Order webhook delivered: order=%s status=%d",
        data.get("orderId", "?"),
        response.status_code,
    )
    return WebhookResult(
        success=True,
        data=_read_body(response),
        status=response.status_code,
        attempts=1,
    )


# ---------------------------------------------------------------------------
# Generic webhook with retry
# ---------------------------------------------------------------------------


async def send_webhook(
    url: str,
    data: dict[str, Any],
    *,
    retries: int = 3,
    timeout: float = 10.0,
    headers: dict[str, str] | None = None,
    secret: str | None = None,
    client: httpx.AsyncClient | None = None,
    sleep: Sleep = asyncio.sleep,
    policy: RetryPolicy | None = None,
) -> WebhookResult:
    """POST ``data`` as JSON, retrying failures with exponential backoff.

    Makes at most ``retries + 1`` attempts. Between attempts it sleeps
    ``2 ** attempt`` seconds (attempt is 0-indexed). A custom ``policy``
    overrides ``retries`` and the delay curve.
    """
    policy = policy or RetryPolicy.exponential(max_retries=retries)
    body = serialize_payload(data)
    request_headers = {
        "Content-Type": "application/json",
        "User-Agent": NOTIFICATION_USER_AGENT,
        **(headers or {}),
    }
    if secret:
        request_headers[SIGNATURE_HEADER] = sign(body, secret)

    last_error = ""
    async with _client_scope(client, timeout) as http:
        for attempt in range(policy.max_attempts):
            try:
                response = await _post(http, url, body, request_headers, timeout)
            except _DELIVERY_ERRORS as exc:
                last_error = _describe(exc, timeout)
                logger.warning(
                    "Webhook attempt %d/%d to %s failed: %s",
                    attempt + 1,
                    policy.max_attempts,
                    url,
                    last_error,
                )
                if not policy.can_retry(attempt):
                    break
                await sleep(policy.delay_for(attempt))
                continue

            return WebhookResult(
                success=True,
                data=_read_body(response),
                status=response.status_code,
                attempts=attempt + 1,
            )

    logger.error(
        "Webhook to %s gave up after %d attempts: %s",
        url,
        policy.max_attempts,
        last_error,
    )
    return WebhookResult(success=False, error=last_error, attempts=policy.max_attempts)
