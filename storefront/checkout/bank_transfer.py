"""Bank transfer payments — reference matching against incoming transfers.

Flow:
1. create_request() stores a PaymentRequest under a fresh reference
   (TRF-<6 digits>-<8 chars>) and returns the account details the customer
   pays into. Requests are valid for 24h.
2. The bank notifies us of a received transfer; handle_transfer_notification()
   pulls the reference out of the narration and compares amounts.
3. The payment-pending page polls check_status() every 30s until the payment
   is confirmed or its countdown runs out (wait_for_payment()).

Storage: Redis, key pattern payment:transfer:{reference}, JSON value.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

import redis

from storefront.config import settings
from storefront.errors import PaymentNotFound
from storefront.models import ShippingDetails

logger = logging.getLogger(__name__)

REFERENCE_PATTERN = re.compile(r"TRF-\d{6}-[a-zA-Z0-9]{8}")
PAYMENT_VALIDITY = timedelta(hours=24)
POLL_INTERVAL_SECONDS = 30
PENDING_PAGE_WINDOW_SECONDS = 24 * 60 * 60

ORDER_CONFIRMATION_PATH = "/order-confirmation"
PAYMENT_EXPIRED_PATH = "/payment-expired"

# Expired requests stay readable for a day so the pending page can report them
_KEY_GRACE_SECONDS = 86400


class TransferStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    AMOUNT_MISMATCH = "amount_mismatch"
    EXPIRED = "expired"


def generate_reference() -> str:
    stamp = str(int(time.time() * 1000))[-6:]
    return f"TRF-{stamp}-{uuid.uuid4().hex[:8]}"


def extract_reference(narration: str | None) -> str | None:
    """First TRF reference found in a transfer narration, if any."""
    match = REFERENCE_PATTERN.search(narration or "")
    return match.group(0) if match else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PaymentRequest:
    """A customer's pending bank transfer."""

    reference: str
    amount: float
    expires_at: str
    order_id: str | None = None
    customer_id: str | None = None
    customer_email: str = ""
    customer_name: str = ""
    currency: str = "NGN"
    status: TransferStatus = TransferStatus.PENDING

    def expiry(self) -> datetime:
        return datetime.fromisoformat(self.expires_at)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _now()) >= self.expiry()

    def to_json(self) -> str:
        data = asdict(self)
        data["status"] = self.status.value
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> PaymentRequest:
        data = json.loads(raw)
        data["status"] = TransferStatus(data.get("status", "pending"))
        return cls(**data)


class BankTransferService:
    """Redis-backed bank transfer payment requests."""

    PREFIX = "payment:transfer:"

    def __init__(
        self,
        redis_client: Any = None,
        *,
        redis_url: str | None = None,
        account_number: str | None = None,
        bank_name: str | None = None,
        account_name: str | None = None,
    ) -> None:
        if redis_client is None:
            redis_client = redis.from_url(redis_url or settings.redis_url, decode_responses=True)
        self._redis = redis_client
        self._account_number = account_number or settings.bank_account_number
        self._bank_name = bank_name or settings.bank_name
        self._account_name = account_name or settings.bank_account_name

    # -- persistence ----------------------------------------------------------

    def _key(self, reference: str) -> str:
        return f"{self.PREFIX}{reference}"

    def _load(self, reference: str) -> PaymentRequest:
        raw = self._redis.get(self._key(reference))
        if raw is None:
            raise PaymentNotFound(f"Payment reference not found: {reference}")
        return PaymentRequest.from_json(raw)

    def _save(self, request: PaymentRequest) -> None:
        remaining = (request.expiry() - _now()).total_seconds()
        ttl = max(1, int(remaining)) + _KEY_GRACE_SECONDS
        self._redis.set(self._key(request.reference), request.to_json(), ex=ttl)

    # -- operations -----------------------------------------------------------

    def create_request(
        self,
        order_id: str | None,
        amount: float,
        customer: ShippingDetails | dict[str, Any] | None = None,
        customer_id: str | None = None,
    ) -> dict[str, Any]:
        """Register a pending transfer and return the details to show the customer."""
        if isinstance(customer, ShippingDetails):
            name, email = customer.full_name, customer.email
        else:
            customer = customer or {}
            name, email = customer.get("fullName", ""), customer.get("email", "")

        request = PaymentRequest(
            reference=generate_reference(),
            amount=round(float(amount), 2),
            expires_at=(_now() + PAYMENT_VALIDITY).isoformat(),
            order_id=order_id,
            customer_id=customer_id,
            customer_email=email,
            customer_name=name,
        )
        self._save(request)
        logger.info(
            "Bank transfer requested: ref=%s order=%s amount=%.2f",
            request.reference,
            order_id,
            request.amount,
        )
        return {
            "reference": request.reference,
            "accountNumber": self._account_number,
            "bankName": self._bank_name,
            "accountName": self._account_name,
            "amount": request.amount,
            "currency": request.currency,
            "expiresAt": request.expires_at,
        }

    def check_status(self, reference: str) -> dict[str, Any]:
        """Current status of ``reference``. Raises PaymentNotFound if unknown."""
        request = self._load(reference)
        if request.status is TransferStatus.PENDING and request.is_expired():
            request.status = TransferStatus.EXPIRED
            self._save(request)
        return {
            "status": request.status.value,
            "reference": request.reference,
            "amount": request.amount,
            "orderId": request.order_id,
            "expiresAt": request.expires_at,
        }

    def handle_transfer_notification(self, narration: str, amount: float | str) -> str | None:
        """Match an incoming transfer to its payment request.

        Returns the order id when the transfer confirms a payment, else None.
        """
        reference = extract_reference(narration)
        if reference is None:
            logger.warning("No reference found in transfer narration: %.100s", narration)
            return None

        try:
            request = self._load(reference)
        except PaymentNotFound:
            logger.warning("Transfer received for unknown reference %s", reference)
            return None

        if request.status is TransferStatus.CONFIRMED:
            logger.info("Duplicate transfer notice for %s ignored", reference)
            return request.order_id
        if request.status is TransferStatus.EXPIRED or request.is_expired():
            logger.warning("Transfer received for expired reference %s", reference)
            request.status = TransferStatus.EXPIRED
            self._save(request)
            return None

        try:
            received = round(float(amount), 2)
        except (TypeError, ValueError):
            received = None
        if received != request.amount:
            logger.warning(
                "Transfer amount mismatch for %s: expected %.2f, got %s",
                reference,
                request.amount,
                amount,
            )
            request.status = TransferStatus.AMOUNT_MISMATCH
            self._save(request)
            return None

        request.status = TransferStatus.CONFIRMED
        self._save(request)
        logger.info("Bank transfer confirmed: ref=%s order=%s", reference, request.order_id)
        return request.order_id

    def expire_stale(self) -> list[str]:
        """Mark pending requests past their expiry as expired. Returns their order ids."""
        expired: list[str] = []
        for key in self._redis.scan_iter(match=f"{self.PREFIX}*"):
            raw = self._redis.get(key)
            if raw is None:
                continue
            request = PaymentRequest.from_json(raw)
            if request.status is TransferStatus.PENDING and request.is_expired():
                request.status = TransferStatus.EXPIRED
                self._save(request)
                if request.order_id:
                    expired.append(request.order_id)
        if expired:
            logger.info("Expired %d stale bank transfer request(s)", len(expired))
        return expired

    async def wait_for_payment(
        self,
        reference: str,
        *,
        check: Callable[[str], dict[str, Any] | Awaitable[dict[str, Any]]] | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        window_seconds: float = PENDING_PAGE_WINDOW_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> str:
        """Poll until confirmed or out of time. Returns the page to redirect to."""
        check = check or self.check_status
        remaining = window_seconds
        while True:
            try:
                result = check(reference)
                if inspect.isawaitable(result):
                    result = await result
            except (PaymentNotFound, redis.RedisError) as exc:
                logger.warning("Error checking payment status for %s: %s", reference, exc)
            else:
                status = result.get("status")
                if status == TransferStatus.CONFIRMED.value:
                    return ORDER_CONFIRMATION_PATH
                if status == TransferStatus.EXPIRED.value:
                    return PAYMENT_EXPIRED_PATH

            if remaining <= 0:
                return PAYMENT_EXPIRED_PATH
            step = min(poll_interval, remaining)
            await sleep(step)
            remaining -= step
