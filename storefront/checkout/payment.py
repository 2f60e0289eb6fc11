"""Checkout payment selection and bank-transfer countdown.

| method          | shipping fee | verified               | countdown |
|-----------------|--------------|------------------------|-----------|
| pay_on_delivery | base         | True                   | -         |
| pay_on_pickup   | 0            | True                   | -         |
| bank_transfer   | base         | False until confirmed  | 900s      |
| card            | disabled, selection raises PaymentMethodUnavailable  |

Invariant: once a method is selected, either the bank-transfer countdown is
running or the payment is verified, never both. The single state with
neither is ``expired`` (countdown reached zero before confirmation).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Iterable

from storefront.errors import PaymentMethodUnavailable
from storefront.models import PaymentMethod

logger = logging.getLogger(__name__)

BANK_TRANSFER_WINDOW_SECONDS = 15 * 60
DEFAULT_BASE_SHIPPING_FEE = 3500.0


@dataclass(frozen=True)
class PaymentState:
    """Snapshot of the checkout payment section."""

    method: PaymentMethod
    verified: bool
    shipping_fee: float
    countdown: int | None
    countdown_active: bool
    expired: bool

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["method"] = self.method.value
        return data


def coerce_method(value: PaymentMethod | str) -> PaymentMethod:
    """PaymentMethod for ``value``; unknown names raise PaymentMethodUnavailable."""
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(value)
    except ValueError:
        raise PaymentMethodUnavailable(f"Unknown payment method: {value!r}") from None


class CheckoutPayment:
    """Payment method state for one checkout session."""

    def __init__(
        self,
        base_shipping_fee: float = DEFAULT_BASE_SHIPPING_FEE,
        *,
        window_seconds: int = BANK_TRANSFER_WINDOW_SECONDS,
    ) -> None:
        self._base_fee = float(base_shipping_fee)
        self._fee_adjustment = 0.0
        self._window = window_seconds

        self.method = PaymentMethod.PAY_ON_DELIVERY
        self.verified = True
        self.shipping_fee = self._base_fee
        self.countdown: int | None = None
        self._countdown_active = False
        self.expired = False

    # -- observation --------------------------------------------------------

    @property
    def countdown_active(self) -> bool:
        return self._countdown_active

    @property
    def base_shipping_fee(self) -> float:
        return self._base_fee

    @property
    def can_place_order(self) -> bool:
        """Bank transfers must be confirmed before the order goes through."""
        return self.verified and not self.expired

    @property
    def countdown_display(self) -> str:
        remaining = self.countdown or 0
        return f"{remaining // 60:02d}:{remaining % 60:02d}"

    @property
    def state(self) -> PaymentState:
        return PaymentState(
            method=self.method,
            verified=self.verified,
            shipping_fee=self.shipping_fee,
            countdown=self.countdown,
            countdown_active=self._countdown_active,
            expired=self.expired,
        )

    # -- transitions ----------------------------------------------------------

    def select(self, method: PaymentMethod | str) -> PaymentState:
        """Switch payment method. Card (or any disabled method) leaves state unchanged."""
        chosen = coerce_method(method)
        if not chosen.enabled:
            raise PaymentMethodUnavailable(f"{chosen.value} payments are not available")

        self.method = chosen
        self.expired = False
        if chosen is PaymentMethod.BANK_TRANSFER:
            self.verified = False
            self.countdown = self._window
            self._countdown_active = True
        else:
            self.verified = True
            self.countdown = None
            self._countdown_active = False
        self.shipping_fee = self._fee_for(chosen)
        logger.debug("Payment method set to %s (fee %.2f)", chosen.value, self.shipping_fee)
        return self.state

    def confirm_payment(self) -> bool:
        """Customer says the transfer was made: verify and freeze the countdown.

        Returns False when there is nothing to confirm (not a bank transfer,
        already verified, or already expired).
        """
        if self.method is not PaymentMethod.BANK_TRANSFER or self.verified:
            return False
        if self.expired:
            logger.warning("Bank transfer confirmation after the payment window closed")
            return False
        self.verified = True
        self._countdown_active = False
        logger.info("Bank transfer marked as paid with %ss remaining", self.countdown)
        return True

    def tick(self, seconds: int = 1) -> int | None:
        """Advance the countdown. Reaching zero stops it and expires the session."""
        if not self._countdown_active or self.countdown is None:
            return self.countdown
        self.countdown = max(0, self.countdown - seconds)
        if self.countdown == 0:
            self._countdown_active = False
            self.expired = True
            logger.info("Bank transfer window expired without confirmation")
        return self.countdown

    async def run_countdown(
        self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> bool:
        """Tick once per second while the countdown runs. Returns True if it expired."""
        while self._countdown_active:
            await sleep(1)
            self.tick()
        return self.expired

    # -- shipping fee ---------------------------------------------------------

    def _fee_for(self, method: PaymentMethod) -> float:
        if method is PaymentMethod.PAY_ON_PICKUP:
            return 0.0
        if self._fee_adjustment < 0:
            return 0.0
        return self._base_fee + self._fee_adjustment

    def adjust_shipping_fee(self, adjustment: float) -> float:
        """Apply a delivery-location adjustment. Negative means free shipping."""
        self._fee_adjustment = float(adjustment)
        self.shipping_fee = self._fee_for(self.method)
        return self.shipping_fee

    def set_base_shipping_fee(self, fee: float) -> float:
        self._base_fee = float(fee)
        self.shipping_fee = self._fee_for(self.method)
        return self.shipping_fee

    # -- saved methods --------------------------------------------------------

    def apply_saved_default(self, saved_methods: Iterable[dict[str, Any]]) -> PaymentMethod:
        """Select the customer's default saved method, else pay on delivery."""
        for saved in saved_methods:
            if not saved.get("isDefault"):
                continue
            try:
                self.select(saved.get("type", ""))
            except PaymentMethodUnavailable as exc:
                logger.info("Saved default payment method not usable: %s", exc)
                break
            return self.method

        self.select(PaymentMethod.PAY_ON_DELIVERY)
        return self.method
