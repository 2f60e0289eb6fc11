"""Order emails via SMTP — confirmation and status updates.

Uses standard SMTP with STARTTLS. Credentials come from settings
(STOREFRONT_SMTP_HOST, _PORT, _USER, _PASSWORD).

Security: Password never logged. Send failures are returned as a
MailResult, never raised, so a mail outage cannot undo an order.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from storefront.config import settings
from storefront.models import Order, OrderStatus, PaymentMethod
from storefront.receipts.formatting import (
    format_amount,
    format_naira,
    format_order_date,
    humanize_payment_method,
)

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    OrderStatus.PROCESSING: "Your order is being processed",
    OrderStatus.SHIPPED: "Your order has been shipped",
    OrderStatus.DELIVERED: "Your order has been delivered",
    OrderStatus.CANCELLED: "Your order has been cancelled",
}


@dataclass
class MailResult:
    """Result of sending an email."""
    success: bool
    recipient: str = ""
    error: str = ""


class OrderMailer:
    """Customer-facing order emails."""

    def __init__(
        self,
        smtp_host: str | None = None,
        smtp_port: int | None = None,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        sender: str | None = None,
        store_name: str | None = None,
    ):
        self._host = smtp_host or settings.smtp_host
        self._port = smtp_port or settings.smtp_port
        self._user = smtp_user or settings.smtp_user
        self._password = smtp_password or settings.smtp_password
        self._from = sender or self._user
        self._store = store_name or settings.store_name

    @property
    def is_configured(self) -> bool:
        return bool(self._host and self._user)

    # -- message building -----------------------------------------------------

    def _envelope(self, subject: str, recipient: str) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = f"{self._store} <{self._from}>"
        msg["To"] = recipient
        return msg

    def build_confirmation(self, order: Order, pdf: bytes | None = None) -> MIMEMultipart:
        shipping = order.shipping
        msg = self._envelope(f"Order Confirmation - #{order.order_id}", shipping.email)

        lines = [
            f"Hi {shipping.full_name or 'there'},",
            "",
            f"Thank you for your order #{order.order_id} placed on "
            f"{format_order_date(order.created_at)}.",
            "",
        ]
        for item in order.items:
            lines.append(f"  {item.quantity} x {item.name}  {format_amount(item.line_total)}")
        lines += [
            "",
            f"Subtotal: {format_amount(order.subtotal)}",
            f"Shipping: {format_amount(order.shipping_fee)}",
            f"Total: {format_amount(order.total)}",
            f"Payment method: {humanize_payment_method(order.payment_method.value)}",
        ]
        if order.payment_method is PaymentMethod.PAY_ON_PICKUP:
            lines.append("We'll notify you when your order is ready for pickup.")
        else:
            lines.append("Your order will be shipped to the provided address.")

        rows = "".join(
            f"<tr><td>{html.escape(item.name)}</td><td>{item.quantity}</td>"
            f"<td>{format_amount(item.line_total)}</td></tr>"
            for item in order.items
        )
        html_body = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px;">
            <h2>Thank you for your order!</h2>
            <p>Order <strong>#{html.escape(order.order_id)}</strong></p>
            <table style="width: 100%; border-collapse: collapse;">
                <tr><th align="left">Item</th><th>Qty</th><th>Total</th></tr>
                {rows}
            </table>
            <p>Shipping: {format_amount(order.shipping_fee)}</p>
            <p><strong>Total: {format_naira(order.total)}</strong></p>
            <p style="font-size: 11px; color: #999; margin-top: 16px;">
                {html.escape(self._store)}
            </p>
        </div>
        """

        body = MIMEMultipart("alternative")
        body.attach(MIMEText("\n".join(lines), "plain", "utf-8"))
        body.attach(MIMEText(html_body, "html", "utf-8"))
        msg.attach(body)

        if pdf:
            attachment = MIMEApplication(pdf, _subtype="pdf")
            attachment.add_header(
                "Content-Disposition", "attachment", filename=f"receipt-{order.order_id}.pdf"
            )
            msg.attach(attachment)
        return msg

    def build_status_update(
        self, order_id: str, status: OrderStatus, recipient: str, name: str = ""
    ) -> MIMEMultipart:
        msg = self._envelope(f"Order Update - #{order_id}", recipient)
        message = STATUS_MESSAGES.get(status, f"Order status updated to: {status.value}")
        text = f"Hi {name or 'there'},\n\n{message}.\n\nOrder #{order_id}"
        html_body = (
            f"<p>Hi {html.escape(name or 'there')},</p>"
            f"<p><strong>{html.escape(message)}</strong></p>"
            f"<p>Order #{html.escape(order_id)}</p>"
        )
        body = MIMEMultipart("alternative")
        body.attach(MIMEText(text, "plain", "utf-8"))
        body.attach(MIMEText(html_body, "html", "utf-8"))
        msg.attach(body)
        return msg

    # -- sending --------------------------------------------------------------

    def send(self, message: MIMEMultipart) -> MailResult:
        """Send via SMTP with TLS."""
        recipient = message["To"] or ""
        if not self.is_configured:
            return MailResult(
                success=False,
                recipient=recipient,
                error="Email not configured (missing SMTP host/user)",
            )
        if not recipient:
            return MailResult(success=False, error="No recipient address")

        try:
            with smtplib.SMTP(self._host, self._port, timeout=15) as server:
                server.starttls()
                if self._user and self._password:
                    server.login(self._user, self._password)
                server.send_message(message)
        except smtplib.SMTPException as e:
            logger.warning("SMTP error sending to %s: %s", recipient, e)
            return MailResult(success=False, recipient=recipient, error=f"SMTP error: {e}")
        except OSError as e:
            logger.warning("SMTP connection to %s failed: %s", self._host, e)
            return MailResult(success=False, recipient=recipient, error=str(e))

        logger.info("Email sent to %s: %s", recipient, message["Subject"])
        return MailResult(success=True, recipient=recipient)

    async def send_order_confirmation(self, order: Order, pdf: bytes | None = None) -> MailResult:
        message = self.build_confirmation(order, pdf=pdf)
        return await asyncio.to_thread(self.send, message)

    async def send_status_update(
        self, order_id: str, status: OrderStatus, recipient: str, name: str = ""
    ) -> MailResult:
        message = self.build_status_update(order_id, status, recipient, name)
        return await asyncio.to_thread(self.send, message)
