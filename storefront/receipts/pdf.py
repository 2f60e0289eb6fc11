"""PDF receipts (reportlab canvas)."""

from __future__ import annotations

import io

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from storefront.config import settings
from storefront.models import Order, utcnow_iso
from storefront.receipts.formatting import (
    format_amount,
    format_order_date,
    humanize_payment_method,
)

_MAX_NAME_CHARS = 45

# Base-14 fonts have no naira glyph
_CURRENCY = "NGN "


def _money(value: float) -> str:
    return format_amount(value, symbol=_CURRENCY)


def render_receipt_pdf(order: Order, store_name: str | None = None) -> bytes:
    """Render a one-page receipt for ``order``. Returns the PDF bytes."""
    store = store_name or settings.store_name
    buf = io.BytesIO()
    width, height = A4
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Receipt - Order #{order.order_id}")

    y = height - 25 * mm
    c.setFont("Helvetica-Bold", 18)
    c.drawCentredString(width / 2, y, store)
    y -= 12 * mm
    c.setFont("Helvetica-Bold", 14)
    c.drawCentredString(width / 2, y, "RECEIPT")

    y -= 14 * mm
    c.setFont("Helvetica", 10)
    c.drawString(20 * mm, y, f"Order #: {order.order_id}")
    c.drawString(115 * mm, y, f"Customer: {order.shipping.full_name or order.shipping.email}")
    y -= 6 * mm
    c.drawString(20 * mm, y, f"Date: {format_order_date(order.created_at)}")
    if order.shipping.phone:
        c.drawString(115 * mm, y, f"Phone: {order.shipping.phone}")
    y -= 6 * mm
    c.drawString(20 * mm, y, f"Status: {order.status.value.title()}")

    # Items table
    y -= 12 * mm
    c.setFont("Helvetica-Bold", 10)
    c.drawString(20 * mm, y, "Item Description")
    c.drawCentredString(110 * mm, y, "Qty")
    c.drawCentredString(140 * mm, y, "Unit Price")
    c.drawRightString(width - 20 * mm, y, "Total")
    c.line(20 * mm, y - 2 * mm, width - 20 * mm, y - 2 * mm)

    c.setFont("Helvetica", 10)
    if not order.items:
        y -= 8 * mm
        c.drawCentredString(width / 2, y, "No items available")
    for item in order.items:
        y -= 8 * mm
        if y < 40 * mm:
            c.showPage()
            c.setFont("Helvetica", 10)
            y = height - 25 * mm
        name = item.name
        if len(name) > _MAX_NAME_CHARS:
            name = name[: _MAX_NAME_CHARS - 3] + "..."
        c.drawString(20 * mm, y, name)
        c.drawCentredString(110 * mm, y, str(item.quantity))
        c.drawCentredString(140 * mm, y, _money(item.price))
        c.drawRightString(width - 20 * mm, y, _money(item.line_total))

    # Totals
    y -= 12 * mm
    if y < 70 * mm:
        c.showPage()
        c.setFont("Helvetica", 10)
        y = height - 25 * mm
    for label, value in (
        ("Subtotal:", order.subtotal),
        ("Shipping:", order.shipping_fee),
    ):
        c.drawString(125 * mm, y, label)
        c.drawRightString(width - 20 * mm, y, _money(value))
        y -= 6 * mm
    c.setFont("Helvetica-Bold", 11)
    c.drawString(125 * mm, y, "TOTAL:")
    c.drawRightString(width - 20 * mm, y, _money(order.total))

    y -= 12 * mm
    c.setFont("Helvetica", 10)
    method = humanize_payment_method(order.payment_method.value)
    c.drawString(20 * mm, y, f"Payment Method: {method}")

    y -= 14 * mm
    c.drawCentredString(width / 2, y, "Thank you for your business!")
    c.setFont("Helvetica", 8)
    generated = format_order_date(utcnow_iso())
    c.drawCentredString(width / 2, y - 6 * mm, f"Receipt generated on {generated}")
    c.drawCentredString(
        width / 2, y - 11 * mm, "Terms: All sales are final. Please retain this receipt for reference."
    )

    c.showPage()
    c.save()
    return buf.getvalue()
