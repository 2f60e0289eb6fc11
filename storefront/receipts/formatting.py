"""Money and date formatting for receipts and emails."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

NAIRA = "₦"


def format_naira(amount: Any) -> str:
    """``₦12,500`` style: thousands separators, no decimals. Invalid input is ``₦0``."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return f"{NAIRA}0"
    if math.isnan(value) or math.isinf(value):
        return f"{NAIRA}0"
    sign = "-" if value < 0 else ""
    return f"{sign}{NAIRA}{abs(value):,.0f}"


def format_amount(amount: Any, symbol: str = NAIRA) -> str:
    """Two-decimal amount for receipt line items."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        value = 0.0
    return f"{symbol}{value:,.2f}"


def format_order_date(iso_timestamp: str) -> str:
    """``17 October 2026, 14:05``; unparseable input is returned unchanged."""
    try:
        moment = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return str(iso_timestamp)
    return f"{moment.day} {moment:%B %Y, %H:%M}"


def humanize_payment_method(method: str) -> str:
    return method.replace("_", " ").title()
