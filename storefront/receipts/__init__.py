"""Customer receipts: email (SMTP) and PDF (reportlab)."""

from storefront.receipts.formatting import format_naira
from storefront.receipts.mailer import MailResult, OrderMailer
from storefront.receipts.pdf import render_receipt_pdf

__all__ = ["MailResult", "OrderMailer", "format_naira", "render_receipt_pdf"]
