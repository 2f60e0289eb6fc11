"""Storefront error taxonomy.

- Validation failures are rejected immediately (HTTP 400), never retried.
- Authorization failures (order access by a non-owner) map to HTTP 403.
- Missing orders / payment references map to HTTP 404.
- Transient delivery failures (webhook, realtime, email) are NOT exceptions:
  they come back as outcome records so callers decide how to degrade.
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500


class OrderValidationError(StorefrontError):
    """Required order fields missing or malformed."""

    status_code = 400


class PaymentMethodUnavailable(StorefrontError):
    """Selected payment method is disabled or unknown."""

    status_code = 400


class OrderAccessDenied(StorefrontError):
    """Order does not belong to the requesting user."""

    status_code = 403


class OrderNotFound(StorefrontError):
    status_code = 404


class PaymentNotFound(StorefrontError):
    status_code = 404


class OrderSubmissionError(StorefrontError):
    """Order creation request failed; the customer may resubmit."""

    status_code = 502


class ProductNotFound(StorefrontError):
    status_code = 404
