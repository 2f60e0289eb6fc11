"""Webhook payload signing — HMAC-SHA256 over the exact body bytes.

Security contract:
- The payload is serialized ONCE; the same bytes are signed and sent.
  A receiver re-serializing the parsed JSON will not verify.
- Header format: ``X-Webhook-Signature: sha256=<hex digest>``
- Verification uses hmac.compare_digest() (constant-time)
- Missing secret or missing header -> verification fails (fail-closed)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_PREFIX = "sha256="


def serialize_payload(payload: dict[str, Any]) -> bytes:
    """Compact JSON, UTF-8. The bytes returned here are what gets signed."""
    return json.dumps(
        payload, separators=(",", ":"), ensure_ascii=False, default=str
    ).encode("utf-8")


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def sign(body: bytes, secret: str) -> str:
    """Header value for ``body``: ``sha256=<hex>``."""
    return f"{SIGNATURE_PREFIX}{compute_signature(body, secret)}"


def verify_signature(body: bytes, signature_header: str | None, secret: str) -> bool:
    """Verify a ``sha256=<hex>`` header against the raw request body.

    Args:
        body: Raw request body bytes, exactly as received
        signature_header: Value of the X-Webhook-Signature header
        secret: Shared webhook secret

    Returns:
        True if the signature is valid
    """
    if not secret:
        logger.warning("Webhook secret not set, rejecting signature")
        return False
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False

    expected = compute_signature(body, secret)
    received = signature_header[len(SIGNATURE_PREFIX):]
    return hmac.compare_digest(expected, received)
