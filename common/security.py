"""
RMShop - Security Utilities
============================
HMAC signatures for payment gateway callbacks.

The gateway signs `"{gateway_order_id}|{gateway_payment_id}"` with the shared
key secret (HMAC-SHA256, hex). We recompute and compare in constant time.
"""

import hmac
import hashlib
import logging
from typing import Optional

from config.settings import GATEWAY_KEY_SECRET

logger = logging.getLogger("rmshop.security")


def compute_payment_signature(
    gateway_order_id: str,
    gateway_payment_id: str,
    secret: Optional[str] = None,
) -> str:
    """HMAC-SHA256 hex digest over `order_id|payment_id`."""
    key = GATEWAY_KEY_SECRET if secret is None else secret
    msg = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(key.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def verify_payment_signature(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    secret: Optional[str] = None,
) -> bool:
    """Constant-time comparison of the callback signature."""
    if not signature or not gateway_order_id or not gateway_payment_id:
        return False
    expected = compute_payment_signature(gateway_order_id, gateway_payment_id, secret)
    ok = hmac.compare_digest(expected, signature.strip().lower())
    if not ok:
        logger.warning(f"Signature mismatch for gateway order {gateway_order_id}")
    return ok
