"""
Payment signature verification

Provides the HMAC checks used for gateway callbacks:
- checkout signatures: HMAC-SHA256 of "order_id|payment_id" with the key secret
- webhook signatures: HMAC-SHA256 of the raw request body with the webhook secret
Both are compared in constant time.
"""

import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""

    pass


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_checkout_signature(
    secret: Optional[str], order_id: str, payment_id: str, signature: str
) -> bool:
    if not secret:
        logger.error("❌ Payment key secret not configured - rejecting signature")
        return False
    expected = compute_hmac_sha256(secret, f"{order_id}|{payment_id}".encode("utf-8"))
    valid = constant_time_compare(expected, signature or "")
    if not valid:
        logger.warning(f"⚠️ Invalid checkout signature for order {order_id}")
    return valid


def verify_webhook_signature(secret: Optional[str], body: bytes, signature: Optional[str]) -> None:
    """Raise WebhookSignatureError unless the body was signed with the webhook secret"""
    if not secret:
        logger.error("❌ Webhook secret not configured")
        raise WebhookSignatureError("Webhook secret not configured")
    if not signature:
        raise WebhookSignatureError("Missing webhook signature")
    expected = compute_hmac_sha256(secret, body)
    if not constant_time_compare(expected, signature):
        logger.warning("⚠️ Webhook signature mismatch")
        raise WebhookSignatureError("Invalid webhook signature")
