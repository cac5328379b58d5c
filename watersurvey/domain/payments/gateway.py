"""
Payment gateway adapter (Razorpay Orders API)

The gateway is a trusted black box: it opens orders and refunds, and lets us
verify that a checkout or webhook really came from it. Amounts go over the wire
in paise.
"""

import logging
from typing import Optional

import httpx

from ...config import (
    PAYMENT_CURRENCY,
    RAZORPAY_API_URL,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
    RAZORPAY_WEBHOOK_SECRET,
)
from ...exceptions import PaymentGatewayError
from ...webhook_security import verify_checkout_signature, verify_webhook_signature

logger = logging.getLogger(__name__)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class RazorpayGateway:
    def __init__(
        self,
        key_id: Optional[str] = RAZORPAY_KEY_ID,
        key_secret: Optional[str] = RAZORPAY_KEY_SECRET,
        webhook_secret: Optional[str] = RAZORPAY_WEBHOOK_SECRET,
        api_url: str = RAZORPAY_API_URL,
        timeout: float = 15.0,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.key_id and self.key_secret)

    async def open_order(
        self, amount: float, currency: str = PAYMENT_CURRENCY, metadata: Optional[dict] = None
    ) -> dict:
        """
        Create a gateway order.

        Returns:
            dict with order_id, amount (major units) and currency
        """
        if not self.is_available():
            raise PaymentGatewayError("Payment gateway not configured")

        metadata = metadata or {}
        body = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": metadata.get("receipt"),
            "notes": {k: str(v) for k, v in metadata.items() if v is not None},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.api_url}/orders", json=body, auth=(self.key_id, self.key_secret)
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"❌ Failed to create gateway order for {amount:.2f} {currency}: {e}")
            raise PaymentGatewayError("Failed to create payment order") from e

        logger.info(f"✅ Gateway order {data['id']} created for {amount:.2f} {currency}")
        return {"order_id": data["id"], "amount": data["amount"] / 100, "currency": data["currency"]}

    async def refund_payment(self, payment_id: str, amount: float, notes: Optional[dict] = None) -> dict:
        """
        Refund part or all of a captured payment.

        Returns:
            dict with refund_id, amount (major units) and status
        """
        if not self.is_available():
            raise PaymentGatewayError("Payment gateway not configured")

        body = {
            "amount": to_minor_units(amount),
            "notes": {k: str(v) for k, v in (notes or {}).items() if v is not None},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.api_url}/payments/{payment_id}/refund",
                    json=body,
                    auth=(self.key_id, self.key_secret),
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"❌ Failed to refund {amount:.2f} on payment {payment_id}: {e}")
            raise PaymentGatewayError("Failed to create refund") from e

        logger.info(f"✅ Gateway refund {data['id']} of {amount:.2f} created for payment {payment_id}")
        return {"refund_id": data["id"], "amount": data["amount"] / 100, "status": data.get("status")}

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_checkout_signature(self.key_secret, order_id, payment_id, signature)

    def verify_webhook(self, body: bytes, signature: Optional[str]) -> None:
        verify_webhook_signature(self.webhook_secret, body, signature)


payment_gateway = RazorpayGateway()


def get_payment_gateway() -> RazorpayGateway:
    return payment_gateway
