"""
Invoice generator client

Invoices are rendered by an external service. Generation is best-effort: callers
log a failure and carry on, the payment that triggered it stays committed.
"""

import logging
from typing import Optional

import httpx

from ..config import INVOICE_SERVICE_URL
from ..domain.pricing.calculator import present
from ..models_booking import Booking

logger = logging.getLogger(__name__)


class InvoiceGenerationError(Exception):
    pass


class InvoiceClient:
    def __init__(self, base_url: Optional[str] = INVOICE_SERVICE_URL, timeout: float = 20.0):
        self.base_url = base_url
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.base_url)

    def build_payload(self, booking: Booking) -> dict:
        return {
            "booking_id": booking.public_id,
            "customer": {
                "id": booking.customer_id,
                "name": booking.customer.name if booking.customer else None,
                "email": booking.customer.email if booking.customer else None,
            },
            "vendor": {
                "id": booking.vendor_id,
                "name": booking.vendor.name if booking.vendor else None,
            },
            "service": {
                "id": booking.service_id,
                "name": booking.service.name if booking.service else None,
            },
            "address": {
                "street": booking.address_street,
                "city": booking.address_city,
                "state": booking.address_state,
                "pincode": booking.address_pincode,
            },
            "amounts": {
                "base_service_fee": present(booking.base_service_fee),
                "travel_charges": present(booking.travel_charges),
                "subtotal": present(booking.subtotal),
                "gst_amount": present(booking.gst_amount),
                "total_amount": present(booking.total_amount),
                "advance_amount": present(booking.advance_amount),
                "remaining_amount": present(booking.remaining_amount),
            },
            "payments": {
                "advance_payment_id": booking.advance_payment_id,
                "remaining_payment_id": booking.remaining_payment_id,
            },
        }

    async def generate(self, booking: Booking) -> dict:
        """
        Request an invoice for a fully paid booking.

        Returns:
            dict with invoice_number and invoice_url
        """
        if not self.is_available():
            raise InvoiceGenerationError("INVOICE_SERVICE_URL not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/invoices", json=self.build_payload(booking))
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise InvoiceGenerationError(f"Invoice service request failed: {e}") from e

        if not data.get("invoice_number") or not data.get("invoice_url"):
            raise InvoiceGenerationError("Invoice service returned an incomplete response")
        logger.info(f"✅ Invoice {data['invoice_number']} generated for booking {booking.id}")
        return {"invoice_number": data["invoice_number"], "invoice_url": data["invoice_url"]}


invoice_client = InvoiceClient()


def get_invoice_client() -> InvoiceClient:
    return invoice_client
