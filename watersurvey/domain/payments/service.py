"""
Payment settlement

Turns verified gateway payments into booking transitions and issues refunds:
- advance (40%): AWAITING_ADVANCE → ASSIGNED, travel surcharge credited to the vendor
- remaining (60%): customer view AWAITING_PAYMENT → PAYMENT_SUCCESS, invoice requested
- refund: part or all of the remaining payment back for an approved failed borewell

A bad signature stops the request before anything is written. Travel credit and
invoice generation are side effects of an already committed payment and only log
on failure.
"""

import json
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...exceptions import BookingNotFoundError, InvalidActionError, PaymentVerificationError
from ...models_booking import Booking
from ...models_notification import NotificationType, RecipientKind
from ...models_payment import Payment, PaymentStatus, PaymentType
from ...services.invoice_service import InvoiceClient
from ...services.notification_service import enqueue_notification
from ...webhook_security import WebhookSignatureError
from ..bookings.repository import BookingRepository
from ..bookings.state import TRANSITIONS, TransitionError
from ..pricing.calculator import present
from ..wallet.payouts import PayoutService
from .gateway import RazorpayGateway
from .repository import PaymentRepository

logger = logging.getLogger(__name__)


class SettlementService:
    """Service for verifying customer payments and settling bookings"""

    def __init__(
        self,
        db: Session,
        gateway: RazorpayGateway,
        invoice_client: Optional[InvoiceClient] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.invoice_client = invoice_client
        self.bookings = BookingRepository()
        self.payments = PaymentRepository()

    # ------------------------------------------------------------------
    # Checkout verification
    # ------------------------------------------------------------------

    def verify_advance_payment(
        self, customer_id: int, booking_id: int, order_id: str, payment_id: str, signature: str
    ) -> Booking:
        booking = self._customer_booking(customer_id, booking_id)
        payment = self._verified_payment(booking, PaymentType.ADVANCE, order_id, payment_id, signature)
        if booking.advance_paid:
            raise InvalidActionError("Advance payment already processed")

        self._settle_advance(booking, payment, payment_id, signature)
        return booking

    async def verify_remaining_payment(
        self, customer_id: int, booking_id: int, order_id: str, payment_id: str, signature: str
    ) -> Booking:
        booking = self._customer_booking(customer_id, booking_id)
        payment = self._verified_payment(booking, PaymentType.REMAINING, order_id, payment_id, signature)
        if booking.remaining_paid:
            raise InvalidActionError("Remaining payment already processed")

        self._settle_remaining(booking, payment, payment_id, signature)
        await self.generate_invoice(booking)
        return booking

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def handle_webhook(self, body: bytes, signature: Optional[str]) -> dict:
        """
        Process a gateway webhook. Replays and events for unknown payments are
        acknowledged without changes so the gateway stops redelivering them.
        """
        try:
            self.gateway.verify_webhook(body, signature)
        except WebhookSignatureError as e:
            raise PaymentVerificationError(str(e))

        try:
            event = json.loads(body)
        except ValueError:
            raise InvalidActionError("Malformed webhook payload")

        event_type = event.get("event")
        entity = ((event.get("payload") or {}).get("payment") or {}).get("entity") or {}
        gateway_payment_id = entity.get("id")
        gateway_order_id = entity.get("order_id")
        logger.info(f"📨 Payment webhook {event_type} for payment {gateway_payment_id}")

        if event_type not in ("payment.captured", "payment.failed"):
            return {"status": "ignored", "event": event_type}

        payment = self.payments.resolve_gateway_payment(self.db, gateway_payment_id, gateway_order_id)
        if not payment:
            logger.warning(f"⚠️ No local payment for gateway payment {gateway_payment_id} / order {gateway_order_id}")
            return {"status": "ignored", "event": event_type}

        if event_type == "payment.captured":
            return await self._on_captured(payment, gateway_payment_id, entity)
        return self._on_failed(payment, gateway_payment_id, entity)

    async def _on_captured(self, payment: Payment, gateway_payment_id: str, entity: dict) -> dict:
        if payment.status == PaymentStatus.SUCCESS:
            return {"status": "already_processed", "payment_id": payment.id}

        booking = self.bookings.get_by_id(self.db, payment.booking_id)
        payment.payment_method = entity.get("method")
        try:
            if payment.payment_type == PaymentType.ADVANCE and not booking.advance_paid:
                self._settle_advance(booking, payment, gateway_payment_id, None)
            elif payment.payment_type == PaymentType.REMAINING and not booking.remaining_paid:
                self._settle_remaining(booking, payment, gateway_payment_id, None)
                await self.generate_invoice(booking)
            else:
                self._mark_payment_success(payment, gateway_payment_id, None)
                self.db.commit()
        except TransitionError as e:
            # money arrived for a booking that moved on (e.g. cancelled); keep the record
            self.db.rollback()
            self._mark_payment_success(payment, gateway_payment_id, None)
            self.db.commit()
            logger.warning(f"⚠️ Captured payment {payment.id} recorded without transition: {e.message}")
            return {"status": "recorded", "payment_id": payment.id}
        return {"status": "processed", "payment_id": payment.id}

    def _on_failed(self, payment: Payment, gateway_payment_id: str, entity: dict) -> dict:
        if payment.status == PaymentStatus.SUCCESS:
            return {"status": "already_processed", "payment_id": payment.id}

        payment.status = PaymentStatus.FAILED
        payment.gateway_payment_id = gateway_payment_id
        payment.failed_at = datetime.utcnow()
        payment.failure_reason = entity.get("error_description") or "Payment failed"
        enqueue_notification(
            self.db,
            recipient_id=payment.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.PAYMENT_FAILED,
            title="Payment Failed",
            message=f"Your payment of ₹{present(payment.amount):.2f} could not be completed. Please try again.",
            related_entity=("booking", payment.booking_id),
            metadata={"booking_id": payment.booking_id, "payment_type": payment.payment_type},
        )
        self.db.commit()
        logger.info(f"❌ Payment {payment.id} marked failed: {payment.failure_reason}")
        return {"status": "processed", "payment_id": payment.id}

    # ------------------------------------------------------------------
    # Settlement steps
    # ------------------------------------------------------------------

    def _settle_advance(
        self, booking: Booking, payment: Payment, gateway_payment_id: str, signature: Optional[str]
    ) -> None:
        now = datetime.utcnow()
        self.bookings.apply_transition(
            self.db,
            booking,
            TRANSITIONS["verify_advance_payment"],
            advance_paid=True,
            advance_paid_at=now,
            advance_payment_id=gateway_payment_id,
            payment_status="PARTIAL",
            assigned_at=now,
        )
        self._mark_payment_success(payment, gateway_payment_id, signature)

        enqueue_notification(
            self.db,
            recipient_id=booking.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.PAYMENT_ADVANCE_SUCCESS,
            title="Advance Payment Successful",
            message=f"We received your advance of ₹{present(booking.advance_amount):.2f}. Your expert has been notified.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "amount": present(booking.advance_amount)},
        )
        enqueue_notification(
            self.db,
            recipient_id=booking.vendor_id,
            recipient_kind=RecipientKind.VENDOR,
            event_type=NotificationType.BOOKING_ASSIGNED,
            title="New Booking Assigned",
            message=f"You have a new booking for {booking.scheduled_date:%d %b %Y} at {booking.scheduled_time}.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id},
        )
        self.db.commit()
        logger.info(f"✅ Advance payment verified for booking {booking.id}")

        credit = PayoutService(self.db).credit_travel_surcharge(booking)
        self.db.commit()
        if credit is not None and not credit.success:
            logger.warning(f"⚠️ Travel charges credit failed for booking {booking.id}; left for the retry sweep")

    def _settle_remaining(
        self, booking: Booking, payment: Payment, gateway_payment_id: str, signature: Optional[str]
    ) -> None:
        now = datetime.utcnow()
        self.bookings.apply_transition(
            self.db,
            booking,
            TRANSITIONS["verify_remaining_payment"],
            remaining_paid=True,
            remaining_paid_at=now,
            remaining_payment_id=gateway_payment_id,
            payment_status="SUCCESS",
        )
        self._mark_payment_success(payment, gateway_payment_id, signature)
        enqueue_notification(
            self.db,
            recipient_id=booking.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.PAYMENT_REMAINING_SUCCESS,
            title="Payment Successful",
            message="We received your final payment. Your survey report is now available.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "amount": present(booking.remaining_amount)},
        )
        self.db.commit()
        logger.info(f"✅ Remaining payment verified for booking {booking.id}")

    async def generate_invoice(self, booking: Booking) -> Optional[dict]:
        """Best-effort invoice request; failures are logged and the payment stays committed"""
        if self.invoice_client is None:
            return None
        try:
            invoice = await self.invoice_client.generate(booking)
            booking.invoice_number = invoice["invoice_number"]
            booking.invoice_url = invoice["invoice_url"]
            booking.invoice_generated_at = datetime.utcnow()
            self.db.commit()
            return invoice
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Invoice generation failed for booking {booking.id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def refund_customer(
        self, admin_id: int, booking_id: int, amount: Optional[float] = None
    ) -> tuple:
        """
        Refund the customer for a failed borewell whose result an operator has
        approved. Defaults to the remaining amount; at most one refund per booking.

        Returns:
            (booking, refund Payment)
        """
        booking = self.bookings.get_by_id(self.db, booking_id)
        if not booking:
            raise BookingNotFoundError()
        if not booking.borewell_approved_at or booking.borewell_status != "FAILED":
            raise InvalidActionError("Refunds are only issued for approved failed borewell results")
        if self.payments.get_successful_refund(self.db, booking.id):
            raise InvalidActionError("Refund has already been processed for this booking")
        if not booking.remaining_paid or not booking.remaining_payment_id:
            raise InvalidActionError("No captured remaining payment to refund")

        amount = booking.remaining_amount if amount is None else amount
        if amount <= 0:
            raise InvalidActionError("Refund amount must be greater than 0")
        if amount > booking.remaining_amount + 0.005:
            raise InvalidActionError(
                f"Refund cannot exceed the remaining payment of ₹{present(booking.remaining_amount):.2f}"
            )

        refund = await self.gateway.refund_payment(
            booking.remaining_payment_id,
            amount,
            notes={"booking_id": booking.id, "reason": "borewell_failed", "admin_id": admin_id},
        )
        payment = self.payments.record_refund(self.db, booking, refund, booking.remaining_payment_id)
        booking.refund_amount = refund["amount"]
        booking.refunded_at = datetime.utcnow()
        enqueue_notification(
            self.db,
            recipient_id=booking.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.REFUND_PROCESSED,
            title="Refund Processed",
            message=f"A refund of ₹{present(refund['amount']):.2f} has been issued to your original payment method.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "amount": present(refund["amount"]), "refund_id": refund["refund_id"]},
        )
        self.db.commit()
        logger.info(f"✅ Refund {refund['refund_id']} of ₹{refund['amount']:.2f} issued for booking {booking.id}")
        return booking, payment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _customer_booking(self, customer_id: int, booking_id: int) -> Booking:
        booking = self.bookings.get_for_customer(self.db, booking_id, customer_id)
        if not booking:
            raise BookingNotFoundError()
        return booking

    def _verified_payment(
        self,
        booking: Booking,
        payment_type: str,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> Payment:
        if not self.gateway.verify_signature(order_id, payment_id, signature):
            raise PaymentVerificationError("Invalid payment signature")
        payment = self.payments.get_by_order_id(self.db, order_id)
        if not payment or payment.booking_id != booking.id or payment.payment_type != payment_type:
            raise PaymentVerificationError("Payment order does not match this booking")
        return payment

    def _mark_payment_success(
        self, payment: Payment, gateway_payment_id: str, signature: Optional[str]
    ) -> None:
        payment.status = PaymentStatus.SUCCESS
        payment.gateway_payment_id = gateway_payment_id
        if signature:
            payment.gateway_signature = signature
        payment.paid_at = datetime.utcnow()
        payment.failure_reason = None
        self.db.flush()
