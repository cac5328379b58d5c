"""Payment repository - Database operations for gateway payment records"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...config import PAYMENT_CURRENCY
from ...models_booking import Booking
from ...models_payment import Payment, PaymentStatus, PaymentType


class PaymentRepository:
    """Repository for payment database operations"""

    @staticmethod
    def create_pending(
        db: Session, booking: Booking, payment_type: str, order: dict
    ) -> Payment:
        payment = Payment(
            booking_id=booking.id,
            customer_id=booking.customer_id,
            vendor_id=booking.vendor_id,
            payment_type=payment_type,
            amount=order["amount"],
            currency=order["currency"],
            status=PaymentStatus.PENDING,
            gateway_order_id=order["order_id"],
        )
        db.add(payment)
        db.flush()
        return payment

    @staticmethod
    def get_by_order_id(db: Session, order_id: str) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.gateway_order_id == order_id).first()

    @staticmethod
    def get_by_payment_id(db: Session, payment_id: str) -> Optional[Payment]:
        return db.query(Payment).filter(Payment.gateway_payment_id == payment_id).first()

    @staticmethod
    def resolve_gateway_payment(
        db: Session, payment_id: Optional[str], order_id: Optional[str]
    ) -> Optional[Payment]:
        """Find the local record for a gateway event: payment id first, then order id"""
        payment = None
        if payment_id:
            payment = PaymentRepository.get_by_payment_id(db, payment_id)
        if payment is None and order_id:
            payment = PaymentRepository.get_by_order_id(db, order_id)
        return payment

    @staticmethod
    def get_successful_refund(db: Session, booking_id: int) -> Optional[Payment]:
        return (
            db.query(Payment)
            .filter(
                Payment.booking_id == booking_id,
                Payment.payment_type == PaymentType.REFUND,
                Payment.status == PaymentStatus.SUCCESS,
            )
            .first()
        )

    @staticmethod
    def record_refund(db: Session, booking: Booking, refund: dict, refunded_payment_id: str) -> Payment:
        """Refunds are keyed by the gateway refund id; the refunded payment id goes in extra_data"""
        payment = Payment(
            booking_id=booking.id,
            customer_id=booking.customer_id,
            vendor_id=booking.vendor_id,
            payment_type=PaymentType.REFUND,
            amount=refund["amount"],
            currency=PAYMENT_CURRENCY,
            status=PaymentStatus.SUCCESS,
            gateway_order_id=refund["refund_id"],
            paid_at=datetime.utcnow(),
            extra_data={"refunded_payment_id": refunded_payment_id, "gateway_status": refund.get("status")},
        )
        db.add(payment)
        db.flush()
        return payment
