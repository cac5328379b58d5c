"""
Booking service - Business logic for the booking lifecycle

Each action loads the booking, checks the caller is a party to it, applies one
transition through BookingRepository.apply_transition and appends the matching
notifications to the outbox before committing. Wallet credits triggered by a
transition never undo it: a failed credit is left as a FAILED ledger row with a
retry scheduled.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import MIN_REASON_LENGTH, PAYMENT_CURRENCY
from ...exceptions import BookingAccessError, BookingNotFoundError, InvalidActionError
from ...models import Service, Vendor
from ...models_booking import Booking, TravelChargesStatus
from ...models_notification import NotificationType, RecipientKind
from ...models_payment import PaymentType
from ...models_wallet import WalletTransactionType
from ...services.notification_service import enqueue_notification
from ...utils.sanitization import clean_reason, sanitize_dict, sanitize_string
from ...worker import enqueue_credit_retry
from ..payments.gateway import RazorpayGateway
from ..payments.repository import PaymentRepository
from ..pricing.calculator import calculate_quote, compute_vendor_share, distance_between, present
from ..pricing.settings import load_pricing_settings
from ..ratings.service import RatingService
from ..reassignment.service import ReassignmentOutcome, ReassignmentService
from ..wallet.payouts import PayoutService
from ..wallet.repository import VendorNotFoundError
from ..wallet.service import CreditResult, WalletService
from .repository import BookingRepository
from .schemas import BookingCreate
from .state import (
    BOREWELL_APPROVAL_GUARD,
    REPORT_APPROVAL_GUARD,
    REPORT_REJECTION_GUARD,
    REPORT_RESUBMISSION_GUARD,
    TRANSITIONS,
    initial_state,
)

logger = logging.getLogger(__name__)

CreditRetryScheduler = Callable[[int], Awaitable[bool]]


class BookingService:
    """Service for booking lifecycle actions"""

    def __init__(
        self,
        db: Session,
        gateway: Optional[RazorpayGateway] = None,
        schedule_credit_retry: Optional[CreditRetryScheduler] = None,
    ):
        self.db = db
        self.repo = BookingRepository()
        self.payments = PaymentRepository()
        self.gateway = gateway
        self.schedule_credit_retry = schedule_credit_retry or enqueue_credit_retry

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.repo.get_by_id(self.db, booking_id)
        if not booking:
            raise BookingNotFoundError()
        return booking

    def get_customer_booking(self, customer_id: int, booking_id: int) -> Booking:
        booking = self.repo.get_for_customer(self.db, booking_id, customer_id)
        if not booking:
            raise BookingNotFoundError()
        return booking

    def get_vendor_booking(self, vendor_id: int, booking_id: int) -> Booking:
        booking = self.get_booking(booking_id)
        if booking.vendor_id != vendor_id:
            raise BookingAccessError("This booking is not assigned to you")
        return booking

    def list_bookings(self, **filters) -> List[Booking]:
        return self.repo.list_bookings(self.db, **filters)

    # ------------------------------------------------------------------
    # Customer actions
    # ------------------------------------------------------------------

    async def create_booking(self, customer_id: int, data: BookingCreate) -> tuple:
        """
        Create a booking in AWAITING_ADVANCE and open the advance order.

        Returns:
            (booking, order) where order has order_id, amount and currency
        """
        service = self.db.query(Service).filter(Service.id == data.service_id).first()
        if not service or service.status != "APPROVED" or not service.is_active:
            raise InvalidActionError("Service is not available for booking")
        vendor = self.db.query(Vendor).filter(Vendor.id == service.vendor_id).first()
        if not vendor or not vendor.is_active or not vendor.is_approved:
            raise InvalidActionError("Vendor is not available for booking")

        settings = load_pricing_settings(self.db)
        distance = distance_between((vendor.latitude, vendor.longitude), (data.latitude, data.longitude))
        quote = calculate_quote(service.price, distance, settings)
        payout = compute_vendor_share(quote.base_service_fee, quote.travel_charges, settings)

        booking = Booking(
            customer_id=customer_id,
            vendor_id=vendor.id,
            service_id=service.id,
            scheduled_date=data.scheduled_date,
            scheduled_time=data.scheduled_time,
            address_street=sanitize_string(data.address_street),
            address_city=sanitize_string(data.address_city),
            address_state=sanitize_string(data.address_state),
            address_pincode=data.address_pincode,
            address_landmark=sanitize_string(data.address_landmark),
            latitude=data.latitude,
            longitude=data.longitude,
            village=sanitize_string(data.village),
            mandal=sanitize_string(data.mandal),
            district=sanitize_string(data.district),
            purpose=sanitize_string(data.purpose),
            notes=sanitize_string(data.notes),
            **initial_state().as_columns(),
            **quote.as_columns(),
            **payout.as_columns(),
        )
        self.db.add(booking)
        self.db.flush()

        try:
            order = await self.gateway.open_order(
                quote.advance_amount,
                PAYMENT_CURRENCY,
                metadata={
                    "receipt": f"bk_{booking.id}_advance",
                    "booking_id": booking.id,
                    "payment_type": PaymentType.ADVANCE,
                },
            )
        except Exception:
            self.db.rollback()
            raise

        booking.advance_order_id = order["order_id"]
        self.payments.create_pending(self.db, booking, PaymentType.ADVANCE, order)

        enqueue_notification(
            self.db,
            recipient_id=customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.BOOKING_CREATED,
            title="Booking Created",
            message=f"Your booking for {service.name} is created. Pay the advance of ₹{present(quote.advance_amount):.2f} to confirm it.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "advance_amount": present(quote.advance_amount)},
        )
        self.db.commit()
        self.db.refresh(booking)
        logger.info(
            f"✅ Booking {booking.id} created for customer {customer_id} with vendor {vendor.id} "
            f"(total ₹{present(quote.total_amount)}, advance order {order['order_id']})"
        )
        return booking, order

    def cancel_by_user(self, customer_id: int, booking_id: int, reason: Optional[str] = None) -> Booking:
        booking = self.get_customer_booking(customer_id, booking_id)
        now = datetime.utcnow()
        self.repo.apply_transition(
            self.db,
            booking,
            TRANSITIONS["cancel_by_user"],
            cancelled_at=now,
            cancelled_by="USER",
            cancellation_note=sanitize_string(reason) if reason else None,
        )
        enqueue_notification(
            self.db,
            recipient_id=booking.vendor_id,
            recipient_kind=RecipientKind.VENDOR,
            event_type=NotificationType.BOOKING_CANCELLED,
            title="Booking Cancelled",
            message="The customer has cancelled this booking.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "cancelled_by": "USER"},
        )
        self.db.commit()
        logger.info(f"✅ Booking {booking.id} cancelled by customer {customer_id}")
        return booking

    def upload_borewell_result(
        self,
        customer_id: int,
        booking_id: int,
        status: str,
        images: Optional[list] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        booking = self.get_customer_booking(customer_id, booking_id)
        if status not in ("SUCCESS", "FAILED"):
            raise InvalidActionError("Borewell status must be SUCCESS or FAILED")
        self.repo.apply_transition(
            self.db,
            booking,
            TRANSITIONS["upload_borewell_result"],
            borewell_status=status,
            borewell_images=images or [],
            borewell_notes=sanitize_string(notes),
            borewell_uploaded_at=datetime.utcnow(),
        )
        enqueue_notification(
            self.db,
            recipient_id=booking.vendor_id,
            recipient_kind=RecipientKind.VENDOR,
            event_type=NotificationType.BOREWELL_UPLOADED,
            title="Borewell Result Uploaded",
            message=f"The customer reported the borewell result: {status}.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "borewell_status": status},
        )
        self.db.commit()
        return booking

    # ------------------------------------------------------------------
    # Vendor actions
    # ------------------------------------------------------------------

    def accept(self, vendor_id: int, booking_id: int) -> Booking:
        booking = self.get_vendor_booking(vendor_id, booking_id)
        self.repo.apply_transition(
            self.db, booking, TRANSITIONS["accept"], accepted_at=datetime.utcnow()
        )
        enqueue_notification(
            self.db,
            recipient_id=booking.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.BOOKING_ACCEPTED,
            title="Booking Accepted",
            message="Your expert has accepted the booking and will visit as scheduled.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id},
        )
        self.db.commit()
        logger.info(f"✅ Booking {booking.id} accepted by vendor {vendor_id}")
        return booking

    def reject(self, vendor_id: int, booking_id: int, reason: str) -> ReassignmentOutcome:
        """Vendor turns down an assigned booking; the booking is reassigned if possible"""
        cleaned = clean_reason(reason)
        if not cleaned:
            raise InvalidActionError(
                f"Rejection reason is required (minimum {MIN_REASON_LENGTH} characters)"
            )
        booking = self.get_vendor_booking(vendor_id, booking_id)
        self.repo.apply_transition(
            self.db, booking, TRANSITIONS["reject"], rejection_reason=cleaned
        )
        logger.info(f"🔄 Booking {booking.id} rejected by vendor {vendor_id}, reassigning")
        outcome = ReassignmentService(self.db).reassign(booking, cleaned, initiated_by="VENDOR")
        self.db.commit()
        return outcome

    def cancel_by_vendor(self, vendor_id: int, booking_id: int, reason: str) -> ReassignmentOutcome:
        """Vendor backs out of an accepted booking; handled like a rejection"""
        cleaned = clean_reason(reason)
        if not cleaned:
            raise InvalidActionError(
                f"Cancellation reason is required (minimum {MIN_REASON_LENGTH} characters)"
            )
        booking = self.get_vendor_booking(vendor_id, booking_id)
        self.repo.apply_transition(
            self.db,
            booking,
            TRANSITIONS["cancel_by_vendor"],
            rejection_reason=cleaned,
            cancellation_note=f"Cancelled by vendor {vendor_id} after accepting: {cleaned}",
            cancelled_by="VENDOR",
        )
        logger.info(f"🔄 Booking {booking.id} cancelled by vendor {vendor_id}, reassigning")
        outcome = ReassignmentService(self.db).reassign(booking, cleaned, initiated_by="VENDOR_CANCEL")
        self.db.commit()
        return outcome

    async def mark_visited(self, vendor_id: int, booking_id: int) -> tuple:
        """
        Mark the site visit done and credit the first payout installment.

        Returns:
            (booking, CreditResult)
        """
        booking = self.get_vendor_booking(vendor_id, booking_id)
        self.repo.apply_transition(
            self.db, booking, TRANSITIONS["mark_visited"], visited_at=datetime.utcnow()
        )
        enqueue_notification(
            self.db,
            recipient_id=booking.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.BOOKING_VISITED,
            title="Site Visit Completed",
            message="Your expert has completed the site visit. The survey report will follow.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id},
        )
        # status change is committed first so a credit failure cannot take it back
        self.db.commit()

        credit = PayoutService(self.db).credit_installment(booking, WalletTransactionType.SITE_VISIT)
        self.db.commit()
        if not credit.success and credit.transaction is not None:
            logger.warning(
                f"⚠️ Site visit credit failed for booking {booking.id}, retry scheduled "
                f"(transaction {credit.transaction.id})"
            )
            await self.schedule_credit_retry(credit.transaction.id)
        return booking, credit

    async def upload_report(
        self,
        vendor_id: int,
        booking_id: int,
        water_found: bool,
        machine_readings: Optional[dict] = None,
        images: Optional[list] = None,
        report_file: Optional[dict] = None,
        notes: Optional[str] = None,
    ) -> tuple:
        """
        Attach the survey report and open the order for the remaining amount.
        The second payout installment waits for approve_report.

        Returns:
            (booking, order)
        """
        booking = self.get_vendor_booking(vendor_id, booking_id)
        transition = TRANSITIONS["upload_report"]
        # fail fast before talking to the gateway; the conditional write re-checks
        transition.apply(booking.state)

        order = await self.gateway.open_order(
            booking.remaining_amount,
            PAYMENT_CURRENCY,
            metadata={
                "receipt": f"bk_{booking.id}_remaining",
                "booking_id": booking.id,
                "payment_type": PaymentType.REMAINING,
            },
        )

        now = datetime.utcnow()
        self.repo.apply_transition(
            self.db,
            booking,
            transition,
            report_water_found=water_found,
            report_machine_readings=sanitize_dict(machine_readings or {}),
            report_images=images or [],
            report_file=report_file,
            report_notes=sanitize_string(notes),
            report_uploaded_at=now,
            remaining_order_id=order["order_id"],
        )
        self.payments.create_pending(self.db, booking, PaymentType.REMAINING, order)

        enqueue_notification(
            self.db,
            recipient_id=booking.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.REPORT_UPLOADED,
            title="Survey Report Ready",
            message=(
                "Your survey report has been uploaded. Pay the remaining "
                f"₹{present(booking.remaining_amount):.2f} to view it."
            ),
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "remaining_amount": present(booking.remaining_amount)},
        )
        enqueue_notification(
            self.db,
            recipient_id=None,
            recipient_kind=RecipientKind.ADMIN,
            event_type=NotificationType.REPORT_UPLOADED,
            title="Report Awaiting Approval",
            message=f"Vendor {vendor_id} uploaded the report for booking {booking.id}.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "vendor_id": vendor_id},
        )
        self.db.commit()
        logger.info(f"✅ Report uploaded for booking {booking.id}, remaining order {order['order_id']}")
        return booking, order

    def resubmit_report(
        self,
        vendor_id: int,
        booking_id: int,
        water_found: bool,
        machine_readings: Optional[dict] = None,
        images: Optional[list] = None,
        report_file: Optional[dict] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        """
        Replace a rejected report. Status fields and the customer's remaining
        payment order are left as they are.
        """
        booking = self.get_vendor_booking(vendor_id, booking_id)
        if not booking.report_rejected_at:
            raise InvalidActionError("Report has not been rejected")
        REPORT_RESUBMISSION_GUARD.apply(booking.state)

        booking.report_water_found = water_found
        booking.report_machine_readings = sanitize_dict(machine_readings or {})
        booking.report_images = images or []
        booking.report_file = report_file
        booking.report_notes = sanitize_string(notes)
        booking.report_uploaded_at = datetime.utcnow()
        booking.report_rejected_at = None
        booking.report_rejected_by = None
        enqueue_notification(
            self.db,
            recipient_id=None,
            recipient_kind=RecipientKind.ADMIN,
            event_type=NotificationType.REPORT_UPLOADED,
            title="Report Resubmitted",
            message=f"Vendor {vendor_id} resubmitted the rejected report for booking {booking.id}.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "vendor_id": vendor_id, "resubmitted": True},
        )
        self.db.commit()
        logger.info(f"🔄 Report resubmitted for booking {booking.id} by vendor {vendor_id}")
        return booking

    def mark_completed(self, vendor_id: int, booking_id: int) -> Booking:
        """Manual completion fallback"""
        booking = self.get_vendor_booking(vendor_id, booking_id)
        self.repo.apply_transition(
            self.db, booking, TRANSITIONS["mark_completed"], completed_at=datetime.utcnow()
        )
        enqueue_notification(
            self.db,
            recipient_id=booking.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.BOOKING_COMPLETED,
            title="Booking Completed",
            message="Your booking has been marked as completed.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id},
        )
        self.db.commit()
        return booking

    def request_travel_charges(
        self, vendor_id: int, booking_id: int, amount: float, reason: Optional[str] = None
    ) -> Booking:
        booking = self.get_vendor_booking(vendor_id, booking_id)
        if amount is None or amount <= 0:
            raise InvalidActionError("Travel charges amount must be greater than 0")
        if booking.travel_request_status == TravelChargesStatus.PENDING:
            raise InvalidActionError("A travel charges request is already pending")
        if booking.travel_request_status:
            raise InvalidActionError(
                f"Travel charges request has already been {booking.travel_request_status.lower()}"
            )

        booking.travel_request_amount = amount
        booking.travel_request_reason = sanitize_string(reason)
        booking.travel_request_status = TravelChargesStatus.PENDING
        booking.travel_request_requested_at = datetime.utcnow()
        enqueue_notification(
            self.db,
            recipient_id=None,
            recipient_kind=RecipientKind.ADMIN,
            event_type=NotificationType.TRAVEL_CHARGES_REQUESTED,
            title="Travel Charges Requested",
            message=f"Vendor {vendor_id} requested ₹{present(amount):.2f} travel charges for booking {booking.id}.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "amount": amount},
        )
        self.db.commit()
        return booking

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------

    def approve_report(self, admin_id: int, booking_id: int) -> tuple:
        """
        Release the second payout installment once an operator has checked the report.
        Status fields are not changed.

        Returns:
            (booking, CreditResult)
        """
        booking = self.get_booking(booking_id)
        REPORT_APPROVAL_GUARD.apply(booking.state)
        if not booking.report_uploaded_at:
            raise InvalidActionError("Report has not been uploaded yet")
        if booking.report_approved_at:
            raise InvalidActionError("Report has already been approved")
        if booking.report_rejected_at:
            raise InvalidActionError("Report was rejected and is waiting for the vendor to resubmit it")

        booking.report_approved_at = datetime.utcnow()
        booking.report_approved_by = admin_id
        enqueue_notification(
            self.db,
            recipient_id=booking.vendor_id,
            recipient_kind=RecipientKind.VENDOR,
            event_type=NotificationType.REPORT_APPROVED,
            title="Report Approved",
            message="Your survey report was approved and the final payment has been released to your wallet.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "amount": present(booking.report_upload_amount)},
        )
        self.db.commit()

        credit: CreditResult = PayoutService(self.db).credit_installment(
            booking, WalletTransactionType.REPORT_UPLOAD
        )
        self.db.commit()
        if not credit.success:
            logger.warning(f"⚠️ Report upload credit failed for booking {booking.id}; left for the retry sweep")
        return booking, credit

    def review_travel_charges(
        self, admin_id: int, booking_id: int, approve: bool, rejection_reason: Optional[str] = None
    ) -> Booking:
        booking = self.get_booking(booking_id)
        if booking.travel_request_status != TravelChargesStatus.PENDING:
            raise InvalidActionError("No pending travel charges request found")

        if approve:
            booking.travel_request_status = TravelChargesStatus.APPROVED
            event_type = NotificationType.TRAVEL_CHARGES_APPROVED
            title = "Travel Charges Approved"
            message = f"Your travel charges request of ₹{present(booking.travel_request_amount):.2f} was approved."
        else:
            cleaned = clean_reason(rejection_reason)
            if not cleaned:
                raise InvalidActionError(
                    f"Rejection reason is required (minimum {MIN_REASON_LENGTH} characters)"
                )
            booking.travel_request_status = TravelChargesStatus.REJECTED
            booking.travel_request_rejection_reason = cleaned
            event_type = NotificationType.TRAVEL_CHARGES_REJECTED
            title = "Travel Charges Rejected"
            message = f"Your travel charges request was rejected: {cleaned}"

        booking.travel_request_reviewed_at = datetime.utcnow()
        booking.travel_request_reviewed_by = admin_id
        enqueue_notification(
            self.db,
            recipient_id=booking.vendor_id,
            recipient_kind=RecipientKind.VENDOR,
            event_type=event_type,
            title=title,
            message=message,
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "amount": booking.travel_request_amount},
        )
        self.db.commit()
        return booking

    async def pay_travel_charges(self, admin_id: int, booking_id: int) -> tuple:
        """
        Credit an approved travel charges request to the vendor's wallet.

        Returns:
            (booking, CreditResult)
        """
        booking = self.get_booking(booking_id)
        if booking.travel_request_status != TravelChargesStatus.APPROVED:
            raise InvalidActionError("Travel charges request is not approved")
        if booking.travel_request_paid:
            raise InvalidActionError("Travel charges have already been paid")

        booking.travel_request_paid_by = admin_id
        credit = PayoutService(self.db).credit_travel_request(booking)
        if credit.success and not credit.already_credited:
            enqueue_notification(
                self.db,
                recipient_id=booking.vendor_id,
                recipient_kind=RecipientKind.VENDOR,
                event_type=NotificationType.TRAVEL_CHARGES_PAID,
                title="Travel Charges Paid",
                message=f"₹{present(booking.travel_request_amount):.2f} travel charges were credited to your wallet.",
                related_entity=("booking", booking.id),
                metadata={"booking_id": booking.id, "amount": present(booking.travel_request_amount)},
            )
        self.db.commit()
        if not credit.success and credit.transaction is not None:
            logger.warning(f"⚠️ Travel charges payment failed for booking {booking.id}, retry scheduled")
            await self.schedule_credit_retry(credit.transaction.id)
        else:
            logger.info(f"✅ Travel charges request paid for booking {booking.id} by admin {admin_id}")
        return booking, credit

    def reject_report(self, admin_id: int, booking_id: int, reason: str) -> Booking:
        """Send the report back to the vendor; approval waits for a resubmission"""
        cleaned = clean_reason(reason)
        if not cleaned:
            raise InvalidActionError(
                f"Rejection reason is required (minimum {MIN_REASON_LENGTH} characters)"
            )
        booking = self.get_booking(booking_id)
        REPORT_REJECTION_GUARD.apply(booking.state)
        if not booking.report_uploaded_at:
            raise InvalidActionError("Report has not been uploaded yet")
        if booking.report_approved_at:
            raise InvalidActionError("Report has already been approved")

        booking.report_rejected_at = datetime.utcnow()
        booking.report_rejected_by = admin_id
        booking.report_rejection_reason = cleaned
        enqueue_notification(
            self.db,
            recipient_id=booking.vendor_id,
            recipient_kind=RecipientKind.VENDOR,
            event_type=NotificationType.REPORT_REJECTED,
            title="Report Rejected",
            message=f"Your survey report was rejected: {cleaned}. Please upload a corrected report.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id, "reason": cleaned},
        )
        self.db.commit()
        logger.info(f"❌ Report for booking {booking.id} rejected by admin {admin_id}")
        return booking

    def approve_borewell_result(self, admin_id: int, booking_id: int) -> Booking:
        """Confirm the customer's borewell result; it then counts towards the vendor's success ratio"""
        booking = self.get_booking(booking_id)
        BOREWELL_APPROVAL_GUARD.apply(booking.state)
        if booking.borewell_status not in ("SUCCESS", "FAILED"):
            raise InvalidActionError("Borewell result has not been uploaded yet")
        if booking.borewell_approved_at:
            raise InvalidActionError("Borewell result has already been approved")

        booking.borewell_approved_at = datetime.utcnow()
        booking.borewell_approved_by = admin_id
        RatingService(self.db).refresh_vendor_stats(booking.vendor_id)

        for recipient_id, kind in (
            (booking.vendor_id, RecipientKind.VENDOR),
            (booking.customer_id, RecipientKind.CUSTOMER),
        ):
            enqueue_notification(
                self.db,
                recipient_id=recipient_id,
                recipient_kind=kind,
                event_type=NotificationType.BOREWELL_APPROVED,
                title="Borewell Result Verified",
                message=f"The borewell result ({booking.borewell_status}) has been verified by our team.",
                related_entity=("booking", booking.id),
                metadata={"booking_id": booking.id, "borewell_status": booking.borewell_status},
            )
        self.db.commit()
        logger.info(f"✅ Borewell result {booking.borewell_status} approved for booking {booking.id}")
        return booking

    async def process_final_settlement(
        self, admin_id: int, booking_id: int, incentive: float = 0.0, penalty: float = 0.0
    ) -> tuple:
        """
        Close a booking after its borewell result is approved. A successful
        borewell may earn the vendor an incentive (credited after the commit,
        retried like any credit); a failed one may cost a penalty, debited in the
        same unit of work as the status change. All views move to COMPLETED.

        Returns:
            (booking, CreditResult or None)
        """
        incentive = incentive or 0.0
        penalty = penalty or 0.0
        if incentive < 0 or penalty < 0:
            raise InvalidActionError("Incentive and penalty cannot be negative")

        booking = self.get_booking(booking_id)
        transition = TRANSITIONS["process_final_settlement"]
        transition.apply(booking.state)
        if not booking.borewell_approved_at:
            raise InvalidActionError("Borewell result must be approved before final settlement")
        if not booking.report_approved_at:
            raise InvalidActionError("Report must be approved before final settlement")
        if booking.settled_at:
            raise InvalidActionError("Booking has already been settled")
        succeeded = booking.borewell_status == "SUCCESS"
        if succeeded and penalty:
            raise InvalidActionError("A penalty applies only to failed borewells")
        if not succeeded and incentive:
            raise InvalidActionError("An incentive applies only to successful borewells")

        now = datetime.utcnow()
        try:
            self.repo.apply_transition(
                self.db,
                booking,
                transition,
                settled_at=now,
                settled_by=admin_id,
                settlement_incentive=incentive,
                settlement_penalty=penalty,
                completed_at=now,
            )
            if penalty > 0:
                debit = WalletService(self.db).debit_from_vendor_wallet(
                    booking.vendor_id,
                    penalty,
                    WalletTransactionType.FINAL_SETTLEMENT_PENALTY,
                    booking_id=booking.id,
                    description=f"Final settlement penalty for booking {booking.public_id}",
                    metadata={"borewell_status": booking.borewell_status},
                )
                booking.settlement_transaction_id = debit.id
        except (SQLAlchemyError, VendorNotFoundError):
            self.db.rollback()
            raise

        vendor_message = "Final settlement is complete for this booking."
        if incentive:
            vendor_message = f"The borewell found water. A reward of ₹{present(incentive):.2f} is on its way to your wallet."
        elif penalty:
            vendor_message = f"The borewell did not find water. A penalty of ₹{present(penalty):.2f} was deducted from your wallet."
        enqueue_notification(
            self.db,
            recipient_id=booking.vendor_id,
            recipient_kind=RecipientKind.VENDOR,
            event_type=NotificationType.FINAL_SETTLEMENT,
            title="Final Settlement",
            message=vendor_message,
            related_entity=("booking", booking.id),
            metadata={
                "booking_id": booking.id,
                "borewell_status": booking.borewell_status,
                "incentive": present(incentive),
                "penalty": present(penalty),
            },
        )
        enqueue_notification(
            self.db,
            recipient_id=booking.customer_id,
            recipient_kind=RecipientKind.CUSTOMER,
            event_type=NotificationType.BOOKING_COMPLETED,
            title="Booking Completed",
            message="Your booking is complete. Thank you for choosing us.",
            related_entity=("booking", booking.id),
            metadata={"booking_id": booking.id},
        )
        self.db.commit()
        logger.info(
            f"✅ Booking {booking.id} settled by admin {admin_id} "
            f"({booking.borewell_status}, incentive {incentive:.2f}, penalty {penalty:.2f})"
        )

        credit = None
        if incentive > 0:
            credit = PayoutService(self.db).credit_settlement_reward(booking, incentive)
            self.db.commit()
            if not credit.success and credit.transaction is not None:
                logger.warning(f"⚠️ Settlement reward failed for booking {booking.id}, retry scheduled")
                await self.schedule_credit_retry(credit.transaction.id)
        return booking, credit
