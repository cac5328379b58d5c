"""
Vendor payout installments for a booking

A booking pays its vendor in two halves: SITE_VISIT when the vendor marks the
visit done and REPORT_UPLOAD when an operator approves the report. The travel
surcharge is credited separately once the advance is in. Extra travel charges
approved by an admin (TRAVEL_CHARGES_REQUEST) and the final settlement reward
are one-off credits of their own type, so none of them can collide on the
once-per-booking ledger key.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...config import WALLET_CREDIT_MAX_RETRIES
from ...models_booking import Booking
from ...models_wallet import VendorWalletTransaction, WalletTransactionStatus, WalletTransactionType
from .service import CreditResult, WalletService

logger = logging.getLogger(__name__)

INSTALLMENT_FIELDS = {
    WalletTransactionType.SITE_VISIT: "site_visit",
    WalletTransactionType.REPORT_UPLOAD: "report_upload",
}

SYNCED_TYPES = tuple(INSTALLMENT_FIELDS) + (
    WalletTransactionType.TRAVEL_CHARGES_REQUEST,
    WalletTransactionType.FINAL_SETTLEMENT_REWARD,
)


class PayoutService:
    def __init__(self, db: Session):
        self.db = db
        self.wallet = WalletService(db)
        self.wallet_max_retries = WALLET_CREDIT_MAX_RETRIES

    def credit_installment(self, booking: Booking, tx_type: str) -> CreditResult:
        """Credit one half of the vendor payout and record it on the booking. Does not commit."""
        prefix = INSTALLMENT_FIELDS[tx_type]
        amount = getattr(booking, f"{prefix}_amount") or 0
        label = "Site visit" if tx_type == WalletTransactionType.SITE_VISIT else "Report upload"
        result = self.wallet.credit_to_vendor_wallet(
            vendor_id=booking.vendor_id,
            amount=amount,
            tx_type=tx_type,
            booking_id=booking.id,
            description=f"{label} payment for booking {booking.public_id}",
            metadata={"installment": prefix, "payout_total": booking.payout_total},
        )
        if result.success and result.transaction is not None:
            self._mark_installment(booking, tx_type, result.transaction)
        return result

    def credit_travel_surcharge(self, booking: Booking) -> Optional[CreditResult]:
        if not booking.travel_charges or booking.travel_charges <= 0:
            return None
        return self.wallet.credit_to_vendor_wallet(
            vendor_id=booking.vendor_id,
            amount=booking.travel_charges,
            tx_type=WalletTransactionType.TRAVEL_CHARGES,
            booking_id=booking.id,
            description=f"Travel charges for booking {booking.public_id}",
            metadata={"distance_km": booking.distance_km},
        )

    def credit_travel_request(self, booking: Booking) -> CreditResult:
        """Pay an approved travel charges request and record it on the booking. Does not commit."""
        result = self.wallet.credit_to_vendor_wallet(
            vendor_id=booking.vendor_id,
            amount=booking.travel_request_amount,
            tx_type=WalletTransactionType.TRAVEL_CHARGES_REQUEST,
            booking_id=booking.id,
            description=f"Approved travel charges for booking {booking.public_id}",
            metadata={"reason": booking.travel_request_reason},
        )
        if result.success and result.transaction is not None:
            self._mark_travel_request_paid(booking, result.transaction)
        return result

    def credit_settlement_reward(self, booking: Booking, amount: float) -> CreditResult:
        """Incentive for a successful borewell. Does not commit."""
        result = self.wallet.credit_to_vendor_wallet(
            vendor_id=booking.vendor_id,
            amount=amount,
            tx_type=WalletTransactionType.FINAL_SETTLEMENT_REWARD,
            booking_id=booking.id,
            description=f"Final settlement reward for booking {booking.public_id}",
            metadata={"borewell_status": booking.borewell_status},
        )
        if result.success and result.transaction is not None and booking.settlement_transaction_id is None:
            booking.settlement_transaction_id = result.transaction.id
            self.db.flush()
        return result

    def retry_credit(self, transaction_id: int) -> CreditResult:
        """Retry a FAILED credit and mark its booking installment on success. Does not commit."""
        result = self.wallet.retry_failed_credit(transaction_id)
        if result.success and result.transaction is not None:
            self.sync_from_transaction(result.transaction)
        return result

    def sweep_failed_credits(self, limit: int = 100) -> dict:
        """Retry every unresolved FAILED credit still under the retry cap, committing each"""
        summary = {"retried": 0, "succeeded": 0, "failed": 0}
        rows = self.wallet.repo.retryable_failed_credits(self.db, self.wallet_max_retries, limit)
        for row in rows:
            summary["retried"] += 1
            result = self.retry_credit(row.id)
            if result.success:
                summary["succeeded"] += 1
            else:
                summary["failed"] += 1
            self.db.commit()
        return summary

    def sync_from_transaction(self, transaction: VendorWalletTransaction) -> None:
        """Reflect a successful (retried) booking credit on its booking"""
        if transaction.status != WalletTransactionStatus.SUCCESS or transaction.booking_id is None:
            return
        if transaction.type not in SYNCED_TYPES:
            return
        booking = self.db.query(Booking).filter(Booking.id == transaction.booking_id).first()
        if booking is None or booking.vendor_id != transaction.vendor_id:
            # booking was reassigned since; the credit stays on the ledger only
            return
        if transaction.type == WalletTransactionType.TRAVEL_CHARGES_REQUEST:
            self._mark_travel_request_paid(booking, transaction)
        elif transaction.type == WalletTransactionType.FINAL_SETTLEMENT_REWARD:
            if booking.settlement_transaction_id is None:
                booking.settlement_transaction_id = transaction.id
                self.db.flush()
        else:
            self._mark_installment(booking, transaction.type, transaction)

    def _mark_installment(self, booking: Booking, tx_type: str, transaction: VendorWalletTransaction):
        prefix = INSTALLMENT_FIELDS[tx_type]
        if getattr(booking, f"{prefix}_credited"):
            return
        setattr(booking, f"{prefix}_credited", True)
        setattr(booking, f"{prefix}_credited_at", datetime.utcnow())
        setattr(booking, f"{prefix}_transaction_id", transaction.id)
        self.db.flush()
        logger.info(f"✅ {tx_type} installment marked credited on booking {booking.id}")

    def _mark_travel_request_paid(self, booking: Booking, transaction: VendorWalletTransaction):
        if booking.travel_request_paid:
            return
        booking.travel_request_paid = True
        booking.travel_request_paid_at = datetime.utcnow()
        booking.travel_request_transaction_id = transaction.id
        self.db.flush()
        logger.info(f"✅ Travel charges request marked paid on booking {booking.id}")
