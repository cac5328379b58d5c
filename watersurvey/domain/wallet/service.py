"""
Vendor wallet ledger service

Credits are idempotent per (vendor, booking, type): a successful credit is looked
up before writing, and the partial unique index on SUCCESS rows turns a lost race
into an IntegrityError that is reported as "already credited".

A credit that cannot be applied is recorded as a FAILED row instead of raising.
Callers driving a booking transition must carry on and leave the row to the
retry queue.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import WALLET_CREDIT_MAX_RETRIES
from ...models_wallet import VendorWalletTransaction, WalletTransactionStatus, WalletTransactionType
from .repository import VendorNotFoundError, WalletRepository

logger = logging.getLogger(__name__)


class WalletRetryError(Exception):
    """Raised when a transaction is not eligible for retry"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass
class CreditResult:
    success: bool
    transaction: Optional[VendorWalletTransaction]
    already_credited: bool = False
    error: Optional[str] = None


class WalletService:
    """Service for vendor wallet credits, debits and retries"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = WalletRepository()

    def credit_to_vendor_wallet(
        self,
        vendor_id: int,
        amount: float,
        tx_type: str,
        booking_id: Optional[int] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> CreditResult:
        """
        Credit a vendor's wallet once per (vendor, booking, type).

        Returns a CreditResult; a FAILED ledger row is written (and returned) when the
        balance update fails. Does not commit.
        """
        existing = self.repo.find_successful_credit(self.db, vendor_id, booking_id, tx_type)
        if existing:
            logger.info(
                f"⚠️ {tx_type} already credited for booking {booking_id} (transaction {existing.id})"
            )
            return CreditResult(success=True, transaction=existing, already_credited=True)

        try:
            with self.db.begin_nested():
                before, after = self.repo.increment_balance(self.db, vendor_id, amount)
                transaction = VendorWalletTransaction(
                    vendor_id=vendor_id,
                    booking_id=booking_id,
                    type=tx_type,
                    amount=amount,
                    balance_before=before,
                    balance_after=after,
                    status=WalletTransactionStatus.SUCCESS,
                    description=description,
                    extra_data=metadata or {},
                )
                self.db.add(transaction)
        except IntegrityError:
            # Another request recorded the same credit between the check and the insert
            existing = self.repo.find_successful_credit(self.db, vendor_id, booking_id, tx_type)
            logger.warning(f"⚠️ Concurrent {tx_type} credit detected for booking {booking_id}")
            return CreditResult(success=True, transaction=existing, already_credited=True)
        except (SQLAlchemyError, VendorNotFoundError) as e:
            logger.error(f"❌ Wallet credit failed for vendor {vendor_id} ({tx_type}, booking {booking_id}): {e}")
            balance = self._safe_balance(vendor_id)
            transaction = VendorWalletTransaction(
                vendor_id=vendor_id,
                booking_id=booking_id,
                type=tx_type,
                amount=amount,
                balance_before=balance,
                balance_after=balance,
                status=WalletTransactionStatus.FAILED,
                description=description,
                error_message=str(e),
                extra_data=metadata or {},
            )
            self.db.add(transaction)
            self.db.flush()
            return CreditResult(success=False, transaction=transaction, error=str(e))

        logger.info(
            f"✅ Credited ₹{amount:.2f} to vendor {vendor_id} wallet ({tx_type}, booking {booking_id})"
        )
        return CreditResult(success=True, transaction=transaction)

    def debit_from_vendor_wallet(
        self,
        vendor_id: int,
        amount: float,
        tx_type: str,
        booking_id: Optional[int] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> VendorWalletTransaction:
        """Debit a vendor's wallet; the balance never goes below zero. Does not commit."""
        if tx_type not in WalletTransactionType.DEBITS:
            raise ValueError(f"{tx_type} is not a debit transaction type")
        before, after, debited = self.repo.decrement_balance(self.db, vendor_id, amount)
        transaction = VendorWalletTransaction(
            vendor_id=vendor_id,
            booking_id=booking_id,
            type=tx_type,
            amount=-debited,
            balance_before=before,
            balance_after=after,
            status=WalletTransactionStatus.SUCCESS,
            description=description,
            extra_data={**(metadata or {}), "requested_amount": amount},
        )
        self.db.add(transaction)
        self.db.flush()
        if debited < amount:
            logger.warning(
                f"⚠️ Debit of ₹{amount:.2f} for vendor {vendor_id} capped at balance ₹{debited:.2f}"
            )
        return transaction

    def retry_failed_credit(
        self, transaction_id: int, max_retries: int = WALLET_CREDIT_MAX_RETRIES
    ) -> CreditResult:
        """
        Re-apply a FAILED credit in place. On success the same row becomes SUCCESS.
        If the credit meanwhile succeeded through another row, the failed row is
        resolved without touching the balance. Does not commit.
        """
        transaction = self.repo.get_transaction(self.db, transaction_id)
        if not transaction:
            raise WalletRetryError("Transaction not found")
        if transaction.status != WalletTransactionStatus.FAILED:
            raise WalletRetryError("Only failed transactions can be retried")
        if transaction.resolved_at is not None:
            raise WalletRetryError("Transaction has already been resolved")
        if transaction.retry_count >= max_retries:
            raise WalletRetryError(f"Maximum retry attempts ({max_retries}) reached")

        existing = self.repo.find_successful_credit(
            self.db, transaction.vendor_id, transaction.booking_id, transaction.type
        )
        if existing:
            transaction.resolved_at = datetime.utcnow()
            transaction.error_message = f"Superseded by transaction {existing.id}"
            self.db.flush()
            logger.info(f"⚠️ Failed credit {transaction.id} superseded by transaction {existing.id}")
            return CreditResult(success=True, transaction=existing, already_credited=True)

        transaction.retry_count += 1
        try:
            with self.db.begin_nested():
                before, after = self.repo.increment_balance(
                    self.db, transaction.vendor_id, transaction.amount
                )
                transaction.balance_before = before
                transaction.balance_after = after
                transaction.status = WalletTransactionStatus.SUCCESS
                transaction.error_message = None
                transaction.resolved_at = datetime.utcnow()
        except (SQLAlchemyError, VendorNotFoundError) as e:
            transaction.status = WalletTransactionStatus.FAILED
            transaction.error_message = str(e)
            if transaction.retry_count >= max_retries:
                transaction.resolved_at = datetime.utcnow()
                logger.error(f"❌ Giving up on failed credit {transaction.id} after {transaction.retry_count} attempts")
            self.db.flush()
            logger.error(f"❌ Retry {transaction.retry_count} of credit {transaction.id} failed: {e}")
            return CreditResult(success=False, transaction=transaction, error=str(e))

        logger.info(
            f"🔄 Retried credit {transaction.id}: ₹{transaction.amount:.2f} to vendor {transaction.vendor_id}"
        )
        return CreditResult(success=True, transaction=transaction)

    def get_wallet_summary(self, vendor_id: int) -> dict:
        vendor = self.repo.get_vendor(self.db, vendor_id)
        if not vendor:
            raise VendorNotFoundError(f"Vendor {vendor_id} not found")

        now = datetime.utcnow()
        month_start = datetime(now.year, now.month, 1)
        total_earnings = self.repo.sum_successful(self.db, vendor_id, WalletTransactionType.EARNINGS)
        this_month = self.repo.sum_successful(
            self.db, vendor_id, WalletTransactionType.EARNINGS, since=month_start
        )
        total_debits = self.repo.sum_successful(self.db, vendor_id, WalletTransactionType.DEBITS)
        balance = vendor.wallet_balance or 0
        reserved = self.repo.reserved_for_withdrawals(self.db, vendor_id)

        return {
            "vendor_id": vendor_id,
            "balance": balance,
            "reserved_for_withdrawals": reserved,
            "available_balance": max(0.0, balance - reserved),
            "total_credited": vendor.total_credited or 0,
            "total_debited": vendor.total_debited or 0,
            "total_earnings": total_earnings,
            "total_debits": abs(total_debits),
            "this_month_earnings": this_month,
            "failed_credits": self.repo.count_unresolved_failures(self.db, vendor_id),
        }

    def _safe_balance(self, vendor_id: int) -> float:
        try:
            return self.repo.current_balance(self.db, vendor_id)
        except SQLAlchemyError as e:
            logger.warning(f"⚠️ Could not read balance for vendor {vendor_id}: {e}")
            return 0
