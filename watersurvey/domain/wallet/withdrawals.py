"""
Vendor withdrawals

A request reserves part of the balance and writes a PENDING WITHDRAWAL_REQUEST
marker to the ledger (balance unchanged). An admin approves or rejects it;
processing an approved request is the only step that debits the wallet, through
a WITHDRAWAL_PROCESSED row. The marker is closed as SUCCESS or FAILED when the
request is decided so the ledger shows what happened to it.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ...config import MIN_REASON_LENGTH, MIN_WITHDRAWAL_AMOUNT
from ...exceptions import InvalidActionError, WithdrawalNotFoundError
from ...models_notification import NotificationType, RecipientKind
from ...models_wallet import (
    PayoutMethod,
    VendorWalletTransaction,
    VendorWithdrawalRequest,
    WalletTransactionStatus,
    WalletTransactionType,
    WithdrawalStatus,
)
from ...services.notification_service import enqueue_notification
from ...utils.sanitization import clean_reason, sanitize_dict, sanitize_string
from ..pricing.calculator import present
from .repository import VendorNotFoundError, WalletRepository
from .service import WalletService

logger = logging.getLogger(__name__)


class WithdrawalService:
    """Service for vendor withdrawal requests"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = WalletRepository()
        self.wallet = WalletService(db)

    def available_balance(self, vendor_id: int) -> float:
        balance = self.repo.current_balance(self.db, vendor_id)
        return max(0.0, balance - self.repo.reserved_for_withdrawals(self.db, vendor_id))

    def get_request(self, request_id: int, vendor_id: Optional[int] = None) -> VendorWithdrawalRequest:
        request = self.repo.get_withdrawal(self.db, request_id)
        if not request or (vendor_id is not None and request.vendor_id != vendor_id):
            raise WithdrawalNotFoundError()
        return request

    def list_requests(
        self, vendor_id: Optional[int] = None, status: Optional[str] = None, skip: int = 0, limit: int = 20
    ) -> List[VendorWithdrawalRequest]:
        return self.repo.list_withdrawals(self.db, vendor_id=vendor_id, status=status, skip=skip, limit=limit)

    # ------------------------------------------------------------------
    # Vendor
    # ------------------------------------------------------------------

    def request_withdrawal(
        self,
        vendor_id: int,
        amount: float,
        payout_details: Optional[dict] = None,
        note: Optional[str] = None,
    ) -> VendorWithdrawalRequest:
        vendor = self.repo.lock_vendor(self.db, vendor_id)
        if not vendor:
            raise VendorNotFoundError(f"Vendor {vendor_id} not found")
        if amount is None or amount < MIN_WITHDRAWAL_AMOUNT:
            raise InvalidActionError(f"Minimum withdrawal amount is ₹{MIN_WITHDRAWAL_AMOUNT:.0f}")

        balance = vendor.wallet_balance or 0
        available = max(0.0, balance - self.repo.reserved_for_withdrawals(self.db, vendor_id))
        if amount > available:
            raise InvalidActionError(
                f"Insufficient balance. Available for withdrawal: ₹{present(available):.2f}"
            )

        marker = VendorWalletTransaction(
            vendor_id=vendor_id,
            booking_id=None,
            type=WalletTransactionType.WITHDRAWAL_REQUEST,
            amount=-amount,
            balance_before=balance,
            balance_after=balance,
            status=WalletTransactionStatus.PENDING,
            description=f"Withdrawal request of ₹{present(amount):.2f}",
            extra_data={},
        )
        self.db.add(marker)
        self.db.flush()

        request = VendorWithdrawalRequest(
            vendor_id=vendor_id,
            amount=amount,
            status=WithdrawalStatus.PENDING,
            payout_details=sanitize_dict(payout_details or {}),
            note=sanitize_string(note),
            request_transaction_id=marker.id,
        )
        self.db.add(request)
        self.db.flush()
        marker.extra_data = {"withdrawal_request_id": request.id}

        enqueue_notification(
            self.db,
            recipient_id=None,
            recipient_kind=RecipientKind.ADMIN,
            event_type=NotificationType.WITHDRAWAL_REQUESTED,
            title="Withdrawal Requested",
            message=f"Vendor {vendor_id} requested a withdrawal of ₹{present(amount):.2f}.",
            related_entity=("withdrawal", request.id),
            metadata={"withdrawal_id": request.id, "vendor_id": vendor_id, "amount": present(amount)},
        )
        self.db.commit()
        logger.info(f"✅ Withdrawal request {request.id} of ₹{amount:.2f} created for vendor {vendor_id}")
        return request

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def approve(self, admin_id: int, request_id: int) -> VendorWithdrawalRequest:
        request = self.get_request(request_id)
        self._require_status(request, "approve", (WithdrawalStatus.PENDING,))

        request.status = WithdrawalStatus.APPROVED
        request.reviewed_by = admin_id
        request.reviewed_at = datetime.utcnow()
        self._notify_vendor(
            request,
            NotificationType.WITHDRAWAL_APPROVED,
            "Withdrawal Approved",
            f"Your withdrawal request of ₹{present(request.amount):.2f} was approved and will be paid out shortly.",
        )
        self.db.commit()
        logger.info(f"✅ Withdrawal request {request.id} approved by admin {admin_id}")
        return request

    def reject(self, admin_id: int, request_id: int, reason: str) -> VendorWithdrawalRequest:
        cleaned = clean_reason(reason)
        if not cleaned:
            raise InvalidActionError(
                f"Rejection reason is required (minimum {MIN_REASON_LENGTH} characters)"
            )
        request = self.get_request(request_id)
        self._require_status(request, "reject", WithdrawalStatus.OPEN)

        now = datetime.utcnow()
        request.status = WithdrawalStatus.REJECTED
        request.rejection_reason = cleaned
        request.reviewed_by = admin_id
        request.reviewed_at = now
        self._close_marker(request, WalletTransactionStatus.FAILED, f"Rejected: {cleaned}")
        self._notify_vendor(
            request,
            NotificationType.WITHDRAWAL_REJECTED,
            "Withdrawal Rejected",
            f"Your withdrawal request of ₹{present(request.amount):.2f} was rejected: {cleaned}",
        )
        self.db.commit()
        logger.info(f"❌ Withdrawal request {request.id} rejected by admin {admin_id}")
        return request

    def process(
        self,
        admin_id: int,
        request_id: int,
        payment_method: str,
        payment_reference: str,
        note: Optional[str] = None,
    ) -> VendorWithdrawalRequest:
        """Pay out an approved request and debit the wallet"""
        if payment_method not in PayoutMethod.ALL:
            raise InvalidActionError(f"Unknown payment method: {payment_method}")
        reference = sanitize_string(payment_reference)
        if not reference:
            raise InvalidActionError("Payment reference is required")

        request = self.get_request(request_id)
        self._require_status(request, "process", (WithdrawalStatus.APPROVED,))

        vendor = self.repo.lock_vendor(self.db, request.vendor_id)
        if not vendor:
            raise VendorNotFoundError(f"Vendor {request.vendor_id} not found")
        if (vendor.wallet_balance or 0) < request.amount:
            raise InvalidActionError(
                f"Insufficient balance. Current balance: ₹{present(vendor.wallet_balance or 0):.2f}"
            )

        debit = self.wallet.debit_from_vendor_wallet(
            request.vendor_id,
            request.amount,
            WalletTransactionType.WITHDRAWAL_PROCESSED,
            description=f"Withdrawal via {payment_method} ({reference})",
            metadata={"withdrawal_request_id": request.id, "payment_reference": reference},
        )
        now = datetime.utcnow()
        request.status = WithdrawalStatus.PROCESSED
        request.processed_by = admin_id
        request.processed_at = now
        request.payment_method = payment_method
        request.payment_reference = reference
        request.processed_transaction_id = debit.id
        if note:
            request.note = sanitize_string(note)
        self._close_marker(request, WalletTransactionStatus.SUCCESS, None)
        self._notify_vendor(
            request,
            NotificationType.WITHDRAWAL_PROCESSED,
            "Withdrawal Processed",
            f"₹{present(request.amount):.2f} has been sent to you via {payment_method}. Reference: {reference}.",
        )
        self.db.commit()
        logger.info(
            f"✅ Withdrawal request {request.id} processed: ₹{request.amount:.2f} to vendor {request.vendor_id}"
        )
        return request

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_status(request: VendorWithdrawalRequest, action: str, allowed: tuple) -> None:
        if request.status not in allowed:
            raise InvalidActionError(
                f"Cannot {action} withdrawal request. Current status: {request.status}. "
                f"Expected: {' or '.join(allowed)}."
            )

    def _close_marker(self, request: VendorWithdrawalRequest, status: str, error: Optional[str]) -> None:
        if request.request_transaction_id is None:
            return
        marker = self.repo.get_transaction(self.db, request.request_transaction_id)
        if marker is None or marker.status != WalletTransactionStatus.PENDING:
            return
        marker.status = status
        marker.error_message = error
        marker.resolved_at = datetime.utcnow()
        self.db.flush()

    def _notify_vendor(self, request: VendorWithdrawalRequest, event_type: str, title: str, message: str):
        enqueue_notification(
            self.db,
            recipient_id=request.vendor_id,
            recipient_kind=RecipientKind.VENDOR,
            event_type=event_type,
            title=title,
            message=message,
            related_entity=("withdrawal", request.id),
            metadata={"withdrawal_id": request.id, "amount": present(request.amount), "status": request.status},
        )
