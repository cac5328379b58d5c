"""Wallet repository - Database operations for vendor balances and the ledger"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Vendor
from ...models_wallet import (
    VendorWalletTransaction,
    VendorWithdrawalRequest,
    WalletTransactionStatus,
    WalletTransactionType,
    WithdrawalStatus,
)


class VendorNotFoundError(Exception):
    pass


class WalletRepository:
    """Repository for wallet database operations"""

    @staticmethod
    def get_vendor(db: Session, vendor_id: int) -> Optional[Vendor]:
        return db.query(Vendor).filter(Vendor.id == vendor_id).first()

    @staticmethod
    def lock_vendor(db: Session, vendor_id: int) -> Optional[Vendor]:
        return db.query(Vendor).filter(Vendor.id == vendor_id).with_for_update().first()

    @staticmethod
    def get_transaction(db: Session, transaction_id: int) -> Optional[VendorWalletTransaction]:
        return (
            db.query(VendorWalletTransaction)
            .filter(VendorWalletTransaction.id == transaction_id)
            .first()
        )

    @staticmethod
    def find_successful_credit(
        db: Session, vendor_id: int, booking_id: Optional[int], tx_type: str
    ) -> Optional[VendorWalletTransaction]:
        return (
            db.query(VendorWalletTransaction)
            .filter(
                VendorWalletTransaction.vendor_id == vendor_id,
                VendorWalletTransaction.booking_id == booking_id,
                VendorWalletTransaction.type == tx_type,
                VendorWalletTransaction.status == WalletTransactionStatus.SUCCESS,
            )
            .first()
        )

    @staticmethod
    def increment_balance(db: Session, vendor_id: int, amount: float) -> Tuple[float, float]:
        """
        Atomically add amount to the vendor's balance and lifetime credits.
        Returns (balance_before, balance_after).
        """
        updated = (
            db.query(Vendor)
            .filter(Vendor.id == vendor_id)
            .update(
                {
                    Vendor.wallet_balance: Vendor.wallet_balance + amount,
                    Vendor.total_credited: Vendor.total_credited + amount,
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            raise VendorNotFoundError(f"Vendor {vendor_id} not found")
        balance_after = db.query(Vendor.wallet_balance).filter(Vendor.id == vendor_id).scalar()
        return balance_after - amount, balance_after

    @staticmethod
    def decrement_balance(db: Session, vendor_id: int, amount: float) -> Tuple[float, float, float]:
        """
        Remove up to amount from the balance, flooring at zero.
        Returns (balance_before, balance_after, amount_debited).
        """
        vendor = db.query(Vendor).filter(Vendor.id == vendor_id).with_for_update().first()
        if not vendor:
            raise VendorNotFoundError(f"Vendor {vendor_id} not found")
        before = vendor.wallet_balance or 0
        after = max(0.0, before - amount)
        debited = before - after
        vendor.wallet_balance = after
        vendor.total_debited = (vendor.total_debited or 0) + debited
        db.flush()
        return before, after, debited

    @staticmethod
    def current_balance(db: Session, vendor_id: int) -> float:
        balance = db.query(Vendor.wallet_balance).filter(Vendor.id == vendor_id).scalar()
        return balance or 0

    @staticmethod
    def list_transactions(
        db: Session,
        vendor_id: int,
        tx_type: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[VendorWalletTransaction], int]:
        query = db.query(VendorWalletTransaction).filter(VendorWalletTransaction.vendor_id == vendor_id)
        if tx_type:
            query = query.filter(VendorWalletTransaction.type == tx_type)
        if status:
            query = query.filter(VendorWalletTransaction.status == status)
        total = query.count()
        rows = (
            query.order_by(VendorWalletTransaction.created_at.desc(), VendorWalletTransaction.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return rows, total

    @staticmethod
    def retryable_failed_credits(
        db: Session, max_retries: int, limit: int = 100
    ) -> List[VendorWalletTransaction]:
        return (
            db.query(VendorWalletTransaction)
            .filter(
                VendorWalletTransaction.status == WalletTransactionStatus.FAILED,
                VendorWalletTransaction.resolved_at.is_(None),
                VendorWalletTransaction.retry_count < max_retries,
                VendorWalletTransaction.type.in_(WalletTransactionType.CREDITS),
            )
            .order_by(VendorWalletTransaction.id)
            .limit(limit)
            .all()
        )

    @staticmethod
    def list_failed_credits(db: Session, skip: int = 0, limit: int = 50) -> List[VendorWalletTransaction]:
        return (
            db.query(VendorWalletTransaction)
            .filter(
                VendorWalletTransaction.status == WalletTransactionStatus.FAILED,
                VendorWalletTransaction.resolved_at.is_(None),
            )
            .order_by(VendorWalletTransaction.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    @staticmethod
    def sum_successful(
        db: Session, vendor_id: int, types, since: Optional[datetime] = None
    ) -> float:
        query = db.query(func.coalesce(func.sum(VendorWalletTransaction.amount), 0)).filter(
            VendorWalletTransaction.vendor_id == vendor_id,
            VendorWalletTransaction.status == WalletTransactionStatus.SUCCESS,
            VendorWalletTransaction.type.in_(types),
        )
        if since is not None:
            query = query.filter(VendorWalletTransaction.created_at >= since)
        return float(query.scalar() or 0)

    @staticmethod
    def count_unresolved_failures(db: Session, vendor_id: int) -> int:
        return (
            db.query(VendorWalletTransaction)
            .filter(
                VendorWalletTransaction.vendor_id == vendor_id,
                VendorWalletTransaction.status == WalletTransactionStatus.FAILED,
                VendorWalletTransaction.resolved_at.is_(None),
            )
            .count()
        )

    # ------------------------------------------------------------------
    # Withdrawal requests
    # ------------------------------------------------------------------

    @staticmethod
    def get_withdrawal(db: Session, request_id: int) -> Optional[VendorWithdrawalRequest]:
        return db.query(VendorWithdrawalRequest).filter(VendorWithdrawalRequest.id == request_id).first()

    @staticmethod
    def reserved_for_withdrawals(db: Session, vendor_id: int) -> float:
        """Total amount held by the vendor's open (PENDING or APPROVED) requests"""
        total = (
            db.query(func.coalesce(func.sum(VendorWithdrawalRequest.amount), 0))
            .filter(
                VendorWithdrawalRequest.vendor_id == vendor_id,
                VendorWithdrawalRequest.status.in_(WithdrawalStatus.OPEN),
            )
            .scalar()
        )
        return float(total or 0)

    @staticmethod
    def list_withdrawals(
        db: Session,
        vendor_id: Optional[int] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[VendorWithdrawalRequest]:
        query = db.query(VendorWithdrawalRequest)
        if vendor_id is not None:
            query = query.filter(VendorWithdrawalRequest.vendor_id == vendor_id)
        if status:
            query = query.filter(VendorWithdrawalRequest.status == status)
        return (
            query.order_by(VendorWithdrawalRequest.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
