"""
Vendor wallet ledger and withdrawal requests
"""

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.sql import func

from .database import Base


class WalletTransactionType:
    TRAVEL_CHARGES = "TRAVEL_CHARGES"  # distance surcharge, credited with the advance
    TRAVEL_CHARGES_REQUEST = "TRAVEL_CHARGES_REQUEST"  # extra travel approved and paid by an admin
    SITE_VISIT = "SITE_VISIT"
    REPORT_UPLOAD = "REPORT_UPLOAD"
    FINAL_SETTLEMENT_REWARD = "FINAL_SETTLEMENT_REWARD"
    FINAL_SETTLEMENT_PENALTY = "FINAL_SETTLEMENT_PENALTY"
    WITHDRAWAL_REQUEST = "WITHDRAWAL_REQUEST"
    WITHDRAWAL_PROCESSED = "WITHDRAWAL_PROCESSED"

    EARNINGS = (TRAVEL_CHARGES, TRAVEL_CHARGES_REQUEST, SITE_VISIT, REPORT_UPLOAD)
    CREDITS = EARNINGS + (FINAL_SETTLEMENT_REWARD,)
    DEBITS = (WITHDRAWAL_PROCESSED, FINAL_SETTLEMENT_PENALTY)
    # Marker rows that never move the balance
    HOLDS = (WITHDRAWAL_REQUEST,)
    ALL = CREDITS + DEBITS + HOLDS


class WalletTransactionStatus:
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class VendorWalletTransaction(Base):
    """
    Ledger row. Rows are appended, never deleted. In-place changes are limited to
    a FAILED credit being retried into SUCCESS (or resolved without crediting) and
    a PENDING withdrawal marker being closed when its request is decided.
    """

    __tablename__ = "vendor_wallet_transactions"
    __table_args__ = (
        # At most one successful credit of a type per booking and vendor
        Index(
            "uq_wallet_tx_success_once",
            "vendor_id",
            "booking_id",
            "type",
            unique=True,
            postgresql_where=text("status = 'SUCCESS'"),
            sqlite_where=text("status = 'SUCCESS'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)

    type = Column(String(40), nullable=False)
    amount = Column(Float, nullable=False)  # negative for debits
    balance_before = Column(Float, nullable=False)
    balance_after = Column(Float, nullable=False)
    status = Column(String(20), default=WalletTransactionStatus.PENDING, nullable=False, index=True)
    description = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    resolved_at = Column(DateTime, nullable=True)  # FAILED row no longer eligible for retry
    extra_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class WithdrawalStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PROCESSED = "PROCESSED"

    OPEN = (PENDING, APPROVED)


class PayoutMethod:
    UPI = "UPI"
    BANK_TRANSFER = "BANK_TRANSFER"
    NEFT = "NEFT"
    IMPS = "IMPS"
    RTGS = "RTGS"
    RAZORPAY = "RAZORPAY"
    CASH = "CASH"
    OTHER = "OTHER"

    ALL = (UPI, BANK_TRANSFER, NEFT, IMPS, RTGS, RAZORPAY, CASH, OTHER)


class VendorWithdrawalRequest(Base):
    """
    A vendor asking to move money out of the wallet.
    PENDING → APPROVED → PROCESSED, or REJECTED from either open state.
    Only processing debits the balance; open requests reserve their amount.
    """

    __tablename__ = "vendor_withdrawal_requests"

    id = Column(Integer, primary_key=True, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    status = Column(String(20), default=WithdrawalStatus.PENDING, nullable=False, index=True)
    payout_details = Column(JSON, nullable=True)  # upi_id or bank account fields
    note = Column(Text, nullable=True)

    # WITHDRAWAL_REQUEST marker row and the WITHDRAWAL_PROCESSED debit
    request_transaction_id = Column(Integer, nullable=True)
    processed_transaction_id = Column(Integer, nullable=True)

    reviewed_by = Column(Integer, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    processed_by = Column(Integer, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    payment_method = Column(String(20), nullable=True)
    payment_reference = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
