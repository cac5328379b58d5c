import pytest

from watersurvey.domain.wallet.service import WalletService
from watersurvey.domain.wallet.withdrawals import WithdrawalService
from watersurvey.exceptions import InvalidActionError, WithdrawalNotFoundError
from watersurvey.models_notification import NotificationType, RecipientKind
from watersurvey.models_wallet import (
    VendorWalletTransaction,
    WalletTransactionStatus,
    WalletTransactionType,
    WithdrawalStatus,
)

from conftest import auth_headers, outbox_events

REASON = "Bank details do not match the KYC record"


@pytest.fixture
def vendor(factory):
    return factory.vendor(wallet_balance=5000.0)


@pytest.fixture
def withdrawals(db):
    return WithdrawalService(db)


def _marker(db, request):
    return db.query(VendorWalletTransaction).filter(VendorWalletTransaction.id == request.request_transaction_id).one()


def test_request_reserves_amount_without_touching_balance(db, vendor, withdrawals):
    request = withdrawals.request_withdrawal(vendor.id, 3000, {"upi_id": "vendor@upi"}, "Monthly payout")

    assert request.status == WithdrawalStatus.PENDING
    marker = _marker(db, request)
    assert marker.type == WalletTransactionType.WITHDRAWAL_REQUEST
    assert marker.status == WalletTransactionStatus.PENDING
    assert marker.amount == pytest.approx(-3000)
    assert marker.balance_before == marker.balance_after == pytest.approx(5000)
    db.refresh(vendor)
    assert vendor.wallet_balance == pytest.approx(5000)
    assert withdrawals.available_balance(vendor.id) == pytest.approx(2000)

    summary = WalletService(db).get_wallet_summary(vendor.id)
    assert summary["reserved_for_withdrawals"] == pytest.approx(3000)
    assert summary["available_balance"] == pytest.approx(2000)
    assert summary["total_debits"] == 0

    [event] = outbox_events(db, NotificationType.WITHDRAWAL_REQUESTED)
    assert event.recipient_kind == RecipientKind.ADMIN


def test_request_below_minimum_is_refused(db, vendor, withdrawals):
    with pytest.raises(InvalidActionError, match="Minimum withdrawal amount"):
        withdrawals.request_withdrawal(vendor.id, 999)

    assert withdrawals.list_requests(vendor_id=vendor.id) == []


def test_open_requests_count_against_available_balance(vendor, withdrawals):
    withdrawals.request_withdrawal(vendor.id, 3000)

    with pytest.raises(InvalidActionError, match="Insufficient balance"):
        withdrawals.request_withdrawal(vendor.id, 2500)

    second = withdrawals.request_withdrawal(vendor.id, 2000)
    assert second.status == WithdrawalStatus.PENDING
    assert withdrawals.available_balance(vendor.id) == 0


def test_process_debits_wallet_and_closes_marker(db, vendor, withdrawals):
    request = withdrawals.request_withdrawal(vendor.id, 3000)

    with pytest.raises(InvalidActionError, match="Expected: APPROVED"):
        withdrawals.process(1, request.id, "UPI", "UTR123456")

    withdrawals.approve(1, request.id)
    with pytest.raises(InvalidActionError):
        withdrawals.process(1, request.id, "CHEQUE", "UTR123456")

    request = withdrawals.process(1, request.id, "UPI", "UTR123456", "Paid from current account")

    assert request.status == WithdrawalStatus.PROCESSED
    assert request.processed_by == 1
    debit = db.query(VendorWalletTransaction).filter(
        VendorWalletTransaction.id == request.processed_transaction_id
    ).one()
    assert debit.type == WalletTransactionType.WITHDRAWAL_PROCESSED
    assert debit.status == WalletTransactionStatus.SUCCESS
    assert debit.amount == pytest.approx(-3000)
    assert debit.extra_data["withdrawal_request_id"] == request.id
    marker = _marker(db, request)
    assert marker.status == WalletTransactionStatus.SUCCESS
    assert marker.resolved_at is not None

    db.refresh(vendor)
    assert vendor.wallet_balance == pytest.approx(2000)
    assert withdrawals.available_balance(vendor.id) == pytest.approx(2000)
    [event] = outbox_events(db, NotificationType.WITHDRAWAL_PROCESSED)
    assert event.recipient_id == vendor.id

    with pytest.raises(InvalidActionError):
        withdrawals.process(1, request.id, "UPI", "UTR123456")


def test_reject_releases_reservation(db, vendor, withdrawals):
    request = withdrawals.request_withdrawal(vendor.id, 3000)
    withdrawals.approve(1, request.id)

    with pytest.raises(InvalidActionError):
        withdrawals.reject(1, request.id, "no")

    request = withdrawals.reject(1, request.id, REASON)

    assert request.status == WithdrawalStatus.REJECTED
    assert request.rejection_reason == REASON
    marker = _marker(db, request)
    assert marker.status == WalletTransactionStatus.FAILED
    assert marker.error_message == f"Rejected: {REASON}"
    assert marker.resolved_at is not None
    assert withdrawals.available_balance(vendor.id) == pytest.approx(5000)
    # a rejected marker is not a failed credit waiting for retry
    assert WalletService(db).get_wallet_summary(vendor.id)["failed_credits"] == 0

    with pytest.raises(InvalidActionError):
        withdrawals.approve(1, request.id)


def test_other_vendors_request_is_not_found(factory, vendor, withdrawals):
    request = withdrawals.request_withdrawal(vendor.id, 1500)
    other = factory.vendor()

    with pytest.raises(WithdrawalNotFoundError):
        withdrawals.get_request(request.id, vendor_id=other.id)
    with pytest.raises(WithdrawalNotFoundError):
        withdrawals.approve(1, 424242)


def test_withdrawal_endpoints(client, db, vendor):
    vendor_headers = auth_headers(vendor.id, "vendor")
    admin_headers = auth_headers(1, "admin")

    created = client.post(
        "/vendor/wallet/withdrawals",
        json={"amount": 1200, "payout_details": {"upi_id": "vendor@upi"}},
        headers=vendor_headers,
    )
    assert created.status_code == 201, created.text
    request_id = created.json()["id"]

    too_small = client.post("/vendor/wallet/withdrawals", json={"amount": 10}, headers=vendor_headers)
    assert too_small.status_code == 400
    assert client.post(f"/admin/wallet/withdrawals/{request_id}/approve", headers=vendor_headers).status_code == 403

    pending = client.get("/admin/wallet/withdrawals?status=PENDING", headers=admin_headers).json()
    assert [r["id"] for r in pending] == [request_id]

    approved = client.post(f"/admin/wallet/withdrawals/{request_id}/approve", headers=admin_headers)
    assert approved.json()["status"] == WithdrawalStatus.APPROVED
    processed = client.post(
        f"/admin/wallet/withdrawals/{request_id}/process",
        json={"payment_method": "neft", "payment_reference": "NEFT0001"},
        headers=admin_headers,
    )
    assert processed.status_code == 200, processed.text
    assert processed.json()["payment_method"] == "NEFT"

    wallet = client.get("/vendor/wallet", headers=vendor_headers).json()
    assert wallet["balance"] == pytest.approx(3800)
    assert wallet["available_balance"] == pytest.approx(3800)

    missing = client.post("/admin/wallet/withdrawals/999/approve", headers=admin_headers)
    assert missing.status_code == 404
