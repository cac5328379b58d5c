import asyncio
import json
from datetime import datetime

from sqlalchemy.exc import OperationalError

from watersurvey.domain.bookings.state import BookingState, BookingStatus
from watersurvey.domain.wallet.repository import WalletRepository
from watersurvey.domain.wallet.service import WalletService
from watersurvey.models_booking import Booking
from watersurvey.models_notification import NotificationType, RecipientKind
from watersurvey.models_payment import Payment, PaymentStatus, PaymentType
from watersurvey.models_wallet import WalletTransactionType
from watersurvey.services.notification_service import (
    NotificationDispatcher,
    dispatch_pending_notifications,
    enqueue_notification,
)

from conftest import auth_headers, outbox_events, sign_checkout, sign_webhook, webhook_body

S = BookingStatus

BOOKING_JSON = {
    "scheduled_date": "2026-11-02T00:00:00",
    "scheduled_time": "10:00",
    "address_street": "Survey No. 112",
    "address_city": "Warangal",
    "address_state": "Telangana",
    "address_pincode": "506002",
}


def _create_booking(client, customer, service):
    response = client.post(
        "/bookings",
        json={**BOOKING_JSON, "service_id": service.id},
        headers=auth_headers(customer.id, "customer"),
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_create_booking_returns_booking_and_order(client, factory):
    customer = factory.customer()
    service = factory.service(factory.vendor())

    data = _create_booking(client, customer, service)

    assert data["booking"]["status"] == S.AWAITING_ADVANCE
    assert data["booking"]["state"] == {"overall": S.AWAITING_ADVANCE, "vendor": S.AWAITING_ADVANCE,
                                        "user": S.AWAITING_ADVANCE}
    assert data["booking"]["payment"]["total_amount"] == 1180
    assert data["booking"]["payment"]["advance_amount"] == 472
    assert data["order"]["order_id"] == "order_test_1"
    assert data["order"]["amount"] == 472


def test_validation_errors_use_failure_envelope(client, factory):
    customer = factory.customer()
    service = factory.service(factory.vendor())

    response = client.post(
        "/bookings",
        json={**BOOKING_JSON, "service_id": service.id, "address_pincode": "50600"},
        headers=auth_headers(customer.id, "customer"),
    )

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert any("address_pincode" in error["loc"] for error in body["errors"])


def test_guard_violation_returns_409_with_statuses(client, factory, db):
    vendor = factory.vendor()
    booking = factory.booking(factory.customer(), factory.service(vendor), status=S.VISITED)

    response = client.post(f"/vendor/bookings/{booking.id}/accept", headers=auth_headers(vendor.id, "vendor"))

    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["currentStatus"] == S.VISITED
    assert body["expectedStatus"] == [S.ASSIGNED]
    assert "Cannot accept booking" in body["message"]
    db.expire_all()
    assert booking.status == S.VISITED


def test_roles_are_enforced(client, factory):
    customer = factory.customer()
    vendor = factory.vendor()
    booking = factory.booking(customer, factory.service(vendor))

    response = client.post(f"/vendor/bookings/{booking.id}/accept", headers=auth_headers(customer.id, "customer"))
    assert response.status_code == 403

    other = factory.customer()
    response = client.get(f"/bookings/{booking.id}", headers=auth_headers(other.id, "customer"))
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_vendor_cannot_touch_unassigned_booking(client, factory):
    booking = factory.booking(factory.customer(), factory.service(factory.vendor()))
    stranger = factory.vendor()

    response = client.post(f"/vendor/bookings/{booking.id}/accept", headers=auth_headers(stranger.id, "vendor"))

    assert response.status_code == 403
    assert response.json()["success"] is False


def test_advance_verification(client, factory, db):
    customer = factory.customer()
    vendor = factory.vendor()
    data = _create_booking(client, customer, factory.service(vendor))
    booking_id = data["booking"]["id"]
    order_id = data["order"]["order_id"]
    headers = auth_headers(customer.id, "customer")

    bad = client.post(
        "/payments/advance/verify",
        json={"booking_id": booking_id, "razorpay_order_id": order_id,
              "razorpay_payment_id": "pay_1", "razorpay_signature": "0" * 64},
        headers=headers,
    )
    assert bad.status_code == 400
    assert bad.json() == {"success": False, "message": "Invalid payment signature"}
    assert db.get(Booking, booking_id).status == S.AWAITING_ADVANCE

    good = client.post(
        "/payments/advance/verify",
        json={"booking_id": booking_id, "razorpay_order_id": order_id,
              "razorpay_payment_id": "pay_1", "razorpay_signature": sign_checkout(order_id, "pay_1")},
        headers=headers,
    )
    assert good.status_code == 200
    assert good.json()["data"]["state"] == {"overall": S.ASSIGNED, "vendor": S.ASSIGNED, "user": S.ASSIGNED}
    [assigned] = outbox_events(db, NotificationType.BOOKING_ASSIGNED)
    assert assigned.recipient_id == vendor.id


def test_webhook_capture_settles_advance_once(client, factory, db):
    customer = factory.customer()
    data = _create_booking(client, customer, factory.service(factory.vendor()))
    body = webhook_body("payment.captured", "pay_wh_1", data["order"]["order_id"], method="upi")
    headers = {"X-Razorpay-Signature": sign_webhook(body), "Content-Type": "application/json"}

    first = client.post("/payments/webhook", content=body, headers=headers)
    replay = client.post("/payments/webhook", content=body, headers=headers)

    assert first.json()["status"] == "processed"
    assert replay.json()["status"] == "already_processed"
    db.expire_all()
    booking = db.get(Booking, data["booking"]["id"])
    assert booking.state == BookingState.uniform(S.ASSIGNED)
    payment = db.query(Payment).one()
    assert payment.status == PaymentStatus.SUCCESS
    assert payment.gateway_payment_id == "pay_wh_1"
    assert payment.payment_method == "upi"


def test_webhook_with_bad_signature_is_refused(client):
    body = webhook_body("payment.captured", "pay_1", "order_1")

    response = client.post("/payments/webhook", content=body, headers={"X-Razorpay-Signature": "nope"})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_webhook_failure_marks_payment_and_notifies(client, factory, db):
    customer = factory.customer()
    data = _create_booking(client, customer, factory.service(factory.vendor()))
    body = webhook_body(
        "payment.failed", "pay_wh_2", data["order"]["order_id"], error_description="Card declined"
    )

    response = client.post("/payments/webhook", content=body, headers={"X-Razorpay-Signature": sign_webhook(body)})

    assert response.status_code == 200
    payment = db.query(Payment).one()
    db.refresh(payment)
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Card declined"
    [event] = outbox_events(db, NotificationType.PAYMENT_FAILED)
    assert event.recipient_id == customer.id


def test_capture_for_cancelled_booking_is_recorded_without_transition(client, factory, db):
    customer = factory.customer()
    booking = factory.booking(customer, factory.service(factory.vendor()), status=S.CANCELLED, advance_paid=False)
    db.add(
        Payment(
            booking_id=booking.id,
            customer_id=customer.id,
            payment_type=PaymentType.ADVANCE,
            amount=booking.advance_amount,
            currency="INR",
            status=PaymentStatus.PENDING,
            gateway_order_id="order_late",
        )
    )
    db.commit()
    body = webhook_body("payment.captured", "pay_late", "order_late")

    response = client.post("/payments/webhook", content=body, headers={"X-Razorpay-Signature": sign_webhook(body)})

    assert response.json()["status"] == "recorded"
    db.expire_all()
    assert booking.status == S.CANCELLED
    assert db.query(Payment).one().status == PaymentStatus.SUCCESS


def test_reject_with_short_reason(client, factory):
    vendor = factory.vendor()
    booking = factory.booking(factory.customer(), factory.service(vendor))

    response = client.post(
        f"/vendor/bookings/{booking.id}/reject",
        json={"reason": "no"},
        headers=auth_headers(vendor.id, "vendor"),
    )

    assert response.status_code == 400
    assert "minimum 10 characters" in response.json()["message"]


def test_reject_without_alternates(client, factory, db):
    vendor = factory.vendor()
    booking = factory.booking(factory.customer(), factory.service(vendor))

    response = client.post(
        f"/vendor/bookings/{booking.id}/reject",
        json={"reason": "Machine sent for calibration"},
        headers=auth_headers(vendor.id, "vendor"),
    )

    assert response.status_code == 200
    assert response.json()["data"]["reassigned"] is False
    db.expire_all()
    assert booking.state == BookingState.uniform(S.REJECTED)


def test_mark_visited_reports_wallet_credit(client, factory, retry_scheduler):
    vendor = factory.vendor()
    booking = factory.booking(factory.customer(), factory.service(vendor), status=S.ACCEPTED)

    response = client.post(f"/vendor/bookings/{booking.id}/visited", headers=auth_headers(vendor.id, "vendor"))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["wallet_credit"]["success"] is True
    wallet = data["booking"]["payment"]["vendor_wallet_payments"]
    assert wallet["site_visit_payment"]["credited"] is True
    assert wallet["site_visit_payment"]["amount"] == 515
    assert retry_scheduler.calls == []


def test_report_upload_with_files(client, factory, storage, gateway):
    vendor = factory.vendor()
    booking = factory.booking(factory.customer(), factory.service(vendor), status=S.VISITED)

    response = client.post(
        f"/vendor/bookings/{booking.id}/report",
        data={
            "water_found": "true",
            "machine_readings": json.dumps({"depth": "220 ft", "flow_rate": "3 inch"}),
            "notes": "Two fracture zones",
        },
        files=[
            ("images", ("site.jpg", b"\xff\xd8\xff\xe0jpeg", "image/jpeg")),
            ("report_file", ("report.pdf", b"%PDF-1.4", "application/pdf")),
        ],
        headers=auth_headers(vendor.id, "vendor"),
    )

    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["booking"]["user_status"] == S.AWAITING_PAYMENT
    assert data["booking"]["report"]["machine_readings"] == {"depth": "220 ft", "flow_rate": "3 inch"}
    assert data["booking"]["report"]["report_file"]["public_id"] == f"bookings/{booking.id}/report/2"
    assert len(storage.uploads) == 2
    assert gateway.orders[-1]["metadata"]["payment_type"] == PaymentType.REMAINING


def test_report_upload_rejects_bad_readings(client, factory, storage):
    vendor = factory.vendor()
    booking = factory.booking(factory.customer(), factory.service(vendor), status=S.VISITED)

    response = client.post(
        f"/vendor/bookings/{booking.id}/report",
        data={"water_found": "false", "machine_readings": "{not json"},
        headers=auth_headers(vendor.id, "vendor"),
    )

    assert response.status_code == 400
    assert storage.uploads == []


def test_rejected_report_is_resubmitted_through_report_upload(client, factory, db, gateway):
    vendor = factory.vendor()
    booking = factory.booking(factory.customer(), factory.service(vendor), status=S.VISITED)
    vendor_headers = auth_headers(vendor.id, "vendor")
    admin_headers = auth_headers(1, "admin")
    client.post(f"/vendor/bookings/{booking.id}/report", data={"water_found": "false"}, headers=vendor_headers)

    rejected = client.post(
        f"/admin/bookings/{booking.id}/reject-report",
        json={"reason": "Machine readings are missing"},
        headers=admin_headers,
    )
    assert rejected.status_code == 200, rejected.text
    assert rejected.json()["data"]["report"]["rejection_reason"] == "Machine readings are missing"
    assert client.post(f"/admin/bookings/{booking.id}/approve-report", headers=admin_headers).status_code == 400

    resubmitted = client.post(
        f"/vendor/bookings/{booking.id}/report",
        data={"water_found": "true", "machine_readings": json.dumps({"depth": "190 ft"})},
        headers=vendor_headers,
    )
    assert resubmitted.status_code == 200, resubmitted.text
    assert resubmitted.json()["message"] == "Report resubmitted for review"
    assert resubmitted.json()["data"]["report"]["rejected_at"] is None
    # the remaining payment order from the first upload is kept
    assert len(gateway.orders) == 1

    approved = client.post(f"/admin/bookings/{booking.id}/approve-report", headers=admin_headers)
    assert approved.status_code == 200
    assert approved.json()["data"]["wallet_credit"]["success"] is True


def test_borewell_approval_settlement_and_refund_endpoints(client, factory, db, gateway):
    vendor = factory.vendor(wallet_balance=1000.0)
    customer = factory.customer()
    booking = factory.booking(
        customer,
        factory.service(vendor),
        status=S.BOREWELL_UPLOADED,
        report_uploaded_at=datetime(2026, 11, 3),
        report_approved_at=datetime(2026, 11, 4),
        remaining_paid=True,
        remaining_payment_id="pay_remaining_1",
        borewell_status="FAILED",
        borewell_uploaded_at=datetime(2026, 11, 20),
    )
    admin_headers = auth_headers(1, "admin")

    early = client.post(f"/admin/bookings/{booking.id}/final-settlement", json={}, headers=admin_headers)
    assert early.status_code == 400

    approved = client.post(f"/admin/bookings/{booking.id}/approve-borewell", headers=admin_headers)
    assert approved.status_code == 200
    assert approved.json()["data"]["borewell"]["approved_at"] is not None

    negative = client.post(
        f"/admin/bookings/{booking.id}/final-settlement", json={"penalty": -5}, headers=admin_headers
    )
    assert negative.status_code == 422
    settled = client.post(
        f"/admin/bookings/{booking.id}/final-settlement", json={"penalty": 150}, headers=admin_headers
    )
    assert settled.status_code == 200, settled.text
    data = settled.json()["data"]
    assert data["booking"]["state"] == {"overall": S.COMPLETED, "vendor": S.COMPLETED, "user": S.COMPLETED}
    assert data["booking"]["settlement"]["penalty"] == 150
    assert data["wallet_credit"] is None

    refunded = client.post(
        f"/payments/admin/bookings/{booking.id}/refund", json={"amount": 100}, headers=admin_headers
    )
    assert refunded.status_code == 200, refunded.text
    assert refunded.json()["data"]["amount"] == 100
    assert refunded.json()["data"]["booking"]["settlement"]["refund_amount"] == 100
    assert gateway.refunds[0]["payment_id"] == "pay_remaining_1"
    forbidden = client.post(
        f"/payments/admin/bookings/{booking.id}/refund", json={}, headers=auth_headers(customer.id, "customer")
    )
    assert forbidden.status_code == 403


def test_wallet_endpoints_and_admin_retry(client, factory, db, monkeypatch):
    vendor = factory.vendor()
    wallet = WalletService(db)
    wallet.credit_to_vendor_wallet(vendor.id, 400, WalletTransactionType.TRAVEL_CHARGES)

    def locked(db, vendor_id, amount):
        raise OperationalError("UPDATE vendors", {}, Exception("database is locked"))

    monkeypatch.setattr(WalletRepository, "increment_balance", staticmethod(locked))
    failed = wallet.credit_to_vendor_wallet(vendor.id, 250, WalletTransactionType.SITE_VISIT)
    db.commit()
    monkeypatch.undo()
    vendor_headers = auth_headers(vendor.id, "vendor")
    admin_headers = auth_headers(1, "admin")

    summary = client.get("/vendor/wallet", headers=vendor_headers).json()
    assert summary["balance"] == 400
    assert summary["failed_credits"] == 1

    listed = client.get("/admin/wallet/failed-credits", headers=admin_headers).json()
    assert [row["id"] for row in listed] == [failed.transaction.id]

    retried = client.post(f"/admin/wallet/transactions/{failed.transaction.id}/retry", headers=admin_headers)
    assert retried.status_code == 200
    assert retried.json()["transaction"]["status"] == "SUCCESS"

    again = client.post(f"/admin/wallet/transactions/{failed.transaction.id}/retry", headers=admin_headers)
    assert again.status_code == 400

    history = client.get(
        "/vendor/wallet/transactions", params={"type": "SITE_VISIT"}, headers=vendor_headers
    ).json()
    assert history["total"] == 1
    assert history["transactions"][0]["amount"] == 250


def test_service_vendors_are_ranked_with_quotes(client, factory):
    near = factory.vendor(average_rating=4.5, latitude=17.05, longitude=79.0)
    top = factory.vendor(average_rating=4.8, latitude=17.5, longitude=79.0)
    factory.vendor(average_rating=5.0, is_approved=False)
    service = factory.service(near)
    factory.service(top, price=1200.0)

    response = client.get(f"/services/{service.id}/vendors", params={"latitude": 17.0, "longitude": 79.0})

    vendors = response.json()["vendors"]
    assert [v["vendor_id"] for v in vendors] == [top.id, near.id]
    assert vendors[0]["quote"]["travel_charges"] > 0
    assert vendors[1]["quote"]["travel_charges"] == 0


def test_notification_inbox(client, factory, db):
    customer = factory.customer()
    enqueue_notification(
        db,
        recipient_id=customer.id,
        recipient_kind=RecipientKind.CUSTOMER,
        event_type=NotificationType.BOOKING_ACCEPTED,
        title="Booking Accepted",
        message="Your expert has accepted the booking.",
        related_entity=("booking", 1),
    )
    enqueue_notification(
        db,
        recipient_id=None,
        recipient_kind=RecipientKind.ADMIN,
        event_type=NotificationType.REPORT_UPLOADED,
        title="Report Awaiting Approval",
        message="A report is waiting.",
    )
    db.commit()
    asyncio.run(dispatch_pending_notifications(db, NotificationDispatcher(push_url=None)))
    headers = auth_headers(customer.id, "customer")

    inbox = client.get("/notifications", headers=headers).json()
    assert inbox["unread_count"] == 1
    [notification] = inbox["notifications"]
    assert notification["type"] == NotificationType.BOOKING_ACCEPTED

    assert client.post(f"/notifications/{notification['id']}/read", headers=headers).status_code == 200
    assert client.get("/notifications", headers=headers).json()["unread_count"] == 0

    admin_inbox = client.get("/notifications", headers=auth_headers(7, "admin")).json()
    assert [n["type"] for n in admin_inbox["notifications"]] == [NotificationType.REPORT_UPLOADED]
    assert client.post("/notifications/read-all", headers=auth_headers(7, "admin")).json()["updated"] == 1
