import itertools
import json
import os
from datetime import datetime

# Configuration is read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from watersurvey.auth import create_access_token
from watersurvey.database import Base, get_db
from watersurvey.domain.bookings.router import get_credit_retry_scheduler
from watersurvey.domain.bookings.state import BookingState, BookingStatus
from watersurvey.domain.payments.gateway import RazorpayGateway, get_payment_gateway
from watersurvey.domain.pricing.calculator import PricingSettings, calculate_quote, compute_vendor_share
from watersurvey.exceptions import PaymentGatewayError
from watersurvey.main import app
from watersurvey.models import Customer, Service, Vendor
from watersurvey.models_booking import Booking
from watersurvey.models_notification import OutboxEvent
from watersurvey.services.invoice_service import InvoiceClient, InvoiceGenerationError, get_invoice_client
from watersurvey.services.storage_service import get_storage_service
from watersurvey.webhook_security import compute_hmac_sha256

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


class FakeGateway(RazorpayGateway):
    """Real signature checks, in-memory orders and refunds"""

    def __init__(self):
        super().__init__(
            key_id="rzp_test_key",
            key_secret=KEY_SECRET,
            webhook_secret=WEBHOOK_SECRET,
            api_url="https://gateway.test/v1",
        )
        self.orders = []
        self.fail_orders = False
        self.refunds = []
        self.fail_refunds = False

    async def open_order(self, amount, currency="INR", metadata=None):
        if self.fail_orders:
            raise PaymentGatewayError("Failed to create payment order")
        order = {"order_id": f"order_test_{len(self.orders) + 1}", "amount": amount, "currency": currency}
        self.orders.append({**order, "metadata": metadata or {}})
        return order

    async def refund_payment(self, payment_id, amount, notes=None):
        if self.fail_refunds:
            raise PaymentGatewayError("Failed to create refund")
        refund = {"refund_id": f"rfnd_test_{len(self.refunds) + 1}", "amount": amount, "status": "processed"}
        self.refunds.append({**refund, "payment_id": payment_id, "notes": notes or {}})
        return refund


class FakeInvoiceClient(InvoiceClient):
    def __init__(self):
        super().__init__(base_url="https://invoices.test")
        self.fail = False
        self.generated = []

    async def generate(self, booking):
        if self.fail:
            raise InvoiceGenerationError("Invoice service request failed: 503")
        self.generated.append(booking.id)
        number = f"INV-{booking.id:05d}"
        return {"invoice_number": number, "invoice_url": f"https://invoices.test/{number}.pdf"}


class FakeStorage:
    def __init__(self):
        self.uploads = []

    def upload(self, contents, folder, content_type, filename=None):
        key = f"{folder}/{len(self.uploads) + 1}"
        self.uploads.append({"key": key, "size": len(contents), "content_type": content_type})
        return {"url": f"https://files.test/{key}", "public_id": key}


class RetryRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, transaction_id):
        self.calls.append(transaction_id)
        return True


def sign_checkout(order_id, payment_id):
    return compute_hmac_sha256(KEY_SECRET, f"{order_id}|{payment_id}".encode("utf-8"))


def sign_webhook(body: bytes):
    return compute_hmac_sha256(WEBHOOK_SECRET, body)


def webhook_body(event_type, payment_id, order_id, **entity):
    return json.dumps(
        {
            "event": event_type,
            "payload": {"payment": {"entity": {"id": payment_id, "order_id": order_id, **entity}}},
        }
    ).encode("utf-8")


def auth_headers(actor_id, role):
    return {"Authorization": f"Bearer {create_access_token(actor_id, role)}"}


def outbox_events(db, event_type=None):
    query = db.query(OutboxEvent)
    if event_type:
        query = query.filter(OutboxEvent.event_type == event_type)
    return query.order_by(OutboxEvent.id).all()


class Factory:
    """Seed rows for tests"""

    def __init__(self, db):
        self.db = db
        self._seq = itertools.count(1)

    def customer(self, **overrides):
        n = next(self._seq)
        customer = Customer(
            **{
                "name": f"Customer {n}",
                "email": f"customer{n}@example.com",
                "phone": "9000000000",
                **overrides,
            }
        )
        self.db.add(customer)
        self.db.commit()
        return customer

    def vendor(self, **overrides):
        n = next(self._seq)
        vendor = Vendor(
            **{
                "name": f"Vendor {n}",
                "email": f"vendor{n}@example.com",
                "experience_years": 5,
                "average_rating": 4.0,
                "success_ratio": 80,
                "city": "Hyderabad",
                "is_active": True,
                "is_approved": True,
                **overrides,
            }
        )
        self.db.add(vendor)
        self.db.commit()
        return vendor

    def service(self, vendor, **overrides):
        service = Service(
            **{
                "vendor_id": vendor.id,
                "name": "Groundwater Survey",
                "category": "WATER_DETECTION",
                "machine_type": "PQWT-S500",
                "price": 1000.0,
                "status": "APPROVED",
                "is_active": True,
                **overrides,
            }
        )
        self.db.add(service)
        self.db.commit()
        return service

    def booking(self, customer, service, status=BookingStatus.ASSIGNED, vendor_status=None,
                user_status=None, distance_km=None, **overrides):
        settings = PricingSettings()
        quote = calculate_quote(service.price, distance_km, settings)
        payout = compute_vendor_share(quote.base_service_fee, quote.travel_charges, settings)
        state = BookingState(
            status=status,
            vendor_status=vendor_status or status,
            user_status=user_status or status,
        )
        advance_paid = status not in (BookingStatus.AWAITING_ADVANCE, BookingStatus.PENDING)
        columns = {
            "customer_id": customer.id,
            "vendor_id": service.vendor_id,
            "service_id": service.id,
            "scheduled_date": datetime(2026, 11, 2),
            "scheduled_time": "10:00",
            "address_street": "Plot 12, Main Road",
            "address_city": "Warangal",
            "address_state": "Telangana",
            "address_pincode": "506002",
            "advance_paid": advance_paid,
            "payment_status": "PARTIAL" if advance_paid else "PENDING",
            **state.as_columns(),
            **quote.as_columns(),
            **payout.as_columns(),
        }
        columns.update(overrides)
        booking = Booking(**columns)
        self.db.add(booking)
        self.db.commit()
        return booking


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT support
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    # test and request sessions share the single static connection
    @event.listens_for(engine, "begin")
    def _begin(conn):
        if not conn.connection.dbapi_connection.in_transaction:
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def invoice_client():
    return FakeInvoiceClient()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def retry_scheduler():
    return RetryRecorder()


@pytest.fixture
def client(db, gateway, invoice_client, storage, retry_scheduler):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_invoice_client] = lambda: invoice_client
    app.dependency_overrides[get_storage_service] = lambda: storage
    app.dependency_overrides[get_credit_retry_scheduler] = lambda: retry_scheduler
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
