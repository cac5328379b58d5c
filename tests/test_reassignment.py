import pytest

from watersurvey.domain.bookings.service import BookingService
from watersurvey.domain.bookings.state import BookingState, BookingStatus, TransitionError
from watersurvey.domain.pricing.calculator import PricingSettings, calculate_quote, distance_between
from watersurvey.domain.reassignment.ranking import Candidate, rank_candidates
from watersurvey.exceptions import InvalidActionError
from watersurvey.models_booking import RejectedVendor
from watersurvey.models_notification import NotificationType, RecipientKind
from watersurvey.models_wallet import VendorWalletTransaction

from conftest import outbox_events

S = BookingStatus
SITE = (17.0, 79.0)
REASON = "Machine under repair this week"


def _candidate(vendor_id, rating, distance, success=80, experience=5):
    return Candidate(
        vendor_id=vendor_id,
        service_id=vendor_id,
        average_rating=rating,
        success_ratio=success,
        experience_years=experience,
        distance_km=distance,
        price=1000,
    )


def test_rating_dominates_distance_then_closest_wins():
    a = _candidate(1, 4.5, 10)
    b = _candidate(2, 4.5, 5)
    c = _candidate(3, 4.8, 50)

    assert [x.vendor_id for x in rank_candidates([a, b, c])] == [3, 2, 1]


def test_success_ratio_and_experience_break_rating_ties():
    low_success = _candidate(1, 4.5, 1, success=70)
    veteran = _candidate(2, 4.5, 20, success=90, experience=12)
    rookie = _candidate(3, 4.5, 2, success=90, experience=1)

    assert [x.vendor_id for x in rank_candidates([low_success, rookie, veteran])] == [2, 3, 1]


def test_unknown_distance_ranks_after_known():
    unknown = _candidate(1, 4.5, None)
    far = _candidate(2, 4.5, 300)

    assert [x.vendor_id for x in rank_candidates([unknown, far])] == [2, 1]


@pytest.fixture
def marketplace(factory):
    customer = factory.customer()
    original = factory.vendor(average_rating=4.0, latitude=17.01, longitude=79.0)
    near = factory.vendor(average_rating=4.5, latitude=17.05, longitude=79.0)
    far = factory.vendor(average_rating=4.8, latitude=17.5, longitude=79.0)
    services = {
        "original": factory.service(original),
        "near": factory.service(near, price=900.0),
        "far": factory.service(far, price=1200.0),
    }
    booking = factory.booking(
        customer, services["original"], status=S.ASSIGNED, latitude=SITE[0], longitude=SITE[1]
    )
    return {"customer": customer, "original": original, "near": near, "far": far, "services": services,
            "booking": booking}


def test_reject_reassigns_to_best_ranked_vendor(db, marketplace):
    booking = marketplace["booking"]
    original_advance = booking.advance_amount

    outcome = BookingService(db).reject(marketplace["original"].id, booking.id, REASON)

    assert outcome.reassigned
    db.expire_all()
    assert booking.vendor_id == marketplace["far"].id
    assert booking.service_id == marketplace["services"]["far"].id
    assert booking.state == BookingState.uniform(S.ASSIGNED)
    assert booking.rejected_vendor_ids == [marketplace["original"].id]
    assert booking.accepted_at is None

    # re-priced for the new vendor around the advance already collected
    expected = calculate_quote(1200.0, distance_between((17.5, 79.0), SITE), PricingSettings())
    assert booking.total_amount == pytest.approx(expected.total_amount)
    assert booking.travel_charges == pytest.approx(expected.travel_charges)
    assert booking.advance_amount == pytest.approx(original_advance)
    assert booking.remaining_amount == pytest.approx(expected.total_amount - original_advance)

    assigned = outbox_events(db, NotificationType.BOOKING_ASSIGNED)
    assert [(e.recipient_kind, e.recipient_id) for e in assigned] == [
        (RecipientKind.VENDOR, marketplace["far"].id)
    ]
    reassigned = outbox_events(db, NotificationType.BOOKING_REASSIGNED)
    assert reassigned[0].recipient_id == marketplace["customer"].id


def test_rejected_vendors_are_never_reselected(db, marketplace):
    service = BookingService(db)
    booking = marketplace["booking"]

    service.reject(marketplace["original"].id, booking.id, REASON)
    service.reject(marketplace["far"].id, booking.id, REASON)
    db.expire_all()
    assert booking.vendor_id == marketplace["near"].id

    service.accept(marketplace["near"].id, booking.id)
    outcome = service.cancel_by_vendor(marketplace["near"].id, booking.id, "Family emergency, cannot travel")

    assert not outcome.reassigned
    db.expire_all()
    assert booking.state == BookingState.uniform(S.REJECTED)
    assert set(booking.rejected_vendor_ids) == {
        marketplace["original"].id,
        marketplace["far"].id,
        marketplace["near"].id,
    }
    assert booking.cancelled_by == "VENDOR"


def test_no_alternate_vendor_leaves_booking_rejected(db, factory):
    customer = factory.customer()
    vendor = factory.vendor()
    # unapproved vendors and other services are not candidates
    factory.service(factory.vendor(is_approved=False))
    factory.service(factory.vendor(), name="Borewell Camera Inspection")
    booking = factory.booking(customer, factory.service(vendor), status=S.ASSIGNED)

    outcome = BookingService(db).reject(vendor.id, booking.id, REASON)

    assert not outcome.reassigned
    db.expire_all()
    assert booking.state == BookingState.uniform(S.REJECTED)
    assert booking.vendor_id == vendor.id
    assert booking.rejection_reason == f"No other vendors available. Original reason: {REASON}"

    failed = outbox_events(db, NotificationType.BOOKING_FAILED)
    assert len(failed) == 1
    assert failed[0].recipient_kind == RecipientKind.CUSTOMER
    assert failed[0].recipient_id == customer.id
    assert db.query(VendorWalletTransaction).count() == 0


def test_short_rejection_reason_is_refused(db, marketplace):
    booking = marketplace["booking"]

    with pytest.raises(InvalidActionError):
        BookingService(db).reject(marketplace["original"].id, booking.id, "  busy    ")

    db.expire_all()
    assert booking.state == BookingState.uniform(S.ASSIGNED)
    assert booking.rejected_vendor_ids == []


def test_reject_after_accept_is_a_guard_violation(db, marketplace):
    service = BookingService(db)
    booking = marketplace["booking"]
    service.accept(marketplace["original"].id, booking.id)

    with pytest.raises(TransitionError):
        service.reject(marketplace["original"].id, booking.id, REASON)

    db.expire_all()
    assert booking.state == BookingState.uniform(S.ACCEPTED)
    assert booking.vendor_id == marketplace["original"].id


def test_vendor_cancel_with_reassignment_clears_cancellation_fields(db, marketplace):
    service = BookingService(db)
    booking = marketplace["booking"]
    service.accept(marketplace["original"].id, booking.id)

    outcome = service.cancel_by_vendor(marketplace["original"].id, booking.id, REASON)

    assert outcome.reassigned
    db.expire_all()
    assert booking.vendor_id == marketplace["far"].id
    assert booking.state == BookingState.uniform(S.ASSIGNED)
    # the next vendor sees a fresh assignment, not the previous vendor's cancellation
    assert booking.cancelled_by is None
    assert booking.cancellation_note is None

    history = db.query(RejectedVendor).filter(RejectedVendor.booking_id == booking.id).one()
    assert history.vendor_id == marketplace["original"].id
    assert history.initiated_by == "VENDOR_CANCEL"
    assert history.reason == REASON
