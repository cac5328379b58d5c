from datetime import datetime

import pytest

from watersurvey.domain.bookings.service import BookingService
from watersurvey.domain.bookings.state import BookingStatus, TransitionError
from watersurvey.domain.ratings.service import RatingService, overall_score, round_half_up
from watersurvey.exceptions import BookingNotFoundError, InvalidActionError
from watersurvey.models import Vendor
from watersurvey.models_notification import NotificationType
from watersurvey.models_rating import Rating

from conftest import auth_headers, outbox_events

S = BookingStatus


def _scores(accuracy, professionalism, behavior, visit_timing):
    return {
        "accuracy": accuracy,
        "professionalism": professionalism,
        "behavior": behavior,
        "visit_timing": visit_timing,
    }


@pytest.fixture
def parties(factory):
    vendor = factory.vendor()
    return {"customer": factory.customer(), "vendor": vendor, "service": factory.service(vendor)}


def _finished(factory, parties, borewell_status="SUCCESS", **overrides):
    return factory.booking(
        parties["customer"],
        parties["service"],
        status=S.BOREWELL_UPLOADED,
        borewell_status=borewell_status,
        borewell_uploaded_at=datetime(2026, 11, 20),
        **overrides,
    )


def _vendor(db, vendor_id):
    db.expire_all()
    return db.query(Vendor).filter(Vendor.id == vendor_id).one()


@pytest.mark.parametrize(
    "scores, expected",
    [((5, 4, 4, 4), 4.3), ((4, 4, 4, 3), 3.8), ((5, 5, 4, 4), 4.5), ((1, 1, 1, 2), 1.3)],
)
def test_overall_score_rounds_half_up(scores, expected):
    assert overall_score(_scores(*scores)) == pytest.approx(expected)


def test_round_half_up_whole_percent():
    assert round_half_up(2 / 3 * 100, 0) == 67
    assert round_half_up(62.5, 0) == 63


def test_rating_updates_vendor_average(db, factory, parties):
    ratings = RatingService(db)
    first = _finished(factory, parties)
    second = _finished(factory, parties)

    rating = ratings.submit_rating(parties["customer"].id, first.id, _scores(5, 5, 5, 5), "Found water at 180 ft")
    ratings.submit_rating(parties["customer"].id, second.id, _scores(4, 4, 4, 4))

    assert rating.overall == pytest.approx(5.0)
    assert rating.is_success is True
    vendor = _vendor(db, parties["vendor"].id)
    assert vendor.average_rating == pytest.approx(4.5)
    assert vendor.total_ratings == 2
    assert len(outbox_events(db, NotificationType.NEW_RATING)) == 2


def test_rated_outcomes_drive_success_ratio(db, factory, parties):
    ratings = RatingService(db)
    found = _finished(factory, parties, "SUCCESS")
    dry = _finished(factory, parties, "FAILED")
    # neither rated nor approved, so not counted
    _finished(factory, parties, "FAILED")

    ratings.submit_rating(parties["customer"].id, found.id, _scores(5, 4, 4, 4))
    assert _vendor(db, parties["vendor"].id).success_ratio == 100

    ratings.submit_rating(parties["customer"].id, dry.id, _scores(2, 3, 3, 3))
    vendor = _vendor(db, parties["vendor"].id)
    assert (vendor.successful_surveys, vendor.failed_surveys) == (1, 1)
    assert vendor.success_ratio == 50


def test_approved_and_rated_booking_counts_once(db, factory, parties):
    booking = _finished(factory, parties, "FAILED")
    BookingService(db).approve_borewell_result(1, booking.id)

    RatingService(db).submit_rating(parties["customer"].id, booking.id, _scores(3, 3, 3, 3))

    vendor = _vendor(db, parties["vendor"].id)
    assert (vendor.successful_surveys, vendor.failed_surveys) == (0, 1)
    assert vendor.success_ratio == 0


def test_booking_can_be_rated_once(db, factory, parties):
    ratings = RatingService(db)
    booking = _finished(factory, parties)
    ratings.submit_rating(parties["customer"].id, booking.id, _scores(4, 4, 4, 4))

    with pytest.raises(InvalidActionError, match="already rated"):
        ratings.submit_rating(parties["customer"].id, booking.id, _scores(1, 1, 1, 1))

    assert db.query(Rating).count() == 1
    assert _vendor(db, parties["vendor"].id).average_rating == pytest.approx(4.0)


def test_rating_before_borewell_result_is_refused(db, factory, parties):
    booking = factory.booking(
        parties["customer"], parties["service"], status=S.PAYMENT_SUCCESS, vendor_status=S.REPORT_UPLOADED
    )

    with pytest.raises(TransitionError):
        RatingService(db).submit_rating(parties["customer"].id, booking.id, _scores(5, 5, 5, 5))

    assert db.query(Rating).count() == 0


def test_scores_must_be_whole_numbers_in_range(db, factory, parties):
    booking = _finished(factory, parties)

    with pytest.raises(InvalidActionError):
        RatingService(db).submit_rating(parties["customer"].id, booking.id, _scores(6, 4, 4, 4))
    with pytest.raises(InvalidActionError):
        RatingService(db).submit_rating(parties["customer"].id, booking.id, _scores(4.5, 4, 4, 4))


def test_only_the_bookings_customer_can_rate(db, factory, parties):
    booking = _finished(factory, parties)

    with pytest.raises(BookingNotFoundError):
        RatingService(db).submit_rating(factory.customer().id, booking.id, _scores(5, 5, 5, 5))


def test_rating_endpoints(client, db, factory, parties):
    booking = _finished(factory, parties)
    headers = auth_headers(parties["customer"].id, "customer")

    response = client.post(
        f"/ratings/bookings/{booking.id}",
        json={**_scores(5, 4, 4, 4), "review": "<b>Accurate</b> survey"},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    assert response.json()["data"]["overall"] == pytest.approx(4.3)

    out_of_range = client.post(f"/ratings/bookings/{booking.id}", json=_scores(0, 4, 4, 4), headers=headers)
    assert out_of_range.status_code == 422
    again = client.post(f"/ratings/bookings/{booking.id}", json=_scores(5, 5, 5, 5), headers=headers)
    assert again.status_code == 400

    listing = client.get(f"/ratings/vendors/{parties['vendor'].id}").json()
    assert listing["average_rating"] == pytest.approx(4.3)
    assert listing["total_ratings"] == 1
    assert listing["ratings"][0]["review"] == "&lt;b&gt;Accurate&lt;/b&gt; survey"
    assert client.get("/ratings/vendors/424242").status_code == 404
