from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from conftest import DROPOFF, PICKUP, city_draft
from ridehail import drivers
from ridehail.errors import ValidationError
from ridehail.models import Booking, Rating, utcnow


def completed_ride(manager, seeded, **complete_kwargs):
    b = manager.create(city_draft(seeded.rider.id))
    manager.assign_driver(b.id, seeded.driver.id)
    manager.start(b.id)
    return manager.complete(b.id, **complete_kwargs)


WEDNESDAY = datetime(2026, 10, 21, 15, 30)


@pytest.mark.parametrize(
    "period,expected",
    [
        ("day", datetime(2026, 10, 21)),
        ("week", datetime(2026, 10, 18)),
        ("month", datetime(2026, 10, 1)),
        ("year", datetime(2026, 1, 1)),
    ],
)
def test_period_start(period, expected):
    assert drivers.period_start(period, WEDNESDAY) == expected


def test_week_starts_on_sunday():
    sunday = datetime(2026, 10, 18, 9, 0)
    assert drivers.period_start("week", sunday) == datetime(2026, 10, 18)


def test_unknown_period_is_rejected(db, seeded):
    with pytest.raises(ValidationError):
        drivers.earnings_summary(db, seeded.driver.id, "decade")


def test_earnings_summary_counts_completed_rides_in_period(db, manager, seeded):
    first = completed_ride(manager, seeded)
    completed_ride(manager, seeded, final_fare=400)
    old = completed_ride(manager, seeded)
    cancelled = manager.create(city_draft(seeded.rider.id))
    manager.assign_driver(cancelled.id, seeded.driver.id)
    manager.cancel(cancelled.id, "rider changed plans")
    db.execute(update(Booking).where(Booking.id == old.id).values(completed_at=utcnow() - timedelta(days=800)))
    db.commit()

    summary = drivers.earnings_summary(db, seeded.driver.id, "year")
    assert (summary.total, summary.rides) == (first.fare_amount + 400, 2)
    assert summary.average == 365.0
    assert drivers.earnings_summary(db, seeded.driver2.id, "year").rides == 0
    assert drivers.earnings_summary(db, seeded.driver2.id, "year").average == 0.0


def test_ratings_received_newest_first_with_booking_context(db, manager, seeded):
    older = completed_ride(manager, seeded, rating=5, review="great")
    newer = completed_ride(manager, seeded, rating=3)
    db.execute(
        update(Rating).where(Rating.booking_id == older.id).values(created_at=utcnow() - timedelta(hours=1))
    )
    db.commit()

    history = drivers.ratings_received(db, seeded.driver.id)
    assert [(r.booking_id, r.score) for r in history] == [(newer.id, 3), (older.id, 5)]
    assert history[1].review == "great"
    assert history[0].rider_name == "Asha"
    assert history[0].pickup_address == PICKUP.address
    assert history[0].fare_amount == 330
    assert drivers.ratings_received(db, seeded.driver2.id) == []


def place_drivers(db, seeded):
    seeded.driver.current_lat, seeded.driver.current_lon = 12.975, 77.59
    seeded.driver2.current_lat, seeded.driver2.current_lon = DROPOFF.lat, DROPOFF.lon
    db.commit()


def test_nearby_drivers_within_radius_sorted(db, seeded):
    place_drivers(db, seeded)
    near = drivers.nearby_drivers(db, PICKUP.lat, PICKUP.lon, radius_km=5)
    assert [n.driver.id for n in near] == [seeded.driver.id]
    assert near[0].distance_km < 1

    wide = drivers.nearby_drivers(db, PICKUP.lat, PICKUP.lon, radius_km=40)
    assert [n.driver.id for n in wide] == [seeded.driver.id, seeded.driver2.id]
    assert wide[0].distance_km < wide[1].distance_km


def test_nearby_skips_busy_unverified_and_unlocated(db, manager, seeded):
    place_drivers(db, seeded)
    b = manager.create(city_draft(seeded.rider.id))
    manager.assign_driver(b.id, seeded.driver.id)
    seeded.driver2.kyc_status = "pending"
    db.commit()
    assert drivers.nearby_drivers(db, PICKUP.lat, PICKUP.lon, radius_km=40) == []

    seeded.driver2.kyc_status = "approved"
    seeded.driver2.current_lat = None
    db.commit()
    assert drivers.nearby_drivers(db, PICKUP.lat, PICKUP.lon, radius_km=40) == []


@pytest.mark.parametrize("lat,lon,radius", [(95, 77.0, 5), (12.9, 190, 5), (12.9, 77.5, 0), (12.9, 77.5, 51)])
def test_nearby_validates_inputs(db, lat, lon, radius):
    with pytest.raises(ValidationError):
        drivers.nearby_drivers(db, lat, lon, radius_km=radius)
