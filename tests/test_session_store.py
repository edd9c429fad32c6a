from datetime import date, datetime, time

import pytest

from conftest import DROPOFF, PICKUP
from ridehail.errors import InvalidInput, ValidationError
from ridehail.events import StatusChanged
from ridehail.session_store import RideDraft, RideSession


@pytest.fixture
def session(manager, seeded):
    return RideSession(seeded.rider.id, manager)


def fill_city_trip(s: RideSession):
    s.set_pickup(PICKUP.lat, PICKUP.lon, PICKUP.address)
    s.set_dropoff(DROPOFF.lat, DROPOFF.lon, DROPOFF.address)
    s.set_date(date(2030, 5, 17))
    s.set_time(time(9, 30))
    s.set_passengers(2)


def test_setters_replace_the_draft(session):
    before = session.draft
    after = session.set_pickup(PICKUP.lat, PICKUP.lon, PICKUP.address)
    assert after is session.draft
    assert after is not before
    assert before.pickup is None
    assert after.pickup.address == PICKUP.address


def test_vehicle_selection_prices_the_trip(session):
    fill_city_trip(session)
    draft = session.set_vehicle("sedan")
    assert draft.fare is not None
    assert draft.distance_km > 0
    assert draft.fare.advance_payment + draft.fare.remaining_payment == draft.fare.total
    assert draft.scheduled_time == datetime(2030, 5, 17, 9, 30)


def test_vehicle_before_dropoff_reprices_later(session):
    session.set_pickup(PICKUP.lat, PICKUP.lon, PICKUP.address)
    assert session.set_vehicle("suv").fare is None
    priced = session.set_dropoff(DROPOFF.lat, DROPOFF.lon, DROPOFF.address)
    assert priced.fare is not None
    assert priced.fare.base == 150
    assert session.set_vehicle("premium").fare.base == 200


def test_hourly_package_is_priced_on_booked_hours(session):
    session.set_service_type("hourly")
    session.set_pickup(PICKUP.lat, PICKUP.lon, PICKUP.address)
    session.set_package_hours(4)
    fare = session.set_vehicle("sedan").fare
    assert (fare.time, fare.total, fare.advance_payment, fare.remaining_payment) == (480, 638, 160, 478)


def test_unknown_vehicle_leaves_draft_untouched(session):
    fill_city_trip(session)
    before = session.draft
    with pytest.raises(InvalidInput):
        session.set_vehicle("hovercraft")
    assert session.draft is before


def test_invalid_passenger_count_leaves_draft_untouched(session):
    before = session.draft
    with pytest.raises(ValidationError):
        session.set_passengers(11)
    assert session.draft is before


def test_confirm_persists_and_resets_draft(session, manager):
    fill_city_trip(session)
    quoted = session.set_vehicle("sedan").fare
    ride = session.confirm()
    assert ride.status == "pending"
    assert ride.fare_amount == quoted.total
    assert ride.advance_amount == quoted.advance_payment
    assert ride.passengers == 2
    assert ride.scheduled_time == datetime(2030, 5, 17, 9, 30)
    assert session.current_ride == ride
    assert session.draft == RideDraft()
    assert session.error is None
    assert manager.get(ride.id).fare_amount == quoted.total


def test_failed_confirm_keeps_draft_and_surfaces_error(session):
    session.set_pickup(PICKUP.lat, PICKUP.lon, PICKUP.address)
    session.set_vehicle("sedan")
    before = session.draft
    with pytest.raises(ValidationError) as exc:
        session.confirm()
    assert session.draft is before
    assert session.current_ride is None
    assert session.error == str(exc.value)


def test_reset_clears_draft(session):
    fill_city_trip(session)
    session.reset()
    assert session.draft == RideDraft()


def test_pushed_status_changes_are_last_write_wins(session, manager, seeded, event_bus):
    fill_city_trip(session)
    session.set_vehicle("sedan")
    ride = session.confirm()
    detach = session.attach(event_bus)
    manager.assign_driver(ride.id, seeded.driver.id)
    assert session.current_ride.status == "assigned"
    assert session.current_ride.driver_id == seeded.driver.id
    newest = session.current_ride

    stale = StatusChanged(ride.id, "pending", "confirmed", 1, ride.updated_at)
    assert session.on_status_changed(stale) is False
    assert session.current_ride == newest

    detach()
    manager.start(ride.id)
    assert session.current_ride.status == "assigned"
    assert session.refresh_current().status == "in_progress"


def test_load_rides(session, manager, seeded):
    fill_city_trip(session)
    session.set_vehicle("sedan")
    first = session.confirm()
    fill_city_trip(session)
    session.set_vehicle("suv")
    session.confirm()
    manager.cancel(first.id, "changed plans")
    assert len(session.load_rides()) == 2
    assert [r.id for r in session.load_rides(["cancelled"])] == [first.id]
