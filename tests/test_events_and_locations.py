import asyncio
import uuid
from datetime import datetime, timedelta

import pytest

from ridehail.errors import NotFound, ValidationError
from ridehail.events import BookingCreated, EventBus, StatusChanged, StatusTracker
from ridehail.locations import LocationFeed, LocationUpdate, update_driver_location
from ridehail.models import Driver


T0 = datetime(2030, 1, 1, 8, 0, 0)


def test_bus_subscribe_and_unsubscribe():
    bus = EventBus()
    seen = []
    off = bus.subscribe(StatusChanged, seen.append)
    event = StatusChanged(uuid.uuid4(), "pending", "assigned", 2, T0)
    bus.publish(event)
    off()
    bus.publish(event)
    assert seen == [event]


def test_failing_handler_does_not_block_others():
    bus = EventBus()
    seen = []

    def boom(event):
        raise RuntimeError("ui went away")

    bus.subscribe(StatusChanged, boom)
    bus.subscribe(StatusChanged, seen.append)
    bus.publish(StatusChanged(uuid.uuid4(), "pending", "confirmed", 2, T0))
    assert len(seen) == 1


def test_tracker_discards_out_of_order_deliveries():
    bus = EventBus()
    tracker = StatusTracker()
    tracker.attach(bus)
    bid = uuid.uuid4()
    bus.publish(BookingCreated(bid, uuid.uuid4(), "pending", 1, T0))
    bus.publish(StatusChanged(bid, "assigned", "in_progress", 3, T0 + timedelta(seconds=20)))
    bus.publish(StatusChanged(bid, "pending", "assigned", 2, T0 + timedelta(seconds=10)))
    assert tracker.status_of(bid) == "in_progress"
    assert tracker.apply(StatusChanged(bid, "in_progress", "completed", 4, T0 + timedelta(seconds=30))) is True
    assert tracker.status_of(bid) == "completed"
    assert tracker.status_of(uuid.uuid4()) is None


def test_subscription_yields_updates_in_timestamp_order():
    feed = LocationFeed()
    driver_id = uuid.uuid4()

    async def run():
        sub = feed.subscribe(driver_id)
        feed.publish(LocationUpdate(driver_id, 12.90, 77.50, T0))
        feed.publish(LocationUpdate(driver_id, 12.91, 77.51, T0 + timedelta(seconds=5)))
        # late delivery of an older fix
        feed.publish(LocationUpdate(driver_id, 12.80, 77.40, T0 + timedelta(seconds=1)))
        feed.publish(LocationUpdate(driver_id, 12.92, 77.52, T0 + timedelta(seconds=10)))
        got = [await asyncio.wait_for(sub.__anext__(), 1) for _ in range(3)]
        sub.cancel()
        rest = [u async for u in sub]
        return got, rest

    got, rest = asyncio.run(run())
    assert [u.lat for u in got] == [12.90, 12.91, 12.92]
    assert rest == []
    assert feed.subscriber_count(driver_id) == 0


def test_restarted_subscription_starts_from_latest_position():
    feed = LocationFeed()
    driver_id = uuid.uuid4()

    async def run():
        sub = feed.subscribe(driver_id)
        feed.publish(LocationUpdate(driver_id, 1.0, 1.0, T0))
        await asyncio.wait_for(sub.__anext__(), 1)
        sub.cancel()
        feed.publish(LocationUpdate(driver_id, 2.0, 2.0, T0 + timedelta(seconds=3)))
        again = sub.restart()
        first = await asyncio.wait_for(again.__anext__(), 1)
        again.cancel()
        return first

    first = asyncio.run(run())
    assert (first.lat, first.at) == (2.0, T0 + timedelta(seconds=3))


def test_driver_location_is_last_write_wins(db, seeded):
    feed = LocationFeed()
    driver_id = seeded.driver.id
    assert update_driver_location(db, driver_id, 12.97, 77.59, T0 + timedelta(seconds=30), location_feed=feed) is True
    assert update_driver_location(db, driver_id, 10.0, 70.0, T0, location_feed=feed) is False
    driver = db.get(Driver, driver_id)
    assert (driver.current_lat, driver.current_lon) == (12.97, 77.59)
    assert driver.location_updated_at == T0 + timedelta(seconds=30)
    assert feed.latest(driver_id).lat == 12.97


def test_driver_location_validation(db, seeded):
    with pytest.raises(ValidationError):
        update_driver_location(db, seeded.driver.id, 91.0, 0.0)
    with pytest.raises(NotFound):
        update_driver_location(db, uuid.uuid4(), 1.0, 1.0)
