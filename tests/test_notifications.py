import pytest

from conftest import city_draft
from ridehail.database import SessionLocal
from ridehail.notifications import KINDS, StoreNotifier, list_notifications, mark_read, unread_count


def test_store_notifier_persists_inbox(db, seeded):
    notifier = StoreNotifier(SessionLocal)
    notifier.notify(seeded.rider.id, "booking_created", {"booking_id": "b-1"})
    notifier.notify(seeded.rider.id, "payment_received", {"amount": 83})
    items = list_notifications(db, seeded.rider.id)
    assert {n.kind for n in items} == {"booking_created", "payment_received"}
    assert unread_count(db, seeded.rider.id) == 2
    assert mark_read(db, seeded.rider.id, items[0].id) == 1
    db.commit()
    assert unread_count(db, seeded.rider.id) == 1


def test_store_notifier_rejects_unknown_kind(db, seeded):
    with pytest.raises(ValueError):
        StoreNotifier(SessionLocal).notify(seeded.rider.id, "surge_alert")
    assert list_notifications(db, seeded.rider.id) == []


def test_full_ride_only_emits_known_kinds(manager, seeded, notifier):
    b = manager.create(city_draft(seeded.rider.id))
    manager.confirm(b.id)
    manager.assign_driver(b.id, seeded.driver.id)
    manager.mark_arriving(b.id)
    manager.mark_arrived(b.id)
    manager.start(b.id)
    manager.pay(b.id, 83, "card", is_advance=True)
    manager.complete(b.id)
    kinds = {kind for (_, kind, _) in notifier.sent}
    assert kinds <= set(KINDS)
    assert {"booking_created", "driver_assigned", "ride_completed", "payment_received"} <= kinds

