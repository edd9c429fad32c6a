import os
import uuid
from types import SimpleNamespace

os.environ["ENV"] = "dev"
os.environ["DB_URL"] = "sqlite://"
os.environ["AUTO_CREATE_SCHEMA"] = "false"
os.environ["OTP_MODE"] = "dev"
os.environ["PAYMENTS_BASE_URL"] = ""
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("JWT_SECRET", "test-secret-test-secret")

import pytest  # noqa: E402

from ridehail.database import SessionLocal, engine  # noqa: E402
from ridehail.events import EventBus  # noqa: E402
from ridehail.lifecycle import BookingDraft, BookingManager, Place  # noqa: E402
from ridehail.models import Base, Driver, User, Vehicle  # noqa: E402
from ridehail.payments import ChargeResult  # noqa: E402


PICKUP = Place(12.9716, 77.5946, "MG Road, Bengaluru")
DROPOFF = Place(13.1986, 77.7066, "Kempegowda International Airport")


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, kind, payload=None):
        self.sent.append((user_id, kind, payload or {}))

    def kinds_for(self, user_id):
        return [k for (u, k, _) in self.sent if u == user_id]


class FakeProcessor:
    def __init__(self, ok: bool = True, during_charge=None):
        self.ok = ok
        self.during_charge = during_charge
        self.charges = []
        self.refunds = []
        self.keys = []

    def charge(self, booking_id, amount, method, idempotency_key=None):
        self.charges.append((booking_id, amount, method))
        self.keys.append(idempotency_key)
        if self.during_charge is not None:
            self.during_charge(booking_id)
        if not self.ok:
            return ChargeResult(ok=False, reference=None, status="card_declined")
        return ChargeResult(ok=True, reference=f"ch_{len(self.charges)}", status="succeeded")

    def refund(self, booking_id, amount, reference, idempotency_key=None):
        self.refunds.append((booking_id, amount, reference))
        if not self.ok:
            return ChargeResult(ok=False, reference=None, status="refund_declined")
        return ChargeResult(ok=True, reference=f"re_{len(self.refunds)}", status="succeeded")


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def manager(db, notifier, processor, event_bus):
    return BookingManager(db, notifier=notifier, processor=processor, events=event_bus)


def seed_driver(db, phone: str, plate: str, vehicle_type: str = "sedan", kyc_status: str = "approved"):
    user = User(phone=phone, name="Driver " + phone[-2:], role="driver")
    db.add(user)
    db.flush()
    driver = Driver(user_id=user.id, license_number="DL-" + phone[-4:], kyc_status=kyc_status, is_available=True)
    db.add(driver)
    db.flush()
    vehicle = Vehicle(vehicle_type=vehicle_type, license_plate=plate, capacity=4, status="active", driver_id=driver.id)
    db.add(vehicle)
    db.flush()
    return driver, vehicle


@pytest.fixture
def seeded(db):
    rider = User(phone="+919800000001", name="Asha", role="rider")
    other_rider = User(phone="+919800000002", name="Ravi", role="rider")
    db.add_all([rider, other_rider])
    db.flush()
    driver, vehicle = seed_driver(db, "+919800000010", "KA01AB1234")
    driver2, vehicle2 = seed_driver(db, "+919800000011", "KA01AB5678", vehicle_type="suv")
    db.commit()
    return SimpleNamespace(
        rider=rider,
        other_rider=other_rider,
        driver=driver,
        vehicle=vehicle,
        driver2=driver2,
        vehicle2=vehicle2,
    )


def city_draft(rider_id: uuid.UUID, **overrides) -> BookingDraft:
    fields = dict(
        rider_id=rider_id,
        service_type="city",
        pickup=PICKUP,
        dropoff=DROPOFF,
        vehicle_type="sedan",
        distance_km=15,
        duration_minutes=25,
    )
    fields.update(overrides)
    return BookingDraft(**fields)
