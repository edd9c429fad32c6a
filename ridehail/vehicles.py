import logging
import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .database import atomic
from .errors import Conflict, NotFound, ValidationError
from .fares import normalize_vehicle_type
from .models import Driver, Vehicle


logger = logging.getLogger("ridehail.vehicles")

VEHICLE_STATUSES = ("active", "inactive", "maintenance", "out_of_service")


def list_vehicles(db: Session, vehicle_type: Optional[str] = None, include_inactive: bool = False) -> List[Vehicle]:
    stmt = select(Vehicle)
    if not include_inactive:
        stmt = stmt.where(Vehicle.status == "active")
    if vehicle_type:
        stmt = stmt.where(Vehicle.vehicle_type == normalize_vehicle_type(vehicle_type))
    return db.execute(stmt.order_by(Vehicle.vehicle_type, Vehicle.license_plate)).scalars().all()


def get_vehicle(db: Session, vehicle_id: uuid.UUID) -> Vehicle:
    v = db.get(Vehicle, vehicle_id)
    if v is None:
        raise NotFound("vehicle not found")
    return v


def create_vehicle(
    db: Session,
    vehicle_type: str,
    license_plate: str,
    capacity: int = 4,
    make: Optional[str] = None,
    model: Optional[str] = None,
) -> Vehicle:
    plate = (license_plate or "").strip().upper()
    if not plate:
        raise ValidationError("license plate is required")
    if not 1 <= capacity <= 10:
        raise ValidationError("capacity must be between 1 and 10")
    with atomic(db):
        v = Vehicle(
            vehicle_type=normalize_vehicle_type(vehicle_type),
            license_plate=plate,
            capacity=capacity,
            make=make,
            model=model,
            status="active",
        )
        db.add(v)
        try:
            db.flush()
        except IntegrityError as exc:
            raise Conflict("license plate already registered") from exc
    logger.info("vehicle %s registered type=%s", v.license_plate, v.vehicle_type)
    return v


def set_vehicle_status(db: Session, vehicle_id: uuid.UUID, status: str) -> Vehicle:
    if status not in VEHICLE_STATUSES:
        raise ValidationError(f"unknown vehicle status: {status!r}")
    with atomic(db):
        v = get_vehicle(db, vehicle_id)
        v.status = status
    return v


def assign_vehicle(db: Session, vehicle_id: uuid.UUID, driver_id: Optional[uuid.UUID]) -> Vehicle:
    """Give a vehicle to a driver, or take it back when ``driver_id`` is None."""
    with atomic(db):
        v = get_vehicle(db, vehicle_id)
        if driver_id is None:
            v.driver_id = None
            return v
        driver = db.get(Driver, driver_id)
        if driver is None:
            raise NotFound("driver not found")
        if driver.vehicle is not None and driver.vehicle.id != v.id:
            raise Conflict("driver already has a vehicle")
        v.driver_id = driver.id
    return v
