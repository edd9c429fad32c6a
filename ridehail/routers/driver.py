import uuid
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import drivers
from ..auth import get_current_driver, get_current_user
from ..database import get_db
from ..deps import get_manager
from ..errors import Forbidden
from ..lifecycle import BookingManager
from ..locations import update_driver_location
from ..models import Driver, User
from ..schemas import (
    BookingOut,
    BookingsListOut,
    CompleteIn,
    DriverApplyIn,
    DriverAvailabilityIn,
    DriverLocationIn,
    DriverOut,
    EarningsOut,
    NearbyDriverOut,
    NoShowIn,
    ReceivedRatingOut,
)


router = APIRouter(prefix="/driver", tags=["driver"])


def _assigned(manager: BookingManager, booking_id: uuid.UUID, driver: Driver):
    b = manager.get(booking_id)
    if b.driver_id != driver.id:
        raise Forbidden("booking is assigned to another driver")
    return b


@router.post("/apply", response_model=DriverOut)
def apply_driver(payload: DriverApplyIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return drivers.apply(db, user.id, payload.license_number)


@router.get("/me", response_model=DriverOut)
def driver_me(driver: Driver = Depends(get_current_driver)):
    return driver


@router.put("/availability", response_model=DriverOut)
def set_availability(payload: DriverAvailabilityIn, driver: Driver = Depends(get_current_driver), db: Session = Depends(get_db)):
    return drivers.set_availability(db, driver, payload.available)


@router.put("/location")
def update_location(payload: DriverLocationIn, driver: Driver = Depends(get_current_driver), db: Session = Depends(get_db)):
    applied = update_driver_location(db, driver.id, payload.lat, payload.lon, payload.at)
    return {"detail": "ok", "applied": applied}


@router.get("/earnings", response_model=EarningsOut)
def earnings(
    period: Literal["day", "week", "month", "year"] = "week",
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
):
    return drivers.earnings_summary(db, driver.id, period)


@router.get("/ratings", response_model=List[ReceivedRatingOut])
def my_ratings(
    limit: int = Query(default=50, ge=1, le=200),
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
):
    return drivers.ratings_received(db, driver.id, limit)


@router.get("/nearby", response_model=List[NearbyDriverOut])
def nearby(
    lat: float = Query(ge=-90, le=90),
    lon: float = Query(ge=-180, le=180),
    radius_km: float = Query(default=5.0, gt=0, le=drivers.MAX_NEARBY_RADIUS_KM),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [
        NearbyDriverOut(
            driver_id=n.driver.id,
            rating=n.driver.rating,
            total_rides=n.driver.total_rides,
            vehicle_type=n.driver.vehicle.vehicle_type if n.driver.vehicle else None,
            lat=n.driver.current_lat,
            lon=n.driver.current_lon,
            distance_km=n.distance_km,
        )
        for n in drivers.nearby_drivers(db, lat, lon, radius_km)
    ]


@router.get("/bookings", response_model=BookingsListOut)
def my_bookings(
    status: Optional[List[str]] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    driver: Driver = Depends(get_current_driver),
    manager: BookingManager = Depends(get_manager),
):
    return BookingsListOut(bookings=manager.list_for_driver(driver.id, status, limit))


@router.post("/bookings/{booking_id}/claim", response_model=BookingOut)
def claim_booking(booking_id: uuid.UUID, driver: Driver = Depends(get_current_driver), manager: BookingManager = Depends(get_manager)):
    return manager.assign_driver(booking_id, driver.id)


@router.post("/bookings/{booking_id}/accept", response_model=BookingOut)
def accept_booking(booking_id: uuid.UUID, driver: Driver = Depends(get_current_driver), manager: BookingManager = Depends(get_manager)):
    _assigned(manager, booking_id, driver)
    return manager.accept(booking_id)


@router.post("/bookings/{booking_id}/arriving", response_model=BookingOut)
def arriving(booking_id: uuid.UUID, driver: Driver = Depends(get_current_driver), manager: BookingManager = Depends(get_manager)):
    _assigned(manager, booking_id, driver)
    return manager.mark_arriving(booking_id)


@router.post("/bookings/{booking_id}/arrived", response_model=BookingOut)
def arrived(booking_id: uuid.UUID, driver: Driver = Depends(get_current_driver), manager: BookingManager = Depends(get_manager)):
    _assigned(manager, booking_id, driver)
    return manager.mark_arrived(booking_id)


@router.post("/bookings/{booking_id}/start", response_model=BookingOut)
def start_ride(booking_id: uuid.UUID, driver: Driver = Depends(get_current_driver), manager: BookingManager = Depends(get_manager)):
    _assigned(manager, booking_id, driver)
    return manager.start(booking_id)


@router.post("/bookings/{booking_id}/complete", response_model=BookingOut)
def complete_ride(
    booking_id: uuid.UUID,
    payload: CompleteIn,
    driver: Driver = Depends(get_current_driver),
    manager: BookingManager = Depends(get_manager),
):
    _assigned(manager, booking_id, driver)
    return manager.complete(booking_id, final_fare=payload.final_fare)


@router.post("/bookings/{booking_id}/no_show", response_model=BookingOut)
def no_show(
    booking_id: uuid.UUID,
    payload: NoShowIn,
    driver: Driver = Depends(get_current_driver),
    manager: BookingManager = Depends(get_manager),
):
    _assigned(manager, booking_id, driver)
    return manager.mark_no_show(booking_id, payload.reason)
