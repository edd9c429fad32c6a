import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..errors import NotFound
from ..lifecycle import BookingDraft, BookingManager, Place
from ..deps import get_manager
from ..models import Booking, Driver, User
from ..ratings import record_rating
from ..schemas import (
    BookingCreateIn,
    BookingOut,
    BookingsListOut,
    CancelIn,
    DriverLocationOut,
    PaymentIn,
    PaymentOut,
    RatingIn,
    RatingOut,
)


router = APIRouter(prefix="/bookings", tags=["bookings"])


def _driver_user_id(db: Session, booking: Booking) -> Optional[uuid.UUID]:
    if booking.driver_id is None:
        return None
    drv = db.get(Driver, booking.driver_id)
    return drv.user_id if drv else None


def _visible(manager: BookingManager, booking_id: uuid.UUID, user: User) -> Booking:
    b = manager.get(booking_id)
    if b.rider_id != user.id and _driver_user_id(manager.db, b) != user.id:
        raise NotFound("booking not found")
    return b


def _own(manager: BookingManager, booking_id: uuid.UUID, user: User) -> Booking:
    b = manager.get(booking_id)
    if b.rider_id != user.id:
        raise NotFound("booking not found")
    return b


def _place(p):
    return Place(p.lat, p.lon, p.address) if p is not None else None


@router.post("", response_model=BookingOut)
def create_booking(payload: BookingCreateIn, user: User = Depends(get_current_user), manager: BookingManager = Depends(get_manager)):
    draft = BookingDraft(
        rider_id=user.id,
        service_type=payload.service_type,
        pickup=_place(payload.pickup),
        dropoff=_place(payload.dropoff),
        trip_type=payload.trip_type,
        vehicle_type=payload.vehicle_type,
        vehicle_id=payload.vehicle_id,
        scheduled_time=payload.scheduled_time,
        passengers=payload.passengers,
        package_hours=payload.package_hours,
        distance_km=payload.distance_km,
        duration_minutes=payload.duration_minutes,
        special_instructions=payload.special_instructions,
        payment_method=payload.payment_method,
    )
    return manager.create(draft)


@router.get("", response_model=BookingsListOut)
def list_bookings(
    status: Optional[List[str]] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    manager: BookingManager = Depends(get_manager),
):
    return BookingsListOut(bookings=manager.list_for_rider(user.id, status, limit))


@router.get("/active", response_model=BookingsListOut)
def active_bookings(user: User = Depends(get_current_user), manager: BookingManager = Depends(get_manager)):
    return BookingsListOut(bookings=manager.active_for_rider(user.id))


@router.get("/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: uuid.UUID, user: User = Depends(get_current_user), manager: BookingManager = Depends(get_manager)):
    return _visible(manager, booking_id, user)


@router.post("/{booking_id}/confirm", response_model=BookingOut)
def confirm_booking(booking_id: uuid.UUID, user: User = Depends(get_current_user), manager: BookingManager = Depends(get_manager)):
    _own(manager, booking_id, user)
    return manager.confirm(booking_id)


@router.post("/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(
    booking_id: uuid.UUID,
    payload: CancelIn,
    user: User = Depends(get_current_user),
    manager: BookingManager = Depends(get_manager),
):
    _visible(manager, booking_id, user)
    return manager.cancel(booking_id, payload.reason, cancelled_by=user.id)


@router.post("/{booking_id}/rate", response_model=RatingOut)
def rate_booking(
    booking_id: uuid.UUID,
    payload: RatingIn,
    user: User = Depends(get_current_user),
    manager: BookingManager = Depends(get_manager),
):
    b = _own(manager, booking_id, user)
    return record_rating(manager.db, b.id, user.id, b.driver_id, payload.score, payload.review)


@router.post("/{booking_id}/pay", response_model=PaymentOut)
def pay_booking(
    booking_id: uuid.UUID,
    payload: PaymentIn,
    x_idempotency_key: Optional[str] = Header(default=None, max_length=128),
    user: User = Depends(get_current_user),
    manager: BookingManager = Depends(get_manager),
):
    _own(manager, booking_id, user)
    key = f"ridehail:{booking_id}:client:{x_idempotency_key}" if x_idempotency_key else None
    return manager.pay(booking_id, payload.amount, payload.method, payload.is_advance, idempotency_key=key)


@router.get("/{booking_id}/payments", response_model=List[PaymentOut])
def booking_payments(booking_id: uuid.UUID, user: User = Depends(get_current_user), manager: BookingManager = Depends(get_manager)):
    _visible(manager, booking_id, user)
    return manager.payments_for(booking_id)


@router.get("/{booking_id}/driver_location", response_model=DriverLocationOut)
def driver_location(
    booking_id: uuid.UUID,
    user: User = Depends(get_current_user),
    manager: BookingManager = Depends(get_manager),
    db: Session = Depends(get_db),
):
    b = _own(manager, booking_id, user)
    if b.driver_id is None:
        raise NotFound("no driver assigned")
    drv = db.get(Driver, b.driver_id)
    return DriverLocationOut(driver_id=drv.id, lat=drv.current_lat, lon=drv.current_lon, updated_at=drv.location_updated_at)
