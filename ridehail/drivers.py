import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .database import atomic
from .errors import Conflict, NotFound, ValidationError
from .geo import haversine_km
from .models import Booking, Driver, Rating, User, utcnow


logger = logging.getLogger("ridehail.drivers")

KYC_STATUSES = ("pending", "approved", "rejected", "resubmission_requested")
EARNINGS_PERIODS = ("day", "week", "month", "year")
MAX_NEARBY_RADIUS_KM = 50.0
KM_PER_DEGREE_LAT = 111.0


def get_driver_by_user(db: Session, user_id: uuid.UUID) -> Driver:
    d = db.execute(select(Driver).where(Driver.user_id == user_id)).scalar_one_or_none()
    if d is None:
        raise NotFound("not a driver")
    return d


def apply(db: Session, user_id: uuid.UUID, license_number: str) -> Driver:
    license_number = (license_number or "").strip()
    if not license_number:
        raise ValidationError("license number is required")
    with atomic(db):
        user = db.get(User, user_id)
        if user is None:
            raise NotFound("user not found")
        if db.execute(select(Driver.id).where(Driver.user_id == user_id)).first() is not None:
            raise Conflict("already applied")
        driver = Driver(user_id=user_id, license_number=license_number, kyc_status="pending", is_available=False)
        db.add(driver)
        if user.role == "rider":
            user.role = "driver"
        db.flush()
    logger.info("driver application %s from user %s", driver.id, user_id)
    return driver


def set_kyc_status(db: Session, driver_id: uuid.UUID, status: str) -> Driver:
    if status not in KYC_STATUSES:
        raise ValidationError(f"unknown kyc status: {status!r}")
    with atomic(db):
        d = db.get(Driver, driver_id)
        if d is None:
            raise NotFound("driver not found")
        d.kyc_status = status
        if status != "approved":
            d.is_available = False
    return d


def set_availability(db: Session, driver: Driver, available: bool) -> Driver:
    if available and driver.kyc_status != "approved":
        raise ValidationError("driver is not verified")
    with atomic(db):
        driver.is_available = bool(available)
    return driver


@dataclass(frozen=True)
class EarningsSummary:
    period: str
    since: datetime
    total: int
    rides: int
    average: float


def period_start(period: str, now: datetime) -> datetime:
    """Start of the current day, week (from Sunday), month or year."""
    if period not in EARNINGS_PERIODS:
        raise ValidationError(f"unknown period: {period!r}")
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "day":
        return midnight
    if period == "week":
        return midnight - timedelta(days=(now.weekday() + 1) % 7)
    if period == "month":
        return midnight.replace(day=1)
    return midnight.replace(month=1, day=1)


def earnings_summary(db: Session, driver_id: uuid.UUID, period: str = "week", now: Optional[datetime] = None) -> EarningsSummary:
    since = period_start(period, now or utcnow())
    total, rides = db.execute(
        select(func.coalesce(func.sum(Booking.fare_amount), 0), func.count(Booking.id)).where(
            Booking.driver_id == driver_id,
            Booking.status == "completed",
            Booking.completed_at.is_not(None),
            Booking.completed_at >= since,
        )
    ).one()
    total, rides = int(total), int(rides)
    return EarningsSummary(
        period=period,
        since=since,
        total=total,
        rides=rides,
        average=round(total / rides, 2) if rides else 0.0,
    )


@dataclass(frozen=True)
class ReceivedRating:
    id: uuid.UUID
    booking_id: uuid.UUID
    score: int
    review: Optional[str]
    created_at: datetime
    rider_name: Optional[str]
    pickup_address: str
    dropoff_address: Optional[str]
    service_type: str
    fare_amount: Optional[int]


def ratings_received(db: Session, driver_id: uuid.UUID, limit: int = 50) -> List[ReceivedRating]:
    rows = db.execute(
        select(Rating, Booking, User)
        .join(Booking, Rating.booking_id == Booking.id)
        .join(User, Rating.rider_id == User.id)
        .where(Rating.driver_id == driver_id)
        .order_by(Rating.created_at.desc(), Rating.id.desc())
        .limit(max(1, min(limit, 200)))
    ).all()
    return [
        ReceivedRating(
            id=r.id,
            booking_id=b.id,
            score=r.score,
            review=r.review,
            created_at=r.created_at,
            rider_name=u.name,
            pickup_address=b.pickup_address,
            dropoff_address=b.dropoff_address,
            service_type=b.service_type,
            fare_amount=b.fare_amount,
        )
        for r, b, u in rows
    ]


@dataclass(frozen=True)
class NearbyDriver:
    driver: Driver
    distance_km: float


def nearby_drivers(db: Session, lat: float, lon: float, radius_km: float = 5.0, limit: int = 20) -> List[NearbyDriver]:
    """Verified, available drivers with a known position within ``radius_km``, nearest first."""
    if not -90 <= lat <= 90 or not -180 <= lon <= 180:
        raise ValidationError("coordinates out of range")
    if not 0 < radius_km <= MAX_NEARBY_RADIUS_KM:
        raise ValidationError(f"radius must be in (0, {MAX_NEARBY_RADIUS_KM:g}] km")
    # latitude band prefilter; the exact cut is haversine below
    band = radius_km / KM_PER_DEGREE_LAT
    candidates = db.execute(
        select(Driver).where(
            Driver.kyc_status == "approved",
            Driver.is_available.is_(True),
            Driver.current_lat.is_not(None),
            Driver.current_lon.is_not(None),
            Driver.current_lat.between(lat - band, lat + band),
        )
    ).scalars().all()
    found = []
    for d in candidates:
        dist = haversine_km(lat, lon, d.current_lat, d.current_lon)
        if dist <= radius_km:
            found.append(NearbyDriver(driver=d, distance_km=round(dist, 2)))
    found.sort(key=lambda n: n.distance_km)
    return found[: max(1, min(limit, 100))]
