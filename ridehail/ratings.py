"""Rating aggregator.

The only writer of ``Driver.rating`` and ``Driver.total_rides``.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .database import atomic
from .errors import DuplicateRating, InvalidTransition, NotFound, ValidationError
from .models import Booking, Driver, Rating


logger = logging.getLogger("ridehail.ratings")


@dataclass(frozen=True)
class RatingSummary:
    average: float
    count: int


def recompute_driver_rating(db: Session, driver_id: uuid.UUID) -> RatingSummary:
    with atomic(db):
        if db.get(Driver, driver_id) is None:
            raise NotFound("driver not found")
        avg, count = db.execute(
            select(func.avg(Rating.score), func.count(Rating.id)).where(Rating.driver_id == driver_id)
        ).one()
        summary = RatingSummary(average=float(avg) if count else 0.0, count=int(count or 0))
        db.execute(
            update(Driver)
            .where(Driver.id == driver_id)
            .values(rating=summary.average, total_rides=summary.count)
            .execution_options(synchronize_session="fetch")
        )
    logger.info("driver %s rating=%.3f rides=%d", driver_id, summary.average, summary.count)
    return summary


def record_rating(
    db: Session,
    booking_id: uuid.UUID,
    rider_id: uuid.UUID,
    driver_id: uuid.UUID,
    score: int,
    review: Optional[str] = None,
) -> Rating:
    if isinstance(score, bool) or not isinstance(score, int) or not 1 <= score <= 5:
        raise ValidationError("score must be an integer between 1 and 5")
    with atomic(db):
        booking = db.get(Booking, booking_id)
        if booking is None:
            raise NotFound("booking not found")
        if booking.status != "completed":
            raise InvalidTransition("only completed rides can be rated")
        if booking.rider_id != rider_id:
            raise ValidationError("rider did not take this ride")
        if booking.driver_id is None or booking.driver_id != driver_id:
            raise ValidationError("driver did not drive this ride")
        existing = db.execute(
            select(Rating.id).where(Rating.booking_id == booking_id, Rating.rider_id == rider_id)
        ).first()
        if existing is not None:
            raise DuplicateRating("ride already rated")
        rating = Rating(
            booking_id=booking_id,
            rider_id=rider_id,
            driver_id=driver_id,
            score=score,
            review=(review or "").strip() or None,
        )
        db.add(rating)
        try:
            db.flush()
        except IntegrityError as exc:
            raise DuplicateRating("ride already rated") from exc
        recompute_driver_rating(db, driver_id)
    return rating
