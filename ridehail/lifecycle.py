"""Booking lifecycle manager.

Owns the booking status machine. Every status write is a conditional
UPDATE guarded by the expected current status and row version, so two
writers racing on the same booking produce exactly one winner; the
loser gets ``Conflict``. Domain events and notifications go out only
after the unit of work has committed.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from prometheus_client import Counter
from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from . import fares
from .database import atomic
from .errors import Conflict, InvalidTransition, NotFound, PaymentFailed, ValidationError
from .events import BookingCreated, EventBus, StatusChanged, bus as default_bus
from .geo import estimate_route
from .models import Booking, BookingCancellation, Driver, Payment, User, Vehicle, utcnow
from .notifications import KINDS, Notifier
from .payments import PAYMENT_METHODS, PaymentProcessor, default_processor, new_idempotency_key
from .ratings import record_rating


logger = logging.getLogger("ridehail.lifecycle")

STATUS_TRANSITIONS = Counter(
    "ridehail_booking_status_transitions_total",
    "Booking status transitions",
    ["from", "to"],
)

STATUSES = (
    "pending",
    "confirmed",
    "assigned",
    "accepted",
    "arriving",
    "arrived",
    "in_progress",
    "completed",
    "cancelled",
    "no_show",
)
TERMINAL = frozenset({"completed", "cancelled", "no_show"})
TRANSITIONS: Dict[str, frozenset] = {
    "pending": frozenset({"confirmed", "assigned", "cancelled"}),
    "confirmed": frozenset({"assigned", "cancelled"}),
    "assigned": frozenset({"accepted", "arriving", "arrived", "in_progress", "cancelled", "no_show"}),
    "accepted": frozenset({"arriving", "arrived", "in_progress", "cancelled", "no_show"}),
    "arriving": frozenset({"arrived", "cancelled", "no_show"}),
    "arrived": frozenset({"in_progress", "cancelled", "no_show"}),
    "in_progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
    "no_show": frozenset(),
}
TRIP_TYPES = ("one-way", "round-trip")
MAX_PASSENGERS = 10
MAX_PACKAGE_HOURS = 24


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def as_uuid(value, what: str = "booking") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise NotFound(f"{what} not found")


@dataclass(frozen=True)
class Place:
    lat: float
    lon: float
    address: str


@dataclass(frozen=True)
class BookingDraft:
    rider_id: uuid.UUID
    service_type: str
    pickup: Optional[Place] = None
    dropoff: Optional[Place] = None
    trip_type: str = "one-way"
    vehicle_type: Optional[str] = None
    vehicle_id: Optional[uuid.UUID] = None
    scheduled_time: Optional[datetime] = None
    passengers: int = 1
    package_hours: Optional[int] = None
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None
    special_instructions: Optional[str] = None
    payment_method: Optional[str] = None


def trip_metrics(
    service_type: str,
    pickup: Optional[Place],
    dropoff: Optional[Place],
    distance_km: Optional[float] = None,
    duration_minutes: Optional[float] = None,
    package_hours: Optional[int] = None,
) -> Tuple[float, float]:
    """Distance and duration to price a trip with.

    Hourly packages are priced on booked time; other trips use the
    supplied figures or fall back to a route estimate.
    """
    if service_type == "hourly":
        minutes = package_hours * 60 if package_hours else (duration_minutes or 0)
        return float(distance_km or 0), float(minutes)
    if distance_km is not None and duration_minutes is not None:
        return distance_km, duration_minutes
    if pickup is None or dropoff is None:
        raise ValidationError("pickup and dropoff are required to estimate the route")
    est = estimate_route(pickup.lat, pickup.lon, dropoff.lat, dropoff.lon)
    return (
        distance_km if distance_km is not None else est.distance_km,
        duration_minutes if duration_minutes is not None else est.duration_minutes,
    )


def fare_columns(fare: fares.FareBreakdown) -> Dict[str, Any]:
    return {
        "fare_amount": fare.total,
        "advance_amount": fare.advance_payment,
        "remaining_amount": fare.remaining_payment,
        "fare_breakdown": fare.to_dict(),
    }


class BookingManager:
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        processor: Optional[PaymentProcessor] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.db = db
        self.notifier = notifier
        self.processor = processor or default_processor()
        self.events = events or default_bus
        self._outbox: List[Tuple[str, Any]] = []

    # ---- queries ----

    def get(self, booking_id) -> Booking:
        booking = self.db.get(Booking, as_uuid(booking_id))
        if booking is None:
            raise NotFound("booking not found")
        return booking

    def _reload(self, booking_id) -> Booking:
        booking = self.db.get(Booking, as_uuid(booking_id), populate_existing=True)
        if booking is None:
            raise NotFound("booking not found")
        return booking

    def _list(self, column, owner_id, statuses: Optional[Iterable[str]], limit: int) -> List[Booking]:
        stmt = select(Booking).where(column == owner_id)
        if statuses:
            wanted = set(statuses)
            unknown = wanted - set(STATUSES)
            if unknown:
                raise ValidationError(f"unknown status: {', '.join(sorted(unknown))}")
            stmt = stmt.where(Booking.status.in_(wanted))
        stmt = stmt.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(max(1, min(limit, 200)))
        return self.db.execute(stmt).scalars().all()

    def list_for_rider(self, rider_id, statuses: Optional[Iterable[str]] = None, limit: int = 50) -> List[Booking]:
        return self._list(Booking.rider_id, as_uuid(rider_id, "rider"), statuses, limit)

    def list_for_driver(self, driver_id, statuses: Optional[Iterable[str]] = None, limit: int = 50) -> List[Booking]:
        return self._list(Booking.driver_id, as_uuid(driver_id, "driver"), statuses, limit)

    def active_for_rider(self, rider_id) -> List[Booking]:
        return self.list_for_rider(rider_id, [s for s in STATUSES if s not in TERMINAL])

    def payments_for(self, booking_id) -> List[Payment]:
        booking = self.get(booking_id)
        stmt = select(Payment).where(Payment.booking_id == booking.id).order_by(Payment.created_at.asc())
        return self.db.execute(stmt).scalars().all()

    # ---- creation ----

    def create(self, draft: BookingDraft) -> Booking:
        service_type = fares.normalize_service_type(draft.service_type)
        if draft.pickup is None or not (draft.pickup.address or "").strip():
            raise ValidationError("pickup location is required")
        if service_type != "hourly" and (draft.dropoff is None or not (draft.dropoff.address or "").strip()):
            raise ValidationError("dropoff location is required")
        if isinstance(draft.passengers, bool) or not isinstance(draft.passengers, int) or not 1 <= draft.passengers <= MAX_PASSENGERS:
            raise ValidationError(f"passengers must be between 1 and {MAX_PASSENGERS}")
        if draft.trip_type not in TRIP_TYPES:
            raise ValidationError(f"unknown trip type: {draft.trip_type!r}")
        if draft.package_hours is not None and not 1 <= draft.package_hours <= MAX_PACKAGE_HOURS:
            raise ValidationError(f"package hours must be between 1 and {MAX_PACKAGE_HOURS}")
        if draft.payment_method is not None and draft.payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"unknown payment method: {draft.payment_method!r}")
        rider_id = as_uuid(draft.rider_id, "rider")
        dropoff = draft.dropoff

        def op():
            if self.db.get(User, rider_id) is None:
                raise NotFound("rider not found")
            vehicle_type = fares.normalize_vehicle_type(draft.vehicle_type) if draft.vehicle_type else None
            vehicle_id = None
            if draft.vehicle_id is not None:
                vehicle = self.db.get(Vehicle, as_uuid(draft.vehicle_id, "vehicle"))
                if vehicle is None:
                    raise NotFound("vehicle not found")
                if vehicle.status != "active":
                    raise ValidationError("vehicle is not available")
                if draft.passengers > vehicle.capacity:
                    raise ValidationError("too many passengers for this vehicle")
                vehicle_id = vehicle.id
                vehicle_type = vehicle.vehicle_type
            booking = Booking(
                rider_id=rider_id,
                vehicle_id=vehicle_id,
                status="pending",
                version=1,
                service_type=service_type,
                trip_type=draft.trip_type,
                vehicle_type=vehicle_type,
                pickup_lat=draft.pickup.lat,
                pickup_lon=draft.pickup.lon,
                pickup_address=draft.pickup.address.strip(),
                dropoff_lat=dropoff.lat if dropoff else None,
                dropoff_lon=dropoff.lon if dropoff else None,
                dropoff_address=dropoff.address.strip() if dropoff else None,
                scheduled_time=draft.scheduled_time,
                passengers=draft.passengers,
                package_hours=draft.package_hours,
                special_instructions=(draft.special_instructions or "").strip() or None,
                payment_status="pending",
                payment_method=draft.payment_method,
            )
            if vehicle_type:
                distance, duration = trip_metrics(
                    service_type, draft.pickup, dropoff, draft.distance_km, draft.duration_minutes, draft.package_hours
                )
                fare = fares.compute_fare(service_type, distance, duration, vehicle_type)
                booking.distance_km = distance
                booking.duration_minutes = duration
                for key, value in fare_columns(fare).items():
                    setattr(booking, key, value)
            self.db.add(booking)
            self.db.flush()
            self._outbox.append(("event", BookingCreated(booking.id, booking.rider_id, booking.status, booking.version, booking.updated_at)))
            self._notify(booking.rider_id, "booking_created", booking)
            return booking

        booking = self._run(op)
        logger.info("booking %s created service=%s fare=%s", booking.id, service_type, booking.fare_amount)
        return booking

    # ---- transitions ----

    def _write(self, booking: Booking, expect_status: str, **values) -> None:
        stmt = update(Booking).where(
            Booking.id == booking.id, Booking.version == booking.version, Booking.status == expect_status
        )
        res = self.db.execute(
            stmt.values(version=Booking.version + 1, updated_at=utcnow(), **values).execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise Conflict("booking was changed concurrently; reload and retry")
        self.db.refresh(booking)

    def _settle(self, booking: Booking, **values) -> None:
        """Payment bookkeeping on a fresh row: no version guard, a refund is final."""
        res = self.db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.payment_status != "refunded")
            .values(version=Booking.version + 1, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise InvalidTransition("booking has been refunded")
        self.db.refresh(booking)

    def _transition(self, booking: Booking, target: str, **values) -> str:
        current = booking.status
        if not can_transition(current, target):
            raise InvalidTransition(f"cannot move booking from {current} to {target}")
        self._write(booking, expect_status=current, status=target, **values)
        self._outbox.append(("metric", (current, target)))
        self._outbox.append((
            "event",
            StatusChanged(booking.id, current, target, booking.version, booking.updated_at, booking.driver_id),
        ))
        return current

    def _free_driver(self, booking: Booking) -> None:
        if booking.driver_id is None:
            return
        self.db.execute(
            update(Driver)
            .where(Driver.id == booking.driver_id)
            .values(is_available=True)
            .execution_options(synchronize_session="fetch")
        )

    def _driver_user(self, booking: Booking) -> Optional[uuid.UUID]:
        if booking.driver_id is None:
            return None
        driver = self.db.get(Driver, booking.driver_id)
        return driver.user_id if driver else None

    def _notify(self, user_id: Optional[uuid.UUID], kind: str, booking: Booking, **extra) -> None:
        if kind not in KINDS:
            raise ValueError(f"unknown notification kind: {kind!r}")
        if user_id is None or self.notifier is None:
            return
        payload = {"booking_id": str(booking.id), "status": booking.status}
        payload.update(extra)
        self._outbox.append(("notify", (user_id, kind, payload)))

    def _flush_outbox(self) -> None:
        outbox, self._outbox = self._outbox, []
        for kind, item in outbox:
            if kind == "metric":
                STATUS_TRANSITIONS.labels(*item).inc()
            elif kind == "event":
                self.events.publish(item)
            elif kind == "notify":
                try:
                    self.notifier.notify(*item)
                except Exception:
                    logger.exception("notify %s failed", item[1])

    def _run(self, fn, *args, **kwargs):
        try:
            with atomic(self.db):
                result = fn(*args, **kwargs)
        except Exception:
            self._outbox = []
            raise
        self._flush_outbox()
        return result

    def confirm(self, booking_id) -> Booking:
        def op():
            booking = self.get(booking_id)
            self._transition(booking, "confirmed")
            self._notify(booking.rider_id, "booking_confirmed", booking)
            return booking

        return self._run(op)

    def assign_driver(self, booking_id, driver_id) -> Booking:
        def op():
            booking = self.get(booking_id)
            driver = self.db.get(Driver, as_uuid(driver_id, "driver"))
            if driver is None:
                raise NotFound("driver not found")
            if driver.kyc_status != "approved":
                raise ValidationError("driver is not verified")
            values: Dict[str, Any] = {"driver_id": driver.id}
            vehicle = driver.vehicle
            if booking.vehicle_id is None and vehicle is not None and vehicle.status == "active":
                values["vehicle_id"] = vehicle.id
                if booking.vehicle_type is None:
                    values["vehicle_type"] = vehicle.vehicle_type
                if booking.fare_amount is None:
                    distance, duration = trip_metrics(
                        booking.service_type,
                        Place(booking.pickup_lat, booking.pickup_lon, booking.pickup_address),
                        Place(booking.dropoff_lat, booking.dropoff_lon, booking.dropoff_address)
                        if booking.dropoff_address else None,
                        booking.distance_km,
                        booking.duration_minutes,
                        booking.package_hours,
                    )
                    fare = fares.compute_fare(booking.service_type, distance, duration, vehicle.vehicle_type)
                    values.update(fare_columns(fare), distance_km=distance, duration_minutes=duration)
            self._transition(booking, "assigned", **values)
            driver.is_available = False
            self._notify(booking.rider_id, "driver_assigned", booking, driver_id=str(driver.id))
            self._notify(driver.user_id, "driver_assigned", booking)
            return booking

        booking = self._run(op)
        logger.info("booking %s assigned to driver %s", booking.id, booking.driver_id)
        return booking

    def accept(self, booking_id) -> Booking:
        def op():
            booking = self.get(booking_id)
            self._transition(booking, "accepted")
            return booking

        return self._run(op)

    def mark_arriving(self, booking_id) -> Booking:
        def op():
            booking = self.get(booking_id)
            self._transition(booking, "arriving")
            self._notify(booking.rider_id, "driver_arriving", booking)
            return booking

        return self._run(op)

    def mark_arrived(self, booking_id) -> Booking:
        def op():
            booking = self.get(booking_id)
            self._transition(booking, "arrived")
            self._notify(booking.rider_id, "driver_arrived", booking)
            return booking

        return self._run(op)

    def start(self, booking_id) -> Booking:
        def op():
            booking = self.get(booking_id)
            if booking.status not in ("assigned", "accepted", "arrived"):
                raise InvalidTransition(f"cannot start a ride that is {booking.status}")
            self._transition(booking, "in_progress", started_at=utcnow())
            self._notify(booking.rider_id, "ride_started", booking)
            return booking

        return self._run(op)

    def complete(
        self,
        booking_id,
        final_fare: Optional[int] = None,
        rating: Optional[int] = None,
        review: Optional[str] = None,
    ) -> Booking:
        if final_fare is not None and (isinstance(final_fare, bool) or not isinstance(final_fare, int) or final_fare < 0):
            raise ValidationError("final fare must be a non-negative integer")

        def op():
            booking = self.get(booking_id)
            values: Dict[str, Any] = {
                "payment_status": "completed",
                "remaining_amount": 0,
                "completed_at": utcnow(),
            }
            if final_fare is not None:
                # the quoted breakdown is kept; the override is recorded next to it
                values["fare_amount"] = final_fare
                values["fare_breakdown"] = dict(booking.fare_breakdown or {}, final_fare=final_fare)
            self._transition(booking, "completed", **values)
            self._free_driver(booking)
            if rating is not None or review:
                if rating is None:
                    raise ValidationError("a review needs a score")
                record_rating(self.db, booking.id, booking.rider_id, booking.driver_id, rating, review)
            self._notify(booking.rider_id, "ride_completed", booking, fare_amount=booking.fare_amount)
            self._notify(self._driver_user(booking), "ride_completed", booking, fare_amount=booking.fare_amount)
            return booking

        booking = self._run(op)
        logger.info("booking %s completed fare=%s", booking.id, booking.fare_amount)
        return booking

    def cancel(self, booking_id, reason: str, cancelled_by=None) -> Booking:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("a cancellation reason is required")

        def op():
            booking = self.get(booking_id)
            if booking.status in TERMINAL:
                raise InvalidTransition(f"cannot cancel a booking that is {booking.status}")
            previous = self._transition(booking, "cancelled", cancellation_reason=reason)
            self.db.add(
                BookingCancellation(
                    booking_id=booking.id,
                    cancelled_by=as_uuid(cancelled_by, "user") if cancelled_by is not None else None,
                    previous_status=previous,
                    reason=reason,
                )
            )
            self._free_driver(booking)
            self._notify(booking.rider_id, "ride_cancelled", booking, reason=reason)
            self._notify(self._driver_user(booking), "ride_cancelled", booking, reason=reason)
            return booking

        booking = self._run(op)
        logger.info("booking %s cancelled: %s", booking.id, reason)
        return booking

    def mark_no_show(self, booking_id, reason: str) -> Booking:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("a no-show reason is required")

        def op():
            booking = self.get(booking_id)
            self._transition(booking, "no_show", no_show_reason=reason)
            self._free_driver(booking)
            self._notify(booking.rider_id, "no_show", booking, reason=reason)
            return booking

        return self._run(op)

    # ---- payments ----

    def record_payment(
        self,
        booking_id,
        amount: int,
        method: str,
        is_advance: bool,
        reference: Optional[str] = None,
        gateway_status: Optional[str] = None,
    ) -> Payment:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("amount must be a positive integer")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"unknown payment method: {method!r}")

        def op():
            booking = self._reload(booking_id)
            if booking.payment_status == "refunded":
                raise InvalidTransition("booking has been refunded")
            payment = Payment(
                booking_id=booking.id,
                amount=amount,
                method=method,
                is_advance=bool(is_advance),
                kind="charge",
                reference=reference,
                gateway_status=gateway_status,
            )
            self.db.add(payment)
            values: Dict[str, Any] = {"payment_method": method}
            if is_advance:
                values["payment_status"] = case((Booking.payment_status == "completed", "completed"), else_="partial")
            else:
                values.update(payment_status="completed", remaining_amount=0)
            self._settle(booking, **values)
            self._notify(booking.rider_id, "payment_received", booking, amount=amount, method=method)
            return payment

        return self._run(op)

    def pay(
        self,
        booking_id,
        amount: int,
        method: str,
        is_advance: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> Payment:
        """Charge the processor, then record the payment.

        The charge happens outside the transaction. If it succeeds but
        cannot be recorded, the charge is reversed before the error
        propagates.
        """
        booking = self.get(booking_id)
        if booking.payment_status == "refunded":
            raise InvalidTransition("booking has been refunded")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("amount must be a positive integer")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"unknown payment method: {method!r}")
        key = idempotency_key or new_idempotency_key(booking.id, "charge")
        result = self.processor.charge(booking.id, amount, method, idempotency_key=key)
        if not result.ok:
            logger.info("charge declined for booking %s: %s", booking.id, result.status)
            raise PaymentFailed(f"payment declined: {result.status}")
        try:
            return self.record_payment(
                booking.id, amount, method, is_advance, reference=result.reference, gateway_status=result.status
            )
        except Exception:
            self._reverse_charge(booking.id, amount, result.reference)
            raise

    def _reverse_charge(self, booking_id: uuid.UUID, amount: int, reference: Optional[str]) -> None:
        logger.warning("charge %s for booking %s could not be recorded; reversing", reference, booking_id)
        try:
            outcome = self.processor.refund(
                booking_id, amount, reference, idempotency_key=f"ridehail:{booking_id}:reversal:{reference}"
            )
        except PaymentFailed:
            logger.exception("reversal of charge %s failed", reference)
            return
        if not outcome.ok:
            logger.error("reversal of charge %s declined: %s", reference, outcome.status)

    def refund(self, booking_id) -> Payment:
        booking = self.get(booking_id)
        if booking.payment_status == "refunded":
            raise InvalidTransition("booking has already been refunded")
        paid = self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.booking_id == booking.id)
        ).scalar_one()
        if int(paid) <= 0:
            raise ValidationError("nothing to refund")
        last = self.db.execute(
            select(Payment)
            .where(Payment.booking_id == booking.id, Payment.kind == "charge")
            .order_by(Payment.created_at.desc())
            .limit(1)
        ).scalar_one()
        result = self.processor.refund(booking.id, int(paid), last.reference)
        if not result.ok:
            raise PaymentFailed(f"refund declined: {result.status}")

        def op():
            current = self._reload(booking.id)
            payment = Payment(
                booking_id=current.id,
                amount=-int(paid),
                method=last.method,
                is_advance=False,
                kind="refund",
                reference=result.reference,
                gateway_status=result.status,
            )
            self.db.add(payment)
            self._settle(current, payment_status="refunded")
            self._notify(current.rider_id, "payment_refunded", current, amount=int(paid))
            return payment

        payment = self._run(op)
        logger.info("booking %s refunded %s", booking.id, paid)
        return payment
