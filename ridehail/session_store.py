"""Client-side staging of a ride before it is booked.

``RideSession`` is an explicit context object: each setter replaces
the immutable ``RideDraft`` with a new snapshot. Nothing is persisted
until ``confirm()`` hands the draft to the booking manager.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from typing import Callable, List, Optional

from . import fares
from .errors import RideError, ValidationError
from .events import EventBus, StatusChanged
from .lifecycle import MAX_PACKAGE_HOURS, MAX_PASSENGERS, TRIP_TYPES, BookingDraft, BookingManager, Place, trip_metrics
from .models import Booking


logger = logging.getLogger("ridehail.session_store")


@dataclass(frozen=True)
class RideDraft:
    service_type: str = "city"
    trip_type: str = "one-way"
    pickup: Optional[Place] = None
    dropoff: Optional[Place] = None
    pickup_date: Optional[date] = None
    pickup_time: Optional[time] = None
    passengers: int = 1
    package_hours: Optional[int] = None
    vehicle_type: Optional[str] = None
    vehicle_id: Optional[uuid.UUID] = None
    special_instructions: Optional[str] = None
    payment_method: Optional[str] = None
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None
    fare: Optional[fares.FareBreakdown] = None

    @property
    def scheduled_time(self) -> Optional[datetime]:
        if self.pickup_date is None:
            return None
        return datetime.combine(self.pickup_date, self.pickup_time or time(0, 0))


@dataclass(frozen=True)
class RideView:
    """Booking as the rider screens consume it."""

    id: uuid.UUID
    status: str
    service_type: str
    trip_type: str
    pickup_address: str
    dropoff_address: Optional[str]
    scheduled_time: Optional[datetime]
    passengers: int
    vehicle_type: Optional[str]
    driver_id: Optional[uuid.UUID]
    fare_amount: Optional[int]
    advance_amount: Optional[int]
    remaining_amount: Optional[int]
    payment_status: str
    version: int
    updated_at: datetime

    @classmethod
    def from_booking(cls, b: Booking) -> "RideView":
        return cls(
            id=b.id,
            status=b.status,
            service_type=b.service_type,
            trip_type=b.trip_type,
            pickup_address=b.pickup_address,
            dropoff_address=b.dropoff_address,
            scheduled_time=b.scheduled_time,
            passengers=b.passengers,
            vehicle_type=b.vehicle_type,
            driver_id=b.driver_id,
            fare_amount=b.fare_amount,
            advance_amount=b.advance_amount,
            remaining_amount=b.remaining_amount,
            payment_status=b.payment_status,
            version=b.version,
            updated_at=b.updated_at,
        )


class RideSession:
    def __init__(self, rider_id: uuid.UUID, manager: BookingManager) -> None:
        self.rider_id = rider_id
        self.manager = manager
        self.draft = RideDraft()
        self.current_ride: Optional[RideView] = None
        self.rides: List[RideView] = []
        self.error: Optional[str] = None

    def _price(self, draft: RideDraft) -> RideDraft:
        if not draft.vehicle_type:
            return replace(draft, fare=None, distance_km=None, duration_minutes=None)
        if draft.pickup is None or (draft.service_type != "hourly" and draft.dropoff is None):
            return replace(draft, fare=None, distance_km=None, duration_minutes=None)
        distance, duration = trip_metrics(
            draft.service_type, draft.pickup, draft.dropoff, package_hours=draft.package_hours
        )
        fare = fares.compute_fare(draft.service_type, distance, duration, draft.vehicle_type)
        return replace(draft, fare=fare, distance_km=distance, duration_minutes=duration)

    def _update(self, **changes) -> RideDraft:
        draft = replace(self.draft, **changes)
        if draft.vehicle_type:
            draft = self._price(draft)
        self.draft = draft
        self.error = None
        return draft

    def set_service_type(self, service_type: str) -> RideDraft:
        return self._update(service_type=fares.normalize_service_type(service_type))

    def set_trip_type(self, trip_type: str) -> RideDraft:
        if trip_type not in TRIP_TYPES:
            raise ValidationError(f"unknown trip type: {trip_type!r}")
        return self._update(trip_type=trip_type)

    def set_pickup(self, lat: float, lon: float, address: str) -> RideDraft:
        return self._update(pickup=Place(lat, lon, address))

    def set_dropoff(self, lat: float, lon: float, address: str) -> RideDraft:
        return self._update(dropoff=Place(lat, lon, address))

    def set_date(self, value: Optional[date]) -> RideDraft:
        return self._update(pickup_date=value)

    def set_time(self, value: Optional[time]) -> RideDraft:
        return self._update(pickup_time=value)

    def set_passengers(self, passengers: int) -> RideDraft:
        if isinstance(passengers, bool) or not isinstance(passengers, int) or not 1 <= passengers <= MAX_PASSENGERS:
            raise ValidationError(f"passengers must be between 1 and {MAX_PASSENGERS}")
        return self._update(passengers=passengers)

    def set_package_hours(self, hours: Optional[int]) -> RideDraft:
        if hours is not None and not 1 <= hours <= MAX_PACKAGE_HOURS:
            raise ValidationError(f"package hours must be between 1 and {MAX_PACKAGE_HOURS}")
        return self._update(package_hours=hours)

    def set_vehicle(self, vehicle_type: str, vehicle_id: Optional[uuid.UUID] = None) -> RideDraft:
        return self._update(vehicle_type=fares.normalize_vehicle_type(vehicle_type), vehicle_id=vehicle_id)

    def set_special_instructions(self, text: Optional[str]) -> RideDraft:
        return self._update(special_instructions=text)

    def set_payment_method(self, method: Optional[str]) -> RideDraft:
        return self._update(payment_method=method)

    def reset(self) -> RideDraft:
        self.draft = RideDraft()
        self.error = None
        return self.draft

    def confirm(self) -> RideView:
        d = self.draft
        booking_draft = BookingDraft(
            rider_id=self.rider_id,
            service_type=d.service_type,
            pickup=d.pickup,
            dropoff=d.dropoff,
            trip_type=d.trip_type,
            vehicle_type=d.vehicle_type,
            vehicle_id=d.vehicle_id,
            scheduled_time=d.scheduled_time,
            passengers=d.passengers,
            package_hours=d.package_hours,
            distance_km=d.distance_km,
            duration_minutes=d.duration_minutes,
            special_instructions=d.special_instructions,
            payment_method=d.payment_method,
        )
        try:
            booking = self.manager.create(booking_draft)
        except RideError as exc:
            self.error = str(exc)
            logger.info("ride confirm failed for rider %s: %s", self.rider_id, exc)
            raise
        self.current_ride = RideView.from_booking(booking)
        self.draft = RideDraft()
        self.error = None
        return self.current_ride

    def load_rides(self, statuses=None) -> List[RideView]:
        self.rides = [RideView.from_booking(b) for b in self.manager.list_for_rider(self.rider_id, statuses)]
        return self.rides

    def refresh_current(self) -> Optional[RideView]:
        if self.current_ride is None:
            return None
        self.current_ride = RideView.from_booking(self.manager.get(self.current_ride.id))
        return self.current_ride

    def on_status_changed(self, event: StatusChanged) -> bool:
        """Apply a pushed status change; stale or foreign events are ignored."""
        cur = self.current_ride
        if cur is None or cur.id != event.booking_id:
            return False
        if (event.updated_at, event.version) <= (cur.updated_at, cur.version):
            return False
        self.current_ride = replace(
            cur,
            status=event.to_status,
            driver_id=event.driver_id if event.driver_id is not None else cur.driver_id,
            version=event.version,
            updated_at=event.updated_at,
        )
        return True

    def attach(self, bus: EventBus) -> Callable[[], None]:
        return bus.subscribe(StatusChanged, self.on_status_changed)
