import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


def default_uuid():
    return uuid.uuid4()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=default_uuid)
    phone = Column(String(32), nullable=False, unique=True, index=True)
    name = Column(String(128), nullable=True)
    email = Column(String(256), nullable=True)
    role = Column(String(16), nullable=False, default="rider")  # rider|driver|admin
    created_at = Column(DateTime, nullable=False, default=utcnow)

    driver = relationship("Driver", uselist=False, back_populates="user")


class Driver(Base):
    __tablename__ = "drivers"

    id = Column(Uuid, primary_key=True, default=default_uuid)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, unique=True)
    license_number = Column(String(64), nullable=False)
    kyc_status = Column(String(32), nullable=False, default="pending")  # pending|approved|rejected|resubmission_requested
    is_available = Column(Boolean, nullable=False, default=False)
    # Written only by the rating aggregator
    rating = Column(Float, nullable=False, default=0.0)
    total_rides = Column(Integer, nullable=False, default=0)
    current_lat = Column(Float, nullable=True)
    current_lon = Column(Float, nullable=True)
    location_updated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="driver")
    vehicle = relationship("Vehicle", uselist=False, back_populates="driver")


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Uuid, primary_key=True, default=default_uuid)
    vehicle_type = Column(String(16), nullable=False)  # sedan|suv|premium
    make = Column(String(64), nullable=True)
    model = Column(String(64), nullable=True)
    capacity = Column(Integer, nullable=False, default=4)
    license_plate = Column(String(32), nullable=False, unique=True)
    status = Column(String(24), nullable=False, default="active")  # active|inactive|maintenance|out_of_service
    driver_id = Column(Uuid, ForeignKey("drivers.id"), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    driver = relationship("Driver", back_populates="vehicle")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_rider_created", "rider_id", "created_at"),
        Index("ix_bookings_driver_created", "driver_id", "created_at"),
        CheckConstraint("passengers >= 1 AND passengers <= 10", name="ck_bookings_passengers"),
    )

    id = Column(Uuid, primary_key=True, default=default_uuid)
    rider_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Uuid, ForeignKey("drivers.id"), nullable=True)
    vehicle_id = Column(Uuid, ForeignKey("vehicles.id"), nullable=True)
    status = Column(String(24), nullable=False, default="pending")
    version = Column(Integer, nullable=False, default=1)
    service_type = Column(String(16), nullable=False)  # city|airport|outstation|hourly
    trip_type = Column(String(16), nullable=False, default="one-way")  # one-way|round-trip
    vehicle_type = Column(String(16), nullable=True)
    pickup_lat = Column(Float, nullable=False)
    pickup_lon = Column(Float, nullable=False)
    pickup_address = Column(String(512), nullable=False)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lon = Column(Float, nullable=True)
    dropoff_address = Column(String(512), nullable=True)
    scheduled_time = Column(DateTime, nullable=True)
    passengers = Column(Integer, nullable=False, default=1)
    package_hours = Column(Integer, nullable=True)
    special_instructions = Column(Text, nullable=True)
    distance_km = Column(Float, nullable=True)
    duration_minutes = Column(Float, nullable=True)
    fare_amount = Column(Integer, nullable=True)
    advance_amount = Column(Integer, nullable=True)
    remaining_amount = Column(Integer, nullable=True)
    fare_breakdown = Column(JSON, nullable=True)
    payment_status = Column(String(16), nullable=False, default="pending")  # pending|partial|completed|refunded
    payment_method = Column(String(16), nullable=True)  # cash|card|upi|wallet
    cancellation_reason = Column(Text, nullable=True)
    no_show_reason = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    rider = relationship("User")
    driver = relationship("Driver")
    vehicle = relationship("Vehicle")


class BookingCancellation(Base):
    __tablename__ = "booking_cancellations"

    id = Column(Uuid, primary_key=True, default=default_uuid)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False, index=True)
    cancelled_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    previous_status = Column(String(24), nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Rating(Base):
    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("booking_id", "rider_id", name="uq_rating_booking_rider"),
        CheckConstraint("score >= 1 AND score <= 5", name="ck_rating_score"),
        Index("ix_ratings_driver", "driver_id"),
    )

    id = Column(Uuid, primary_key=True, default=default_uuid)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False)
    rider_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Uuid, ForeignKey("drivers.id"), nullable=False)
    score = Column(Integer, nullable=False)
    review = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (Index("ix_payments_booking_created", "booking_id", "created_at"),)

    id = Column(Uuid, primary_key=True, default=default_uuid)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False)
    amount = Column(Integer, nullable=False)  # negative for refunds
    method = Column(String(16), nullable=False)
    is_advance = Column(Boolean, nullable=False, default=False)
    kind = Column(String(16), nullable=False, default="charge")  # charge|refund
    reference = Column(String(128), nullable=True)
    gateway_status = Column(String(32), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class SavedLocation(Base):
    __tablename__ = "saved_locations"
    __table_args__ = (Index("ix_saved_locations_user", "user_id"),)

    id = Column(Uuid, primary_key=True, default=default_uuid)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    label = Column(String(64), nullable=False)
    address = Column(String(512), nullable=False)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_created", "user_id", "created_at"),)

    id = Column(Uuid, primary_key=True, default=default_uuid)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    kind = Column(String(32), nullable=False)  # booking_created|driver_assigned|ride_completed|payment_received|...
    payload = Column(JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
