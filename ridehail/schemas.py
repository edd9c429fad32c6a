import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


BookingStatus = Literal[
    "pending", "confirmed", "assigned", "accepted", "arriving", "arrived",
    "in_progress", "completed", "cancelled", "no_show",
]
PaymentStatus = Literal["pending", "partial", "completed", "refunded"]


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RequestOtpIn(BaseModel):
    phone: str


class RequestOtpOut(BaseModel):
    session_id: str
    dev_code: Optional[str] = None


class VerifyOtpIn(BaseModel):
    phone: str
    otp: str
    session_id: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=128)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    phone: str
    name: Optional[str]
    email: Optional[str] = None
    role: str


class ProfileIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=128)
    email: Optional[str] = Field(default=None, max_length=256)


class PlaceIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    address: str = Field(min_length=1, max_length=512)


class FareQuoteIn(BaseModel):
    service_type: str
    vehicle_type: str
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None
    package_hours: Optional[int] = None
    pickup: Optional[PlaceIn] = None
    dropoff: Optional[PlaceIn] = None


class FareOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    base: int
    distance: int
    time: int
    surge: int
    subtotal: int
    tax: int
    total: int
    advance_payment: int
    remaining_payment: int


class FareQuoteOut(BaseModel):
    service_type: str
    vehicle_type: str
    distance_km: float
    duration_minutes: float
    fare: FareOut


class BookingCreateIn(BaseModel):
    service_type: str
    trip_type: str = "one-way"
    pickup: Optional[PlaceIn] = None
    dropoff: Optional[PlaceIn] = None
    vehicle_type: Optional[str] = None
    vehicle_id: Optional[uuid.UUID] = None
    scheduled_time: Optional[datetime] = None
    passengers: int = 1
    package_hours: Optional[int] = None
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None
    special_instructions: Optional[str] = Field(default=None, max_length=1000)
    payment_method: Optional[str] = None


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    rider_id: uuid.UUID
    driver_id: Optional[uuid.UUID]
    vehicle_id: Optional[uuid.UUID]
    status: BookingStatus
    version: int
    service_type: str
    trip_type: str
    vehicle_type: Optional[str]
    pickup_lat: float
    pickup_lon: float
    pickup_address: str
    dropoff_lat: Optional[float]
    dropoff_lon: Optional[float]
    dropoff_address: Optional[str]
    scheduled_time: Optional[datetime]
    passengers: int
    package_hours: Optional[int]
    special_instructions: Optional[str]
    distance_km: Optional[float]
    duration_minutes: Optional[float]
    fare_amount: Optional[int]
    advance_amount: Optional[int]
    remaining_amount: Optional[int]
    fare_breakdown: Optional[Dict[str, Any]]
    payment_status: PaymentStatus
    payment_method: Optional[str]
    cancellation_reason: Optional[str]
    no_show_reason: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class BookingsListOut(BaseModel):
    bookings: List[BookingOut]


class CancelIn(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class NoShowIn(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class CompleteIn(BaseModel):
    final_fare: Optional[int] = None


class RatingIn(BaseModel):
    score: int
    review: Optional[str] = Field(default=None, max_length=1000)


class RatingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    booking_id: uuid.UUID
    driver_id: uuid.UUID
    score: int
    review: Optional[str]
    created_at: datetime


class PaymentIn(BaseModel):
    amount: int
    method: str
    is_advance: bool = False


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    booking_id: uuid.UUID
    amount: int
    method: str
    is_advance: bool
    kind: str
    reference: Optional[str]
    gateway_status: Optional[str]
    created_at: datetime


class DriverApplyIn(BaseModel):
    license_number: str = Field(min_length=1, max_length=64)


class DriverAvailabilityIn(BaseModel):
    available: bool


class DriverLocationIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    at: Optional[datetime] = None


class DriverOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    license_number: str
    kyc_status: str
    is_available: bool
    rating: float
    total_rides: int
    current_lat: Optional[float]
    current_lon: Optional[float]
    location_updated_at: Optional[datetime]


class EarningsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period: str
    since: datetime
    total: int
    rides: int
    average: float


class ReceivedRatingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class NearbyDriverOut(BaseModel):
    driver_id: uuid.UUID
    rating: float
    total_rides: int
    vehicle_type: Optional[str]
    lat: float
    lon: float
    distance_km: float


class DriverLocationOut(BaseModel):
    driver_id: uuid.UUID
    lat: Optional[float]
    lon: Optional[float]
    updated_at: Optional[datetime]


class KycIn(BaseModel):
    status: str


class VehicleIn(BaseModel):
    vehicle_type: str
    license_plate: str = Field(min_length=1, max_length=32)
    capacity: int = 4
    make: Optional[str] = Field(default=None, max_length=64)
    model: Optional[str] = Field(default=None, max_length=64)


class VehicleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    vehicle_type: str
    make: Optional[str]
    model: Optional[str]
    capacity: int
    license_plate: str
    status: str
    driver_id: Optional[uuid.UUID]


class VehicleStatusIn(BaseModel):
    status: str


class VehicleAssignIn(BaseModel):
    driver_id: Optional[uuid.UUID] = None


class SavedLocationIn(BaseModel):
    label: str = Field(min_length=1, max_length=64)
    address: str = Field(min_length=1, max_length=512)
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    is_default: bool = False


class SavedLocationPatch(BaseModel):
    label: Optional[str] = Field(default=None, max_length=64)
    address: Optional[str] = Field(default=None, max_length=512)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)
    is_default: Optional[bool] = None


class SavedLocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    label: str
    address: str
    lat: float
    lon: float
    is_default: bool
    created_at: datetime


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    kind: str
    payload: Optional[Dict[str, Any]]
    is_read: bool
    created_at: datetime


class NotificationsOut(BaseModel):
    unread: int
    notifications: List[NotificationOut]
