"""Fare calculator.

Pure and deterministic: one flat base fare per vehicle type plus
service-dependent distance and time rates. Every component is rounded
to a whole currency unit before summing so ``advance + remaining``
equals ``total`` exactly.
"""
import math
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal

from .errors import InvalidInput


SERVICE_TYPES = ("city", "airport", "outstation", "hourly")
VEHICLE_TYPES = ("sedan", "suv", "premium")

BASE_FARES = {"sedan": 100, "suv": 150, "premium": 200}
PER_KM_RATES = {"city": 10, "airport": 10, "outstation": 15, "hourly": 10}
PER_MINUTE_RATE = 2
SURGE = 0
TAX_RATE = Decimal("0.10")
ADVANCE_RATE = Decimal("0.25")


@dataclass(frozen=True)
class FareBreakdown:
    base: int
    distance: int
    time: int
    surge: int
    subtotal: int
    tax: int
    total: int
    advance_payment: int
    remaining_payment: int

    def to_dict(self) -> dict:
        return asdict(self)


def round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_vehicle_type(vehicle_type) -> str:
    value = (vehicle_type or "").strip().lower() if isinstance(vehicle_type, str) else ""
    if value not in BASE_FARES:
        raise InvalidInput(f"unknown vehicle type: {vehicle_type!r}")
    return value


def normalize_service_type(service_type) -> str:
    value = (service_type or "").strip().lower() if isinstance(service_type, str) else ""
    if value not in PER_KM_RATES:
        raise InvalidInput(f"unknown service type: {service_type!r}")
    return value


def _check_quantity(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInput(f"{name} must be a number")
    if math.isnan(value) or math.isinf(value):
        raise InvalidInput(f"{name} must be finite")
    if value < 0:
        raise InvalidInput(f"{name} must be non-negative")
    return float(value)


def compute_fare(service_type: str, distance_km: float, duration_minutes: float, vehicle_type: str) -> FareBreakdown:
    service = normalize_service_type(service_type)
    vehicle = normalize_vehicle_type(vehicle_type)
    distance_km = _check_quantity("distance_km", distance_km)
    duration_minutes = _check_quantity("duration_minutes", duration_minutes)

    base = BASE_FARES[vehicle]
    distance = round_half_up(Decimal(str(distance_km)) * PER_KM_RATES[service])
    time = round_half_up(Decimal(str(duration_minutes)) * PER_MINUTE_RATE)
    subtotal = base + distance + time + SURGE
    tax = round_half_up(subtotal * TAX_RATE)
    total = subtotal + tax
    advance = round_half_up(total * ADVANCE_RATE)
    return FareBreakdown(
        base=base,
        distance=distance,
        time=time,
        surge=SURGE,
        subtotal=subtotal,
        tax=tax,
        total=total,
        advance_payment=advance,
        remaining_payment=total - advance,
    )
