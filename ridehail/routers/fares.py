from fastapi import APIRouter

from ..fares import compute_fare, normalize_service_type, normalize_vehicle_type
from ..lifecycle import Place, trip_metrics
from ..schemas import FareOut, FareQuoteIn, FareQuoteOut


router = APIRouter(prefix="/fares", tags=["fares"])


def _place(p):
    return Place(p.lat, p.lon, p.address) if p is not None else None


@router.post("/quote", response_model=FareQuoteOut)
def quote(payload: FareQuoteIn):
    service_type = normalize_service_type(payload.service_type)
    vehicle_type = normalize_vehicle_type(payload.vehicle_type)
    distance, duration = trip_metrics(
        service_type,
        _place(payload.pickup),
        _place(payload.dropoff),
        payload.distance_km,
        payload.duration_minutes,
        payload.package_hours,
    )
    fare = compute_fare(service_type, distance, duration, vehicle_type)
    return FareQuoteOut(
        service_type=service_type,
        vehicle_type=vehicle_type,
        distance_km=distance,
        duration_minutes=duration,
        fare=FareOut(**fare.to_dict()),
    )
