import math
from dataclasses import dataclass

from .config import settings


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    R = 6371.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dl / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R * c


@dataclass(frozen=True)
class RouteEstimate:
    distance_km: float
    duration_minutes: float


def estimate_route(lat1: float, lon1: float, lat2: float, lon2: float) -> RouteEstimate:
    """Road distance approximated as great-circle distance times a road factor."""
    km = haversine_km(lat1, lon1, lat2, lon2) * max(1.0, settings.ROAD_FACTOR)
    speed = settings.AVG_SPEED_KMPH if settings.AVG_SPEED_KMPH > 0 else 30.0
    minutes = km / speed * 60.0
    return RouteEstimate(distance_km=round(km, 2), duration_minutes=round(minutes, 1))
