import math
from dataclasses import dataclass

EARTH_RADIUS_METERS = 6371000


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


def distance_meters(a: Coordinates, b: Coordinates) -> float:
    """Great-circle (haversine) distance between two points, in meters."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

