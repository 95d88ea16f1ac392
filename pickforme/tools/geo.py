import math
from typing import Optional

from pickforme.schemas import Coordinates

EARTH_RADIUS_MILES = 3958.8


def haversine_miles(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in statute miles."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_from(origin: Optional[Coordinates], target: Coordinates) -> Optional[float]:
    if origin is None:
        return None
    return haversine_miles(origin, target)
