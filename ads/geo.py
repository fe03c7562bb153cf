"""Great-circle distance helpers for geo-filtered ad search."""
import math
from typing import Any, Callable, Iterable, List, Optional, Tuple, TypeVar

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE = 111.0

T = TypeVar('T')

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two points in kilometers."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

def bounding_box(latitude: float, longitude: float, radius_km: float) -> Tuple[float, float, float, float]:
    """Approximate box around a point, used only as a pre-filter.
    
    Returns:
        (min_lat, max_lat, min_lon, max_lon)
    """
    d_lat = radius_km / KM_PER_DEGREE
    min_lat = max(latitude - d_lat, -90.0)
    max_lat = min(latitude + d_lat, 90.0)

    cos_lat = math.cos(math.radians(latitude))
    if cos_lat < 1e-6:
        return min_lat, max_lat, -180.0, 180.0

    d_lon = radius_km / (KM_PER_DEGREE * cos_lat)
    if d_lon >= 180.0:
        return min_lat, max_lat, -180.0, 180.0
    return (
        min_lat,
        max_lat,
        max(longitude - d_lon, -180.0),
        min(longitude + d_lon, 180.0),
    )

def filter_by_radius(
    items: Iterable[T],
    latitude: float,
    longitude: float,
    radius_km: float,
    coords: Callable[[T], Tuple[Optional[Any], Optional[Any]]]
) -> List[Tuple[T, float]]:
    """Keep items within radius_km (inclusive) of a point, nearest first.
    
    Items without coordinates are treated as infinitely far away.
    """
    kept = []
    for item in items:
        lat, lon = coords(item)
        if lat is None or lon is None:
            continue
        distance = haversine_km(latitude, longitude, float(lat), float(lon))
        if distance <= radius_km:
            kept.append((item, distance))
    kept.sort(key=lambda pair: pair[1])
    return kept
