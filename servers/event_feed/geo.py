"""Great-circle distance and coarse location bucketing."""

import math
from typing import Optional

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def distance_to(
    lat: float, lng: float, venue_lat: Optional[float], venue_lng: Optional[float]
) -> Optional[float]:
    """Distance from the caller to a venue, or None without coordinates."""
    if venue_lat is None or venue_lng is None:
        return None
    return round(haversine_km(lat, lng, venue_lat, venue_lng), 2)


def location_bucket(lat: float, lng: float, precision: int = 2) -> str:
    """Grid cell label; two decimal places is roughly 1km."""
    # Adding 0.0 turns -0.0 into 0.0 so it formats as "0.00"
    return f"{round(lat, precision) + 0.0:.{precision}f},{round(lng, precision) + 0.0:.{precision}f}"
