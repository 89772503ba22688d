"""
Great-circle helpers used by route planning and location tracking.
Uses the Haversine formula; distances are straight-line, not road distance.
"""
import math
from typing import Optional

from ..config import settings


EARTH_RADIUS_M = 6371000
EARTH_RADIUS_MILES = 3959


def _central_angle(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    return 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Returns:
        Distance in meters
    """
    return EARTH_RADIUS_M * _central_angle(lat1, lon1, lat2, lon2)


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great circle distance in miles."""
    return EARTH_RADIUS_MILES * _central_angle(lat1, lon1, lat2, lon2)


def estimate_travel_minutes(miles: float, speed_mph: Optional[float] = None, traffic_factor: float = 1.0) -> float:
    """
    Driving time for a distance at a constant average speed.

    traffic_factor > 1 stretches the time to account for congestion.
    """
    speed = speed_mph or settings.average_speed_mph
    if speed <= 0:
        raise ValueError("speed_mph must be positive")
    return (miles / speed) * 60.0 * traffic_factor


def valid_coordinates(lat, lng) -> bool:
    if lat is None or lng is None:
        return False
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0
