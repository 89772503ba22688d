"""Distance/time estimation between route points."""

from typing import List, Optional, Sequence, Tuple

from ...config import settings
from ...logging import get_logger
from ..geo import estimate_travel_minutes, haversine_miles
from ..google_maps import GoogleMapsClient, GoogleMapsError
from .models import Location


log = get_logger("swifttiger.routing.estimator")

Matrix = List[List[Optional[float]]]

# Distance Matrix API limits: 25 destinations and 100 elements per request
MAX_MATRIX_DESTINATIONS = 25
MAX_MATRIX_ELEMENTS = 100


class HaversineEstimator:
    """Straight-line distances at a constant average speed."""

    name = "haversine"

    def __init__(self, speed_mph: Optional[float] = None, traffic_factor: float = 1.0):
        self.speed_mph = speed_mph or settings.average_speed_mph
        self.traffic_factor = traffic_factor

    def pair(self, a: Optional[Location], b: Optional[Location]) -> Tuple[Optional[float], Optional[float]]:
        if a is None or b is None:
            return None, None
        miles = haversine_miles(a.lat, a.lng, b.lat, b.lng)
        return miles, estimate_travel_minutes(miles, self.speed_mph, self.traffic_factor)

    def matrix(self, points: Sequence[Optional[Location]]) -> Tuple[Matrix, Matrix]:
        n = len(points)
        distances: Matrix = [[None] * n for _ in range(n)]
        durations: Matrix = [[None] * n for _ in range(n)]
        for i in range(n):
            for j in range(n):
                if i == j:
                    if points[i] is not None:
                        distances[i][j] = 0.0
                        durations[i][j] = 0.0
                    continue
                distances[i][j], durations[i][j] = self.pair(points[i], points[j])
        return distances, durations


class GoogleDistanceMatrixEstimator:
    """
    Road distances from the Google Distance Matrix API.

    Falls back to haversine when no API key is configured, the API fails, or the
    point set is too large for one matrix. Individual unroutable pairs are filled
    from haversine as well.
    """

    name = "google"

    def __init__(self, client: Optional[GoogleMapsClient] = None, traffic_aware: bool = False):
        self.traffic_aware = traffic_aware
        self.fallback = HaversineEstimator(traffic_factor=settings.traffic_factor if traffic_aware else 1.0)
        self.client = client
        if self.client is None and settings.google_maps_api_key:
            self.client = GoogleMapsClient()

    def matrix(self, points: Sequence[Optional[Location]]) -> Tuple[Matrix, Matrix]:
        distances, durations = self.fallback.matrix(points)
        known = [i for i, p in enumerate(points) if p is not None]
        if self.client is None or len(known) < 2:
            return distances, durations
        if len(known) > MAX_MATRIX_DESTINATIONS:
            log.warning("distance_matrix_too_large", points=len(known))
            return distances, durations

        coords = [points[i].as_tuple() for i in known]
        rows_per_request = max(1, MAX_MATRIX_ELEMENTS // len(coords))
        try:
            for start in range(0, len(coords), rows_per_request):
                origins = coords[start:start + rows_per_request]
                d_rows, t_rows = self.client.distance_matrix(origins, coords, traffic_aware=self.traffic_aware)
                for r, (d_row, t_row) in enumerate(zip(d_rows, t_rows)):
                    i = known[start + r]
                    for c, (miles, minutes) in enumerate(zip(d_row, t_row)):
                        j = known[c]
                        if miles is None or minutes is None:
                            continue
                        distances[i][j] = miles
                        durations[i][j] = minutes
        except GoogleMapsError as e:
            log.warning("distance_matrix_fallback", error=str(e))
            return self.fallback.matrix(points)
        return distances, durations


def default_estimator(traffic_aware: bool = False):
    if settings.google_maps_api_key:
        return GoogleDistanceMatrixEstimator(traffic_aware=traffic_aware)
    return HaversineEstimator(traffic_factor=settings.traffic_factor if traffic_aware else 1.0)
