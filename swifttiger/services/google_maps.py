"""
Google Maps API Client
Geocoding and Distance Matrix requests with retry/backoff
"""
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from ..config import settings
from ..logging import get_logger


log = get_logger("swifttiger.google_maps")

BASE_URL = "https://maps.googleapis.com/maps/api"
METERS_PER_MILE = 1609.344


class GoogleMapsError(RuntimeError):
    pass


class GoogleMapsClient:
    """Client for the Google Maps web services"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.api_key = api_key or settings.google_maps_api_key
        if not self.api_key:
            raise ValueError("Google Maps API key is required")
        self.timeout = timeout if timeout is not None else settings.maps_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.maps_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.maps_backoff_seconds

    def _request(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{BASE_URL}/{endpoint.lstrip('/')}/json"
        params = dict(params, key=self.api_key)
        attempt = 0
        with httpx.Client(timeout=self.timeout) as client:
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as e:
                    # 4xx means the request itself is wrong; retrying will not help
                    if e.response.status_code < 500:
                        raise GoogleMapsError(f"Google Maps request rejected: {e.response.status_code}") from e
                    attempt += 1
                    if attempt > self.max_retries:
                        raise GoogleMapsError(f"Google Maps unavailable: {e.response.status_code}") from e
                except (httpx.TimeoutException, httpx.NetworkError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise GoogleMapsError(f"Google Maps unreachable: {e}") from e
                wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                log.debug("google_maps_retry", endpoint=endpoint, attempt=attempt, wait_seconds=wait_time)
                time.sleep(wait_time)

    def geocode(self, address: str) -> Optional[Dict[str, Any]]:
        """Return {lat, lng, formatted_address, place_id} for the best match, or None."""
        data = self._request("geocode", {"address": address})
        status = data.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK":
            raise GoogleMapsError(f"Geocoding failed: {status}")
        result = data["results"][0]
        loc = result["geometry"]["location"]
        return {
            "lat": loc["lat"],
            "lng": loc["lng"],
            "formatted_address": result.get("formatted_address"),
            "place_id": result.get("place_id"),
        }

    def distance_matrix(
        self,
        origins: Sequence[Tuple[float, float]],
        destinations: Sequence[Tuple[float, float]],
        traffic_aware: bool = False,
    ) -> Tuple[List[List[Optional[float]]], List[List[Optional[float]]]]:
        """
        Road distances (miles) and durations (minutes) between every origin and destination.

        Elements the API could not route come back as None.
        """
        params: Dict[str, Any] = {
            "origins": "|".join(f"{lat},{lng}" for lat, lng in origins),
            "destinations": "|".join(f"{lat},{lng}" for lat, lng in destinations),
            "units": "imperial",
        }
        if traffic_aware:
            params["departure_time"] = "now"
        data = self._request("distancematrix", params)
        if data.get("status") != "OK":
            raise GoogleMapsError(f"Distance matrix failed: {data.get('status')}")

        distances: List[List[Optional[float]]] = []
        durations: List[List[Optional[float]]] = []
        for row in data.get("rows", []):
            d_row: List[Optional[float]] = []
            t_row: List[Optional[float]] = []
            for element in row.get("elements", []):
                if element.get("status") != "OK":
                    d_row.append(None)
                    t_row.append(None)
                    continue
                d_row.append(element["distance"]["value"] / METERS_PER_MILE)
                duration = element.get("duration_in_traffic") if traffic_aware else None
                duration = duration or element["duration"]
                t_row.append(duration["value"] / 60.0)
            distances.append(d_row)
            durations.append(t_row)
        return distances, durations
