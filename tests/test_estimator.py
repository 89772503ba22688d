import httpx
import pytest

from swifttiger.services import google_maps
from swifttiger.services.geo import estimate_travel_minutes, haversine_distance, haversine_miles, valid_coordinates
from swifttiger.services.google_maps import GoogleMapsClient, GoogleMapsError
from swifttiger.services.routing.estimator import GoogleDistanceMatrixEstimator, HaversineEstimator, default_estimator
from swifttiger.services.routing.models import Location


CHICAGO = Location(41.8781, -87.6298)
EVANSTON = Location(42.0451, -87.6877)


def test_haversine_units_agree():
    miles = haversine_miles(CHICAGO.lat, CHICAGO.lng, EVANSTON.lat, EVANSTON.lng)
    meters = haversine_distance(CHICAGO.lat, CHICAGO.lng, EVANSTON.lat, EVANSTON.lng)
    assert 11 < miles < 12
    assert meters / 1609.344 == pytest.approx(miles, rel=0.01)


def test_travel_minutes():
    assert estimate_travel_minutes(35, speed_mph=35) == pytest.approx(60)
    assert estimate_travel_minutes(35, speed_mph=35, traffic_factor=1.5) == pytest.approx(90)
    with pytest.raises(ValueError):
        estimate_travel_minutes(1, speed_mph=-1)


def test_valid_coordinates():
    assert valid_coordinates("41.5", -87)
    assert not valid_coordinates(None, 1)
    assert not valid_coordinates(91, 0)
    assert not valid_coordinates("x", 0)


def test_haversine_matrix_marks_missing_points():
    distances, durations = HaversineEstimator().matrix([CHICAGO, None, EVANSTON])
    assert distances[0][0] == 0.0
    assert distances[0][1] is None and durations[1][2] is None
    assert distances[0][2] == pytest.approx(distances[2][0])


def test_default_estimator_without_key():
    assert isinstance(default_estimator(), HaversineEstimator)


class FakeMapsClient:
    def __init__(self, fail=False, unroutable=()):
        self.fail = fail
        self.unroutable = set(unroutable)
        self.calls = 0

    def distance_matrix(self, origins, destinations, traffic_aware=False):
        self.calls += 1
        if self.fail:
            raise GoogleMapsError("boom")
        d_rows, t_rows = [], []
        for o in origins:
            d_row, t_row = [], []
            for d in destinations:
                if (o, d) in self.unroutable:
                    d_row.append(None)
                    t_row.append(None)
                else:
                    d_row.append(0.0 if o == d else 20.0)
                    t_row.append(0.0 if o == d else 30.0)
            d_rows.append(d_row)
            t_rows.append(t_row)
        return d_rows, t_rows


def test_google_estimator_overlays_road_distances():
    estimator = GoogleDistanceMatrixEstimator(client=FakeMapsClient())
    distances, durations = estimator.matrix([CHICAGO, EVANSTON])
    assert distances[0][1] == 20.0
    assert durations[1][0] == 30.0


def test_google_estimator_fills_unroutable_pairs_from_haversine():
    client = FakeMapsClient(unroutable=[(CHICAGO.as_tuple(), EVANSTON.as_tuple())])
    distances, _ = GoogleDistanceMatrixEstimator(client=client).matrix([CHICAGO, EVANSTON])
    assert distances[0][1] == pytest.approx(haversine_miles(CHICAGO.lat, CHICAGO.lng, EVANSTON.lat, EVANSTON.lng))
    assert distances[1][0] == 20.0


def test_google_estimator_falls_back_on_api_error():
    distances, _ = GoogleDistanceMatrixEstimator(client=FakeMapsClient(fail=True)).matrix([CHICAGO, EVANSTON])
    assert distances[0][1] == pytest.approx(haversine_miles(CHICAGO.lat, CHICAGO.lng, EVANSTON.lat, EVANSTON.lng))


def test_google_estimator_skips_oversized_matrices():
    client = FakeMapsClient()
    points = [Location(41.0 + i * 0.01, -87.0) for i in range(30)]
    GoogleDistanceMatrixEstimator(client=client).matrix(points)
    assert client.calls == 0


def test_client_requires_key():
    with pytest.raises(ValueError):
        GoogleMapsClient(api_key="")


@pytest.fixture
def mock_transport(monkeypatch):
    """Route the client's httpx traffic through a handler and record backoff sleeps."""
    state = {"handler": None, "sleeps": []}
    real_client = httpx.Client

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(state["handler"]), **kwargs)

    monkeypatch.setattr(google_maps.httpx, "Client", factory)
    monkeypatch.setattr(google_maps.time, "sleep", lambda s: state["sleeps"].append(s))
    return state


def test_client_retries_server_errors_with_backoff(mock_transport):
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={
            "status": "OK",
            "results": [{"geometry": {"location": {"lat": 41.9, "lng": -87.6}}, "place_id": "abc", "formatted_address": "Chicago"}],
        })

    mock_transport["handler"] = handler
    client = GoogleMapsClient(api_key="k", max_retries=3, backoff_seconds=0.5)
    result = client.geocode("Chicago")
    assert result == {"lat": 41.9, "lng": -87.6, "formatted_address": "Chicago", "place_id": "abc"}
    assert mock_transport["sleeps"] == [0.5, 1.0]
    assert attempts[0].url.params["key"] == "k"


def test_client_gives_up_after_max_retries(mock_transport):
    mock_transport["handler"] = lambda request: httpx.Response(500)
    client = GoogleMapsClient(api_key="k", max_retries=2, backoff_seconds=0.1)
    with pytest.raises(GoogleMapsError):
        client.geocode("Chicago")
    assert mock_transport["sleeps"] == [0.1, 0.2]


def test_client_does_not_retry_client_errors(mock_transport):
    mock_transport["handler"] = lambda request: httpx.Response(403)
    with pytest.raises(GoogleMapsError):
        GoogleMapsClient(api_key="k").geocode("Chicago")
    assert mock_transport["sleeps"] == []


def test_distance_matrix_parsing(mock_transport):
    mock_transport["handler"] = lambda request: httpx.Response(200, json={
        "status": "OK",
        "rows": [{"elements": [
            {"status": "OK", "distance": {"value": 1609.344}, "duration": {"value": 120}},
            {"status": "ZERO_RESULTS"},
        ]}],
    })
    distances, durations = GoogleMapsClient(api_key="k").distance_matrix([(41.0, -87.0)], [(41.1, -87.0), (50.0, 0.0)])
    assert distances == [[pytest.approx(1.0), None]]
    assert durations == [[pytest.approx(2.0), None]]


def test_geocode_zero_results(mock_transport):
    mock_transport["handler"] = lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []})
    assert GoogleMapsClient(api_key="k").geocode("Nowhere") is None
