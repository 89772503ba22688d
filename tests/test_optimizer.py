import random

import pytest

from swifttiger.services.routing.estimator import HaversineEstimator
from swifttiger.services.routing.models import InsufficientData, Location, Stop
from swifttiger.services.routing.optimizer import nearest_neighbor, optimize_route, path_cost, two_opt


def _stop(job_id, lat, lng, **kwargs):
    return Stop(job_id=job_id, location=Location(lat, lng) if lat is not None else None, **kwargs)


def _random_stops(n, seed):
    rng = random.Random(seed)
    return [_stop(f"j{i}", 41.7 + rng.random() * 0.4, -88.0 + rng.random() * 0.5) for i in range(n)]


def test_empty_input_raises():
    with pytest.raises(InsufficientData):
        optimize_route(None, [])


def test_bad_mode_raises():
    with pytest.raises(ValueError):
        optimize_route(None, [_stop("a", 41.0, -87.0)], mode="fastest")


def test_single_stop():
    route = optimize_route(Location(41.0, -87.0), [_stop("a", 41.1, -87.0)])
    assert route.job_ids == ["a"]
    assert len(route.legs) == 1
    assert route.legs[0].from_job_id is None
    assert route.total_distance_miles == pytest.approx(6.9, abs=0.1)


@pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
def test_result_is_permutation_and_not_worse_than_input(seed):
    stops = _random_stops(12, seed)
    route = optimize_route(Location(41.88, -87.63), stops)
    assert sorted(route.job_ids) == sorted(s.job_id for s in stops)
    assert route.total_distance_miles <= route.baseline_distance_miles
    assert route.optimized is True
    assert len(route.legs) == len(stops)


def test_without_start_first_stop_is_kept():
    stops = _random_stops(8, 42)
    route = optimize_route(None, stops)
    assert route.job_ids[0] == stops[0].job_id
    assert len(route.legs) == len(stops) - 1


def test_collinear_points_are_visited_in_line():
    stops = [_stop("far", 41.0, -87.30), _stop("near", 41.0, -87.10), _stop("mid", 41.0, -87.20)]
    route = optimize_route(Location(41.0, -87.0), stops)
    assert route.job_ids == ["near", "mid", "far"]


def test_missing_coordinates_keep_input_order():
    stops = [_stop("a", 41.0, -87.3), _stop("b", None, None), _stop("c", 41.0, -87.1)]
    route = optimize_route(Location(41.0, -87.0), stops)
    assert route.job_ids == ["a", "b", "c"]
    assert route.optimized is False
    assert "b" in route.warnings[0]


def test_time_mode_uses_durations():
    stops = _random_stops(6, 7)
    route = optimize_route(Location(41.88, -87.63), stops, mode="time", traffic_aware=True)
    assert sorted(route.job_ids) == sorted(s.job_id for s in stops)
    assert route.total_travel_minutes > 0


def test_totals_include_service_time_and_fuel():
    stops = [_stop("a", 41.0, -87.1, service_minutes=30), _stop("b", 41.0, -87.2, service_minutes=45)]
    route = optimize_route(Location(41.0, -87.0), stops)
    assert route.total_service_minutes == 75
    assert route.total_minutes == pytest.approx(route.total_travel_minutes + 75)
    assert route.fuel_cost == pytest.approx(route.total_distance_miles * 0.56, abs=0.01)


def test_large_routes_skip_two_opt(monkeypatch):
    from swifttiger.config import settings

    monkeypatch.setattr(settings, "max_route_stops", 5)
    stops = _random_stops(8, 3)
    route = optimize_route(None, stops)
    assert route.warnings
    assert route.total_distance_miles <= route.baseline_distance_miles


def test_two_opt_untangles_crossing():
    # square corners visited in crossing order: 0 -> 2 -> 1 -> 3
    points = [Location(0, 0), Location(0, 1), Location(1, 0), Location(1, 1)]
    dist, _ = HaversineEstimator().matrix(points)
    crossed = [0, 2, 1, 3]
    improved = two_opt(dist, crossed)
    assert improved[0] == 0
    assert path_cost(dist, improved) < path_cost(dist, crossed)


def test_two_opt_handles_asymmetric_costs():
    cost = [
        [0, 1, 10, 10],
        [10, 0, 1, 10],
        [10, 10, 0, 1],
        [1, 10, 10, 0],
    ]
    best = two_opt(cost, [0, 2, 1, 3])
    assert path_cost(cost, best) <= path_cost(cost, [0, 2, 1, 3])
    assert sorted(best) == [0, 1, 2, 3]


def test_nearest_neighbor_prefers_earliest_on_ties():
    cost = [[0, 1, 1], [1, 0, 1], [1, 1, 0]]
    assert nearest_neighbor(cost, [0, 1, 2], 0) == [0, 1, 2]


class _FixedEstimator:
    """Distances and durations that disagree: the short way is slow."""

    distances = [
        [0, 1, 5],
        [1, 0, 1],
        [5, 1, 0],
    ]
    durations = [
        [0, 10, 1],
        [10, 0, 10],
        [1, 1, 0],
    ]

    def matrix(self, points):
        return self.distances, self.durations


def test_time_mode_never_slower_than_input_order():
    stops = [_stop("a", 41.0, -87.1), _stop("b", 41.0, -87.2)]
    route = optimize_route(Location(41.0, -87.0), stops, mode="time", estimator=_FixedEstimator())
    assert route.job_ids == ["b", "a"]
    assert route.mode == "time"
    assert route.total_travel_minutes == 2
    assert route.baseline_travel_minutes == 20
    assert route.total_travel_minutes <= route.baseline_travel_minutes
    # faster but longer than the input order, and said so
    assert route.total_distance_miles == 6
    assert route.baseline_distance_miles == 2
    assert "longer" in route.warnings[-1]


def test_distance_mode_with_same_matrix_keeps_short_order():
    stops = [_stop("a", 41.0, -87.1), _stop("b", 41.0, -87.2)]
    route = optimize_route(Location(41.0, -87.0), stops, estimator=_FixedEstimator())
    assert route.job_ids == ["a", "b"]
    assert route.total_distance_miles <= route.baseline_distance_miles
    assert route.warnings == []
