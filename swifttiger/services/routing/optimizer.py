"""Single-route optimization: nearest-neighbor construction plus 2-opt improvement.

The route is an open path. It starts at the given start location (or the first
stop when no start is given) and does not return to it.
"""

from typing import List, Optional, Sequence

from ...config import settings
from ...logging import get_logger
from .estimator import HaversineEstimator, Matrix
from .models import InsufficientData, Leg, Location, OptimizedRoute, Stop


log = get_logger("swifttiger.routing.optimizer")

MODES = ("distance", "time")


def path_cost(cost: Matrix, path: Sequence[int]) -> float:
    return sum(cost[path[i]][path[i + 1]] for i in range(len(path) - 1))


def nearest_neighbor(cost: Matrix, nodes: Sequence[int], start: int) -> List[int]:
    path = [start]
    remaining = [n for n in nodes if n != start]
    current = start
    while remaining:
        # ties resolve to the earliest node in input order
        nxt = min(remaining, key=lambda n: cost[current][n])
        remaining.remove(nxt)
        path.append(nxt)
        current = nxt
    return path


def _is_symmetric(cost: Matrix) -> bool:
    n = len(cost)
    for i in range(n):
        for j in range(i + 1, n):
            if abs(cost[i][j] - cost[j][i]) > 1e-9:
                return False
    return True


def two_opt(cost: Matrix, path: List[int], max_passes: Optional[int] = None) -> List[int]:
    """
    Improve an open path by reversing segments while that shortens it.

    path[0] stays fixed. Stops when a full pass finds no improving move or after max_passes.
    """
    max_passes = max_passes if max_passes is not None else settings.two_opt_max_passes
    best = list(path)
    n = len(best)
    if n < 3:
        return best
    symmetric = _is_symmetric(cost)
    best_cost = path_cost(cost, best)

    for _ in range(max_passes):
        improved = False
        for i in range(1, n - 1):
            for k in range(i + 1, n):
                if symmetric:
                    a, b, c = best[i - 1], best[i], best[k]
                    delta = cost[a][c] - cost[a][b]
                    if k + 1 < n:
                        d = best[k + 1]
                        delta += cost[b][d] - cost[c][d]
                    if delta < -1e-9:
                        best[i:k + 1] = reversed(best[i:k + 1])
                        best_cost += delta
                        improved = True
                else:
                    candidate = best[:i] + best[i:k + 1][::-1] + best[k + 1:]
                    candidate_cost = path_cost(cost, candidate)
                    if candidate_cost < best_cost - 1e-9:
                        best, best_cost = candidate, candidate_cost
                        improved = True
        if not improved:
            break
    return best


def _build_legs(stops: Sequence[Stop], distances: Matrix, durations: Matrix, order: Sequence[int], offset: int):
    legs: List[Leg] = []
    raw_miles = 0.0
    raw_minutes = 0.0
    for prev, idx in zip(order, order[1:]):
        miles = distances[prev][idx] or 0.0
        minutes = durations[prev][idx] or 0.0
        raw_miles += miles
        raw_minutes += minutes
        legs.append(Leg(
            from_job_id=stops[prev - offset].job_id if prev >= offset else None,
            to_job_id=stops[idx - offset].job_id,
            distance_miles=round(miles, 2),
            travel_minutes=round(minutes, 1),
        ))
    return legs, raw_miles, raw_minutes


def _route_from_order(stops, distances, durations, order, offset, baseline, optimized, warnings, mode="distance") -> OptimizedRoute:
    legs, miles, minutes = _build_legs(stops, distances, durations, order, offset)
    ordered = [stops[i - offset] for i in order if i >= offset]
    return OptimizedRoute(
        stops=ordered,
        legs=legs,
        total_distance_miles=round(miles, 2),
        total_travel_minutes=round(minutes, 1),
        total_service_minutes=sum(s.service_minutes or 0 for s in ordered),
        fuel_cost=round(miles * settings.fuel_cost_per_mile, 2),
        baseline_distance_miles=round(baseline[0], 2),
        baseline_travel_minutes=round(baseline[1], 1),
        mode=mode,
        optimized=optimized,
        warnings=warnings,
    )


def optimize_route(
    start: Optional[Location],
    stops: Sequence[Stop],
    *,
    mode: str = "distance",
    traffic_aware: bool = False,
    estimator=None,
) -> OptimizedRoute:
    """
    Order stops to minimise total distance (or travel time when mode == "time").

    The result never costs more than the input order in the metric being
    minimised. A time-optimised route may still be longer in miles; that case
    is reported in warnings.

    Raises InsufficientData when no stops are given. When any pair of points has
    no distance data the stops are returned in input order with a warning.
    """
    if mode not in MODES:
        raise ValueError(f"mode must be one of {MODES}")
    stops = list(stops)
    if len(stops) < 1:
        raise InsufficientData("At least one job is required to optimize a route")

    if estimator is None:
        estimator = HaversineEstimator(traffic_factor=settings.traffic_factor if traffic_aware else 1.0)

    # node 0 is the start location when one is given; stops follow in input order
    offset = 1 if start is not None else 0
    points: List[Optional[Location]] = ([start] if start is not None else []) + [s.location for s in stops]
    distances, durations = estimator.matrix(points)
    identity = list(range(len(points)))

    complete = all(
        distances[i][j] is not None and durations[i][j] is not None
        for i in identity for j in identity if i != j
    )
    baseline = (
        sum(distances[i][i + 1] or 0.0 for i in range(len(points) - 1)),
        sum(durations[i][i + 1] or 0.0 for i in range(len(points) - 1)),
    )

    if not complete:
        missing = [s.job_id for s in stops if s.location is None]
        message = "Distance data unavailable for some stops; keeping input order"
        if missing:
            message += f" (no coordinates for jobs: {', '.join(missing)})"
        log.warning("route_optimization_fallback", stops=len(stops), missing_coordinates=len(missing))
        return _route_from_order(stops, distances, durations, identity, offset, baseline, False, [message], mode)

    if len(stops) == 1:
        return _route_from_order(stops, distances, durations, identity, offset, baseline, True, [], mode)

    cost = durations if mode == "time" else distances
    warnings: List[str] = []
    if len(stops) > settings.max_route_stops:
        warnings.append(f"Route has {len(stops)} stops; 2-opt skipped above {settings.max_route_stops}")
        best = nearest_neighbor(cost, identity, 0)
        if path_cost(cost, best) > path_cost(cost, identity):
            best = identity
    else:
        candidates = [
            two_opt(cost, nearest_neighbor(cost, identity, 0)),
            two_opt(cost, identity),
        ]
        best = min(candidates, key=lambda p: path_cost(cost, p))

    route = _route_from_order(stops, distances, durations, best, offset, baseline, True, warnings, mode)
    if mode == "time" and route.total_distance_miles > route.baseline_distance_miles:
        route.warnings.append(
            f"Fastest order is {route.total_distance_miles - route.baseline_distance_miles:.2f} miles longer than the input order"
        )
    log.info(
        "route_optimized",
        stops=len(stops),
        mode=mode,
        distance_miles=route.total_distance_miles,
        baseline_miles=route.baseline_distance_miles,
        travel_minutes=route.total_travel_minutes,
        baseline_minutes=route.baseline_travel_minutes,
    )
    return route
