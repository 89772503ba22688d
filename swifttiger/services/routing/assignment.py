"""Multi-technician job assignment.

Jobs are handed out greedily, highest priority first. Each job goes to the
eligible technician with the best composite score, and each technician's jobs
are then ordered with the route optimizer.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from ...config import settings
from ...logging import get_logger
from ..geo import haversine_miles
from .models import AssignmentPlan, Location, Stop, Technician, TechnicianRoute
from .optimizer import optimize_route


log = get_logger("swifttiger.routing.assignment")

SKILL_WEIGHT = 0.4
TRAVEL_WEIGHT = 0.4
PRIORITY_WEIGHT = 0.2
WORKLOAD_PENALTY = 0.2
FULL_MATCH_BONUS = 0.5
MAX_TRAVEL_COST = 100.0  # dollars; legs costing more score zero for travel
MAX_PRIORITY_WEIGHT = 5


def skill_match(required: Sequence[str], skills: Sequence[str]):
    """
    Return (score, eligible) for a technician against a job's required skills.

    score is in [0, 1]. A technician is eligible only when every required skill is present.
    """
    if not required:
        return 1.0, True
    have = {s.strip().lower() for s in skills or []}
    need = [s.strip().lower() for s in required]
    matched = sum(1 for s in need if s in have)
    full = matched == len(need)
    raw = matched + (FULL_MATCH_BONUS if full else 0.0)
    return raw / (len(need) + FULL_MATCH_BONUS), full


def travel_cost(origin: Optional[Location], stop: Stop) -> float:
    if origin is None or stop.location is None:
        return 0.0
    miles = haversine_miles(origin.lat, origin.lng, stop.location.lat, stop.location.lng)
    return miles * settings.fuel_cost_per_mile


def assignment_score(skill_score: float, cost: float, stop: Stop, fill_ratio: float = 0.0, balance_workload: bool = True) -> float:
    travel_score = max(0.0, (MAX_TRAVEL_COST - cost) / MAX_TRAVEL_COST)
    score = (
        SKILL_WEIGHT * skill_score
        + TRAVEL_WEIGHT * travel_score
        + PRIORITY_WEIGHT * stop.priority_weight / MAX_PRIORITY_WEIGHT
    )
    if balance_workload:
        score -= WORKLOAD_PENALTY * fill_ratio
    return score


def _sort_key(stop: Stop):
    scheduled = stop.scheduled_date or datetime.max
    if scheduled.tzinfo is not None:
        scheduled = scheduled.replace(tzinfo=None)
    return (-stop.priority_weight, scheduled)


def assign_jobs(
    jobs: Sequence[Stop],
    technicians: Sequence[Technician],
    *,
    balance_workload: bool = True,
    mode: str = "distance",
    traffic_aware: bool = False,
    estimator=None,
) -> AssignmentPlan:
    """Distribute jobs across technicians and optimize each technician's route."""
    assigned: Dict[str, List[Stop]] = {t.id: [] for t in technicians}
    unassigned: List[Stop] = []

    for stop in sorted(jobs, key=_sort_key):
        best_tech: Optional[Technician] = None
        best_score = float("-inf")
        for tech in technicians:
            load = tech.current_job_count + len(assigned[tech.id])
            capacity = tech.max_daily_jobs or settings.default_max_daily_jobs
            if load >= capacity:
                continue
            skill_score, eligible = skill_match(stop.required_skills, tech.skills)
            if not eligible:
                continue
            route_so_far = assigned[tech.id]
            origin = route_so_far[-1].location if route_so_far else tech.location
            score = assignment_score(
                skill_score,
                travel_cost(origin, stop),
                stop,
                fill_ratio=load / capacity,
                balance_workload=balance_workload,
            )
            if score > best_score:
                best_tech, best_score = tech, score
        if best_tech is None:
            unassigned.append(stop)
        else:
            assigned[best_tech.id].append(stop)

    routes: List[TechnicianRoute] = []
    warnings: List[str] = []
    for tech in technicians:
        stops = assigned[tech.id]
        if not stops:
            continue
        route = optimize_route(tech.location, stops, mode=mode, traffic_aware=traffic_aware, estimator=estimator)
        warnings.extend(f"{tech.name}: {w}" for w in route.warnings)
        routes.append(TechnicianRoute(technician=tech, route=route))

    log.info(
        "jobs_assigned",
        jobs=len(jobs),
        technicians=len(technicians),
        assigned=sum(len(v) for v in assigned.values()),
        unassigned=len(unassigned),
    )
    return AssignmentPlan(routes=routes, unassigned=unassigned, warnings=warnings)
