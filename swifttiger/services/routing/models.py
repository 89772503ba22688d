"""Route planning domain models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


PRIORITY_WEIGHTS: Dict[str, int] = {"High": 3, "Medium": 2, "Low": 1}


class InsufficientData(ValueError):
    """Raised when there is not enough input to build a route."""


@dataclass(slots=True, frozen=True)
class Location:
    lat: float
    lng: float

    def as_tuple(self):
        return (self.lat, self.lng)


@dataclass(slots=True)
class Stop:
    job_id: str
    location: Optional[Location]
    name: str = ""
    customer_name: str = ""
    address: str = ""
    priority: str = "Medium"
    required_skills: List[str] = field(default_factory=list)
    service_minutes: int = 60
    scheduled_date: Optional[datetime] = None

    @property
    def priority_weight(self) -> int:
        return PRIORITY_WEIGHTS.get(self.priority, 1)


@dataclass(slots=True)
class Leg:
    from_job_id: Optional[str]  # None for the leg leaving the start location
    to_job_id: str
    distance_miles: float
    travel_minutes: float


@dataclass(slots=True)
class OptimizedRoute:
    stops: List[Stop]
    legs: List[Leg]
    total_distance_miles: float
    total_travel_minutes: float
    total_service_minutes: int
    fuel_cost: float
    baseline_distance_miles: float
    baseline_travel_minutes: float = 0.0
    # the metric the stop order minimises; totals never exceed the baseline in this metric
    mode: str = "distance"
    optimized: bool = True
    warnings: List[str] = field(default_factory=list)

    @property
    def total_minutes(self) -> float:
        return self.total_travel_minutes + self.total_service_minutes

    @property
    def job_ids(self) -> List[str]:
        return [s.job_id for s in self.stops]


@dataclass(slots=True)
class Technician:
    id: str
    name: str
    skills: List[str] = field(default_factory=list)
    max_daily_jobs: int = 8
    location: Optional[Location] = None
    current_job_count: int = 0


@dataclass(slots=True)
class TechnicianRoute:
    technician: Technician
    route: OptimizedRoute


@dataclass(slots=True)
class AssignmentPlan:
    routes: List[TechnicianRoute]
    unassigned: List[Stop]
    warnings: List[str] = field(default_factory=list)

    @property
    def assigned_count(self) -> int:
        return sum(len(r.route.stops) for r in self.routes)
