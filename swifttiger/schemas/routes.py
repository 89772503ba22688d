import uuid
from datetime import date as date_type
from typing import Optional, List
from pydantic import BaseModel, Field


class RouteOptimizeRequest(BaseModel):
    date: date_type
    technician_ids: Optional[List[uuid.UUID]] = None
    balance_workload: bool = True
    mode: str = Field(default="distance", pattern="^(distance|time)$")
    traffic_aware: bool = False


class SavedStop(BaseModel):
    job_id: uuid.UUID
    sequence_order: Optional[int] = None
    travel_distance: Optional[float] = 0
    travel_time: Optional[float] = 0
    estimated_arrival_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    fuel_cost: Optional[float] = None


class SavedRoute(BaseModel):
    technician_id: uuid.UUID
    jobs: List[SavedStop] = []


class RouteSaveRequest(BaseModel):
    date: date_type
    routes: List[SavedRoute]


class ManualAssignment(BaseModel):
    job_id: uuid.UUID
    technician_id: Optional[uuid.UUID] = None


class AssignRequest(BaseModel):
    assignments: List[ManualAssignment] = Field(min_length=1)
