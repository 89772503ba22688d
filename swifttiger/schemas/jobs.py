import uuid
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator

from ..models.models import SERVICE_TYPES, JOB_PRIORITIES, JOB_STATUSES


def _one_of(value, allowed, field):
    if value is not None and value not in allowed:
        raise ValueError(f"{field} must be one of {', '.join(allowed)}")
    return value


class JobCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=1000)
    customer_id: uuid.UUID
    service_type: str
    priority: str = "Medium"
    assigned_to: Optional[uuid.UUID] = None
    scheduled_date: Optional[datetime] = None
    estimated_duration: int = Field(default=60, ge=1, le=480)
    required_skills: List[str] = []

    @field_validator("service_type")
    @classmethod
    def valid_service_type(cls, v):
        return _one_of(v, SERVICE_TYPES, "service_type")

    @field_validator("priority")
    @classmethod
    def valid_priority(cls, v):
        return _one_of(v, JOB_PRIORITIES, "priority")


class JobUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    customer_id: Optional[uuid.UUID] = None
    service_type: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    assigned_to: Optional[uuid.UUID] = None
    scheduled_date: Optional[datetime] = None
    estimated_duration: Optional[int] = Field(default=None, ge=1, le=480)
    actual_duration: Optional[int] = Field(default=None, ge=0)
    required_skills: Optional[List[str]] = None

    @field_validator("service_type")
    @classmethod
    def valid_service_type(cls, v):
        return _one_of(v, SERVICE_TYPES, "service_type")

    @field_validator("priority")
    @classmethod
    def valid_priority(cls, v):
        return _one_of(v, JOB_PRIORITIES, "priority")

    @field_validator("status")
    @classmethod
    def valid_status(cls, v):
        return _one_of(v, JOB_STATUSES, "status")


class JobStatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("status")
    @classmethod
    def valid_status(cls, v):
        return _one_of(v, JOB_STATUSES, "status")


class RouteLocation(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class OptimizeRouteRequest(BaseModel):
    job_ids: List[uuid.UUID] = Field(min_length=1)
    start_location: Optional[RouteLocation] = None
    technician_id: Optional[uuid.UUID] = None
    mode: str = "distance"
    traffic_aware: bool = False
    date: Optional[str] = None

    @field_validator("mode")
    @classmethod
    def valid_mode(cls, v):
        return _one_of(v, ("distance", "time"), "mode")
