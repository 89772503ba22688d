"""Load jobs and technicians from the database into routing models."""

import uuid
from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ...config import settings
from ...models.models import Job, TechnicianLocation, User
from ..geo import valid_coordinates
from ..time_rules import day_bounds
from .models import Location, Stop, Technician


OPEN_STATUSES = ("Pending", "In Progress")


def _location(lat, lng) -> Optional[Location]:
    if not valid_coordinates(lat, lng):
        return None
    return Location(lat=float(lat), lng=float(lng))


def format_address(customer) -> str:
    if customer is None:
        return ""
    parts = [customer.address_street, customer.address_city, customer.address_state, customer.address_zip_code]
    return ", ".join(p for p in parts if p)


def job_to_stop(job: Job) -> Stop:
    customer = job.customer
    return Stop(
        job_id=str(job.id),
        location=_location(customer.latitude, customer.longitude) if customer else None,
        name=job.name,
        customer_name=customer.name if customer else "",
        address=format_address(customer),
        priority=job.priority or "Medium",
        required_skills=list(job.required_skills or []),
        service_minutes=job.estimated_duration or 60,
        scheduled_date=job.scheduled_date,
    )


def collect_pending_jobs(db: Session, day: date) -> List[Stop]:
    """Unassigned Pending jobs scheduled on the given day."""
    start, end = day_bounds(day)
    jobs = (
        db.query(Job)
        .options(joinedload(Job.customer))
        .filter(
            Job.status == "Pending",
            Job.assigned_to.is_(None),
            Job.scheduled_date >= start,
            Job.scheduled_date < end,
        )
        .order_by(Job.scheduled_date.asc(), Job.created_at.asc())
        .all()
    )
    return [job_to_stop(j) for j in jobs]


def collect_jobs_by_ids(db: Session, ids: Iterable) -> List[Stop]:
    """Jobs by id, in the order the ids were first given. Unknown and repeated ids are skipped."""
    uuids = []
    for raw in ids:
        try:
            job_id = raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw))
        except ValueError:
            continue
        if job_id not in uuids:
            uuids.append(job_id)
    if not uuids:
        return []
    rows = db.query(Job).options(joinedload(Job.customer)).filter(Job.id.in_(uuids)).all()
    by_id = {j.id: j for j in rows}
    return [job_to_stop(by_id[u]) for u in uuids if u in by_id]


def latest_locations(db: Session, technician_ids: Optional[List[uuid.UUID]] = None):
    """Newest TechnicianLocation per technician, keyed by technician id."""
    newest = db.query(
        TechnicianLocation.technician_id,
        func.max(TechnicianLocation.recorded_at).label("recorded_at"),
    )
    if technician_ids is not None:
        newest = newest.filter(TechnicianLocation.technician_id.in_(technician_ids))
    newest = newest.group_by(TechnicianLocation.technician_id).subquery()
    rows = (
        db.query(TechnicianLocation)
        .join(
            newest,
            (TechnicianLocation.technician_id == newest.c.technician_id)
            & (TechnicianLocation.recorded_at == newest.c.recorded_at),
        )
        .all()
    )
    return {r.technician_id: r for r in rows}


def collect_available_technicians(db: Session, day: date, technician_ids: Optional[Iterable] = None) -> List[Technician]:
    """Active technicians with their current position (latest report, else home) and existing load for the day."""
    q = db.query(User).filter(User.role == "technician", User.is_active == True)
    if technician_ids:
        wanted = []
        for raw in technician_ids:
            try:
                wanted.append(raw if isinstance(raw, uuid.UUID) else uuid.UUID(str(raw)))
            except ValueError:
                continue
        q = q.filter(User.id.in_(wanted))
    users = q.order_by(User.name.asc()).all()
    if not users:
        return []

    ids = [u.id for u in users]
    positions = latest_locations(db, ids)
    start, end = day_bounds(day)
    loads = dict(
        db.query(Job.assigned_to, func.count(Job.id))
        .filter(
            Job.assigned_to.in_(ids),
            Job.status.in_(OPEN_STATUSES),
            Job.scheduled_date >= start,
            Job.scheduled_date < end,
        )
        .group_by(Job.assigned_to)
        .all()
    )

    techs: List[Technician] = []
    for u in users:
        pos = positions.get(u.id)
        location = _location(pos.latitude, pos.longitude) if pos else None
        if location is None:
            location = _location(u.home_lat, u.home_lng)
        techs.append(Technician(
            id=str(u.id),
            name=u.name,
            skills=list(u.skills or []),
            max_daily_jobs=u.max_daily_jobs or settings.default_max_daily_jobs,
            location=location,
            current_job_count=loads.get(u.id, 0),
        ))
    return techs
