"""Route planning entry points used by the API layer."""

import uuid
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ...config import settings
from ...logging import get_logger
from ...models.models import Job, RouteAssignment, User
from .assignment import assign_jobs
from .collector import collect_available_technicians, collect_pending_jobs
from .estimator import default_estimator
from .presenter import present_plan


log = get_logger("swifttiger.routing.service")

# Cancelled and Completed jobs never go on a route
ROUTABLE_STATUSES = ("Pending", "In Progress")


def plan_day(
    db: Session,
    day: date,
    technician_ids: Optional[Iterable] = None,
    balance_workload: bool = True,
    mode: str = "distance",
    traffic_aware: bool = False,
) -> Dict[str, Any]:
    jobs = collect_pending_jobs(db, day)
    technicians = collect_available_technicians(db, day, technician_ids)
    if not technicians:
        log.warning("route_plan_without_technicians", date=day.isoformat(), jobs=len(jobs))
    plan = assign_jobs(
        jobs,
        technicians,
        balance_workload=balance_workload,
        mode=mode,
        traffic_aware=traffic_aware,
        estimator=default_estimator(traffic_aware),
    )
    return present_plan(plan, day)


def _uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def save_routes(db: Session, day: date, routes: List[Dict[str, Any]], user_id: Optional[uuid.UUID] = None) -> int:
    """
    Replace the saved route assignments for a day in one transaction.

    Each route is {technician_id, jobs: [{job_id, travel_distance, travel_time,
    estimated_arrival_time, fuel_cost}]}. The listed jobs are assigned to the
    route's technician. Pending jobs that were routed for the day but are left
    out of the new plan go back to unassigned. Returns the number of rows written.
    """
    written = 0
    now = datetime.utcnow()
    try:
        previous = db.query(RouteAssignment).filter(RouteAssignment.date == day).all()
        previous_routing = {ra.job_id: ra.technician_id for ra in previous}
        db.query(RouteAssignment).filter(RouteAssignment.date == day).delete(synchronize_session=False)

        planned = set()
        for route in routes:
            tech_id = _uuid(route["technician_id"])
            tech = db.query(User).filter(User.id == tech_id, User.role == "technician").first()
            if tech is None:
                raise ValueError(f"Technician not found: {tech_id}")
            if not tech.is_active:
                raise ValueError(f"Technician is inactive: {tech_id}")
            for seq, item in enumerate(route.get("jobs") or [], start=1):
                job_id = _uuid(item["job_id"])
                if job_id in planned:
                    raise ValueError(f"Job listed more than once: {job_id}")
                planned.add(job_id)
                job = db.query(Job).filter(Job.id == job_id).first()
                if job is None:
                    raise ValueError(f"Job not found: {job_id}")
                if job.status not in ROUTABLE_STATUSES:
                    raise ValueError(f"Job {job_id} is {job.status} and cannot be routed")
                travel_distance = float(item.get("travel_distance") or 0)
                fuel = item.get("fuel_cost")
                if fuel is None:
                    fuel = round(travel_distance * settings.fuel_cost_per_mile, 2)
                db.add(RouteAssignment(
                    date=day,
                    technician_id=tech_id,
                    job_id=job_id,
                    sequence_order=item.get("sequence_order") or seq,
                    estimated_travel_distance=travel_distance,
                    estimated_travel_time=float(item.get("travel_time") or 0),
                    estimated_arrival_time=item.get("estimated_arrival_time"),
                    fuel_cost_estimate=fuel,
                    created_by=user_id,
                ))
                job.assigned_to = tech_id
                job.updated_by = user_id
                job.updated_at = now
                written += 1

        dropped = [job_id for job_id in previous_routing if job_id not in planned]
        released = 0
        if dropped:
            for job in db.query(Job).filter(Job.id.in_(dropped)).all():
                # only undo the assignment the old route made
                if job.status == "Pending" and job.assigned_to == previous_routing[job.id]:
                    job.assigned_to = None
                    job.updated_by = user_id
                    job.updated_at = now
                    released += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    log.info("routes_saved", date=day.isoformat(), routes=len(routes), assignments=written, released=released)
    return written


def saved_assignments(db: Session, day: date, technician_id: Optional[uuid.UUID] = None) -> Dict[str, List[Dict[str, Any]]]:
    q = db.query(RouteAssignment, Job).join(Job, Job.id == RouteAssignment.job_id).filter(RouteAssignment.date == day)
    if technician_id:
        q = q.filter(RouteAssignment.technician_id == technician_id)
    rows = q.order_by(RouteAssignment.technician_id, RouteAssignment.sequence_order).all()
    out: Dict[str, List[Dict[str, Any]]] = {}
    for ra, job in rows:
        out.setdefault(str(ra.technician_id), []).append({
            "id": str(ra.id),
            "job_id": str(job.id),
            "job_name": job.name,
            "status": job.status,
            "priority": job.priority,
            "sequence_order": ra.sequence_order,
            "estimated_travel_distance": ra.estimated_travel_distance,
            "estimated_travel_time": ra.estimated_travel_time,
            "estimated_arrival_time": ra.estimated_arrival_time,
            "fuel_cost_estimate": ra.fuel_cost_estimate,
        })
    return out
