import uuid
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import Job, User
from ..auth.security import get_current_user, has_role, require_roles
from ..schemas.routes import AssignRequest, RouteOptimizeRequest, RouteSaveRequest
from ..services.audit import log_action
from ..services.realtime_hub import hub, notify_user
from ..services.routing.service import plan_day, save_routes, saved_assignments
from ..services.time_rules import day_bounds


router = APIRouter(prefix="/routes", tags=["routes"])

PLANNERS = ("admin", "manager", "dispatcher")


def _require_date(value: Optional[str]) -> date:
    if not value:
        raise HTTPException(status_code=400, detail="date is required (YYYY-MM-DD)")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")


def _id_list(value: Optional[str]):
    if not value:
        return None
    out = []
    for raw in value.split(","):
        raw = raw.strip()
        if not raw:
            continue
        try:
            out.append(uuid.UUID(raw))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid technician id: {raw}")
    return out


@router.get("/optimize")
def get_optimized_routes(
    date: Optional[str] = None,
    technician_ids: Optional[str] = None,
    balance_workload: bool = True,
    mode: str = "distance",
    traffic_aware: bool = False,
    db: Session = Depends(get_db),
    _=Depends(require_roles(*PLANNERS)),
):
    """Preview the day's plan without saving it. technician_ids is a comma separated list."""
    day = _require_date(date)
    if mode not in ("distance", "time"):
        raise HTTPException(status_code=400, detail="mode must be distance or time")
    return plan_day(db, day, _id_list(technician_ids), balance_workload, mode, traffic_aware)


@router.post("/optimize")
def optimize_routes(
    payload: RouteOptimizeRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*PLANNERS)),
):
    result = plan_day(db, payload.date, payload.technician_ids, payload.balance_workload, payload.mode, payload.traffic_aware)
    log_action(
        db, "OPTIMIZE_ROUTES", "ROUTE", payload.date.isoformat(), user.id,
        {"technicians": result["summary"]["total_technicians"], "jobs": result["summary"]["total_jobs"],
         "unassigned": result["summary"]["unassigned_count"]},
        request,
    )
    return result


@router.post("/save")
def save_optimized_routes(
    payload: RouteSaveRequest,
    request: Request,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*PLANNERS)),
):
    routes = [r.model_dump() for r in payload.routes]
    try:
        written = save_routes(db, payload.date, routes, user.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    log_action(db, "SAVE_ROUTES", "ROUTE", payload.date.isoformat(), user.id, {"routes": len(routes), "assignments": written}, request)
    for r in payload.routes:
        if r.jobs:
            background.add_task(
                notify_user, str(r.technician_id), "Route updated",
                f"Your route for {payload.date.isoformat()} has {len(r.jobs)} stop(s)", date=payload.date.isoformat(),
            )
    background.add_task(hub.broadcast_to_roles, PLANNERS, "dashboard:refresh", {"reason": "routes_saved"})
    return {"status": "ok", "date": payload.date.isoformat(), "assignments": written}


@router.get("/assignments")
def get_assignments(
    date: Optional[str] = None,
    technician_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    day = _require_date(date)
    if has_role(user, "technician"):
        technician_id = user.id
    return {"date": day.isoformat(), "routes": saved_assignments(db, day, technician_id)}


@router.post("/assign")
def assign_jobs_manually(
    payload: AssignRequest,
    request: Request,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*PLANNERS)),
):
    """Set or clear the technician on a batch of jobs in one transaction."""
    updated = []
    try:
        for a in payload.assignments:
            job = db.query(Job).filter(Job.id == a.job_id).first()
            if not job:
                raise HTTPException(status_code=400, detail=f"Job not found: {a.job_id}")
            if a.technician_id is not None:
                tech = db.query(User).filter(User.id == a.technician_id).first()
                if not tech or not tech.is_active or tech.role != "technician":
                    raise HTTPException(status_code=400, detail=f"Technician not found: {a.technician_id}")
            elif job.status in ("In Progress", "Completed"):
                raise HTTPException(status_code=400, detail=f"Cannot unassign a job that is {job.status}")
            job.assigned_to = a.technician_id
            job.updated_by = user.id
            job.updated_at = datetime.utcnow()
            updated.append(job)
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    log_action(
        db, "ASSIGN_JOBS", "ROUTE", None, user.id,
        {"assignments": [{"job_id": str(a.job_id), "technician_id": str(a.technician_id) if a.technician_id else None} for a in payload.assignments]},
        request,
    )
    for job in updated:
        if job.assigned_to:
            background.add_task(notify_user, str(job.assigned_to), "New job assigned", job.name, job_id=str(job.id))
    background.add_task(hub.broadcast_to_roles, PLANNERS, "dashboard:refresh", {"reason": "jobs_assigned"})
    return {"status": "ok", "updated": len(updated)}


@router.get("/workload")
def technician_workload(
    date: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_roles(*PLANNERS)),
):
    """Per-technician job counts and booked minutes; the whole open backlog when no date is given."""
    techs = db.query(User).filter(User.role == "technician", User.is_active == True).order_by(User.name.asc()).all()
    q = db.query(
        Job.assigned_to,
        Job.status,
        func.count(Job.id),
        func.coalesce(func.sum(Job.estimated_duration), 0),
    ).filter(Job.assigned_to.isnot(None))
    if date:
        start, end = day_bounds(_require_date(date))
        q = q.filter(Job.scheduled_date >= start, Job.scheduled_date < end)
    rows = q.group_by(Job.assigned_to, Job.status).all()

    by_tech = {}
    for tech_id, status, count, minutes in rows:
        entry = by_tech.setdefault(tech_id, {"by_status": {}, "open_minutes": 0})
        entry["by_status"][status] = count
        if status in ("Pending", "In Progress"):
            entry["open_minutes"] += int(minutes or 0)

    items = []
    for t in techs:
        entry = by_tech.get(t.id, {"by_status": {}, "open_minutes": 0})
        open_jobs = entry["by_status"].get("Pending", 0) + entry["by_status"].get("In Progress", 0)
        capacity = t.max_daily_jobs or settings.default_max_daily_jobs
        items.append({
            "technician_id": str(t.id),
            "name": t.name,
            "by_status": entry["by_status"],
            "open_jobs": open_jobs,
            "open_minutes": entry["open_minutes"],
            "max_daily_jobs": capacity,
            "utilization": round(open_jobs / capacity, 2) if (date and capacity) else None,
        })
    return {"date": date, "technicians": items}
