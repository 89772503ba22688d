import uuid
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..db import get_db
from ..logging import get_logger
from ..models.models import Customer, Job, JobLog, User, JOB_STATUSES
from ..auth.security import get_current_user, has_role, require_roles
from ..schemas.jobs import JobCreate, JobUpdate, JobStatusUpdate, OptimizeRouteRequest
from ..services.audit import log_action
from ..services.realtime_hub import publish_job_update, notify_user
from ..services.routing.collector import collect_jobs_by_ids, latest_locations
from ..services.routing.estimator import default_estimator
from ..services.routing.models import InsufficientData, Location
from ..services.routing.optimizer import optimize_route
from ..services.routing.presenter import present_route
from ..services.time_rules import day_bounds, to_utc_naive
from ..services.workflow import REQUIRES_ASSIGNMENT, UNCHANGED, apply_status, check_transition
from ..storage.provider import StorageProvider
from .files import IMAGE_TYPES, discard_keys, file_to_dict, get_storage, store_upload


router = APIRouter(prefix="/jobs", tags=["jobs"])
log = get_logger("swifttiger.jobs")

STAFF = ("admin", "manager", "dispatcher")


def _dt(value):
    return value.isoformat() if value else None


def job_to_dict(j: Job) -> dict:
    c = j.customer
    t = j.technician
    return {
        "id": str(j.id),
        "name": j.name,
        "description": j.description,
        "customer_id": str(j.customer_id),
        "customer": {
            "id": str(c.id),
            "name": c.name,
            "phone": c.phone,
            "email": c.email,
            "address": ", ".join(p for p in [c.address_street, c.address_city, c.address_state, c.address_zip_code] if p),
            "latitude": float(c.latitude) if c.latitude is not None else None,
            "longitude": float(c.longitude) if c.longitude is not None else None,
        } if c else None,
        "service_type": j.service_type,
        "priority": j.priority,
        "status": j.status,
        "assigned_to": str(j.assigned_to) if j.assigned_to else None,
        "technician": {"id": str(t.id), "name": t.name, "email": t.email} if t else None,
        "scheduled_date": _dt(j.scheduled_date),
        "completed_date": _dt(j.completed_date),
        "estimated_duration": j.estimated_duration,
        "actual_duration": j.actual_duration,
        "required_skills": list(j.required_skills or []),
        "created_by": str(j.created_by) if j.created_by else None,
        "updated_by": str(j.updated_by) if j.updated_by else None,
        "created_at": _dt(j.created_at),
        "updated_at": _dt(j.updated_at),
    }


def job_log_to_dict(entry: JobLog) -> dict:
    return {
        "id": str(entry.id),
        "job_id": str(entry.job_id),
        "technician_id": str(entry.technician_id),
        "technician_name": entry.technician.name if entry.technician else None,
        "notes": entry.notes,
        "photos": list(entry.photos or []),
        "work_start_time": _dt(entry.work_start_time),
        "work_end_time": _dt(entry.work_end_time),
        "status_update": entry.status_update,
        "created_at": _dt(entry.created_at),
        "updated_at": _dt(entry.updated_at),
    }


def _get_job_or_404(db: Session, job_id: uuid.UUID) -> Job:
    j = (
        db.query(Job)
        .options(joinedload(Job.customer), joinedload(Job.technician))
        .filter(Job.id == job_id)
        .first()
    )
    if not j:
        raise HTTPException(status_code=404, detail="Job not found")
    return j


def _ensure_can_view(job: Job, user: User) -> None:
    if has_role(user, "technician") and job.assigned_to != user.id:
        raise HTTPException(status_code=403, detail="You can only access jobs assigned to you")


def _check_customer(db: Session, customer_id: uuid.UUID) -> Customer:
    c = db.query(Customer).filter(Customer.id == customer_id).first()
    if not c or not c.is_active:
        raise HTTPException(status_code=400, detail="Customer not found")
    return c


def _check_technician(db: Session, technician_id: uuid.UUID) -> User:
    t = db.query(User).filter(User.id == technician_id).first()
    if not t or not t.is_active or t.role != "technician":
        raise HTTPException(status_code=400, detail="Technician not found")
    return t


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise HTTPException(status_code=400, detail="scheduled_date must be YYYY-MM-DD")


@router.get("")
def list_jobs(
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned_to: Optional[uuid.UUID] = None,
    customer_id: Optional[uuid.UUID] = None,
    scheduled_date: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    List jobs, newest first.

    status accepts a comma separated list. Technicians only see their own jobs.
    """
    limit = min(max(1, limit), 100)
    page = max(1, page)
    query = db.query(Job).options(joinedload(Job.customer), joinedload(Job.technician))

    if status:
        statuses = [s.strip() for s in status.split(",") if s.strip()]
        bad = [s for s in statuses if s not in JOB_STATUSES]
        if bad:
            raise HTTPException(status_code=400, detail=f"Invalid status: {', '.join(bad)}")
        query = query.filter(Job.status.in_(statuses))
    if priority:
        query = query.filter(Job.priority == priority)
    if has_role(user, "technician"):
        query = query.filter(Job.assigned_to == user.id)
    elif assigned_to:
        query = query.filter(Job.assigned_to == assigned_to)
    if customer_id:
        query = query.filter(Job.customer_id == customer_id)
    if scheduled_date:
        start, end = day_bounds(_parse_day(scheduled_date))
        query = query.filter(Job.scheduled_date >= start, Job.scheduled_date < end)
    if search:
        like = f"%{search}%"
        query = query.filter((Job.name.ilike(like)) | (Job.description.ilike(like)))

    total = query.count()
    # id breaks created_at ties so pages never overlap
    rows = query.order_by(Job.created_at.desc(), Job.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [job_to_dict(j) for j in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit > 0 else 0,
    }


@router.post("/optimize-route-advanced")
def optimize_route_advanced(
    payload: OptimizeRouteRequest,
    db: Session = Depends(get_db),
    _=Depends(require_roles(*STAFF)),
):
    stops = collect_jobs_by_ids(db, payload.job_ids)
    if not stops:
        raise InsufficientData("None of the requested jobs exist")

    start = None
    if payload.start_location:
        start = Location(lat=payload.start_location.lat, lng=payload.start_location.lng)
    elif payload.technician_id:
        tech = _check_technician(db, payload.technician_id)
        pos = latest_locations(db, [tech.id]).get(tech.id)
        if pos:
            start = Location(lat=pos.latitude, lng=pos.longitude)
        elif tech.home_lat is not None and tech.home_lng is not None:
            start = Location(lat=float(tech.home_lat), lng=float(tech.home_lng))

    route = optimize_route(
        start,
        stops,
        mode=payload.mode,
        traffic_aware=payload.traffic_aware,
        estimator=default_estimator(payload.traffic_aware),
    )
    day = _parse_day(payload.date) if payload.date else date.today()
    result = present_route(route, day)
    result["requested"] = len(payload.job_ids)
    result["found"] = len(stops)
    return result


@router.get("/{job_id}")
def get_job(job_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    j = _get_job_or_404(db, job_id)
    _ensure_can_view(j, user)
    return job_to_dict(j)


@router.post("", status_code=201)
def create_job(
    payload: JobCreate,
    request: Request,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(*STAFF)),
):
    _check_customer(db, payload.customer_id)
    if payload.assigned_to:
        _check_technician(db, payload.assigned_to)
    j = Job(
        name=payload.name.strip(),
        description=payload.description.strip(),
        customer_id=payload.customer_id,
        service_type=payload.service_type,
        priority=payload.priority,
        status="Pending",
        assigned_to=payload.assigned_to,
        scheduled_date=to_utc_naive(payload.scheduled_date),
        estimated_duration=payload.estimated_duration,
        required_skills=payload.required_skills,
        created_by=user.id,
        updated_by=user.id,
    )
    db.add(j)
    db.commit()
    j = _get_job_or_404(db, j.id)
    log_action(db, "CREATE_JOB", "JOB", j.id, user.id, {"name": j.name, "customer_id": str(j.customer_id)}, request)
    data = job_to_dict(j)
    background.add_task(publish_job_update, data, "created")
    if j.assigned_to:
        background.add_task(notify_user, str(j.assigned_to), "New job assigned", j.name, job_id=str(j.id))
    return data


TECHNICIAN_FIELDS = {"status", "actual_duration"}


@router.put("/{job_id}")
def update_job(
    job_id: uuid.UUID,
    payload: JobUpdate,
    request: Request,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    j = _get_job_or_404(db, job_id)
    changes = payload.model_dump(exclude_unset=True)
    if has_role(user, "technician"):
        _ensure_can_view(j, user)
        extra = set(changes) - TECHNICIAN_FIELDS
        if extra:
            raise HTTPException(status_code=403, detail=f"Technicians cannot change: {', '.join(sorted(extra))}")
    elif not has_role(user, *STAFF):
        raise HTTPException(status_code=403, detail="Insufficient permissions")

    previous_assignee = j.assigned_to
    if changes.get("customer_id"):
        _check_customer(db, changes["customer_id"])
    if "assigned_to" in changes and changes["assigned_to"] is not None:
        _check_technician(db, changes["assigned_to"])

    new_status = changes.pop("status", None)
    if new_status and new_status != j.status:
        assignee = changes["assigned_to"] if "assigned_to" in changes else UNCHANGED
        check_transition(j, new_status, user, assigned_to=assignee)
    resulting_status = new_status or j.status
    if "assigned_to" in changes and changes["assigned_to"] is None and resulting_status in REQUIRES_ASSIGNMENT:
        raise HTTPException(status_code=400, detail=f"Cannot unassign a job that is {resulting_status}")

    for field, value in changes.items():
        if value is None and field in ("name", "description", "customer_id", "service_type", "priority", "estimated_duration"):
            continue
        if field == "scheduled_date":
            value = to_utc_naive(value)
        setattr(j, field, value)
    if new_status and new_status != j.status:
        apply_status(j, new_status, user)
    j.updated_by = user.id
    j.updated_at = datetime.utcnow()
    db.commit()
    j = _get_job_or_404(db, j.id)
    details = {"fields": sorted(set(changes) | ({"status"} if new_status else set()))}
    if new_status:
        details["status"] = new_status
    log_action(db, "UPDATE_JOB", "JOB", j.id, user.id, details, request)

    data = job_to_dict(j)
    background.add_task(publish_job_update, data, "updated")
    if j.assigned_to and j.assigned_to != previous_assignee:
        background.add_task(notify_user, str(j.assigned_to), "New job assigned", j.name, job_id=str(j.id))
    return data


@router.delete("/{job_id}")
def cancel_job(
    job_id: uuid.UUID,
    request: Request,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin", "manager")),
):
    # Jobs are never hard-deleted; deleting cancels
    j = _get_job_or_404(db, job_id)
    if j.status != "Cancelled":
        check_transition(j, "Cancelled", user)
        apply_status(j, "Cancelled", user)
        db.commit()
        j = _get_job_or_404(db, j.id)
    log_action(db, "DELETE_JOB", "JOB", j.id, user.id, {"name": j.name}, request)
    data = job_to_dict(j)
    background.add_task(publish_job_update, data, "cancelled")
    return data


@router.post("/{job_id}/status")
def update_status(
    job_id: uuid.UUID,
    payload: JobStatusUpdate,
    request: Request,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    j = _get_job_or_404(db, job_id)
    if not has_role(user, *STAFF, "technician"):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    previous = j.status
    check_transition(j, payload.status, user)
    apply_status(j, payload.status, user)
    if payload.notes:
        db.add(JobLog(
            job_id=j.id,
            technician_id=j.assigned_to or user.id,
            notes=payload.notes,
            photos=[],
            status_update=payload.status,
        ))
    db.commit()
    j = _get_job_or_404(db, j.id)
    log_action(db, "UPDATE_JOB_STATUS", "JOB", j.id, user.id, {"from": previous, "to": j.status}, request)
    data = job_to_dict(j)
    background.add_task(publish_job_update, data, "status_changed")
    return data


# Job logs

def _get_log_or_404(db: Session, job: Job, log_id: uuid.UUID) -> JobLog:
    entry = (
        db.query(JobLog)
        .options(joinedload(JobLog.technician))
        .filter(JobLog.id == log_id, JobLog.job_id == job.id)
        .first()
    )
    if not entry:
        raise HTTPException(status_code=404, detail="Job log not found")
    return entry


def _parse_form_dt(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return to_utc_naive(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be an ISO 8601 datetime")


def _store_photos(
    db: Session, storage: StorageProvider, photos: List[UploadFile], job: Job, user: User, written: List[str],
) -> List[dict]:
    saved = []
    for photo in photos:
        data = photo.file.read()
        fo = store_upload(
            db, storage, data, photo.filename or "photo", photo.content_type, user,
            category="job-photo", job_id=job.id, allowed_types=IMAGE_TYPES, max_bytes=settings.max_photo_bytes,
            written=written,
        )
        meta = file_to_dict(fo)
        saved.append({k: meta[k] for k in ("id", "original_name", "content_type", "size_bytes", "url", "thumbnail_url")})
    return saved


@router.get("/{job_id}/logs")
def list_job_logs(job_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    j = _get_job_or_404(db, job_id)
    _ensure_can_view(j, user)
    rows = (
        db.query(JobLog)
        .options(joinedload(JobLog.technician))
        .filter(JobLog.job_id == j.id)
        .order_by(JobLog.created_at.desc(), JobLog.id.desc())
        .all()
    )
    return {"items": [job_log_to_dict(r) for r in rows], "total": len(rows)}


@router.post("/{job_id}/logs", status_code=201)
def create_job_log(
    job_id: uuid.UUID,
    request: Request,
    background: BackgroundTasks,
    notes: str = Form(...),
    status_update: Optional[str] = Form(None),
    work_start_time: Optional[str] = Form(None),
    work_end_time: Optional[str] = Form(None),
    photos: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    user: User = Depends(get_current_user),
):
    photos = photos or []
    j = _get_job_or_404(db, job_id)
    _ensure_can_view(j, user)
    if not has_role(user, *STAFF, "technician"):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    if not notes.strip():
        raise HTTPException(status_code=400, detail="Notes are required")
    if len(photos) > settings.max_log_photos:
        raise HTTPException(status_code=400, detail=f"At most {settings.max_log_photos} photos per log entry")
    start = _parse_form_dt(work_start_time, "work_start_time")
    end = _parse_form_dt(work_end_time, "work_end_time")
    if start and end and end < start:
        raise HTTPException(status_code=400, detail="work_end_time must be after work_start_time")

    status_changed = bool(status_update) and status_update != j.status
    if status_changed:
        check_transition(j, status_update, user)

    stored: List[dict] = []
    written: List[str] = []
    try:
        stored = _store_photos(db, storage, photos, j, user, written)
        entry = JobLog(
            job_id=j.id,
            technician_id=user.id,
            notes=notes.strip(),
            photos=stored,
            work_start_time=start,
            work_end_time=end,
            status_update=status_update or None,
        )
        db.add(entry)
        if status_changed:
            apply_status(j, status_update, user)
        if start and end and status_update == "Completed" and not j.actual_duration:
            j.actual_duration = int((end - start).total_seconds() // 60)
        db.commit()
    except Exception:
        db.rollback()
        discard_keys(storage, written)
        raise
    entry = _get_log_or_404(db, j, entry.id)
    log_action(db, "CREATE_JOB_LOG", "JOB_LOG", entry.id, user.id, {"job_id": str(j.id), "photos": len(stored)}, request)
    if status_changed:
        background.add_task(publish_job_update, job_to_dict(_get_job_or_404(db, j.id)), "status_changed")
    return job_log_to_dict(entry)


@router.put("/{job_id}/logs/{log_id}")
def update_job_log(
    job_id: uuid.UUID,
    log_id: uuid.UUID,
    request: Request,
    notes: Optional[str] = Form(None),
    work_start_time: Optional[str] = Form(None),
    work_end_time: Optional[str] = Form(None),
    photos: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    user: User = Depends(get_current_user),
):
    photos = photos or []
    j = _get_job_or_404(db, job_id)
    entry = _get_log_or_404(db, j, log_id)
    if entry.technician_id != user.id and not has_role(user, "admin", "manager"):
        raise HTTPException(status_code=403, detail="You can only edit your own log entries")
    existing = list(entry.photos or [])
    if len(existing) + len(photos) > settings.max_log_photos:
        raise HTTPException(status_code=400, detail=f"At most {settings.max_log_photos} photos per log entry")
    if notes is not None:
        if not notes.strip():
            raise HTTPException(status_code=400, detail="Notes cannot be empty")
        entry.notes = notes.strip()
    if work_start_time is not None:
        entry.work_start_time = _parse_form_dt(work_start_time, "work_start_time")
    if work_end_time is not None:
        entry.work_end_time = _parse_form_dt(work_end_time, "work_end_time")
    if entry.work_start_time and entry.work_end_time and entry.work_end_time < entry.work_start_time:
        raise HTTPException(status_code=400, detail="work_end_time must be after work_start_time")
    written: List[str] = []
    try:
        if photos:
            # reassign so the JSON column is flagged dirty
            entry.photos = existing + _store_photos(db, storage, photos, j, user, written)
        entry.updated_at = datetime.utcnow()
        db.commit()
    except Exception:
        db.rollback()
        discard_keys(storage, written)
        raise
    entry = _get_log_or_404(db, j, log_id)
    log_action(db, "UPDATE_JOB_LOG", "JOB_LOG", entry.id, user.id, {"job_id": str(j.id)}, request)
    return job_log_to_dict(entry)


@router.delete("/{job_id}/logs/{log_id}")
def delete_job_log(
    job_id: uuid.UUID,
    log_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin", "manager")),
):
    j = _get_job_or_404(db, job_id)
    entry = _get_log_or_404(db, j, log_id)
    db.delete(entry)
    db.commit()
    log_action(db, "DELETE_JOB_LOG", "JOB_LOG", log_id, user.id, {"job_id": str(j.id)}, request)
    return {"status": "ok", "id": str(log_id)}
