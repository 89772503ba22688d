from datetime import datetime, timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import ActionLog, Customer, Job, JOB_PRIORITIES, JOB_STATUSES, User
from ..auth.security import get_current_user, has_role
from ..services.time_rules import day_bounds


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
def dashboard_stats(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Job counts for the dashboard. Technicians only see numbers for their own jobs."""
    technician_view = has_role(user, "technician")
    jobs = db.query(Job)
    if technician_view:
        jobs = jobs.filter(Job.assigned_to == user.id)

    by_status = {s: 0 for s in JOB_STATUSES}
    status_rows = jobs.with_entities(Job.status, func.count(Job.id)).group_by(Job.status).all()
    for status, count in status_rows:
        by_status[status] = count
    by_priority = {p: 0 for p in JOB_PRIORITIES}
    priority_rows = (
        jobs.filter(Job.status.in_(("Pending", "In Progress")))
        .with_entities(Job.priority, func.count(Job.id))
        .group_by(Job.priority)
        .all()
    )
    for priority, count in priority_rows:
        by_priority[priority] = count

    today_start, today_end = day_bounds(datetime.utcnow().date())
    todays_jobs = jobs.filter(Job.scheduled_date >= today_start, Job.scheduled_date < today_end).count()
    week_ago = datetime.utcnow() - timedelta(days=7)
    completed_week = jobs.filter(Job.status == "Completed", Job.completed_date >= week_ago).count()
    unassigned = 0 if technician_view else jobs.filter(Job.assigned_to.is_(None), Job.status == "Pending").count()

    stats = {
        "jobs": {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "open_by_priority": by_priority,
            "today": todays_jobs,
            "completed_last_7_days": completed_week,
            "unassigned": unassigned,
        },
    }
    if technician_view:
        return stats

    stats["customers"] = db.query(func.count(Customer.id)).filter(Customer.is_active == True).scalar() or 0
    stats["technicians"] = (
        db.query(func.count(User.id)).filter(User.role == "technician", User.is_active == True).scalar() or 0
    )
    recent = db.query(ActionLog).order_by(ActionLog.timestamp.desc(), ActionLog.id.desc()).limit(10).all()
    stats["recent_activity"] = [
        {
            "action": r.action,
            "resource": r.resource,
            "resource_id": r.resource_id,
            "user_id": str(r.user_id) if r.user_id else None,
            "timestamp": r.timestamp.isoformat() if r.timestamp else None,
        }
        for r in recent
    ]
    return stats
