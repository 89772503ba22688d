import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import ActionLog, User
from ..auth.security import require_roles
from ..services.audit import action_stats, get_action_logs
from ..services.time_rules import to_utc_naive


# Read-only on purpose: the action log has no update or delete routes.
router = APIRouter(prefix="/logs", tags=["logs"])


def _parse_dt(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return to_utc_naive(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be an ISO date or datetime")


def action_log_to_dict(entry: ActionLog, user: Optional[User] = None) -> dict:
    return {
        "id": str(entry.id),
        "user_id": str(entry.user_id) if entry.user_id else None,
        "user_name": user.name if user else None,
        "user_email": user.email if user else None,
        "action": entry.action,
        "resource": entry.resource,
        "resource_id": entry.resource_id,
        "details": entry.details or {},
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
    }


@router.get("")
def list_logs(
    page: int = 1,
    limit: int = 50,
    user_id: Optional[uuid.UUID] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    limit = min(max(1, limit), 200)
    page = max(1, page)
    start = _parse_dt(start_date, "start_date")
    end = _parse_dt(end_date, "end_date")
    # a bare end date covers the whole day
    if end is not None and end_date and len(end_date) == 10:
        end = end.replace(hour=23, minute=59, second=59, microsecond=999999)
    rows, total = get_action_logs(
        db,
        user_id=user_id,
        action=action.upper() if action else None,
        resource=resource.upper() if resource else None,
        start_date=start,
        end_date=end,
        limit=limit,
        offset=(page - 1) * limit,
    )
    user_ids = {r.user_id for r in rows if r.user_id}
    users = {u.id: u for u in db.query(User).filter(User.id.in_(user_ids)).all()} if user_ids else {}
    return {
        "items": [action_log_to_dict(r, users.get(r.user_id)) for r in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit > 0 else 0,
    }


@router.get("/stats")
def log_stats(days: int = 30, db: Session = Depends(get_db), _=Depends(require_roles("admin"))):
    return action_stats(db, days=min(max(1, days), 365))
