"""
Activity logging service.
Append-only action log: rows are inserted here and never updated or deleted.
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple, List
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..logging import get_logger
from ..models.models import ActionLog


log = get_logger("swifttiger.audit")


def _client_ip(request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def log_action(
    db: Session,
    action: str,
    resource: str,
    resource_id: Optional[Any] = None,
    user_id: Optional[Any] = None,
    details: Optional[Dict] = None,
    request=None,
    commit: bool = True,
) -> ActionLog:
    """
    Record an action in the activity log.

    Args:
        db: Database session
        action: What happened (USER_LOGIN|LOGIN_FAILED|CREATE_JOB|UPDATE_JOB|...)
        resource: What it happened to (AUTH|USER|CUSTOMER|JOB|JOB_LOG|ROUTE|FILE|LOCATION)
        resource_id: Id of the affected row, if any
        user_id: Acting user; None for anonymous actions such as failed logins
        details: Extra JSON context
        request: Starlette request; method, path, IP and user agent are taken from it
        commit: Commit immediately; pass False to join the caller's transaction
    """
    details = dict(details or {})
    ip_address = None
    user_agent = None
    if request is not None:
        details.setdefault("method", request.method)
        details.setdefault("path", request.url.path)
        ip_address = _client_ip(request)
        user_agent = (request.headers.get("user-agent") or "")[:500] or None

    entry = ActionLog(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=details or None,
        ip_address=ip_address,
        user_agent=user_agent,
        timestamp=datetime.utcnow(),
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    log.info("action_logged", action=action, resource=resource, resource_id=entry.resource_id, user_id=str(user_id) if user_id else None)
    return entry


def get_action_logs(
    db: Session,
    user_id: Optional[Any] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[ActionLog], int]:
    """Filtered log entries, newest first, with the unpaginated total."""
    query = db.query(ActionLog)

    if user_id:
        query = query.filter(ActionLog.user_id == user_id)
    if action:
        query = query.filter(ActionLog.action == action)
    if resource:
        query = query.filter(ActionLog.resource == resource)
    if start_date:
        query = query.filter(ActionLog.timestamp >= start_date)
    if end_date:
        query = query.filter(ActionLog.timestamp <= end_date)

    total = query.count()
    rows = (
        query.order_by(ActionLog.timestamp.desc(), ActionLog.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total


def action_stats(db: Session, days: int = 30) -> Dict[str, Any]:
    since = datetime.utcnow() - timedelta(days=days)
    base = db.query(ActionLog).filter(ActionLog.timestamp >= since)
    by_action = (
        db.query(ActionLog.action, func.count(ActionLog.id))
        .filter(ActionLog.timestamp >= since)
        .group_by(ActionLog.action)
        .order_by(func.count(ActionLog.id).desc())
        .all()
    )
    by_resource = (
        db.query(ActionLog.resource, func.count(ActionLog.id))
        .filter(ActionLog.timestamp >= since)
        .group_by(ActionLog.resource)
        .all()
    )
    active_users = (
        db.query(func.count(func.distinct(ActionLog.user_id)))
        .filter(ActionLog.timestamp >= since, ActionLog.user_id.isnot(None))
        .scalar()
    )
    return {
        "days": days,
        "total": base.count(),
        "active_users": active_users or 0,
        "by_action": {a: c for a, c in by_action},
        "by_resource": {r: c for r, c in by_resource},
    }
