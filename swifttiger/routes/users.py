from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import Optional
import uuid

from ..db import get_db
from ..models.models import User, Job, USER_ROLES
from ..auth.security import get_current_user, get_password_hash, has_role, require_roles
from ..schemas.users import UserCreate, UserUpdate
from ..services.audit import log_action


router = APIRouter(prefix="/users", tags=["users"])


def _dt(value):
    return value.isoformat() if value else None


def _float(value):
    return float(value) if value is not None else None


def user_to_dict(u: User) -> dict:
    return {
        "id": str(u.id),
        "name": u.name,
        "email": u.email,
        "role": u.role,
        "is_active": bool(u.is_active),
        "is_main_admin": bool(u.is_main_admin),
        "phone": u.phone,
        "skills": list(u.skills or []),
        "max_daily_jobs": u.max_daily_jobs,
        "home_lat": _float(u.home_lat),
        "home_lng": _float(u.home_lng),
        "last_login_at": _dt(u.last_login_at),
        "created_at": _dt(u.created_at),
        "updated_at": _dt(u.updated_at),
    }


def _get_user_or_404(db: Session, user_id: uuid.UUID) -> User:
    u = db.query(User).filter(User.id == user_id).first()
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    return u


def _email_taken(db: Session, email: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
    q = db.query(User.id).filter(func.lower(User.email) == email.lower())
    if exclude_id:
        q = q.filter(User.id != exclude_id)
    return q.first() is not None


@router.get("")
def list_users(
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin", "manager", "dispatcher")),
):
    """
    List users with pagination

    Args:
        search: Matches name or email
        role: Exact role filter
        is_active: Filter by active flag
    """
    limit = min(max(1, limit), 100)
    page = max(1, page)
    offset = (page - 1) * limit

    query = db.query(User)
    if search:
        like = f"%{search}%"
        query = query.filter((User.name.ilike(like)) | (User.email.ilike(like)))
    if role:
        query = query.filter(User.role == role)
    if is_active is not None:
        query = query.filter(User.is_active == is_active)

    total = query.count()
    rows = query.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit).all()
    return {
        "items": [user_to_dict(u) for u in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit > 0 else 0,
    }


@router.get("/stats")
def user_stats(db: Session = Depends(get_db), _=Depends(require_roles("admin", "manager"))):
    by_role = dict(db.query(User.role, func.count(User.id)).group_by(User.role).all())
    active = db.query(func.count(User.id)).filter(User.is_active == True).scalar() or 0
    total = db.query(func.count(User.id)).scalar() or 0
    return {
        "total": total,
        "active": active,
        "inactive": total - active,
        "by_role": {r: by_role.get(r, 0) for r in USER_ROLES},
    }


@router.get("/technicians")
def list_technicians(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    q = db.query(User).filter(User.role == "technician")
    if not include_inactive:
        q = q.filter(User.is_active == True)
    techs = q.order_by(User.name.asc()).all()
    open_counts = dict(
        db.query(Job.assigned_to, func.count(Job.id))
        .filter(Job.status.in_(("Pending", "In Progress")), Job.assigned_to.isnot(None))
        .group_by(Job.assigned_to)
        .all()
    )
    items = []
    for t in techs:
        d = user_to_dict(t)
        d["open_jobs"] = open_counts.get(t.id, 0)
        items.append(d)
    return {"items": items, "total": len(items)}


@router.get("/{user_id}")
def get_user(user_id: uuid.UUID, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    if me.id != user_id and not has_role(me, "admin", "manager", "dispatcher"):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return user_to_dict(_get_user_or_404(db, user_id))


@router.post("", status_code=201)
def create_user(
    payload: UserCreate,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles("admin")),
):
    if payload.role == "admin" and not me.is_main_admin:
        raise HTTPException(status_code=403, detail="Only the main administrator can create admin users")
    if _email_taken(db, payload.email):
        raise HTTPException(status_code=400, detail="User with this email already exists")
    u = User(
        name=payload.name.strip(),
        email=payload.email,
        password_hash=get_password_hash(payload.password),
        role=payload.role,
        phone=payload.phone,
        skills=payload.skills,
        max_daily_jobs=payload.max_daily_jobs,
        home_lat=payload.home_lat,
        home_lng=payload.home_lng,
        is_active=True,
        created_by=me.id,
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    log_action(db, "CREATE_USER", "USER", u.id, me.id, {"email": u.email, "role": u.role}, request)
    return user_to_dict(u)


@router.put("/{user_id}")
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles("admin")),
):
    u = _get_user_or_404(db, user_id)
    changes = payload.model_dump(exclude_unset=True)

    if "role" in changes and changes["role"] != u.role:
        if (changes["role"] == "admin" or u.role == "admin") and not me.is_main_admin:
            raise HTTPException(status_code=403, detail="Only the main administrator can change admin roles")
        if u.is_main_admin:
            raise HTTPException(status_code=400, detail="The main administrator's role cannot be changed")
    if changes.get("is_active") is False:
        if u.id == me.id:
            raise HTTPException(status_code=400, detail="Cannot deactivate your own account")
        if u.is_main_admin:
            raise HTTPException(status_code=400, detail="The main administrator cannot be deactivated")
    if "email" in changes and changes["email"] and _email_taken(db, changes["email"], exclude_id=u.id):
        raise HTTPException(status_code=400, detail="User with this email already exists")

    for field, value in changes.items():
        if value is None and field in ("name", "email", "role", "is_active"):
            continue
        setattr(u, field, value)
    db.commit()
    db.refresh(u)
    log_action(db, "UPDATE_USER", "USER", u.id, me.id, {"fields": sorted(changes.keys())}, request)
    return user_to_dict(u)


def _set_active(db: Session, user_id: uuid.UUID, me: User, active: bool, request: Request) -> dict:
    u = _get_user_or_404(db, user_id)
    if not active:
        if u.id == me.id:
            raise HTTPException(status_code=400, detail="Cannot deactivate your own account")
        if u.is_main_admin:
            raise HTTPException(status_code=400, detail="The main administrator cannot be deactivated")
        if u.role == "admin" and not me.is_main_admin:
            raise HTTPException(status_code=403, detail="Only the main administrator can deactivate admin users")
    u.is_active = active
    db.commit()
    db.refresh(u)
    log_action(db, "ACTIVATE_USER" if active else "DEACTIVATE_USER", "USER", u.id, me.id, None, request)
    return user_to_dict(u)


@router.post("/{user_id}/deactivate")
def deactivate_user(user_id: uuid.UUID, request: Request, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    return _set_active(db, user_id, me, False, request)


@router.post("/{user_id}/activate")
def activate_user(user_id: uuid.UUID, request: Request, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    return _set_active(db, user_id, me, True, request)


@router.delete("/{user_id}")
def delete_user(user_id: uuid.UUID, request: Request, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    # Users are never hard-deleted: jobs and the action log keep referencing them
    if not me.is_main_admin:
        raise HTTPException(status_code=403, detail="Only the main administrator can delete users")
    u = _get_user_or_404(db, user_id)
    if u.id == me.id or u.is_main_admin:
        raise HTTPException(status_code=400, detail="The main administrator cannot be deleted")
    u.is_active = False
    db.commit()
    log_action(db, "DELETE_USER", "USER", u.id, me.id, {"email": u.email}, request)
    return {"status": "ok", "id": str(u.id)}
