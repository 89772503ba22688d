import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..logging import get_logger
from ..models.models import Customer, Job, User
from ..auth.security import get_current_user, require_roles
from ..schemas.customers import CustomerCreate, CustomerUpdate, CustomerAddress
from ..services.audit import log_action
from ..services.google_maps import GoogleMapsClient, GoogleMapsError


router = APIRouter(prefix="/customers", tags=["customers"])
log = get_logger("swifttiger.customers")


def _float(value):
    return float(value) if value is not None else None


def customer_to_dict(c: Customer) -> dict:
    return {
        "id": str(c.id),
        "name": c.name,
        "email": c.email,
        "phone": c.phone,
        "address": {
            "street": c.address_street,
            "city": c.address_city,
            "state": c.address_state,
            "zip_code": c.address_zip_code,
            "country": c.address_country,
            "place_id": c.address_place_id,
        },
        "latitude": _float(c.latitude),
        "longitude": _float(c.longitude),
        "is_active": bool(c.is_active),
        "created_at": c.created_at.isoformat() if c.created_at else None,
        "updated_at": c.updated_at.isoformat() if c.updated_at else None,
    }


def _apply_address(c: Customer, address: CustomerAddress) -> None:
    c.address_street = address.street
    c.address_city = address.city
    c.address_state = address.state
    c.address_zip_code = address.zip_code
    c.address_country = address.country or "USA"
    c.address_place_id = address.place_id


def _geocode(c: Customer) -> None:
    """Fill coordinates from the address when a Maps key is configured. Failures leave them empty."""
    if not settings.google_maps_api_key:
        return
    address = ", ".join(p for p in [c.address_street, c.address_city, c.address_state, c.address_zip_code, c.address_country] if p)
    try:
        result = GoogleMapsClient().geocode(address)
    except GoogleMapsError as e:
        log.warning("geocode_failed", customer=c.name, error=str(e))
        return
    if result:
        c.latitude = result["lat"]
        c.longitude = result["lng"]
        c.address_place_id = c.address_place_id or result.get("place_id")


def _email_taken(db: Session, email: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
    q = db.query(Customer.id).filter(func.lower(Customer.email) == email.lower(), Customer.is_active == True)
    if exclude_id:
        q = q.filter(Customer.id != exclude_id)
    return q.first() is not None


def _get_customer_or_404(db: Session, customer_id: uuid.UUID) -> Customer:
    c = db.query(Customer).filter(Customer.id == customer_id).first()
    if not c:
        raise HTTPException(status_code=404, detail="Customer not found")
    return c


@router.get("")
def list_customers(
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    limit = min(max(1, limit), 100)
    page = max(1, page)
    query = db.query(Customer)
    if not include_inactive:
        query = query.filter(Customer.is_active == True)
    if search:
        like = f"%{search}%"
        query = query.filter(
            (Customer.name.ilike(like)) | (Customer.email.ilike(like)) | (Customer.phone.ilike(like))
        )
    total = query.count()
    rows = query.order_by(Customer.created_at.desc(), Customer.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [customer_to_dict(c) for c in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit > 0 else 0,
    }


@router.get("/{customer_id}")
def get_customer(customer_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    c = _get_customer_or_404(db, customer_id)
    d = customer_to_dict(c)
    d["job_count"] = db.query(func.count(Job.id)).filter(Job.customer_id == c.id).scalar() or 0
    return d


@router.post("", status_code=201)
def create_customer(
    payload: CustomerCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin", "manager", "dispatcher")),
):
    if _email_taken(db, payload.email):
        raise HTTPException(status_code=400, detail="Customer with this email already exists")
    c = Customer(
        name=payload.name.strip(),
        email=payload.email,
        phone=payload.phone,
        latitude=payload.latitude,
        longitude=payload.longitude,
        is_active=True,
        created_by=user.id,
        updated_by=user.id,
    )
    _apply_address(c, payload.address)
    if payload.geocode and (c.latitude is None or c.longitude is None):
        _geocode(c)
    db.add(c)
    db.commit()
    db.refresh(c)
    log_action(db, "CREATE_CUSTOMER", "CUSTOMER", c.id, user.id, {"name": c.name}, request)
    return customer_to_dict(c)


@router.put("/{customer_id}")
def update_customer(
    customer_id: uuid.UUID,
    payload: CustomerUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin", "manager", "dispatcher")),
):
    c = _get_customer_or_404(db, customer_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("email") and _email_taken(db, changes["email"], exclude_id=c.id):
        raise HTTPException(status_code=400, detail="Customer with this email already exists")

    address_changed = False
    for field in ("name", "email", "phone", "is_active"):
        if changes.get(field) is not None:
            setattr(c, field, changes[field])
    if payload.address is not None:
        _apply_address(c, payload.address)
        address_changed = True
    if "latitude" in changes or "longitude" in changes:
        c.latitude = changes.get("latitude", c.latitude)
        c.longitude = changes.get("longitude", c.longitude)
    elif address_changed:
        c.latitude = None
        c.longitude = None
        _geocode(c)
    c.updated_by = user.id
    c.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(c)
    log_action(db, "UPDATE_CUSTOMER", "CUSTOMER", c.id, user.id, {"fields": sorted(changes.keys())}, request)
    return customer_to_dict(c)


@router.delete("/{customer_id}")
def delete_customer(
    customer_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin", "manager")),
):
    c = _get_customer_or_404(db, customer_id)
    open_jobs = (
        db.query(func.count(Job.id))
        .filter(Job.customer_id == c.id, Job.status.in_(("Pending", "In Progress")))
        .scalar()
    )
    if open_jobs:
        raise HTTPException(status_code=409, detail=f"Customer has {open_jobs} open job(s)")
    c.is_active = False
    c.updated_by = user.id
    db.commit()
    log_action(db, "DELETE_CUSTOMER", "CUSTOMER", c.id, user.id, {"name": c.name}, request)
    return {"status": "ok", "id": str(c.id)}


@router.get("/{customer_id}/jobs")
def customer_jobs(
    customer_id: uuid.UUID,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    from .jobs import job_to_dict

    c = _get_customer_or_404(db, customer_id)
    q = db.query(Job).filter(Job.customer_id == c.id)
    if status:
        q = q.filter(Job.status.in_([s.strip() for s in status.split(",") if s.strip()]))
    jobs = q.order_by(Job.created_at.desc(), Job.id.desc()).all()
    return {"items": [job_to_dict(j) for j in jobs], "total": len(jobs)}
