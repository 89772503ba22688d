from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..logging import get_logger
from ..models.models import TechnicianLocation, User
from ..auth.security import get_current_user, require_roles
from ..schemas.locations import LocationReport
from ..services.realtime_hub import publish_location
from ..services.routing.collector import latest_locations
from ..services.time_rules import to_utc_naive


router = APIRouter(prefix="/locations", tags=["locations"])
log = get_logger("swifttiger.locations")


def location_to_dict(loc: TechnicianLocation, technician: Optional[User] = None) -> dict:
    d = {
        "technician_id": str(loc.technician_id),
        "latitude": loc.latitude,
        "longitude": loc.longitude,
        "accuracy_m": loc.accuracy_m,
        "heading": loc.heading,
        "speed": loc.speed,
        "recorded_at": loc.recorded_at.isoformat() if loc.recorded_at else None,
    }
    if technician is not None:
        d["name"] = technician.name
    return d


def record_location(db: Session, technician: User, report: LocationReport) -> TechnicianLocation:
    loc = TechnicianLocation(
        technician_id=technician.id,
        latitude=report.latitude,
        longitude=report.longitude,
        accuracy_m=report.accuracy_m,
        heading=report.heading,
        speed=report.speed,
    )
    if report.recorded_at is not None:
        loc.recorded_at = to_utc_naive(report.recorded_at)
    db.add(loc)
    db.commit()
    db.refresh(loc)
    log.debug("location_recorded", technician_id=str(technician.id))
    return loc


@router.post("", status_code=201)
def report_location(
    payload: LocationReport,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if user.role != "technician":
        raise HTTPException(status_code=403, detail="Only technicians report locations")
    loc = record_location(db, user, payload)
    data = location_to_dict(loc, user)
    background.add_task(publish_location, data)
    return data


@router.get("/technicians")
def technician_locations(
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin", "manager", "dispatcher")),
):
    techs = {
        t.id: t
        for t in db.query(User).filter(User.role == "technician", User.is_active == True).all()
    }
    latest = latest_locations(db, list(techs.keys())) if techs else {}
    items = [location_to_dict(loc, techs.get(tech_id)) for tech_id, loc in latest.items()]
    items.sort(key=lambda d: d.get("name") or "")
    return {"items": items}
