from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..logging import get_logger
from ..services.realtime_hub import hub


router = APIRouter(tags=["health"])
log = get_logger("swifttiger.health")


@router.get("/health")
def health(db: Session = Depends(get_db)):
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        log.error("health_db_failed", error=str(e))
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "environment": settings.environment,
        "database": database,
        "maps": "google" if settings.google_maps_api_key else "haversine",
        "websocket_clients": len(hub.connected_users()),
        "timestamp": datetime.utcnow().isoformat(),
    }
