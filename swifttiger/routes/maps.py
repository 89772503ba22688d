from fastapi import APIRouter, Depends

from ..config import settings
from ..auth.security import get_current_user


router = APIRouter(tags=["maps"])


@router.get("/maps-config")
def maps_config(_=Depends(get_current_user)):
    """Browser map settings. The key is only handed to signed-in users."""
    return {
        "api_key": settings.google_maps_api_key,
        "enabled": bool(settings.google_maps_api_key),
        "default_timezone": settings.tz_default,
    }
