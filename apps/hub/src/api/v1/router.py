from fastapi import APIRouter

from config import settings
from services.wind_relay import get_wind_relay
from .events_router import router as events_router
from .wind_router import router as wind_router

router = APIRouter(prefix="/api/v1", tags=["v1"])
router.include_router(wind_router)
router.include_router(events_router)


@router.get("/health")
async def health():
    return {"status": "ok", "version": settings.app_version}


@router.get("/info")
async def info():
    relay = get_wind_relay()
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "cors_origins": settings.cors_origins,
        "venue": settings.venue_name,
        "backend_url": settings.wind_api_base_url,
        "stream_relay_enabled": settings.wind_stream_relay_enabled,
        "stream_relay_running": relay is not None and relay.running,
        "refresh_enabled": settings.refresh_enabled,
    }
