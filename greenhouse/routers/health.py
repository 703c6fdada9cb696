"""Health and status endpoints"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..config import Settings
from ..dependencies import get_app_settings, get_store
from ..exceptions import DatabaseError
from ..models import HealthStatus
from ..store import TelemetryStore

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthStatus)
async def health_check(app_settings: Settings = Depends(get_app_settings)):
    """Basic health check"""
    return HealthStatus(status="healthy", version=app_settings.app_version)


@router.get("/health/db", response_model=HealthStatus)
async def database_health(
    store: TelemetryStore = Depends(get_store),
    app_settings: Settings = Depends(get_app_settings)
):
    """Store connectivity check"""
    try:
        await store.ping()
    except DatabaseError as e:
        return JSONResponse(
            status_code=503,
            content=HealthStatus(
                status="unhealthy",
                version=app_settings.app_version,
                storage="disconnected",
                error=e.message
            ).model_dump()
        )

    return HealthStatus(
        status="healthy",
        version=app_settings.app_version,
        storage="connected"
    )
