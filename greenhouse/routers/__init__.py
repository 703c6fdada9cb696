"""
API Routers
"""
from .ingest import router as ingest_router
from .devices import router as devices_router
from .alerts import router as alerts_router
from .readings import router as readings_router
from .notifications import router as notifications_router
from .health import router as health_router
from .metrics import router as metrics_router

__all__ = [
    "ingest_router",
    "devices_router",
    "alerts_router",
    "readings_router",
    "notifications_router",
    "health_router",
    "metrics_router",
]
