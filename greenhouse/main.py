"""
Greenhouse Telemetry Service - Main Application
FastAPI application for sensor ingestion, threshold alerting, device
management and notification emails
"""
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings, settings
from .database import DatabasePool
from .exceptions import GreenhouseException
from .ingestion import SensorIngestService
from .logging_config import configure_logging, get_logger
from .memory_store import InMemoryStore
from .middleware import PermissiveCORSMiddleware, RequestTracingMiddleware, cors_headers
from .notifications import Notifier, ResendNotifier
from .routers import (
    ingest_router,
    devices_router,
    alerts_router,
    readings_router,
    notifications_router,
    health_router,
    metrics_router,
)
from .store import TelemetryStore

configure_logging(settings.log_level, json_logs=settings.json_logs)
logger = get_logger(__name__)


def build_store(app_settings: Settings) -> TelemetryStore:
    """Store selected by STORAGE_BACKEND"""
    if app_settings.storage_backend == "memory":
        logger.warning("using_in_memory_store", persistent=False)
        return InMemoryStore()
    return DatabasePool(app_settings.database_url, app_settings=app_settings)


def build_notifier(app_settings: Settings) -> Notifier:
    notifier = ResendNotifier(
        api_key=app_settings.resend_api_key,
        api_url=app_settings.resend_api_url,
        sender=app_settings.notification_from,
        timeout=app_settings.notification_timeout_seconds
    )
    if not notifier.configured:
        logger.warning("email_delivery_not_configured", missing="RESEND_API_KEY")
    return notifier

# ============================================================
# Application Lifecycle Management
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle (startup/shutdown)
    Opens the store on startup and releases store and HTTP client on shutdown
    """
    app_settings: Settings = app.state.settings
    logger.info("service_starting", name=app_settings.app_name, version=app_settings.app_version)

    await app.state.store.initialize()
    logger.info("store_ready", backend=type(app.state.store).__name__)

    yield

    logger.info("service_stopping")
    await app.state.notifier.close()
    await app.state.store.close()
    logger.info("shutdown_complete")

# ============================================================
# Exception Handlers
# ============================================================

async def greenhouse_exception_handler(request: Request, exc: GreenhouseException):
    if exc.status_code >= 500:
        logger.error("request_error", error=exc.message, code=exc.error_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=400,
        content={
            "error": message,
            "code": "VALIDATION_ERROR",
            "details": {"errors": errors},
        }
    )


def _unhandled_exception_handler(app_settings: Settings):
    headers = cors_headers(app_settings.cors_allow_origin, app_settings.cors_allow_headers)

    async def handler(request: Request, exc: Exception):
        # Runs outside the middleware stack, so CORS headers are added here
        logger.error("unhandled_exception", error=str(exc), exc_info=exc)
        return JSONResponse(status_code=500, content={"error": str(exc), "code": "INTERNAL_ERROR"}, headers=headers)

    return handler

# ============================================================
# FastAPI Application
# ============================================================

def create_app(
    app_settings: Optional[Settings] = None,
    store: Optional[TelemetryStore] = None,
    notifier: Optional[Notifier] = None
) -> FastAPI:
    """
    Build the application with its collaborators

    Tests pass an InMemoryStore and a fake notifier; production builds both
    from settings.
    """
    app_settings = app_settings or settings
    store = store or build_store(app_settings)
    notifier = notifier or build_notifier(app_settings)

    app = FastAPI(
        title=app_settings.app_name,
        version=app_settings.app_version,
        description="Greenhouse sensor ingestion, threshold alerting and device registry",
        lifespan=lifespan,
        debug=app_settings.debug
    )

    app.state.settings = app_settings
    app.state.store = store
    app.state.notifier = notifier
    app.state.ingest_service = SensorIngestService(
        store,
        alert_emails_enabled=app_settings.alert_emails_enabled,
        max_batch_size=app_settings.max_batch_size
    )

    # Last added runs first: CORS wraps tracing
    app.add_middleware(RequestTracingMiddleware)
    app.add_middleware(
        PermissiveCORSMiddleware,
        allow_origin=app_settings.cors_allow_origin,
        allow_headers=app_settings.cors_allow_headers
    )

    app.add_exception_handler(GreenhouseException, greenhouse_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler(app_settings))

    app.include_router(ingest_router)
    app.include_router(devices_router)
    app.include_router(alerts_router)
    app.include_router(readings_router)
    app.include_router(notifications_router)
    app.include_router(health_router)
    app.include_router(metrics_router)

    return app


def run():
    """Console entry point; the app is built by uvicorn, not at import"""
    uvicorn.run(
        "greenhouse.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None
    )


if __name__ == "__main__":
    run()
