"""
FastAPI dependencies for services wired onto app.state by create_app()
"""
from fastapi import Request

from .config import Settings
from .ingestion import SensorIngestService
from .notifications import Notifier
from .store import TelemetryStore


def get_store(request: Request) -> TelemetryStore:
    return request.app.state.store


def get_ingest_service(request: Request) -> SensorIngestService:
    return request.app.state.ingest_service


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
