"""
Devices Router - CRUD API for registered IoT devices

Devices are registered explicitly; ingestion only refreshes liveness of
devices that already exist. Read endpoints apply the staleness rule so an
'online' device that went quiet is shown as 'offline'.
"""
from datetime import timedelta
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
import logging

from ..config import Settings
from ..dependencies import get_app_settings, get_store
from ..devices import present_device, present_devices
from ..exceptions import DeviceNotFoundError
from ..models import Device, DeviceCreate, DeviceUpdate
from ..store import TelemetryStore

router = APIRouter(prefix="/api/v1/devices", tags=["Devices"])
logger = logging.getLogger(__name__)


def _offline_after(app_settings: Settings) -> timedelta:
    return timedelta(seconds=app_settings.device_offline_after_seconds)


@router.post("", response_model=Device, status_code=status.HTTP_201_CREATED)
async def register_device(
    device: DeviceCreate,
    store: TelemetryStore = Depends(get_store)
):
    """
    Register a device

    Returns 409 if a device with the same device_id already exists.
    """
    created = await store.create_device(device)
    logger.info(f"Registered device {created.device_id} for user {created.user_id}")
    return created


@router.get("", response_model=List[Device])
async def list_devices(
    user_id: str = Query(..., min_length=1, description="Owner of the devices"),
    store: TelemetryStore = Depends(get_store),
    app_settings: Settings = Depends(get_app_settings)
):
    """List a user's devices, newest first, with display status applied"""
    devices = await store.list_devices(user_id)
    return present_devices(devices, offline_after=_offline_after(app_settings))


@router.get("/{device_pk}", response_model=Device)
async def get_device(
    device_pk: UUID,
    store: TelemetryStore = Depends(get_store),
    app_settings: Settings = Depends(get_app_settings)
):
    device = await store.get_device(device_pk)
    if not device:
        raise DeviceNotFoundError(device_pk)
    return present_device(device, offline_after=_offline_after(app_settings))


@router.patch("/{device_pk}", response_model=Device)
async def update_device(
    device_pk: UUID,
    updates: DeviceUpdate,
    store: TelemetryStore = Depends(get_store)
):
    """Update device settings (partial)"""
    updated = await store.update_device(device_pk, updates)
    logger.info(f"Updated device {updated.device_id}: {sorted(updates.model_fields_set)}")
    return updated


@router.delete("/{device_pk}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_device(
    device_pk: UUID,
    store: TelemetryStore = Depends(get_store)
):
    """Unregister a device"""
    await store.delete_device(device_pk)
    logger.info(f"Deleted device {device_pk}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
