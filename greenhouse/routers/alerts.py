"""
Alert Settings Router - per-user, per-metric threshold rules
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
import logging

from ..dependencies import get_store
from ..models import AlertSetting, AlertSettingCreate, AlertSettingUpdate
from ..store import TelemetryStore

router = APIRouter(prefix="/api/v1/alert-settings", tags=["Alerts"])
logger = logging.getLogger(__name__)


@router.post("", response_model=AlertSetting, status_code=status.HTTP_201_CREATED)
async def create_alert_setting(
    setting: AlertSettingCreate,
    store: TelemetryStore = Depends(get_store)
):
    """
    Create a threshold rule

    Both thresholds may be omitted; such a rule never fires.
    """
    created = await store.create_alert_setting(setting)
    logger.info(
        f"Created alert setting {created.id} for user {created.user_id}: "
        f"{created.metric.value} min={created.min_threshold} max={created.max_threshold}"
    )
    return created


@router.get("", response_model=List[AlertSetting])
async def list_alert_settings(
    user_id: str = Query(..., min_length=1),
    store: TelemetryStore = Depends(get_store)
):
    return await store.get_alert_settings(user_id)


@router.patch("/{setting_id}", response_model=AlertSetting)
async def update_alert_setting(
    setting_id: UUID,
    updates: AlertSettingUpdate,
    store: TelemetryStore = Depends(get_store)
):
    return await store.update_alert_setting(setting_id, updates)


@router.delete("/{setting_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_alert_setting(
    setting_id: UUID,
    store: TelemetryStore = Depends(get_store)
):
    await store.delete_alert_setting(setting_id)
    logger.info(f"Deleted alert setting {setting_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
