"""
Readings Router - recent telemetry for dashboards
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_store
from ..exceptions import RecordNotFoundError
from ..models import SensorReading
from ..store import TelemetryStore

router = APIRouter(prefix="/api/v1/readings", tags=["Readings"])


@router.get("", response_model=List[SensorReading])
async def list_readings(
    user_id: str = Query(..., min_length=1),
    zone_id: Optional[str] = Query(None, description="Only readings from this zone"),
    limit: int = Query(50, ge=1, le=1000),
    store: TelemetryStore = Depends(get_store)
):
    """Newest readings first"""
    return await store.list_readings(user_id, zone_id=zone_id, limit=limit)


@router.get("/latest", response_model=SensorReading)
async def latest_reading(
    user_id: str = Query(..., min_length=1),
    store: TelemetryStore = Depends(get_store)
):
    reading = await store.get_latest_reading(user_id)
    if reading is None:
        raise RecordNotFoundError("Sensor reading", f"user {user_id}")
    return reading
