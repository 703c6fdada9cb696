"""
Ingestion Router - sensor telemetry from hardware and gateways

Accepts a single reading or {"readings": [...]}, persists the batch, updates
device liveness and evaluates alert rules. Alert emails are sent after the
response has been returned.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Request

from ..dependencies import get_ingest_service, get_notifier
from ..exceptions import ValidationError
from ..ingestion import SensorIngestService
from ..models import IngestResponse
from ..notifications import Notifier

router = APIRouter(prefix="/api/v1", tags=["Ingestion"])


@router.post("/iot-sensor-ingest", response_model=IngestResponse)
async def ingest_sensor_data(
    request: Request,
    background_tasks: BackgroundTasks,
    service: SensorIngestService = Depends(get_ingest_service),
    notifier: Notifier = Depends(get_notifier)
):
    """
    Ingest one or more sensor readings

    Errors:
    - 400 when no readings are present or any reading lacks user_id
    - 500 when the readings could not be stored
    """
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")

    result = await service.ingest(body)

    if result.notifications:
        background_tasks.add_task(notifier.dispatch_many, result.notifications)

    return result.to_response()
