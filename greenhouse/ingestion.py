"""
Sensor telemetry ingestion and threshold alerting

Pipeline for one request (sequential):
1. normalize the body into reading rows and device heartbeats
2. persist all readings in one insert
3. mark every named device online (unregistered devices are skipped)
4. evaluate the owners' alert rules against each persisted reading
5. report the persisted rows and the number of distinct devices

Only steps 1 and 2 can fail the request. Liveness bookkeeping and alerting
are best-effort: their failures are logged and counted, never raised.
"""
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError as PydanticValidationError

from .exceptions import DatabaseError, ValidationError
from .metrics import (
    track_ingest,
    track_device_heartbeat,
    track_threshold_breach,
    track_alert_evaluation_failure
)
from .models import (
    AlertSetting,
    DeviceHeartbeat,
    IngestResponse,
    Metric,
    NotificationData,
    NotificationRequest,
    NotificationType,
    Profile,
    SensorPayload,
    SensorReading,
    SensorReadingCreate,
    ThresholdBreach,
    ThresholdDirection,
)
from .store import TelemetryStore
from .utils import utcnow

logger = structlog.get_logger(__name__)

NO_READINGS_MESSAGE = "No sensor readings provided"
USER_ID_REQUIRED_MESSAGE = "user_id is required for each reading"


@dataclass
class NormalizedBatch:
    """Rows ready to insert plus one heartbeat per distinct device_id"""
    readings: List[SensorReadingCreate]
    heartbeats: Dict[str, DeviceHeartbeat]


@dataclass
class IngestResult:
    """Outcome of a successful ingestion"""
    readings: List[SensorReading]
    devices_updated: int
    breaches: List[ThresholdBreach] = field(default_factory=list)
    notifications: List[NotificationRequest] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Processed {len(self.readings)} sensor readings"

    def to_response(self) -> IngestResponse:
        return IngestResponse(
            success=True,
            message=self.message,
            readings=self.readings,
            devices_updated=self.devices_updated
        )


# ============================================================
# Normalization
# ============================================================

def extract_reading_payloads(body: Any) -> List[Dict[str, Any]]:
    """
    Coerce a request body into a list of raw reading objects

    Accepts a single reading object or {"readings": [...]}.
    """
    if not isinstance(body, dict) or not body:
        raise ValidationError(NO_READINGS_MESSAGE)

    if body.get("readings") is None:
        entries = [body]
    else:
        entries = body["readings"]
        if not isinstance(entries, list) or len(entries) == 0:
            raise ValidationError(NO_READINGS_MESSAGE, field="readings")

    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValidationError(
                f"Reading at index {index} must be a JSON object",
                field="readings"
            )

    return entries


def _describe_validation_error(index: int, error: PydanticValidationError) -> ValidationError:
    first = error.errors()[0]
    field_name = ".".join(str(part) for part in first.get("loc", ())) or None
    return ValidationError(
        f"Invalid reading at index {index}: {field_name}: {first.get('msg')}",
        field=field_name
    )


def normalize_payload(
    body: Any,
    received_at: Optional[datetime] = None,
    max_batch_size: Optional[int] = None
) -> NormalizedBatch:
    """
    Validate a request body and build the rows to persist

    The whole batch is rejected if any entry lacks user_id or carries a
    malformed field; nothing is returned for partial use.
    """
    entries = extract_reading_payloads(body)

    if max_batch_size is not None and len(entries) > max_batch_size:
        raise ValidationError(
            f"Too many readings in one request ({len(entries)} > {max_batch_size})",
            field="readings"
        )

    if any(not entry.get("user_id") for entry in entries):
        raise ValidationError(USER_ID_REQUIRED_MESSAGE, field="user_id")

    received_at = received_at or utcnow()
    readings: List[SensorReadingCreate] = []
    heartbeats: Dict[str, DeviceHeartbeat] = {}

    for index, entry in enumerate(entries):
        try:
            payload = SensorPayload.model_validate(entry)
        except PydanticValidationError as e:
            raise _describe_validation_error(index, e)

        # Last reading for a device wins
        if payload.device_id:
            heartbeats[payload.device_id] = DeviceHeartbeat(
                device_id=payload.device_id,
                user_id=payload.user_id,
                battery_level=payload.battery_level,
                firmware_version=payload.firmware_version
            )

        readings.append(SensorReadingCreate(
            user_id=payload.user_id,
            zone_id=payload.zone_id or None,
            temperature=payload.temperature,
            humidity=payload.humidity,
            moisture=payload.moisture,
            light_level=payload.light_level,
            recorded_at=payload.timestamp or received_at
        ))

    return NormalizedBatch(readings=readings, heartbeats=heartbeats)


# ============================================================
# Threshold Evaluation
# ============================================================

def setting_applies_to(setting: AlertSetting, reading: SensorReadingCreate) -> bool:
    """A rule without a zone covers every zone; a zoned rule only its own"""
    return setting.zone_id is None or setting.zone_id == reading.zone_id


def evaluate_thresholds(
    reading: SensorReadingCreate,
    settings: List[AlertSetting]
) -> List[ThresholdBreach]:
    """
    Compare a reading against alert rules

    Min and max are checked independently, so a rule with min > max can
    report both directions for one value. Rules with both thresholds null
    never fire.
    """
    breaches: List[ThresholdBreach] = []

    for setting in settings:
        if not setting_applies_to(setting, reading):
            continue

        value = reading.metric_value(setting.metric)
        if value is None:
            continue

        if setting.min_threshold is not None and value < setting.min_threshold:
            breaches.append(ThresholdBreach(
                metric=setting.metric,
                current_value=value,
                threshold=setting.min_threshold,
                direction=ThresholdDirection.MIN,
                user_id=reading.user_id,
                zone_id=reading.zone_id,
                setting_id=setting.id,
                email_enabled=setting.email_enabled
            ))

        if setting.max_threshold is not None and value > setting.max_threshold:
            breaches.append(ThresholdBreach(
                metric=setting.metric,
                current_value=value,
                threshold=setting.max_threshold,
                direction=ThresholdDirection.MAX,
                user_id=reading.user_id,
                zone_id=reading.zone_id,
                setting_id=setting.id,
                email_enabled=setting.email_enabled
            ))

    return breaches


def build_alert_notification(
    breach: ThresholdBreach,
    recipient: str,
    user_name: Optional[str] = None,
    zone_name: Optional[str] = None
) -> NotificationRequest:
    """Threshold-alert email request for one breach"""
    return NotificationRequest(
        type=NotificationType.THRESHOLD_ALERT,
        user_email=recipient,
        user_name=user_name,
        data=NotificationData(
            metric=Metric(breach.metric).value,
            current_value=breach.current_value,
            threshold=breach.threshold,
            threshold_type=breach.direction,
            zone_name=zone_name
        )
    )


# ============================================================
# Service
# ============================================================

class SensorIngestService:
    """
    Ingestion & alert evaluator

    The store is injected; the service holds no state between requests.
    """

    def __init__(
        self,
        store: TelemetryStore,
        alert_emails_enabled: bool = True,
        max_batch_size: Optional[int] = None
    ):
        self.store = store
        self.alert_emails_enabled = alert_emails_enabled
        self.max_batch_size = max_batch_size

    async def ingest(self, body: Any) -> IngestResult:
        """Run the full pipeline for one request body"""
        start = time.perf_counter()
        received_at = utcnow()

        try:
            batch = normalize_payload(body, received_at, self.max_batch_size)
        except ValidationError as e:
            track_ingest("rejected", duration=time.perf_counter() - start)
            logger.warning("ingest_rejected", reason=e.message)
            raise

        logger.info(
            "ingest_received",
            readings=len(batch.readings),
            devices=len(batch.heartbeats)
        )

        try:
            persisted = await self.store.insert_readings(batch.readings)
        except DatabaseError as e:
            track_ingest("failed", duration=time.perf_counter() - start)
            logger.error("ingest_persist_failed", error=e.message)
            raise

        logger.info("readings_persisted", count=len(persisted))

        await self.update_device_liveness(batch.heartbeats, received_at)
        breaches, notifications = await self.check_threshold_alerts(persisted)

        track_ingest("success", readings=len(persisted), duration=time.perf_counter() - start)

        return IngestResult(
            readings=persisted,
            devices_updated=len(batch.heartbeats),
            breaches=breaches,
            notifications=notifications
        )

    async def update_device_liveness(
        self,
        heartbeats: Dict[str, DeviceHeartbeat],
        seen_at: datetime
    ) -> int:
        """Mark each named device online; returns how many registered devices changed"""
        updated = 0

        for device_id, heartbeat in heartbeats.items():
            try:
                found = await self.store.mark_device_seen(
                    device_id,
                    seen_at,
                    battery_level=heartbeat.battery_level,
                    firmware_version=heartbeat.firmware_version
                )
            except Exception as e:
                track_device_heartbeat("error")
                logger.warning("device_update_failed", device_id=device_id, error=str(e))
                continue

            if found:
                updated += 1
                track_device_heartbeat("updated")
                logger.debug("device_seen", device_id=device_id)
            else:
                track_device_heartbeat("unregistered")
                logger.info("device_not_registered", device_id=device_id)

        return updated

    async def check_threshold_alerts(
        self,
        readings: List[SensorReading]
    ) -> Tuple[List[ThresholdBreach], List[NotificationRequest]]:
        """Evaluate every reading against its owner's rules, one reading at a time"""
        breaches: List[ThresholdBreach] = []
        notifications: List[NotificationRequest] = []
        profiles: Dict[str, Optional[Profile]] = {}
        zone_names: Dict[str, Optional[str]] = {}

        for reading in readings:
            try:
                settings = await self.store.get_alert_settings(reading.user_id)
                found = evaluate_thresholds(reading, settings)

                for breach in found:
                    track_threshold_breach(Metric(breach.metric).value, breach.direction.value)
                    logger.warning(
                        "threshold_breached",
                        user_id=breach.user_id,
                        zone_id=breach.zone_id,
                        metric=Metric(breach.metric).value,
                        direction=breach.direction.value,
                        current_value=breach.current_value,
                        threshold=breach.threshold
                    )

                breaches.extend(found)

                if self.alert_emails_enabled:
                    notifications.extend(
                        await self._alert_notifications(reading, found, profiles, zone_names)
                    )
            except Exception as e:
                track_alert_evaluation_failure()
                logger.warning(
                    "alert_evaluation_failed",
                    user_id=reading.user_id,
                    reading_id=str(reading.id),
                    error=str(e)
                )

        return breaches, notifications

    async def _alert_notifications(
        self,
        reading: SensorReading,
        breaches: List[ThresholdBreach],
        profiles: Dict[str, Optional[Profile]],
        zone_names: Dict[str, Optional[str]]
    ) -> List[NotificationRequest]:
        emailable = [b for b in breaches if b.email_enabled]
        if not emailable:
            return []

        if reading.user_id not in profiles:
            profiles[reading.user_id] = await self.store.get_profile(reading.user_id)
        profile = profiles[reading.user_id]

        if profile is None or not profile.recipient:
            logger.info("alert_email_skipped", user_id=reading.user_id, reason="no_recipient")
            return []

        zone_name = None
        if reading.zone_id:
            if reading.zone_id not in zone_names:
                zone = await self.store.get_zone(reading.zone_id)
                zone_names[reading.zone_id] = zone.name if zone else None
            zone_name = zone_names[reading.zone_id]

        return [
            build_alert_notification(
                breach,
                recipient=profile.recipient,
                user_name=profile.display_name,
                zone_name=zone_name
            )
            for breach in emailable
        ]
