"""
Tests for sensor ingestion

Coverage:
- Body normalization (single reading, batch, timestamps, zone defaults)
- Whole-batch rejection when user_id is missing
- Persistence order and returned rows
- Device liveness for registered and unregistered devices
- Best-effort degradation when liveness or alerting fails
"""
from datetime import datetime, timezone

import pytest

from greenhouse.exceptions import DatabaseError, ValidationError
from greenhouse.ingestion import (
    NO_READINGS_MESSAGE,
    USER_ID_REQUIRED_MESSAGE,
    SensorIngestService,
    normalize_payload,
)
from greenhouse.memory_store import InMemoryStore
from greenhouse.models import AlertSettingCreate, DeviceCreate, DeviceStatus, Metric
from greenhouse.utils import utcnow

USER_ID = "user-123"
ZONE_ID = "zone-a"

RECEIVED_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FailingInsertStore(InMemoryStore):
    async def insert_readings(self, readings):
        raise DatabaseError("connection refused")


class FlakyStore(InMemoryStore):
    """Persists readings but fails every device and alert lookup"""

    async def mark_device_seen(self, device_id, seen_at, battery_level=None, firmware_version=None):
        raise DatabaseError("device table locked")

    async def get_alert_settings(self, user_id):
        raise DatabaseError("alert_settings unavailable")


class TestNormalizePayload:
    """Test body-to-row normalization"""

    def test_single_reading_object(self):
        batch = normalize_payload(
            {"user_id": USER_ID, "temperature": 22.5, "humidity": 60},
            received_at=RECEIVED_AT
        )

        assert len(batch.readings) == 1
        reading = batch.readings[0]
        assert reading.user_id == USER_ID
        assert reading.temperature == 22.5
        assert reading.humidity == 60
        assert reading.moisture is None
        assert reading.zone_id is None
        assert reading.recorded_at == RECEIVED_AT
        assert batch.heartbeats == {}

    def test_batch_keeps_order(self):
        body = {"readings": [
            {"user_id": USER_ID, "temperature": float(i)} for i in range(5)
        ]}

        batch = normalize_payload(body, received_at=RECEIVED_AT)

        assert [r.temperature for r in batch.readings] == [0.0, 1.0, 2.0, 3.0, 4.0]

    def test_explicit_timestamp_is_kept(self):
        batch = normalize_payload(
            {"user_id": USER_ID, "timestamp": "2026-02-28T08:30:00Z"},
            received_at=RECEIVED_AT
        )

        assert batch.readings[0].recorded_at == datetime(2026, 2, 28, 8, 30, tzinfo=timezone.utc)

    def test_naive_timestamp_is_treated_as_utc(self):
        batch = normalize_payload(
            {"user_id": USER_ID, "timestamp": "2026-02-28T08:30:00"},
            received_at=RECEIVED_AT
        )

        assert batch.readings[0].recorded_at.tzinfo is not None
        assert batch.readings[0].recorded_at.hour == 8

    def test_empty_zone_becomes_null(self):
        batch = normalize_payload({"user_id": USER_ID, "zone_id": ""}, received_at=RECEIVED_AT)

        assert batch.readings[0].zone_id is None

    def test_unknown_fields_are_ignored(self):
        batch = normalize_payload(
            {"user_id": USER_ID, "rssi": -70, "temperature": 20},
            received_at=RECEIVED_AT
        )

        assert batch.readings[0].temperature == 20

    def test_device_fields_become_heartbeat(self):
        batch = normalize_payload({"readings": [
            {"user_id": USER_ID, "device_id": "esp32-01", "battery_level": 90},
            {"user_id": USER_ID, "device_id": "esp32-02"},
            {"user_id": USER_ID, "device_id": "esp32-01", "battery_level": 88, "firmware_version": "1.4.0"},
        ]}, received_at=RECEIVED_AT)

        assert set(batch.heartbeats) == {"esp32-01", "esp32-02"}
        # Last reading for a device wins
        assert batch.heartbeats["esp32-01"].battery_level == 88
        assert batch.heartbeats["esp32-01"].firmware_version == "1.4.0"
        assert len(batch.readings) == 3

    @pytest.mark.parametrize("body", [
        {},
        {"readings": []},
        {"readings": "not-a-list"},
        [],
        "temperature=20",
        None,
    ])
    def test_no_readings_rejected(self, body):
        with pytest.raises(ValidationError) as exc_info:
            normalize_payload(body)

        assert exc_info.value.message == NO_READINGS_MESSAGE

    def test_missing_user_id_rejects_whole_batch(self):
        body = {"readings": [
            {"user_id": USER_ID, "temperature": 20},
            {"temperature": 21},
        ]}

        with pytest.raises(ValidationError) as exc_info:
            normalize_payload(body)

        assert exc_info.value.message == USER_ID_REQUIRED_MESSAGE

    def test_empty_user_id_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_payload({"user_id": "", "temperature": 20})

        assert exc_info.value.message == USER_ID_REQUIRED_MESSAGE

    def test_malformed_metric_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_payload({"readings": [
                {"user_id": USER_ID, "temperature": 20},
                {"user_id": USER_ID, "temperature": "warm"},
            ]})

        assert "index 1" in exc_info.value.message
        assert exc_info.value.field == "temperature"

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_metric_rejects_batch(self, value):
        body = {"readings": [
            {"user_id": USER_ID, "temperature": 20},
            {"user_id": USER_ID, "temperature": value},
        ]}

        with pytest.raises(ValidationError) as exc_info:
            normalize_payload(body)

        assert "index 1" in exc_info.value.message
        assert exc_info.value.field == "temperature"

    def test_non_finite_battery_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_payload({"user_id": USER_ID, "device_id": "esp32-01", "battery_level": float("inf")})

        assert exc_info.value.field == "battery_level"

    def test_batch_size_limit(self):
        body = {"readings": [{"user_id": USER_ID}] * 4}

        with pytest.raises(ValidationError):
            normalize_payload(body, max_batch_size=3)

        assert len(normalize_payload(body, max_batch_size=4).readings) == 4


class TestSensorIngestService:
    """Test the ingestion pipeline against the in-memory store"""

    @pytest.mark.asyncio
    async def test_persists_readings_in_order(self, store):
        service = SensorIngestService(store)

        result = await service.ingest({"readings": [
            {"user_id": USER_ID, "zone_id": ZONE_ID, "temperature": 19.0},
            {"user_id": USER_ID, "zone_id": ZONE_ID, "temperature": 20.0},
        ]})

        assert [r.temperature for r in result.readings] == [19.0, 20.0]
        assert all(r.id is not None for r in result.readings)
        assert store.readings == result.readings
        assert result.message == "Processed 2 sensor readings"
        assert result.devices_updated == 0

    @pytest.mark.asyncio
    async def test_rejected_batch_writes_nothing(self, store):
        service = SensorIngestService(store)

        with pytest.raises(ValidationError):
            await service.ingest({"readings": [{"user_id": USER_ID}, {"humidity": 50}]})

        assert store.readings == []

    @pytest.mark.asyncio
    async def test_registered_device_marked_online(self, store, registered_device):
        service = SensorIngestService(store)

        before = utcnow()
        result = await service.ingest({
            "user_id": USER_ID,
            "device_id": registered_device.device_id,
            "battery_level": 76.5,
            "firmware_version": "2.0.1",
            "temperature": 21
        })
        after = utcnow()

        device = await store.get_device(registered_device.id)
        assert device.status == DeviceStatus.ONLINE.value
        assert before <= device.last_seen <= after
        assert device.battery_level == 76.5
        assert device.firmware_version == "2.0.1"
        assert result.devices_updated == 1

    @pytest.mark.asyncio
    async def test_liveness_leaves_other_fields_alone(self, store, registered_device):
        service = SensorIngestService(store)

        await service.ingest({
            "user_id": USER_ID,
            "device_id": registered_device.device_id,
            "zone_id": "zone-b",
            "battery_level": 64,
            "moisture": 33
        })

        device = await store.get_device(registered_device.id)
        assert device.name == registered_device.name
        assert device.device_type == registered_device.device_type
        # zone on the reading does not move the device
        assert device.zone_id == registered_device.zone_id
        assert device.ip_address == registered_device.ip_address
        assert device.metadata == registered_device.metadata
        assert device.user_id == registered_device.user_id
        assert device.created_at == registered_device.created_at

    @pytest.mark.asyncio
    async def test_empty_firmware_keeps_stored_value(self, store, registered_device):
        service = SensorIngestService(store)

        await service.ingest({"user_id": USER_ID, "device_id": "esp32-01", "firmware_version": "2.0.1"})
        await service.ingest({"user_id": USER_ID, "device_id": "esp32-01", "firmware_version": ""})

        device = await store.get_device(registered_device.id)
        assert device.firmware_version == "2.0.1"
        assert device.status == DeviceStatus.ONLINE.value

    @pytest.mark.asyncio
    async def test_missing_battery_keeps_stored_value(self, store):
        device = await store.create_device(DeviceCreate(
            user_id=USER_ID, device_id="esp32-09", name="Shelf"
        ))
        service = SensorIngestService(store)

        await service.ingest({"user_id": USER_ID, "device_id": "esp32-09", "battery_level": 55})
        await service.ingest({"user_id": USER_ID, "device_id": "esp32-09"})

        stored = await store.get_device(device.id)
        assert stored.battery_level == 55

    @pytest.mark.asyncio
    async def test_unregistered_device_is_not_created(self, store):
        service = SensorIngestService(store)

        result = await service.ingest({"user_id": USER_ID, "device_id": "ghost-01", "moisture": 40})

        assert store.devices == {}
        assert len(result.readings) == 1
        # Counted from the batch, not from successful updates
        assert result.devices_updated == 1

    @pytest.mark.asyncio
    async def test_devices_updated_counts_distinct_ids(self, store):
        service = SensorIngestService(store)

        result = await service.ingest({"readings": [
            {"user_id": USER_ID, "device_id": "a"},
            {"user_id": USER_ID, "device_id": "b"},
            {"user_id": USER_ID, "device_id": "a"},
            {"user_id": USER_ID},
        ]})

        assert result.devices_updated == 2

    @pytest.mark.asyncio
    async def test_insert_failure_propagates(self):
        service = SensorIngestService(FailingInsertStore())

        with pytest.raises(DatabaseError) as exc_info:
            await service.ingest({"user_id": USER_ID, "temperature": 20})

        assert exc_info.value.message == "connection refused"

    @pytest.mark.asyncio
    async def test_liveness_and_alert_failures_are_swallowed(self):
        flaky = FlakyStore()
        service = SensorIngestService(flaky)

        result = await service.ingest({
            "user_id": USER_ID,
            "device_id": "esp32-01",
            "temperature": 50
        })

        assert len(result.readings) == 1
        assert len(flaky.readings) == 1
        assert result.breaches == []
        assert result.notifications == []

    @pytest.mark.asyncio
    async def test_breach_produces_notification(self, store):
        await store.create_alert_setting(AlertSettingCreate(
            user_id=USER_ID, metric=Metric.TEMPERATURE, max_threshold=30
        ))
        service = SensorIngestService(store)

        result = await service.ingest({"user_id": USER_ID, "zone_id": ZONE_ID, "temperature": 35})

        assert len(result.breaches) == 1
        assert len(result.notifications) == 1
        notification = result.notifications[0]
        assert notification.user_email == "alerts@example.com"
        assert notification.user_name == "Ada"
        assert notification.data.zone_name == "Tomatoes"
        assert notification.data.metric == "temperature"
        assert notification.data.current_value == 35

    @pytest.mark.asyncio
    async def test_email_disabled_rule_only_logs(self, store):
        await store.create_alert_setting(AlertSettingCreate(
            user_id=USER_ID, metric=Metric.HUMIDITY, min_threshold=40, email_enabled=False
        ))
        service = SensorIngestService(store)

        result = await service.ingest({"user_id": USER_ID, "humidity": 20})

        assert len(result.breaches) == 1
        assert result.notifications == []

    @pytest.mark.asyncio
    async def test_alert_emails_switched_off(self, store):
        await store.create_alert_setting(AlertSettingCreate(
            user_id=USER_ID, metric=Metric.HUMIDITY, min_threshold=40
        ))
        service = SensorIngestService(store, alert_emails_enabled=False)

        result = await service.ingest({"user_id": USER_ID, "humidity": 20})

        assert len(result.breaches) == 1
        assert result.notifications == []

    @pytest.mark.asyncio
    async def test_no_profile_no_email(self):
        bare = InMemoryStore()
        await bare.create_alert_setting(AlertSettingCreate(
            user_id="someone-else", metric=Metric.MOISTURE, min_threshold=30
        ))
        service = SensorIngestService(bare)

        result = await service.ingest({"user_id": "someone-else", "moisture": 10})

        assert len(result.breaches) == 1
        assert result.notifications == []
