"""
Tests for the device registry and display status

Coverage:
- Staleness is applied on read and never written back
- Duplicate device_id registration
- Partial updates and deletes
"""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from greenhouse.devices import is_stale, present_device, present_devices
from greenhouse.exceptions import DeviceNotFoundError, DuplicateDeviceError
from greenhouse.memory_store import InMemoryStore
from greenhouse.models import Device, DeviceCreate, DeviceStatus, DeviceUpdate

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_device(status=DeviceStatus.ONLINE, last_seen=None) -> Device:
    return Device(
        id=uuid4(),
        user_id="user-123",
        device_id="esp32-01",
        name="Bench sensor",
        status=status,
        last_seen=last_seen
    )


class TestDisplayStatus:
    """Test the read-time offline rule"""

    def test_recent_online_device_stays_online(self):
        device = make_device(last_seen=NOW - timedelta(minutes=4))

        assert not is_stale(device, now=NOW)
        assert present_device(device, now=NOW).status == DeviceStatus.ONLINE.value

    def test_quiet_online_device_shown_offline(self):
        device = make_device(last_seen=NOW - timedelta(minutes=6))

        shown = present_device(device, now=NOW)

        assert shown.status == DeviceStatus.OFFLINE.value
        # Stored model is left alone
        assert device.status == DeviceStatus.ONLINE.value

    def test_custom_window(self):
        device = make_device(last_seen=NOW - timedelta(seconds=90))

        assert is_stale(device, now=NOW, offline_after=timedelta(seconds=60))
        assert not is_stale(device, now=NOW, offline_after=timedelta(seconds=120))

    def test_error_status_is_never_overridden(self):
        device = make_device(status=DeviceStatus.ERROR, last_seen=NOW - timedelta(days=1))

        assert present_device(device, now=NOW).status == DeviceStatus.ERROR.value

    def test_never_seen_device(self):
        device = make_device(status=DeviceStatus.OFFLINE)

        assert not is_stale(device, now=NOW)
        assert present_devices([device], now=NOW)[0].status == DeviceStatus.OFFLINE.value

    @pytest.mark.asyncio
    async def test_stored_status_untouched_by_reads(self):
        store = InMemoryStore()
        device = await store.create_device(DeviceCreate(
            user_id="user-123", device_id="esp32-01", name="Bench sensor"
        ))
        await store.mark_device_seen("esp32-01", NOW - timedelta(hours=1))

        listed = present_devices(await store.list_devices("user-123"), now=NOW)

        assert listed[0].status == DeviceStatus.OFFLINE.value
        stored = await store.get_device(device.id)
        assert stored.status == DeviceStatus.ONLINE.value


class TestDeviceRegistry:
    """Test device CRUD on the in-memory store"""

    @pytest.mark.asyncio
    async def test_register_defaults(self):
        store = InMemoryStore()

        device = await store.create_device(DeviceCreate(
            user_id="user-123", device_id="esp32-01", name="Bench sensor"
        ))

        assert device.status == DeviceStatus.OFFLINE.value
        assert device.device_type == "sensor"
        assert device.last_seen is None
        assert device.created_at is not None

    @pytest.mark.asyncio
    async def test_duplicate_device_id_rejected(self):
        store = InMemoryStore()
        await store.create_device(DeviceCreate(user_id="user-1", device_id="esp32-01", name="A"))

        with pytest.raises(DuplicateDeviceError) as exc_info:
            await store.create_device(DeviceCreate(user_id="user-2", device_id="esp32-01", name="B"))

        assert exc_info.value.status_code == 409
        assert exc_info.value.message == "A device with this ID already exists"
        assert len(store.devices) == 1

    @pytest.mark.asyncio
    async def test_partial_update(self):
        store = InMemoryStore()
        device = await store.create_device(DeviceCreate(
            user_id="user-123", device_id="esp32-01", name="Bench sensor", zone_id="zone-a"
        ))

        updated = await store.update_device(device.id, DeviceUpdate(name="Renamed"))

        assert updated.name == "Renamed"
        assert updated.zone_id == "zone-a"
        assert updated.updated_at >= device.updated_at

    @pytest.mark.asyncio
    async def test_manual_error_status(self):
        store = InMemoryStore()
        device = await store.create_device(DeviceCreate(
            user_id="user-123", device_id="esp32-01", name="Bench sensor"
        ))

        updated = await store.update_device(device.id, DeviceUpdate(status=DeviceStatus.ERROR))

        assert updated.status == DeviceStatus.ERROR.value

    @pytest.mark.asyncio
    async def test_missing_device(self):
        store = InMemoryStore()

        with pytest.raises(DeviceNotFoundError):
            await store.update_device(uuid4(), DeviceUpdate(name="x"))
        with pytest.raises(DeviceNotFoundError):
            await store.delete_device(uuid4())

    @pytest.mark.asyncio
    async def test_list_is_scoped_and_newest_first(self):
        store = InMemoryStore()
        first = await store.create_device(DeviceCreate(user_id="user-1", device_id="a", name="A"))
        second = await store.create_device(DeviceCreate(user_id="user-1", device_id="b", name="B"))
        await store.create_device(DeviceCreate(user_id="user-2", device_id="c", name="C"))

        devices = await store.list_devices("user-1")

        assert [d.id for d in devices] == [second.id, first.id]
