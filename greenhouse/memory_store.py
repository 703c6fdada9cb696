"""
In-memory store for development and tests
Mirrors the constraints of the PostgreSQL schema (unique device_id, ordering)
"""
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from .exceptions import (
    DatabaseError,
    DeviceNotFoundError,
    AlertSettingNotFoundError,
    DuplicateDeviceError
)
from .models import (
    SensorReading, SensorReadingCreate,
    Device, DeviceCreate, DeviceUpdate, DeviceStatus,
    AlertSetting, AlertSettingCreate, AlertSettingUpdate,
    Profile, Zone
)
from .store import (
    TelemetryStore, ChangeEvent,
    READINGS_TABLE, DEVICES_TABLE, ALERT_SETTINGS_TABLE
)
from .utils import utcnow


class InMemoryStore(TelemetryStore):
    """Dictionary-backed TelemetryStore; not shared across event loops"""

    def __init__(self):
        super().__init__()
        self.readings: List[SensorReading] = []
        self.devices: Dict[UUID, Device] = {}
        self.alert_settings: Dict[UUID, AlertSetting] = {}
        self.profiles: Dict[str, Profile] = {}
        self.zones: Dict[str, Zone] = {}

    async def ping(self) -> None:
        return None

    # ============================================================
    # Seeding helpers (profiles and zones are owned elsewhere)
    # ============================================================

    def add_profile(self, profile: Profile) -> Profile:
        self.profiles[profile.user_id] = profile
        return profile

    def add_zone(self, zone: Zone) -> Zone:
        self.zones[zone.id] = zone
        return zone

    # ============================================================
    # Sensor Readings
    # ============================================================

    async def insert_readings(self, readings: List[SensorReadingCreate]) -> List[SensorReading]:
        for reading in readings:
            if not reading.user_id:
                raise DatabaseError('null value in column "user_id" violates not-null constraint')

        inserted = [
            SensorReading(id=uuid4(), **reading.model_dump())
            for reading in readings
        ]
        self.readings.extend(inserted)

        for reading in inserted:
            await self.changes.publish(ChangeEvent(
                table=READINGS_TABLE,
                event_type="INSERT",
                row=reading.model_dump(mode="json")
            ))
        return inserted

    async def list_readings(
        self,
        user_id: str,
        zone_id: Optional[str] = None,
        limit: int = 50
    ) -> List[SensorReading]:
        matching = [
            r for r in self.readings
            if r.user_id == user_id and (zone_id is None or r.zone_id == zone_id)
        ]
        matching.sort(key=lambda r: r.recorded_at, reverse=True)
        return matching[:limit]

    # ============================================================
    # Devices
    # ============================================================

    def _find_by_device_id(self, device_id: str) -> Optional[Device]:
        for device in self.devices.values():
            if device.device_id == device_id:
                return device
        return None

    async def mark_device_seen(
        self,
        device_id: str,
        seen_at: datetime,
        battery_level: Optional[float] = None,
        firmware_version: Optional[str] = None
    ) -> bool:
        device = self._find_by_device_id(device_id)
        if device is None:
            return False

        changes = {
            "status": DeviceStatus.ONLINE.value,
            "last_seen": seen_at,
            "updated_at": utcnow(),
        }
        if battery_level is not None:
            changes["battery_level"] = battery_level
        if firmware_version:
            changes["firmware_version"] = firmware_version

        updated = device.model_copy(update=changes)
        self.devices[device.id] = updated
        await self.changes.publish(ChangeEvent(
            table=DEVICES_TABLE,
            event_type="UPDATE",
            row=updated.model_dump(mode="json")
        ))
        return True

    async def create_device(self, device: DeviceCreate) -> Device:
        if self._find_by_device_id(device.device_id) is not None:
            raise DuplicateDeviceError(device.device_id)

        now = utcnow()
        created = Device(
            id=uuid4(),
            status=DeviceStatus.OFFLINE,
            created_at=now,
            updated_at=now,
            **device.model_dump()
        )
        self.devices[created.id] = created
        await self.changes.publish(ChangeEvent(
            table=DEVICES_TABLE,
            event_type="INSERT",
            row=created.model_dump(mode="json")
        ))
        return created

    async def list_devices(self, user_id: str) -> List[Device]:
        devices = [d for d in self.devices.values() if d.user_id == user_id]
        devices.sort(key=lambda d: d.created_at, reverse=True)
        return devices

    async def get_device(self, device_pk: UUID) -> Optional[Device]:
        return self.devices.get(device_pk)

    async def update_device(self, device_pk: UUID, updates: DeviceUpdate) -> Device:
        device = self.devices.get(device_pk)
        if device is None:
            raise DeviceNotFoundError(device_pk)

        changes = updates.model_dump(exclude_unset=True)
        if not changes:
            return device

        if changes.get("status") is not None:
            changes["status"] = DeviceStatus(changes["status"]).value
        changes["updated_at"] = utcnow()

        updated = device.model_copy(update=changes)
        self.devices[device_pk] = updated
        await self.changes.publish(ChangeEvent(
            table=DEVICES_TABLE,
            event_type="UPDATE",
            row=updated.model_dump(mode="json")
        ))
        return updated

    async def delete_device(self, device_pk: UUID) -> None:
        device = self.devices.pop(device_pk, None)
        if device is None:
            raise DeviceNotFoundError(device_pk)

        await self.changes.publish(ChangeEvent(
            table=DEVICES_TABLE,
            event_type="DELETE",
            row={"id": str(device.id), "user_id": device.user_id, "device_id": device.device_id}
        ))

    # ============================================================
    # Alert Settings
    # ============================================================

    async def get_alert_settings(self, user_id: str) -> List[AlertSetting]:
        settings = [s for s in self.alert_settings.values() if s.user_id == user_id]
        settings.sort(key=lambda s: s.created_at)
        return settings

    async def create_alert_setting(self, setting: AlertSettingCreate) -> AlertSetting:
        created = AlertSetting(id=uuid4(), created_at=utcnow(), **setting.model_dump())
        self.alert_settings[created.id] = created
        await self.changes.publish(ChangeEvent(
            table=ALERT_SETTINGS_TABLE,
            event_type="INSERT",
            row=created.model_dump(mode="json")
        ))
        return created

    async def update_alert_setting(
        self,
        setting_id: UUID,
        updates: AlertSettingUpdate
    ) -> AlertSetting:
        setting = self.alert_settings.get(setting_id)
        if setting is None:
            raise AlertSettingNotFoundError(setting_id)

        changes = updates.model_dump(exclude_unset=True)
        if not changes:
            return setting

        updated = AlertSetting.model_validate({**setting.model_dump(), **changes})
        self.alert_settings[setting_id] = updated
        await self.changes.publish(ChangeEvent(
            table=ALERT_SETTINGS_TABLE,
            event_type="UPDATE",
            row=updated.model_dump(mode="json")
        ))
        return updated

    async def delete_alert_setting(self, setting_id: UUID) -> None:
        setting = self.alert_settings.pop(setting_id, None)
        if setting is None:
            raise AlertSettingNotFoundError(setting_id)

        await self.changes.publish(ChangeEvent(
            table=ALERT_SETTINGS_TABLE,
            event_type="DELETE",
            row={"id": str(setting.id), "user_id": setting.user_id}
        ))

    # ============================================================
    # Profiles and Zones
    # ============================================================

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        return self.profiles.get(user_id)

    async def get_zone(self, zone_id: str) -> Optional[Zone]:
        return self.zones.get(zone_id)
