"""
Store-access interface

Everything the service persists or reads goes through a TelemetryStore that is
handed to the services at construction time. The PostgreSQL pool and the
in-memory store both implement it, and both expose a ChangeFeed so listeners
can react to row inserts and updates.
"""
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import UUID

from .models import (
    SensorReading, SensorReadingCreate,
    Device, DeviceCreate, DeviceUpdate,
    AlertSetting, AlertSettingCreate, AlertSettingUpdate,
    Profile, Zone
)
from .utils import utcnow

logger = logging.getLogger(__name__)

READINGS_TABLE = "sensor_readings"
DEVICES_TABLE = "iot_devices"
ALERT_SETTINGS_TABLE = "alert_settings"


@dataclass
class ChangeEvent:
    """A row-level change published after a successful write"""
    table: str
    event_type: str  # INSERT, UPDATE, DELETE
    row: Dict[str, Any]
    occurred_at: datetime = field(default_factory=utcnow)


ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


@dataclass
class _Subscription:
    table: str
    callback: ChangeCallback
    user_id: Optional[str] = None

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        return self.user_id is None or event.row.get("user_id") == self.user_id


class ChangeFeed:
    """
    Callback registry for row changes

    Usage:
        unsubscribe = store.changes.subscribe("sensor_readings", on_reading, user_id=uid)
        ...
        unsubscribe()
    """

    def __init__(self):
        self._subscriptions: List[_Subscription] = []

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        user_id: Optional[str] = None
    ) -> Callable[[], None]:
        """Register a callback for changes to a table, optionally for one user"""
        subscription = _Subscription(table=table, callback=callback, user_id=user_id)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to matching subscribers; listener errors never reach the writer"""
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Change listener failed for {event.table} {event.event_type}: {e}",
                    exc_info=True
                )


class TelemetryStore(ABC):
    """Abstract store used by ingestion, device management and alerting"""

    def __init__(self):
        self.changes = ChangeFeed()

    async def initialize(self) -> None:
        """Open connections; no-op by default"""

    async def close(self) -> None:
        """Release connections; no-op by default"""

    @abstractmethod
    async def ping(self) -> None:
        """Raise DatabaseError if the store is unreachable"""

    # ============================================================
    # Sensor Readings
    # ============================================================

    @abstractmethod
    async def insert_readings(self, readings: List[SensorReadingCreate]) -> List[SensorReading]:
        """Insert all readings in one call, in order; raise DatabaseError on failure"""

    @abstractmethod
    async def list_readings(
        self,
        user_id: str,
        zone_id: Optional[str] = None,
        limit: int = 50
    ) -> List[SensorReading]:
        """Newest-first readings for a user"""

    async def get_latest_reading(self, user_id: str) -> Optional[SensorReading]:
        readings = await self.list_readings(user_id, limit=1)
        return readings[0] if readings else None

    # ============================================================
    # Devices
    # ============================================================

    @abstractmethod
    async def mark_device_seen(
        self,
        device_id: str,
        seen_at: datetime,
        battery_level: Optional[float] = None,
        firmware_version: Optional[str] = None
    ) -> bool:
        """
        Set a registered device online with a fresh last_seen

        Returns False when no device has this device_id.
        """

    @abstractmethod
    async def create_device(self, device: DeviceCreate) -> Device:
        """Register a device; raise DuplicateDeviceError if device_id is taken"""

    @abstractmethod
    async def list_devices(self, user_id: str) -> List[Device]:
        """Devices for a user, newest registration first"""

    @abstractmethod
    async def get_device(self, device_pk: UUID) -> Optional[Device]:
        """Device by primary key"""

    @abstractmethod
    async def update_device(self, device_pk: UUID, updates: DeviceUpdate) -> Device:
        """Partial update; raise DeviceNotFoundError if missing"""

    @abstractmethod
    async def delete_device(self, device_pk: UUID) -> None:
        """Delete; raise DeviceNotFoundError if missing"""

    # ============================================================
    # Alert Settings
    # ============================================================

    @abstractmethod
    async def get_alert_settings(self, user_id: str) -> List[AlertSetting]:
        """All alert rules owned by a user"""

    @abstractmethod
    async def create_alert_setting(self, setting: AlertSettingCreate) -> AlertSetting:
        """Create an alert rule"""

    @abstractmethod
    async def update_alert_setting(
        self,
        setting_id: UUID,
        updates: AlertSettingUpdate
    ) -> AlertSetting:
        """Partial update; raise AlertSettingNotFoundError if missing"""

    @abstractmethod
    async def delete_alert_setting(self, setting_id: UUID) -> None:
        """Delete; raise AlertSettingNotFoundError if missing"""

    # ============================================================
    # Profiles and Zones
    # ============================================================

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[Profile]:
        """Profile for a user, if one exists"""

    @abstractmethod
    async def get_zone(self, zone_id: str) -> Optional[Zone]:
        """Zone by id, if it exists"""
