"""
PostgreSQL store built on an asyncpg connection pool

Readings are batch-inserted with one unnest() statement; device, alert-rule,
profile and zone access are plain parameterized queries.
"""
import asyncpg
from typing import Optional, List, Dict, Any, AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
import logging
import json
from uuid import UUID

from .config import Settings, settings
from .models import (
    SensorReading, SensorReadingCreate,
    Device, DeviceCreate, DeviceUpdate, DeviceStatus,
    AlertSetting, AlertSettingCreate, AlertSettingUpdate,
    Profile, Zone
)
from .exceptions import (
    DatabaseError,
    DeviceNotFoundError,
    AlertSettingNotFoundError,
    DuplicateDeviceError
)
from .store import (
    TelemetryStore, ChangeEvent,
    READINGS_TABLE, DEVICES_TABLE, ALERT_SETTINGS_TABLE
)

logger = logging.getLogger(__name__)


def _device_from_row(row: asyncpg.Record) -> Device:
    row_dict = dict(row)
    # jsonb comes back as a string without a registered codec
    if row_dict.get('metadata') and isinstance(row_dict['metadata'], str):
        row_dict['metadata'] = json.loads(row_dict['metadata'])
    return Device(**row_dict)


class DatabasePool(TelemetryStore):
    """
    TelemetryStore over an asyncpg pool created in the app lifespan
    """

    def __init__(self, dsn: str = None, app_settings: Optional[Settings] = None):
        super().__init__()
        self.settings = app_settings or settings
        self.dsn = dsn or self.settings.database_url
        self.pool: Optional[asyncpg.Pool] = None
        self._initialized = False

    async def initialize(self):
        """Create connection pool"""
        if self._initialized:
            return

        try:
            logger.info("Creating database pool...")

            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.settings.db_pool_min_size,
                max_size=self.settings.db_pool_max_size,
                max_inactive_connection_lifetime=300,
                command_timeout=self.settings.db_command_timeout,
                server_settings={
                    'application_name': 'greenhouse_telemetry',
                    'jit': 'off'
                }
            )

            async with self.pool.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
                logger.info(f"Connected to PostgreSQL: {version[:30]}...")

            self._initialized = True
            logger.info(f"Database pool ready: {self.get_stats()}")

        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise DatabaseError(f"Cannot connect to database: {e}")

    async def close(self):
        """Close connection pool"""
        if self.pool:
            await self.pool.close()
            self._initialized = False
            logger.info("Database pool closed")

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Acquire connection from pool"""
        if not self.pool:
            raise DatabaseError("Database pool not initialized")

        async with self.pool.acquire() as conn:
            yield conn

    def get_stats(self) -> Dict[str, Any]:
        """Get pool statistics"""
        if not self.pool:
            return {"status": "not_initialized"}

        return {
            "size": self.pool.get_size(),
            "min_size": self.pool.get_min_size(),
            "max_size": self.pool.get_max_size(),
            "free_connections": self.pool.get_idle_size(),
        }

    async def ping(self) -> None:
        try:
            async with self.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except (OSError, asyncpg.PostgresError) as e:
            raise DatabaseError(str(e))

    # ============================================================
    # Sensor Reading Operations
    # ============================================================

    async def insert_readings(self, readings: List[SensorReadingCreate]) -> List[SensorReading]:
        """
        Insert a batch of readings with a single statement

        Rows are unnested in request order and returned in the same order.
        """
        if not readings:
            return []

        query = """
            INSERT INTO sensor_readings (
                user_id, zone_id, temperature, humidity,
                moisture, light_level, recorded_at
            )
            SELECT user_id, zone_id, temperature, humidity,
                   moisture, light_level, recorded_at
            FROM unnest(
                $1::text[], $2::text[], $3::float8[], $4::float8[],
                $5::float8[], $6::float8[], $7::timestamptz[]
            ) WITH ORDINALITY AS r(
                user_id, zone_id, temperature, humidity,
                moisture, light_level, recorded_at, ord
            )
            ORDER BY ord
            RETURNING id, user_id, zone_id, temperature, humidity,
                      moisture, light_level, recorded_at
        """

        try:
            async with self.acquire() as conn:
                rows = await conn.fetch(
                    query,
                    [r.user_id for r in readings],
                    [r.zone_id for r in readings],
                    [r.temperature for r in readings],
                    [r.humidity for r in readings],
                    [r.moisture for r in readings],
                    [r.light_level for r in readings],
                    [r.recorded_at for r in readings],
                )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Database insert error: {e}")
            raise DatabaseError(str(e))

        inserted = [SensorReading(**dict(row)) for row in rows]

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
        """Get newest readings for a user"""

        query = """
            SELECT id, user_id, zone_id, temperature, humidity,
                   moisture, light_level, recorded_at
            FROM sensor_readings
            WHERE user_id = $1
        """
        params: List[Any] = [user_id]

        if zone_id:
            params.append(zone_id)
            query += f" AND zone_id = ${len(params)}"

        params.append(limit)
        query += f" ORDER BY recorded_at DESC LIMIT ${len(params)}"

        async with self.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return [SensorReading(**dict(row)) for row in rows]

    # ============================================================
    # Device Operations
    # ============================================================

    async def mark_device_seen(
        self,
        device_id: str,
        seen_at: datetime,
        battery_level: Optional[float] = None,
        firmware_version: Optional[str] = None
    ) -> bool:
        """Set device online and refresh last_seen; False if not registered"""

        set_clauses = ["status = $2", "last_seen = $3", "updated_at = NOW()"]
        params: List[Any] = [device_id, DeviceStatus.ONLINE.value, seen_at]

        if battery_level is not None:
            params.append(battery_level)
            set_clauses.append(f"battery_level = ${len(params)}")

        if firmware_version:
            params.append(firmware_version)
            set_clauses.append(f"firmware_version = ${len(params)}")

        query = f"""
            UPDATE iot_devices
            SET {', '.join(set_clauses)}
            WHERE device_id = $1
            RETURNING *
        """

        async with self.acquire() as conn:
            row = await conn.fetchrow(query, *params)

        if not row:
            return False

        device = _device_from_row(row)
        await self.changes.publish(ChangeEvent(
            table=DEVICES_TABLE,
            event_type="UPDATE",
            row=device.model_dump(mode="json")
        ))
        return True

    async def create_device(self, device: DeviceCreate) -> Device:
        """Register a new device"""

        query = """
            INSERT INTO iot_devices (
                user_id, device_id, name, device_type,
                zone_id, status, ip_address, metadata
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8::jsonb
            )
            RETURNING *
        """

        try:
            async with self.acquire() as conn:
                row = await conn.fetchrow(
                    query,
                    device.user_id,
                    device.device_id,
                    device.name,
                    device.device_type,
                    device.zone_id,
                    DeviceStatus.OFFLINE.value,
                    device.ip_address,
                    json.dumps(device.metadata) if device.metadata is not None else None
                )
        except asyncpg.UniqueViolationError as e:
            if "device_id" in str(e):
                raise DuplicateDeviceError(device.device_id)
            raise DatabaseError(f"Unique constraint violation: {e}")

        created = _device_from_row(row)
        await self.changes.publish(ChangeEvent(
            table=DEVICES_TABLE,
            event_type="INSERT",
            row=created.model_dump(mode="json")
        ))
        return created

    async def list_devices(self, user_id: str) -> List[Device]:
        """Get all devices for a user, newest first"""

        async with self.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM iot_devices
                WHERE user_id = $1
                ORDER BY created_at DESC
            """, user_id)

        return [_device_from_row(row) for row in rows]

    async def get_device(self, device_pk: UUID) -> Optional[Device]:
        """Get single device by primary key"""

        async with self.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM iot_devices WHERE id = $1",
                device_pk
            )

        return _device_from_row(row) if row else None

    async def update_device(self, device_pk: UUID, updates: DeviceUpdate) -> Device:
        """Update device with partial updates"""

        set_clauses = []
        params: List[Any] = [device_pk]

        for field, value in updates.model_dump(exclude_unset=True).items():
            if field == "metadata":
                params.append(json.dumps(value) if value is not None else None)
                set_clauses.append(f"{field} = ${len(params)}::jsonb")
            elif field == "status" and value is not None:
                params.append(DeviceStatus(value).value)
                set_clauses.append(f"{field} = ${len(params)}")
            else:
                params.append(value)
                set_clauses.append(f"{field} = ${len(params)}")

        if not set_clauses:
            device = await self.get_device(device_pk)
            if not device:
                raise DeviceNotFoundError(device_pk)
            return device

        query = f"""
            UPDATE iot_devices
            SET {', '.join(set_clauses)}, updated_at = NOW()
            WHERE id = $1
            RETURNING *
        """

        async with self.acquire() as conn:
            row = await conn.fetchrow(query, *params)

        if not row:
            raise DeviceNotFoundError(device_pk)

        device = _device_from_row(row)
        await self.changes.publish(ChangeEvent(
            table=DEVICES_TABLE,
            event_type="UPDATE",
            row=device.model_dump(mode="json")
        ))
        return device

    async def delete_device(self, device_pk: UUID) -> None:
        """Delete device"""

        async with self.acquire() as conn:
            row = await conn.fetchrow(
                "DELETE FROM iot_devices WHERE id = $1 RETURNING id, user_id, device_id",
                device_pk
            )

        if not row:
            raise DeviceNotFoundError(device_pk)

        await self.changes.publish(ChangeEvent(
            table=DEVICES_TABLE,
            event_type="DELETE",
            row={"id": str(row["id"]), "user_id": row["user_id"], "device_id": row["device_id"]}
        ))

    # ============================================================
    # Alert Setting Operations
    # ============================================================

    async def get_alert_settings(self, user_id: str) -> List[AlertSetting]:
        """Get all alert rules for a user"""

        async with self.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM alert_settings
                WHERE user_id = $1
                ORDER BY created_at
            """, user_id)

        return [AlertSetting(**dict(row)) for row in rows]

    async def create_alert_setting(self, setting: AlertSettingCreate) -> AlertSetting:
        """Create alert rule"""

        async with self.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO alert_settings (
                    user_id, zone_id, metric,
                    min_threshold, max_threshold, email_enabled
                ) VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING *
            """,
                setting.user_id,
                setting.zone_id,
                setting.metric.value,
                setting.min_threshold,
                setting.max_threshold,
                setting.email_enabled
            )

        created = AlertSetting(**dict(row))
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
        """Update alert rule with partial updates"""

        set_clauses = []
        params: List[Any] = [setting_id]

        for field, value in updates.model_dump(exclude_unset=True).items():
            if field == "metric" and value is not None:
                value = value.value if hasattr(value, "value") else value
            params.append(value)
            set_clauses.append(f"{field} = ${len(params)}")

        if not set_clauses:
            async with self.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM alert_settings WHERE id = $1",
                    setting_id
                )
        else:
            async with self.acquire() as conn:
                row = await conn.fetchrow(f"""
                    UPDATE alert_settings
                    SET {', '.join(set_clauses)}
                    WHERE id = $1
                    RETURNING *
                """, *params)

        if not row:
            raise AlertSettingNotFoundError(setting_id)

        updated = AlertSetting(**dict(row))
        if set_clauses:
            await self.changes.publish(ChangeEvent(
                table=ALERT_SETTINGS_TABLE,
                event_type="UPDATE",
                row=updated.model_dump(mode="json")
            ))
        return updated

    async def delete_alert_setting(self, setting_id: UUID) -> None:
        """Delete alert rule"""

        async with self.acquire() as conn:
            row = await conn.fetchrow(
                "DELETE FROM alert_settings WHERE id = $1 RETURNING id, user_id",
                setting_id
            )

        if not row:
            raise AlertSettingNotFoundError(setting_id)

        await self.changes.publish(ChangeEvent(
            table=ALERT_SETTINGS_TABLE,
            event_type="DELETE",
            row={"id": str(row["id"]), "user_id": row["user_id"]}
        ))

    # ============================================================
    # Profiles and Zones
    # ============================================================

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        async with self.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT user_id, display_name, email, notification_email
                FROM profiles
                WHERE user_id = $1
            """, user_id)

        return Profile(**dict(row)) if row else None

    async def get_zone(self, zone_id: str) -> Optional[Zone]:
        async with self.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, user_id, name FROM zones WHERE id = $1",
                zone_id
            )

        return Zone(**dict(row)) if row else None
