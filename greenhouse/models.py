"""
Pydantic models for request/response validation
All models in one place for simplicity
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
from uuid import UUID

from .utils import ensure_utc

# ============================================================
# Enums
# ============================================================

class DeviceStatus(str, Enum):
    """Device liveness status"""
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"      # Only set manually, never by ingestion

class Metric(str, Enum):
    """Metrics a reading can carry and an alert rule can watch"""
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    MOISTURE = "moisture"
    LIGHT_LEVEL = "light_level"

class ThresholdDirection(str, Enum):
    """Which side of a rule was crossed"""
    MIN = "min"
    MAX = "max"

class NotificationType(str, Enum):
    """Notification email templates"""
    SCHEDULE_RUN = "schedule_run"
    THRESHOLD_ALERT = "threshold_alert"

# ============================================================
# Base Models
# ============================================================

class TimestampMixin(BaseModel):
    """Mixin for timestamp fields"""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class MetricValuesMixin(BaseModel):
    """The four optional environmental metrics"""
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    moisture: Optional[float] = None
    light_level: Optional[float] = None

    def metric_value(self, metric: Metric) -> Optional[float]:
        """Value reported for a metric, None when the reading omitted it"""
        return getattr(self, Metric(metric).value)

# ============================================================
# Sensor Reading Models
# ============================================================

class SensorPayload(MetricValuesMixin):
    """One reading as sent by hardware or a gateway"""
    # NaN/Infinity are valid JSON to Starlette but cannot round-trip in a response
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    device_id: Optional[str] = Field(None, max_length=100)
    user_id: str = Field(..., min_length=1)
    zone_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    battery_level: Optional[float] = None
    firmware_version: Optional[str] = Field(None, max_length=50)

    @field_validator("timestamp", mode="after")
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v)

class SensorReadingCreate(MetricValuesMixin):
    """Row to insert into sensor_readings"""
    user_id: str
    zone_id: Optional[str] = None
    recorded_at: datetime

class SensorReading(SensorReadingCreate):
    """Persisted sensor reading"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID

class DeviceHeartbeat(BaseModel):
    """Liveness update derived from readings that named a device"""
    device_id: str
    user_id: str
    battery_level: Optional[float] = None
    firmware_version: Optional[str] = None

# ============================================================
# Device Models
# ============================================================

class DeviceBase(BaseModel):
    """Base device model with user-editable fields"""
    name: str = Field(..., min_length=1, max_length=100)
    device_type: str = Field(default="sensor", max_length=50)
    zone_id: Optional[str] = None
    ip_address: Optional[str] = Field(None, max_length=45)
    metadata: Optional[Dict[str, Any]] = None

class DeviceCreate(DeviceBase):
    """Model for registering a device"""
    user_id: str = Field(..., min_length=1)
    device_id: str = Field(..., min_length=1, max_length=100)

class DeviceUpdate(BaseModel):
    """Model for updating a device (all fields optional)"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    device_type: Optional[str] = Field(None, max_length=50)
    zone_id: Optional[str] = None
    status: Optional[DeviceStatus] = None
    firmware_version: Optional[str] = Field(None, max_length=50)
    battery_level: Optional[float] = Field(None, ge=0, le=100)
    ip_address: Optional[str] = Field(None, max_length=45)
    metadata: Optional[Dict[str, Any]] = None

class Device(DeviceBase, TimestampMixin):
    """Complete device model with all fields"""
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: UUID
    user_id: str
    device_id: str
    status: DeviceStatus = DeviceStatus.OFFLINE
    last_seen: Optional[datetime] = None
    firmware_version: Optional[str] = None
    battery_level: Optional[float] = None

# ============================================================
# Alert Setting Models
# ============================================================

class AlertSettingBase(BaseModel):
    """Threshold rule for one metric"""
    zone_id: Optional[str] = None
    metric: Metric
    min_threshold: Optional[float] = None
    max_threshold: Optional[float] = None
    email_enabled: bool = True

class AlertSettingCreate(AlertSettingBase):
    """Model for creating an alert setting"""
    user_id: str = Field(..., min_length=1)

class AlertSettingUpdate(BaseModel):
    """Model for updating an alert setting (all fields optional)"""
    zone_id: Optional[str] = None
    metric: Optional[Metric] = None
    min_threshold: Optional[float] = None
    max_threshold: Optional[float] = None
    email_enabled: Optional[bool] = None

class AlertSetting(AlertSettingBase):
    """Persisted alert setting"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    created_at: Optional[datetime] = None

    @field_validator("email_enabled", mode="before")
    @classmethod
    def null_email_flag(cls, v):
        # Column is nullable; NULL behaves like the default
        return True if v is None else v

class ThresholdBreach(BaseModel):
    """Alert signal produced when a reading crosses a rule"""
    metric: Metric
    current_value: float
    threshold: float
    direction: ThresholdDirection
    user_id: str
    zone_id: Optional[str] = None
    setting_id: Optional[UUID] = None
    email_enabled: bool = False

# ============================================================
# Profile / Zone Models (read-only)
# ============================================================

class Profile(BaseModel):
    """User profile used to address notifications"""
    user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    notification_email: Optional[str] = None

    @property
    def recipient(self) -> Optional[str]:
        return self.notification_email or self.email

class Zone(BaseModel):
    """Greenhouse zone"""
    id: str
    user_id: str
    name: str

# ============================================================
# Notification Models
# ============================================================

class NotificationData(BaseModel):
    """Template data for notification emails"""
    schedule_name: Optional[str] = None
    zone_name: Optional[str] = None
    schedule_type: Optional[str] = None
    metric: Optional[str] = None
    current_value: Optional[float] = None
    threshold: Optional[float] = None
    threshold_type: Optional[ThresholdDirection] = None

class NotificationRequest(BaseModel):
    """Outbound notification descriptor"""
    type: NotificationType
    user_email: str = Field(..., min_length=3, max_length=255)
    user_name: Optional[str] = None
    data: NotificationData = Field(default_factory=NotificationData)

    @model_validator(mode="after")
    def validate_email_shape(self):
        if "@" not in self.user_email:
            raise ValueError(f"Invalid email address: {self.user_email}")
        return self

class NotificationResponse(BaseModel):
    """Response of the notification endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    email_response: Dict[str, Any] = Field(default_factory=dict, alias="emailResponse")

# ============================================================
# Response Models
# ============================================================

class IngestResponse(BaseModel):
    """Response of the ingestion endpoint"""
    success: bool = True
    message: str
    readings: List[SensorReading]
    devices_updated: int = 0

class HealthStatus(BaseModel):
    """Health check response"""
    status: str
    version: str
    storage: Optional[str] = None
    error: Optional[str] = None
