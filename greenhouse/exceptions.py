"""
Custom exceptions for better error handling
Each exception knows the HTTP status it maps to
"""
from typing import Optional, Any


class GreenhouseException(Exception):
    """Base exception for all greenhouse service errors"""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses"""
        body = {
            "error": self.message,
            "code": self.error_code,
        }
        if self.details:
            body["details"] = self.details
        return body

# ============================================================
# Validation Exceptions
# ============================================================

class ValidationError(GreenhouseException):
    """Input validation error, raised before anything is written"""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={"field": field} if field else None
        )
        self.field = field

# ============================================================
# Database Exceptions
# ============================================================

class DatabaseError(GreenhouseException):
    """Database connection or query error"""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="DATABASE_ERROR")


class RecordNotFoundError(GreenhouseException):
    """Record not found in database"""

    status_code = 404

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code="RECORD_NOT_FOUND",
            details={"resource": resource, "identifier": str(identifier)}
        )


class DeviceNotFoundError(RecordNotFoundError):
    """Device not found"""

    def __init__(self, device_ref: Any):
        super().__init__("Device", device_ref)


class AlertSettingNotFoundError(RecordNotFoundError):
    """Alert setting not found"""

    def __init__(self, setting_id: Any):
        super().__init__("Alert setting", setting_id)


class DuplicateResourceError(GreenhouseException):
    """Resource already exists"""

    status_code = 409

    def __init__(self, resource: str, identifier: Any, message: Optional[str] = None):
        super().__init__(
            message=message or f"{resource} already exists: {identifier}",
            error_code="DUPLICATE_RESOURCE",
            details={"resource": resource, "identifier": str(identifier)}
        )


class DuplicateDeviceError(DuplicateResourceError):
    """A device with the same device_id is already registered"""

    def __init__(self, device_id: str):
        super().__init__(
            "Device",
            device_id,
            message="A device with this ID already exists"
        )
        self.device_id = device_id

# ============================================================
# External Service Exceptions
# ============================================================

class NotificationError(GreenhouseException):
    """Email delivery or configuration error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            error_code="NOTIFICATION_ERROR",
            details={"upstream_status": status_code} if status_code else None
        )
        self.upstream_status = status_code
