"""
Prometheus Metrics for the Greenhouse Telemetry Service

Metrics Categories:
- Ingest: requests, persisted readings, processing duration
- Devices: liveness updates by outcome
- Alerts: threshold breaches, evaluation failures
- Notifications: email dispatch outcomes
"""
from typing import Optional

from prometheus_client import (
    Counter, Histogram,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

# Create custom registry (allows multiple instances for testing)
registry = CollectorRegistry()

# ============================================================
# Ingest Metrics
# ============================================================

ingest_requests_total = Counter(
    'ingest_requests_total',
    'Total ingestion requests by outcome',
    ['status'],  # success, rejected, failed
    registry=registry
)

sensor_readings_ingested_total = Counter(
    'sensor_readings_ingested_total',
    'Total sensor readings persisted',
    [],
    registry=registry
)

ingest_processing_duration_seconds = Histogram(
    'ingest_processing_duration_seconds',
    'Ingestion processing duration in seconds',
    ['status'],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=registry
)

# ============================================================
# Device Metrics
# ============================================================

device_heartbeats_total = Counter(
    'device_heartbeats_total',
    'Device liveness updates by result',
    ['result'],  # updated, unregistered, error
    registry=registry
)

# ============================================================
# Alert Metrics
# ============================================================

threshold_breaches_total = Counter(
    'threshold_breaches_total',
    'Threshold breaches detected during ingestion',
    ['metric', 'direction'],
    registry=registry
)

alert_evaluation_failures_total = Counter(
    'alert_evaluation_failures_total',
    'Readings whose alert evaluation failed and was skipped',
    [],
    registry=registry
)

# ============================================================
# Notification Metrics
# ============================================================

notifications_total = Counter(
    'notifications_total',
    'Notification emails by type and outcome',
    ['type', 'status'],  # sent, failed
    registry=registry
)

# ============================================================
# Helper Functions
# ============================================================

def track_ingest(status: str, readings: int = 0, duration: Optional[float] = None):
    """Track one ingestion request"""
    ingest_requests_total.labels(status=status).inc()
    if readings:
        sensor_readings_ingested_total.inc(readings)
    if duration is not None:
        ingest_processing_duration_seconds.labels(status=status).observe(duration)


def track_device_heartbeat(result: str):
    """Track a device liveness update"""
    device_heartbeats_total.labels(result=result).inc()


def track_threshold_breach(metric: str, direction: str):
    """Track a detected breach"""
    threshold_breaches_total.labels(metric=metric, direction=direction).inc()


def track_alert_evaluation_failure():
    """Track a skipped alert evaluation"""
    alert_evaluation_failures_total.inc()


def track_notification(notification_type: str, status: str):
    """Track an email dispatch"""
    notifications_total.labels(type=notification_type, status=status).inc()


def get_metrics_text() -> bytes:
    """Get metrics in Prometheus text format"""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """Get Prometheus content type"""
    return CONTENT_TYPE_LATEST
