"""
Greenhouse telemetry service: sensor ingestion, threshold alerting,
device registry and notification emails
"""
__version__ = "1.2.0"
