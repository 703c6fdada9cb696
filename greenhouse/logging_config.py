"""
structlog setup shared by the API process and its stdlib loggers

Application modules log through structlog with event-style names
("readings_persisted", "threshold_breached"). Third-party loggers (uvicorn,
asyncpg, httpx) are rendered by the same ProcessorFormatter so a log shipper
sees one format.
"""
import logging
from typing import Any, Dict, List

import structlog

from .config import settings

SERVICE_NAME = "greenhouse-telemetry"

# Chatty at INFO; raised to WARNING unless the service itself runs at DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "asyncpg", "uvicorn.access")


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("version", settings.app_version)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def drop_color_message_key(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # uvicorn duplicates its message with ANSI codes under this key
    event_dict.pop("color_message", None)
    return event_dict


def _shared_processors() -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_service_context,
        drop_color_message_key,
    ]


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Install structlog and a single root handler

    json_logs=False switches to the colored console renderer for local runs.
    Safe to call more than once; the root handler is replaced each time.
    """
    level = log_level.upper()
    shared = _shared_processors()

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level, *shared,
                    structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    handler = logging.StreamHandler()
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared,
    ))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level == "DEBUG" else "WARNING")


def get_logger(name: str = None):
    return structlog.get_logger(name) if name else structlog.get_logger()
