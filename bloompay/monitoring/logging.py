"""
Structured logging for the API process and the payment timeout worker.

structlog renders each event as one JSON line; records from third-party
libraries go through python-json-logger so stdout stays machine-readable.
"""
import logging
import sys
from typing import Any, Callable, Dict, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from bloompay.config import Settings, get_settings

Processor = Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]

# Library loggers and the level they are capped at.
LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "payos": logging.INFO,
    "aiosqlite": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def bind_service(settings: Settings, component: str) -> Processor:
    """Processor stamping every event with the service, component and environment."""

    def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", settings.app_name)
        event_dict.setdefault("component", component)
        event_dict.setdefault("app_env", settings.app_env)
        return event_dict

    return add_service


def build_processors(settings: Settings, component: str) -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        bind_service(settings, component),
        structlog.processors.JSONRenderer(),
    ]


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def setup_logging(settings: Optional[Settings] = None, component: str = "api") -> None:
    """
    Route structlog and stdlib logging to JSON on stdout.

    Args:
        settings: Application settings (defaults to the environment)
        component: Process name added to every event ("api" or "payment_timeout")
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=build_processors(settings, component),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(settings.log_level)
    root.handlers[:] = [_json_handler()]

    for name, level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured", log_level=settings.log_level, component=component
    )
