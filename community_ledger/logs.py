"""
structlog setup shared by the service and the HTTP adapter.

Call ``configure_logging`` once at process start; modules obtain loggers
with ``get_logger(__name__)`` and log events as snake_case names with
keyword fields.
"""

import logging
import sys
from typing import Optional

import structlog

from .config import LedgerSettings, get_settings

_configured = False


def configure_logging(settings: Optional[LedgerSettings] = None, *, force: bool = False) -> None:
    global _configured
    if _configured and not force:
        return

    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.strip().upper(), logging.INFO)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: Optional[str] = None):
    return structlog.get_logger(name or get_settings().service_name)
