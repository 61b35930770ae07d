from __future__ import annotations

import logging
from logging.config import dictConfig

import structlog
import structlog.types
from structlog.contextvars import merge_contextvars
from structlog.stdlib import BoundLogger
from structlog.stdlib import get_logger as get_structlog_logger


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    if isinstance(resolved, str):
        return logging.INFO
    return int(resolved)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog events through stdlib logging as JSON lines."""

    numeric_level = _resolve_level(level)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structlog": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processor": structlog.processors.JSONRenderer(),
                }
            },
            "handlers": {
                "default": {
                    "level": numeric_level,
                    "class": "logging.StreamHandler",
                    "formatter": "structlog",
                }
            },
            "loggers": {
                "": {"handlers": ["default"], "level": numeric_level},
                "celery": {
                    "handlers": ["default"],
                    "level": numeric_level,
                    "propagate": False,
                },
                "httpx": {"level": logging.WARNING},
            },
        }
    )

    processors: list[structlog.types.Processor] = [
        merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.format_exc_info,
        structlog.processors.EventRenamer("message"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> BoundLogger:
    """Helper returning a structured logger bound to *name*."""
    return get_structlog_logger(name)
