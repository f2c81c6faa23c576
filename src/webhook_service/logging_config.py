"""Structured logging setup (key=value or JSON lines via structlog)."""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from webhook_service.settings import settings

# Keys whose values must never reach the logs.
REDACTED_KEYS = {"secret", "signature", "x-webhook-signature", "authorization"}
REDACTED = "***"


def _sanitize_string(value: str) -> str:
    """Keep one log entry per line."""
    return (
        value.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def _clean(key: str, value: Any, escape: bool) -> Any:
    if key.lower() in REDACTED_KEYS:
        return REDACTED
    if not escape:
        if isinstance(value, dict):
            return {k: _clean(str(k), v, escape) for k, v in value.items()}
        return value
    if isinstance(value, str):
        return _sanitize_string(value)
    if isinstance(value, (list, tuple)):
        return [_sanitize_string(item) if isinstance(item, str) else item for item in value]
    if isinstance(value, dict):
        return {k: _clean(str(k), v, escape) for k, v in value.items()}
    return value


def redact_processor(logger, method_name, event_dict):
    """Mask secret values (JSON output escapes control characters itself)."""
    return {key: _clean(key, value, False) for key, value in event_dict.items()}


def sanitize_processor(logger, method_name, event_dict):
    """Mask secret values and escape control characters for key=value output."""
    return {key: _clean(key, value, True) for key, value in event_dict.items()}


class SingleLineFormatter(logging.Formatter):
    def format(self, record):
        return super().format(record).replace("\n", "\\n").replace("\r", "\\r")


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    level_name = (level or settings.log_level).upper()
    renderer_name = fmt or settings.log_format

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SingleLineFormatter("%(message)s"))
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level_name)

    aiohttp_logger = logging.getLogger("aiohttp.access")
    aiohttp_logger.handlers = []
    aiohttp_logger.propagate = True

    renderer: Any
    if renderer_name == "json":
        cleaner = redact_processor
        renderer = structlog.processors.JSONRenderer()
    else:
        cleaner = sanitize_processor
        renderer = structlog.processors.KeyValueRenderer(
            key_order=["timestamp", "level", "logger", "event"],
            drop_missing=True,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            # after format_exc_info so tracebacks are escaped too
            cleaner,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
