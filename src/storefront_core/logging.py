"""
Structured logging using structlog with:
- JSON/console switchable format
- Correlation ID + tenant/request context via contextvars
- Email redaction in prod-like environments
- Safe defaults for Uvicorn/SQLAlchemy
- Tiny perf timing helper
"""

from __future__ import annotations

import contextlib
import datetime
import logging
import logging.config
import re
import sys
import time
import uuid
from typing import Any, Dict, Iterable, Optional

import structlog

from storefront_core.config import Settings, get_settings

# ---------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------


class EmailRedactionProcessor:
    """Mask the local-part of email addresses anywhere in the event (recursively)."""
    P_EMAIL = re.compile(r"\b([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")

    def __call__(self, logger, method_name, event_dict):
        return self._redact(event_dict)

    def _redact(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: self._redact(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._redact(v) for v in value]
        if isinstance(value, str):
            return self.P_EMAIL.sub(lambda m: f"***@{m.group(2)}", value)
        return value


def add_request_context(logger, method_name, event_dict):
    """Copy standard request fields bound in contextvars into the event."""
    ctx = structlog.contextvars.get_contextvars()
    for key in ("correlation_id", "tenant_id", "host", "path", "method"):
        if key in ctx and key not in event_dict:
            event_dict[key] = ctx[key]
    return event_dict


def add_timestamp(logger, method_name, event_dict):
    # UTC ISO8601 Z
    event_dict["timestamp"] = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return event_dict


def _passthrough(logger, method_name, event_dict):
    return event_dict


# ---------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Generate/bind a correlation_id if not provided; returns the id."""
    cid = correlation_id or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(correlation_id=cid)
    return cid


def bind_request_context(
    *,
    tenant_id: Optional[str] = None,
    host: Optional[str] = None,
    path: Optional[str] = None,
    method: Optional[str] = None,
    extras: Optional[Dict[str, Any]] = None,
) -> None:
    """Bind request context fields for log enrichment only; never read back for tenant routing."""
    payload = {
        k: v
        for k, v in dict(tenant_id=tenant_id, host=host, path=path, method=method).items()
        if v is not None
    }
    if extras:
        payload.update(extras)
    if payload:
        structlog.contextvars.bind_contextvars(**payload)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextlib.contextmanager
def time_block(name: str, *, logger: Optional[structlog.stdlib.BoundLogger] = None, labels: Optional[Dict[str, str]] = None):
    """
    Time a block and log it as a performance metric.

        with time_block("tenant.provision", labels={"tenant_id": str(tid)}):
            await db.provision_namespace(tid)
    """
    _log = logger or structlog.get_logger("performance")
    t0 = time.perf_counter()
    try:
        yield
    finally:
        ms = (time.perf_counter() - t0) * 1000.0
        _log.info("Performance metric", metric_name=name, value=round(ms, 3), unit="ms", labels=labels or {})


# ---------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------

def _ensure_log_format(settings: Settings) -> str:
    if settings.log_format in ("json", "console"):
        return settings.log_format
    return "console" if settings.is_local or settings.is_dev else "json"


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Idempotent structured logging configuration."""
    settings = settings or get_settings()
    log_format = _ensure_log_format(settings)
    is_prod_like = settings.is_prod or settings.is_staging

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            },
            "console": {
                "format": "%(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": log_format,
                "stream": sys.stdout,
            },
        },
        "root": {
            "level": getattr(logging, settings.log_level.upper(), logging.INFO),
            "handlers": ["console"],
        },
        "loggers": {
            "uvicorn.error": {"level": "INFO", "handlers": ["console"], "propagate": False},
            "uvicorn.access": {"level": "WARNING", "handlers": ["console"], "propagate": False},
            "sqlalchemy.engine": {
                "level": "WARNING" if is_prod_like else "INFO",
                "handlers": ["console"],
                "propagate": False,
            },
            # redis-py logs every reconnect attempt at DEBUG
            "redis": {"level": "WARNING", "handlers": ["console"], "propagate": False},
        },
    }
    logging.config.dictConfig(logging_config)

    processors: Iterable[Any] = [
        structlog.contextvars.merge_contextvars,
        add_timestamp,
        add_request_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        # Redact only outside of local/dev to help debugging locally
        EmailRedactionProcessor() if is_prod_like else _passthrough,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=list(processors),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.clear_contextvars()
