"""Structured JSON logging for the writing pipeline.

Every record becomes one JSON object per line. Fields bound with
:func:`log_context` or passed through ``extra=`` are grouped so that log
queries can rely on a fixed shape::

    {"timestamp": ..., "level": "INFO", "service": "orchestrator",
     "logger": ..., "message": "Job attempt finished",
     "job": {"project_id": ..., "job_id": ..., "job_type": "write_scene", "attempt": 2},
     "llm": {"provider": "openai", "prompt_tokens": 812, ...},
     "outcome": "done"}

Keys outside the known groups stay at the top level when they serialise.
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping

# Structured groups, in output order.
FIELD_GROUPS: dict[str, tuple[str, ...]] = {
    "job": (
        "project_id",
        "chapter_id",
        "job_id",
        "job_type",
        "scene_index",
        "attempt",
        "worker",
        "writing_status",
    ),
    "llm": ("provider", "prompt_tokens", "completion_tokens", "latency_ms"),
    "http": ("request_id", "method", "route", "status_code"),
}

_CONTEXT_ATTR = "bound_context"
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
    "service",
    _CONTEXT_ATTR,
}

_bound: ContextVar[Mapping[str, Any]] = ContextVar("autowriter_log_context", default={})


def _coerce(value: Any) -> Any:
    if isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def _serialisable(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


class ContextFilter(logging.Filter):
    """Stamp the service name and the bound job context onto each record."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        setattr(record, _CONTEXT_ATTR, dict(_bound.get()))
        if not getattr(record, "service", None):
            record.service = self.service_name
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as the grouped JSON payload described in the module docstring."""

    def format(self, record: logging.LogRecord) -> str:
        # Explicit ``extra=`` values win over the bound context.
        fields: dict[str, Any] = dict(getattr(record, _CONTEXT_ATTR, None) or {})
        fields.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )

        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "service": getattr(record, "service", None),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for group, keys in FIELD_GROUPS.items():
            values = {key: _coerce(fields.pop(key)) for key in keys if fields.get(key) is not None}
            if values:
                payload[group] = values
        for key, value in fields.items():
            if value is not None and key not in payload and _serialisable(value):
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def _logging_config(service_name: str, level: str) -> dict[str, Any]:
    quiet = {"level": "WARNING", "handlers": ["stdout"], "propagate": False}
    loud = {"level": level, "handlers": ["stdout"], "propagate": False}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": JsonFormatter}},
        "filters": {"context": {"()": ContextFilter, "service_name": service_name}},
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
                "formatter": "json",
                "filters": ["context"],
            }
        },
        "root": {"level": level, "handlers": ["stdout"]},
        "loggers": {
            "uvicorn": loud,
            "uvicorn.error": loud,
            "uvicorn.access": quiet,
            "httpx": quiet,
            "httpcore": quiet,
        },
    }


def setup_logging(service_name: str, level: str | None = None) -> None:
    """Send every logger of this process to stdout as JSON.

    ``level`` defaults to ``AUTOWRITER_LOG_LEVEL`` (``INFO``). Safe to call again;
    the handlers are replaced.
    """

    resolved = (level or os.getenv("AUTOWRITER_LOG_LEVEL", "INFO")).upper()
    logging.config.dictConfig(_logging_config(service_name, resolved))


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields to every record logged inside the block.

    ``None`` unbinds a key for the duration of the block.
    """

    merged = dict(_bound.get())
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = _coerce(value)
    token = _bound.set(merged)
    try:
        yield
    finally:
        _bound.reset(token)


def current_log_context() -> dict[str, Any]:
    return dict(_bound.get())
