"""Shared observability helpers used across the autowriter services."""

from .logging import current_log_context, log_context, setup_logging
from .metrics import (
    observe_job_duration,
    observe_provider_response,
    record_credit_debit,
    record_driver_tick,
    record_job_retry,
    record_watchdog_resume,
    record_worker_heartbeat,
    setup_fastapi_metrics,
    start_metrics_server,
)

__all__ = [
    "setup_logging",
    "log_context",
    "current_log_context",
    "setup_fastapi_metrics",
    "start_metrics_server",
    "observe_job_duration",
    "observe_provider_response",
    "record_credit_debit",
    "record_driver_tick",
    "record_job_retry",
    "record_watchdog_resume",
    "record_worker_heartbeat",
]
