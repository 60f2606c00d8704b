"""Prometheus metrics helpers and middleware."""

from __future__ import annotations

from time import perf_counter
from typing import TYPE_CHECKING, Optional, Tuple

from fastapi import FastAPI, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from autowriter_providers.base import ProviderResponse


_HTTP_REQUEST_COUNT = Counter(
    "autowriter_http_requests_total",
    "Total HTTP requests processed by service",
    labelnames=("service", "method", "route", "status"),
)

_HTTP_REQUEST_LATENCY = Histogram(
    "autowriter_http_request_duration_seconds",
    "Latency of HTTP requests",
    labelnames=("service", "method", "route"),
)

_JOB_DURATION = Histogram(
    "autowriter_job_duration_seconds",
    "Duration of writing job executions",
    labelnames=("service", "job_type"),
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
)

_JOB_COUNTER = Counter(
    "autowriter_job_runs_total",
    "Count of writing job executions by outcome",
    labelnames=("service", "job_type", "outcome"),
)

_JOB_RETRIES = Counter(
    "autowriter_job_retries_total",
    "Writing job attempts returned to the queue",
    labelnames=("service", "job_type", "kind"),
)

_DRIVER_TICKS = Counter(
    "autowriter_driver_ticks_total",
    "Orchestration driver ticks by result",
    labelnames=("service", "result"),
)

_LLM_TOKENS = Counter(
    "autowriter_llm_tokens_total",
    "Token usage by provider and job type",
    labelnames=("service", "job_type", "provider", "token_type"),
)

_LLM_LATENCY = Histogram(
    "autowriter_llm_latency_seconds",
    "Latency of LLM provider calls",
    labelnames=("service", "job_type", "provider"),
)

_CREDIT_WORDS = Counter(
    "autowriter_credit_words_debited_total",
    "Words debited from credit ledgers",
    labelnames=("service", "job_type"),
)

_WATCHDOG_RESUMES = Counter(
    "autowriter_watchdog_resumes_total",
    "Forced resumes issued by the stall watchdog",
    labelnames=("service",),
)

_WORKER_HEARTBEAT = Gauge(
    "autowriter_worker_heartbeat_timestamp",
    "Unix timestamp for the latest worker heartbeat",
    labelnames=("service",),
)

_STARTUP_FLAGS: set[Tuple[str, int]] = set()


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect request metrics for FastAPI services."""

    def __init__(self, app: FastAPI, service_name: str) -> None:
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start = perf_counter()
        response = await call_next(request)
        elapsed = perf_counter() - start

        route_template = request.url.path
        route = request.scope.get("route")
        if route and getattr(route, "path", None):
            route_template = route.path  # type: ignore[assignment]

        method = request.method
        status = getattr(response, "status_code", 500)

        _HTTP_REQUEST_COUNT.labels(self.service_name, method, route_template, str(status)).inc()
        _HTTP_REQUEST_LATENCY.labels(self.service_name, method, route_template).observe(elapsed)
        return response


def setup_fastapi_metrics(app: FastAPI, service_name: str, endpoint: str = "/metrics") -> None:
    """Register Prometheus middleware and metrics endpoint for a FastAPI app."""

    if getattr(app.state, "metrics_configured", False):
        return

    app.add_middleware(PrometheusMiddleware, service_name=service_name)

    @app.get(endpoint, include_in_schema=False)
    async def _metrics_endpoint() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.state.metrics_configured = True


def start_metrics_server(port: int, addr: str = "0.0.0.0") -> None:
    """Expose Prometheus metrics on a standalone HTTP server."""

    key = (addr, port)
    if key in _STARTUP_FLAGS:
        return
    start_http_server(port, addr=addr)
    _STARTUP_FLAGS.add(key)


def observe_job_duration(
    job_type: str,
    duration_seconds: float,
    *,
    service_name: str,
    outcome: str = "done",
) -> None:
    """Record duration and outcome of one job execution."""

    _JOB_DURATION.labels(service_name, job_type).observe(max(duration_seconds, 0.0))
    _JOB_COUNTER.labels(service_name, job_type, outcome).inc()


def record_job_retry(job_type: str, kind: str, *, service_name: str) -> None:
    """Count an attempt that went back to the queue (``immediate`` or ``recovery``)."""

    _JOB_RETRIES.labels(service_name, job_type, kind).inc()


def record_driver_tick(result: str, *, service_name: str) -> None:
    _DRIVER_TICKS.labels(service_name, result).inc()


def record_credit_debit(job_type: str, words: int, *, service_name: str) -> None:
    if words > 0:
        _CREDIT_WORDS.labels(service_name, job_type).inc(words)


def record_watchdog_resume(*, service_name: str) -> None:
    _WATCHDOG_RESUMES.labels(service_name).inc()


def observe_provider_response(
    *,
    job_type: str,
    provider: str,
    service_name: str,
    response: Optional["ProviderResponse"],
) -> None:
    """Capture token usage and latency from provider responses."""

    if response is None:
        return

    prompt_tokens = getattr(response, "prompt_tokens", None)
    if isinstance(prompt_tokens, (int, float)) and prompt_tokens >= 0:
        _LLM_TOKENS.labels(service_name, job_type, provider, "prompt").inc(prompt_tokens)

    completion_tokens = getattr(response, "completion_tokens", None)
    if isinstance(completion_tokens, (int, float)) and completion_tokens >= 0:
        _LLM_TOKENS.labels(service_name, job_type, provider, "completion").inc(completion_tokens)

    latency_ms = getattr(response, "latency_ms", None)
    if isinstance(latency_ms, (int, float)) and latency_ms >= 0:
        _LLM_LATENCY.labels(service_name, job_type, provider).observe(latency_ms / 1000)


def record_worker_heartbeat(service_name: str) -> None:
    """Update the heartbeat gauge for long-running worker processes."""

    _WORKER_HEARTBEAT.labels(service_name).set_to_current_time()
