"""Process-wide wiring of the store, provider, workers, driver and pool."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from autowriter_jobs import PipelineSettings, ProgressBroadcaster, get_pipeline_settings
from autowriter_jobs.store import WritingStore, create_store
from autowriter_providers import LLMProvider
from autowriter_schemas import JobType, utcnow

from .driver import OrchestrationDriver
from .outline import OutlineWorker
from .pool import Runner, WorkerPool
from .providers import create_provider
from .scene import SceneWorker
from .watchdog import StallWatchdog
from .workers import SERVICE_NAME, Clock, JobWorker

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorRuntime:
    store: WritingStore
    settings: PipelineSettings
    provider: LLMProvider
    broadcaster: ProgressBroadcaster
    workers: dict[JobType, JobWorker]
    driver: OrchestrationDriver
    watchdog: StallWatchdog
    pool: WorkerPool


def build_runtime(
    *,
    store: Optional[WritingStore] = None,
    provider: Optional[LLMProvider] = None,
    settings: Optional[PipelineSettings] = None,
    runner: Optional[Runner] = None,
    clock: Clock = utcnow,
    service_name: str = SERVICE_NAME,
) -> OrchestratorRuntime:
    """Assemble a runtime; anything not passed in is built from the environment.

    ``runner`` defaults to the Prefect drive flow.
    """

    store = store or create_store()
    provider = provider or create_provider()
    settings = settings or get_pipeline_settings()
    broadcaster = ProgressBroadcaster()

    worker_kwargs = dict(broadcaster=broadcaster, clock=clock, service_name=service_name)
    workers: dict[JobType, JobWorker] = {
        JobType.GENERATE_OUTLINE: OutlineWorker(store, provider, settings, **worker_kwargs),
        JobType.WRITE_SCENE: SceneWorker(store, provider, settings, **worker_kwargs),
    }
    driver = OrchestrationDriver(store, workers, settings, clock=clock, service_name=service_name)
    watchdog = StallWatchdog(store, settings, clock=clock, service_name=service_name)
    broadcaster.add_listener(watchdog.observe)

    if runner is None:
        from .flows import drive_project_flow

        runner = drive_project_flow
    pool = WorkerPool(store, runner, settings, watchdog=watchdog, clock=clock)
    watchdog.rearm = pool.arm

    logger.info(
        "Orchestrator runtime ready",
        extra={"store": type(store).__name__, "provider": getattr(provider, "name", "unknown")},
    )
    return OrchestratorRuntime(
        store=store,
        settings=settings,
        provider=provider,
        broadcaster=broadcaster,
        workers=workers,
        driver=driver,
        watchdog=watchdog,
        pool=pool,
    )


_RUNTIME: Optional[OrchestratorRuntime] = None


def get_runtime() -> OrchestratorRuntime:
    global _RUNTIME
    if _RUNTIME is None:
        _RUNTIME = build_runtime()
    return _RUNTIME


def set_runtime(runtime: Optional[OrchestratorRuntime]) -> None:
    """Install ``runtime`` for this process (``None`` resets to lazy construction)."""

    global _RUNTIME
    _RUNTIME = runtime
