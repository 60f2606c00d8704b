"""FastAPI entrypoint for the writing orchestrator."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool

from autowriter_jobs import load_snapshot
from autowriter_observability import log_context, setup_fastapi_metrics, setup_logging
from autowriter_schemas import JobType, ProgressSnapshot

from .dependencies import OrchestratorRuntime, get_runtime
from .models import DriveResponse, TickResponse, WorkerRequest
from .workers import SERVICE_NAME

setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)

app = FastAPI(title="Autowriter Orchestrator", version="0.1.0")
setup_fastapi_metrics(app, service_name=SERVICE_NAME)


@app.on_event("startup")
async def _on_startup() -> None:
    runtime = get_runtime()
    await run_in_threadpool(runtime.store.initialise)
    logger.info("Orchestrator started")


@app.on_event("shutdown")
async def _on_shutdown() -> None:
    await get_runtime().pool.shutdown()


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/workers/outline/next", response_model=TickResponse, tags=["workers"])
async def process_next_outline(
    payload: WorkerRequest,
    runtime: OrchestratorRuntime = Depends(get_runtime),
) -> TickResponse:
    return await runtime.driver.tick(payload.project_id, job_type=JobType.GENERATE_OUTLINE)


@app.post("/workers/scene/next", response_model=TickResponse, tags=["workers"])
async def process_next_scene(
    payload: WorkerRequest,
    runtime: OrchestratorRuntime = Depends(get_runtime),
) -> TickResponse:
    return await runtime.driver.tick(payload.project_id, job_type=JobType.WRITE_SCENE)


def _load_progress(runtime: OrchestratorRuntime, project_id: UUID) -> ProgressSnapshot | None:
    with runtime.store.session() as session:
        return load_snapshot(session, project_id, runtime.settings)


@app.post("/orchestrator/projects/{project_id}/drive", response_model=DriveResponse, tags=["orchestrator"])
async def drive_project(
    project_id: UUID,
    runtime: OrchestratorRuntime = Depends(get_runtime),
) -> DriveResponse:
    snapshot = await run_in_threadpool(_load_progress, runtime, project_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Project not found")

    armed = runtime.pool.arm(project_id)
    with log_context(project_id=project_id, writing_status=snapshot.writing_status.value):
        logger.info("Drive requested", extra={"armed": armed})
    return DriveResponse(project_id=project_id, armed=armed)


@app.get(
    "/orchestrator/projects/{project_id}/progress",
    response_model=ProgressSnapshot,
    tags=["orchestrator"],
)
async def project_progress(
    project_id: UUID,
    runtime: OrchestratorRuntime = Depends(get_runtime),
) -> ProgressSnapshot:
    snapshot = await run_in_threadpool(_load_progress, runtime, project_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return snapshot
