"""Writing control API for the Autowriter stack."""
from __future__ import annotations

import hashlib
import logging
import os
from typing import Optional
from uuid import UUID

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from autowriter_jobs import (
    ActiveRunError,
    IllegalTransitionError,
    InsufficientCreditsError,
    NoChaptersError,
    ProjectNotFoundError,
    WritingPipelineError,
    apply_control,
    get_pipeline_settings,
    load_snapshot,
)
from autowriter_jobs.store import StoreSession, WritingStore, create_store
from autowriter_observability import log_context, setup_fastapi_metrics, setup_logging
from autowriter_schemas import ControlAction, Project, ProgressSnapshot, WritingStatus, utcnow


ORCHESTRATOR_URL = os.getenv("ORCHESTRATOR_URL", "http://orchestrator:9100")
ORCHESTRATOR_TIMEOUT_SECONDS = float(os.getenv("ORCHESTRATOR_TIMEOUT", "10"))

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("AUTOWRITER_ALLOWED_ORIGINS", "http://localhost:3100").split(",")
    if origin.strip()
]

AUTH_COOKIE_NAME = os.getenv("AUTOWRITER_SESSION_COOKIE_NAME", "autowriter_session")

SERVICE_NAME = "api"
setup_logging(SERVICE_NAME)
logger = logging.getLogger(__name__)

# Domain errors surfaced by control actions, most specific first.
ERROR_STATUS: list[tuple[type[WritingPipelineError], int]] = [
    (ProjectNotFoundError, status.HTTP_404_NOT_FOUND),
    (ActiveRunError, status.HTTP_409_CONFLICT),
    (IllegalTransitionError, status.HTTP_409_CONFLICT),
    (NoChaptersError, status.HTTP_400_BAD_REQUEST),
    (InsufficientCreditsError, status.HTTP_402_PAYMENT_REQUIRED),
]

NOTIFY_ACTIONS = frozenset({ControlAction.START, ControlAction.RESUME})


class WritingControlRequest(BaseModel):
    action: ControlAction


class WritingControlResponse(BaseModel):
    project_id: UUID
    action: ControlAction
    writing_status: WritingStatus
    jobs_created: int = 0
    jobs_affected: int = 0
    progress: ProgressSnapshot


class OrchestratorNotifier:
    """Ask the orchestrator to arm a project's driver loop.

    A failed notification is only logged: the worker pool sweep finds every
    active project on its own.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    async def notify(self, project_id: UUID) -> bool:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.post(f"/orchestrator/projects/{project_id}/drive")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Orchestrator notification failed",
                extra={"project_id": str(project_id), "error": str(exc)},
            )
            return False
        return True


_STORE: Optional[WritingStore] = None


def get_store() -> WritingStore:
    global _STORE
    if _STORE is None:
        _STORE = create_store()
    return _STORE


def get_notifier() -> OrchestratorNotifier:
    return OrchestratorNotifier(ORCHESTRATOR_URL, ORCHESTRATOR_TIMEOUT_SECONDS)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _request_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(AUTH_COOKIE_NAME)


def _lookup_session_user(store: WritingStore, token: str) -> Optional[UUID]:
    with store.session() as session:
        return session.lookup_session_user(_hash_token(token), now=utcnow())


async def require_user(request: Request, store: WritingStore = Depends(get_store)) -> UUID:
    token = _request_token(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    user_id = await run_in_threadpool(_lookup_session_user, store, token)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired or invalid")
    return user_id


def _owned_project(session: StoreSession, project_id: UUID, user_id: UUID) -> Project:
    project = session.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    if project.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Project belongs to another user")
    return project


def _apply_control(
    store: WritingStore,
    project_id: UUID,
    user_id: UUID,
    action: ControlAction,
) -> WritingControlResponse:
    settings = get_pipeline_settings()
    with store.session() as session:
        _owned_project(session, project_id, user_id)
        result = apply_control(session, project_id, action, now=utcnow())
        progress = load_snapshot(session, project_id, settings)
    return WritingControlResponse(
        project_id=project_id,
        action=action,
        writing_status=result.project.writing_status,
        jobs_created=result.jobs_created,
        jobs_affected=result.jobs_affected,
        progress=progress,
    )


def _fetch_progress(store: WritingStore, project_id: UUID, user_id: UUID) -> ProgressSnapshot:
    with store.session() as session:
        _owned_project(session, project_id, user_id)
        return load_snapshot(session, project_id, get_pipeline_settings())


def _http_error(exc: WritingPipelineError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Writing pipeline error")


app = FastAPI(title="Autowriter API", version="0.1.0")
setup_fastapi_metrics(app, service_name=SERVICE_NAME)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _on_startup() -> None:
    get_store().initialise()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    """Simple readiness check."""

    return {"status": "ok"}


@app.post("/projects/{project_id}/writing", response_model=WritingControlResponse, tags=["writing"])
async def control_writing(
    project_id: UUID,
    payload: WritingControlRequest,
    user_id: UUID = Depends(require_user),
    store: WritingStore = Depends(get_store),
    notifier: OrchestratorNotifier = Depends(get_notifier),
) -> WritingControlResponse:
    with log_context(project_id=project_id):
        try:
            response = await run_in_threadpool(_apply_control, store, project_id, user_id, payload.action)
        except WritingPipelineError as exc:
            logger.info(
                "Writing control rejected",
                extra={"action": payload.action.value, "error": str(exc)},
            )
            raise _http_error(exc) from exc

        logger.info(
            "Writing control applied",
            extra={
                "action": payload.action.value,
                "writing_status": response.writing_status.value,
                "jobs_created": response.jobs_created,
                "jobs_affected": response.jobs_affected,
            },
        )
        if payload.action in NOTIFY_ACTIONS:
            await notifier.notify(project_id)
    return response


@app.get("/projects/{project_id}/writing", response_model=ProgressSnapshot, tags=["writing"])
async def writing_progress(
    project_id: UUID,
    user_id: UUID = Depends(require_user),
    store: WritingStore = Depends(get_store),
) -> ProgressSnapshot:
    return await run_in_threadpool(_fetch_progress, store, project_id, user_id)
