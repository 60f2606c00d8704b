"""Single-flight orchestration driver: advances one project one job at a time."""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional
from uuid import UUID, uuid4

from fastapi.concurrency import run_in_threadpool

from autowriter_jobs import PipelineSettings
from autowriter_jobs.lifecycle import advance_phase, complete_if_finished, enqueue_missing_work
from autowriter_jobs.progress import current_phase, recount_project
from autowriter_jobs.state_machine import transition
from autowriter_jobs.store import WritingStore
from autowriter_observability import log_context, record_driver_tick
from autowriter_schemas import (
    ACTIVE_WRITING_STATUSES,
    JobStatus,
    JobType,
    WritingJob,
    WritingStatus,
    utcnow,
)

from .models import TickResponse, TickResultKind
from .workers import SERVICE_NAME, Clock, JobWorker

logger = logging.getLogger(__name__)

TERMINAL_RESULTS: frozenset[str] = frozenset({"stopped", "missing", "completed", "stalled", "skipped"})


@dataclass(slots=True)
class _Plan:
    result: TickResultKind
    job: Optional[WritingJob] = None
    writing_status: Optional[WritingStatus] = None
    delay: Optional[float] = None


class OrchestrationDriver:
    """Run guarded ticks for projects.

    Only one tick per project runs in this process at a time; across processes
    the store refuses to lease a second job while one is processing. The driver
    keeps no durable state of its own.
    """

    def __init__(
        self,
        store: WritingStore,
        workers: dict[JobType, JobWorker],
        settings: PipelineSettings,
        *,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        service_name: str = SERVICE_NAME,
    ) -> None:
        self.store = store
        self.workers = workers
        self.settings = settings
        self.clock = clock
        self.sleep = sleep
        self.service_name = service_name
        self._in_flight: set[UUID] = set()
        self._owner_prefix = f"{socket.gethostname()}:{uuid4().hex[:8]}"

    def is_running(self, project_id: UUID) -> bool:
        return project_id in self._in_flight

    async def tick(self, project_id: UUID, *, job_type: JobType | None = None) -> TickResponse:
        """Claim and execute at most one job of ``project_id``."""

        if project_id in self._in_flight:
            record_driver_tick("skipped", service_name=self.service_name)
            return TickResponse(project_id=project_id, result="skipped")

        self._in_flight.add(project_id)
        try:
            with log_context(project_id=project_id):
                response = await self._tick(project_id, job_type)
        finally:
            self._in_flight.discard(project_id)
        record_driver_tick(response.result, service_name=self.service_name)
        return response

    async def _tick(self, project_id: UUID, job_type: JobType | None) -> TickResponse:
        owner = f"{self._owner_prefix}:{uuid4().hex[:8]}"
        plan = await run_in_threadpool(self._plan, project_id, job_type, owner)
        if plan.job is None:
            return TickResponse(
                project_id=project_id,
                result=plan.result,
                writing_status=plan.writing_status,
                delay_seconds=plan.delay,
            )

        job = plan.job
        worker = self.workers[job.job_type]
        try:
            outcome = await worker.process(job)
        except Exception:  # noqa: BLE001 - the lease expiry re-queues the job
            logger.exception("Worker crashed while processing job", extra={"job_id": str(job.id)})
            return TickResponse(
                project_id=project_id,
                result="processed",
                job_id=job.id,
                job_type=job.job_type,
                delay_seconds=self.settings.scene_tick_seconds,
            )

        delay = (
            self.settings.outline_tick_seconds
            if job.job_type == JobType.GENERATE_OUTLINE
            else self.settings.scene_tick_seconds
        )
        return TickResponse(
            project_id=project_id,
            result="processed",
            job_id=job.id,
            job_type=job.job_type,
            outcome=outcome,
            delay_seconds=delay,
        )

    def _plan(self, project_id: UUID, job_type: JobType | None, owner: str) -> _Plan:
        now = self.clock()
        with self.store.session() as session:
            session.requeue_expired(now=now, project_id=project_id)
            project = session.get_project(project_id, for_update=True)
            if project is None:
                return _Plan(result="missing")
            if project.writing_status not in ACTIVE_WRITING_STATUSES:
                return _Plan(result="stopped", writing_status=project.writing_status)

            chapters = session.list_chapters(project_id)
            if advance_phase(project, chapters, now=now):
                session.save_project(project)

            allowed = job_type
            if current_phase(chapters) == "outline":
                if job_type == JobType.WRITE_SCENE:
                    return _Plan(
                        result="idle",
                        writing_status=project.writing_status,
                        delay=self.settings.outline_tick_seconds,
                    )
                allowed = JobType.GENERATE_OUTLINE

            job = session.claim_next(
                project_id,
                owner=owner,
                lease_seconds=self.settings.lease_seconds,
                now=now,
                job_type=allowed,
            )
            if job is not None:
                project.last_activity_at = now
                session.save_project(project)
                return _Plan(result="processed", job=job, writing_status=project.writing_status)

            if session.count_jobs(project_id, statuses=[JobStatus.PROCESSING]):
                return _Plan(
                    result="idle",
                    writing_status=project.writing_status,
                    delay=self.settings.scene_tick_seconds,
                )

            earliest = session.earliest_retry_at(project_id, job_type=allowed)
            if earliest is not None:
                wait = max((earliest - now).total_seconds(), 0.0)
                return _Plan(
                    result="idle",
                    writing_status=project.writing_status,
                    delay=min(wait, self.settings.idle_poll_seconds),
                )

            healed = enqueue_missing_work(session, project, chapters, now=now)
            if healed:
                logger.warning("Recovered missing writing jobs", extra={"jobs_created": healed})
                return _Plan(result="healed", writing_status=project.writing_status, delay=0.0)

            recount_project(project, chapters)
            if complete_if_finished(session, project, chapters, now=now):
                session.save_project(project)
                return _Plan(result="completed", writing_status=project.writing_status)

            if self._stalled(project.last_activity_at, now):
                transition(project, WritingStatus.FAILED, now=now)
                minutes = int(self.settings.stall_timeout_seconds // 60)
                project.writing_error = f"No writing progress for {minutes} minutes; resume to try again"
                session.save_project(project)
                logger.warning("Project stalled with nothing to dequeue", extra={"stall_minutes": minutes})
                return _Plan(result="stalled", writing_status=project.writing_status)
            session.save_project(project)
            return _Plan(
                result="idle",
                writing_status=project.writing_status,
                delay=self.settings.idle_poll_seconds,
            )

    def _stalled(self, last_activity_at: Optional[datetime], now: datetime) -> bool:
        if last_activity_at is None:
            return False
        return now - last_activity_at > timedelta(seconds=self.settings.stall_timeout_seconds)

    async def run(self, project_id: UUID) -> TickResponse:
        """Tick until the project stops, finishes, stalls or another loop owns it."""

        while True:
            response = await self.tick(project_id)
            if response.result in TERMINAL_RESULTS:
                logger.info(
                    "Driver loop exiting",
                    extra={"project_id": str(project_id), "result": response.result},
                )
                return response
            await self.sleep(response.delay_seconds or 0.0)
