"""Shared lifecycle for the outline and scene workers.

A worker handles one leased job in three steps: prepare (one store session),
generate (the provider call, outside any session) and commit or fail (one
store session). The commit re-reads the job and drops the result when the row
is gone or the lease now belongs to someone else, which is how a cancel that
lands mid-generation discards in-flight work.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from time import perf_counter
from typing import Any, Callable, ClassVar, Optional, Sequence

from fastapi.concurrency import run_in_threadpool

from autowriter_jobs import PipelineSettings, ProgressBroadcaster
from autowriter_jobs.exceptions import InsufficientCreditsError
from autowriter_jobs.ledger import debit_words, ensure_credits
from autowriter_jobs.lifecycle import complete_if_finished
from autowriter_jobs.progress import recount_project
from autowriter_jobs.retry import apply_retry, plan_retry
from autowriter_jobs.state_machine import transition
from autowriter_jobs.store import StoreSession, WritingStore
from autowriter_observability import (
    log_context,
    observe_job_duration,
    observe_provider_response,
    record_credit_debit,
    record_job_retry,
)
from autowriter_providers import (
    LLMProvider,
    ProviderConfigError,
    ProviderError,
    ProviderRateLimitError,
    ProviderRequest,
    ProviderResponse,
    ProviderResponseError,
)
from autowriter_schemas import (
    ACTIVE_WRITING_STATUSES,
    Chapter,
    FailureKind,
    JobOutcome,
    JobStatus,
    JobType,
    ProgressEvent,
    Project,
    WritingJob,
    WritingStatus,
    utcnow,
)

logger = logging.getLogger(__name__)
SERVICE_NAME = "orchestrator"

Clock = Callable[[], datetime]


@dataclass(slots=True)
class WorkItem:
    """Everything a worker needs to call the provider for one job."""

    job: WritingJob
    project: Project
    chapter: Chapter
    chapters: Sequence[Chapter] = ()
    context: dict[str, Any] = field(default_factory=dict)


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an exception raised while working a job onto the retry policy."""

    if isinstance(exc, (InsufficientCreditsError, ProviderConfigError)):
        return FailureKind.RESOURCE
    if isinstance(exc, ProviderResponseError):
        return FailureKind.CONTENT
    return FailureKind.TRANSIENT


def _release_lease(job: WritingJob) -> None:
    job.lease_owner = None
    job.lease_expires_at = None


class JobWorker(ABC):
    """Base class for the workers that execute one job type."""

    job_type: ClassVar[JobType]
    name: ClassVar[str]

    def __init__(
        self,
        store: WritingStore,
        provider: LLMProvider,
        settings: PipelineSettings,
        *,
        broadcaster: ProgressBroadcaster | None = None,
        clock: Clock = utcnow,
        service_name: str = SERVICE_NAME,
    ) -> None:
        self.store = store
        self.provider = provider
        self.settings = settings
        self.broadcaster = broadcaster
        self.clock = clock
        self.service_name = service_name

    # Subclass hooks ---------------------------------------------------------

    @abstractmethod
    def prepare(
        self, session: StoreSession, job: WritingJob, project: Project, chapter: Chapter, now: datetime
    ) -> WorkItem | JobOutcome:
        """Load context for the provider call, or resolve the job without one."""

    @abstractmethod
    async def generate(self, item: WorkItem) -> Any:
        """Call the provider and return a validated result."""

    @abstractmethod
    def apply_success(
        self, session: StoreSession, job: WritingJob, chapter: Chapter, result: Any, now: datetime
    ) -> Optional[int]:
        """Persist the result and return the words to debit, or None to discard it."""

    @abstractmethod
    def apply_content_failure(
        self, session: StoreSession, job: WritingJob, chapter: Chapter, message: str, now: datetime
    ) -> None: ...

    def release(self, session: StoreSession, job: WritingJob, chapter: Chapter | None, now: datetime) -> None:
        """Undo in-progress markers when the job goes back to the queue."""

    def after_resolution(
        self, session: StoreSession, project: Project, chapters: Sequence[Chapter], now: datetime
    ) -> None:
        """Extra bookkeeping once a job is resolved; runs before counters are recomputed."""

    # Driver entry point ---------------------------------------------------------

    async def process(self, job: WritingJob) -> JobOutcome:
        started = perf_counter()
        with log_context(
            project_id=job.project_id,
            job_id=job.id,
            job_type=job.job_type.value,
            worker=self.name,
            attempt=job.attempt_count,
            scene_index=job.scene_index,
        ):
            outcome, project = await self._run(job)
            logger.info("Job attempt finished", extra={"outcome": outcome.value})
        observe_job_duration(
            job.job_type.value,
            perf_counter() - started,
            service_name=self.service_name,
            outcome=outcome.value,
        )
        if project is not None:
            await self._publish(job, outcome, project)
        return outcome

    async def _run(self, job: WritingJob) -> tuple[JobOutcome, Optional[Project]]:
        try:
            prepared = await run_in_threadpool(self._prepare_in_session, job)
        except InsufficientCreditsError as exc:
            logger.warning("Owner is out of word credits", extra={"available": exc.available})
            return await run_in_threadpool(self._fail_in_session, job, FailureKind.RESOURCE, exc)

        item, resolved = prepared
        if item is None:
            return resolved

        try:
            result = await self.generate(item)
        except Exception as exc:  # noqa: BLE001 - every failure is routed through the retry policy
            kind = classify_failure(exc)
            if isinstance(exc, ProviderError):
                logger.warning(
                    "Provider call failed",
                    extra={"failure_kind": kind.value, "error": str(exc)},
                )
            else:
                logger.exception("Unexpected error while generating", extra={"failure_kind": kind.value})
            return await run_in_threadpool(self._fail_in_session, job, kind, exc)

        return await run_in_threadpool(self._commit_in_session, job, result)

    # Store sessions -----------------------------------------------------------

    @staticmethod
    def _holds_lease(row: Optional[WritingJob], claimed: WritingJob) -> bool:
        return (
            row is not None
            and row.status == JobStatus.PROCESSING
            and row.lease_owner is not None
            and row.lease_owner == claimed.lease_owner
        )

    def _prepare_in_session(
        self, job: WritingJob
    ) -> tuple[Optional[WorkItem], tuple[JobOutcome, Optional[Project]]]:
        now = self.clock()
        with self.store.session() as session:
            row = session.get_job(job.id, for_update=True)
            if not self._holds_lease(row, job):
                logger.warning("Job no longer leased to this worker")
                return None, (JobOutcome.DISCARDED, None)
            project = session.get_project(job.project_id)
            if project is None:
                return None, (JobOutcome.DISCARDED, None)

            if project.writing_status not in ACTIVE_WRITING_STATUSES:
                row.status = JobStatus.PAUSED
                _release_lease(row)
                session.save_job(row)
                logger.info(
                    "Project not running; parking job",
                    extra={"writing_status": project.writing_status.value},
                )
                return None, (JobOutcome.PAUSED, project)

            chapter = session.get_chapter(job.chapter_id, for_update=True)
            if chapter is None:
                self._skip(session, row, now, reason="chapter no longer exists")
                self._resolve(session, project, now)
                return None, (JobOutcome.SKIPPED, project)

            ensure_credits(session, project.user_id, now=now)

            prepared = self.prepare(session, row, project, chapter, now)
            if isinstance(prepared, JobOutcome):
                if prepared == JobOutcome.SKIPPED:
                    self._resolve(session, project, now)
                return None, (prepared, project)
            return prepared, (JobOutcome.DONE, project)

    def _commit_in_session(self, job: WritingJob, result: Any) -> tuple[JobOutcome, Optional[Project]]:
        now = self.clock()
        with self.store.session() as session:
            row = session.get_job(job.id, for_update=True)
            if not self._holds_lease(row, job):
                logger.warning("Discarding result for a job that was cancelled or re-leased")
                return JobOutcome.DISCARDED, None
            project = session.get_project(job.project_id, for_update=True)
            chapter = session.get_chapter(job.chapter_id, for_update=True)
            if project is None or chapter is None:
                return JobOutcome.DISCARDED, None

            words = self.apply_success(session, row, chapter, result, now)
            if words is None:
                self._skip(session, row, now, reason="target changed during generation")
                self._resolve(session, project, now)
                return JobOutcome.SKIPPED, project

            session.mark_done(row, now=now)

            charged = debit_words(session, user_id=project.user_id, job_id=row.id, words=words, now=now)
            record_credit_debit(row.job_type.value, charged, service_name=self.service_name)

            project.last_activity_at = now
            self._resolve(session, project, now)
            return JobOutcome.DONE, project

    def _fail_in_session(
        self, job: WritingJob, kind: FailureKind, exc: BaseException
    ) -> tuple[JobOutcome, Optional[Project]]:
        now = self.clock()
        message = str(exc) or exc.__class__.__name__
        with self.store.session() as session:
            row = session.get_job(job.id, for_update=True)
            if not self._holds_lease(row, job):
                logger.warning("Dropping failure for a job that was cancelled or re-leased")
                return JobOutcome.DISCARDED, None
            project = session.get_project(job.project_id, for_update=True)
            chapter = session.get_chapter(job.chapter_id, for_update=True)

            if kind == FailureKind.TRANSIENT:
                retry_after = exc.retry_after if isinstance(exc, ProviderRateLimitError) else None
                decision = plan_retry(row, self.settings, now=now, retry_after=retry_after)
                apply_retry(row, decision, error=message)
                session.save_job(row)
                self.release(session, row, chapter, now)
                kind_label = "immediate" if decision.outcome == JobOutcome.RETRY else "recovery"
                record_job_retry(row.job_type.value, kind_label, service_name=self.service_name)
                logger.info(
                    "Job returned to queue",
                    extra={"retry_kind": kind_label, "next_retry_at": decision.next_retry_at.isoformat()},
                )
                return decision.outcome, project

            if kind == FailureKind.RESOURCE:
                row.status = JobStatus.PAUSED
                row.last_error = message[:2000]
                _release_lease(row)
                session.save_job(row)
                self.release(session, row, chapter, now)
                if project is not None and project.writing_status in ACTIVE_WRITING_STATUSES:
                    transition(project, WritingStatus.FAILED, now=now)
                    project.writing_error = message
                    session.save_project(project)
                logger.warning("Run blocked on a resource error", extra={"error": message})
                return JobOutcome.PAUSED, project

            session.mark_failed(row, message, now=now)
            if chapter is not None:
                self.apply_content_failure(session, row, chapter, message, now)
            if project is not None:
                self._resolve(session, project, now)
            logger.warning("Job failed on unusable output", extra={"error": message})
            return JobOutcome.FAILED, project

    def _skip(self, session: StoreSession, job: WritingJob, now: datetime, *, reason: str) -> None:
        session.mark_done(job, now=now, note=f"skipped: {reason}")
        logger.info("Skipping job", extra={"reason": reason})

    def _resolve(self, session: StoreSession, project: Project, now: datetime) -> None:
        chapters = session.list_chapters(project.id)
        self.after_resolution(session, project, chapters, now)
        recount_project(project, chapters)
        complete_if_finished(session, project, chapters, now=now)
        project.updated_at = now
        session.save_project(project)

    # Provider and events ------------------------------------------------------

    async def call_provider(self, request: ProviderRequest) -> ProviderResponse:
        response = await self.provider.generate(request)
        observe_provider_response(
            job_type=self.job_type.value,
            provider=self.provider.name,
            service_name=self.service_name,
            response=response,
        )
        logger.info(
            "Provider call completed",
            extra={
                "provider": self.provider.name,
                "prompt_tokens": response.prompt_tokens,
                "completion_tokens": response.completion_tokens,
                "latency_ms": response.latency_ms,
            },
        )
        return response

    async def _publish(self, job: WritingJob, outcome: JobOutcome, project: Project) -> None:
        if self.broadcaster is None:
            return
        await self.broadcaster.publish(
            ProgressEvent(
                project_id=project.id,
                job_id=job.id,
                job_type=job.job_type,
                outcome=outcome,
                writing_status=project.writing_status,
                completed_scenes=project.completed_scenes,
                failed_scenes=project.failed_scenes,
                total_scenes=project.total_scenes,
                occurred_at=self.clock(),
            )
        )
