"""Abstract job store.

All reads and writes go through a :class:`StoreSession`, a unit of work that
commits on clean exit and rolls back when the block raises. Workers rely on
this to make a result, its job status, its credit debit and the project
counters land together or not at all.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Iterable, Optional, Sequence
from uuid import UUID

from autowriter_schemas import (
    Chapter,
    ContentBlock,
    CreditLedger,
    JobStatus,
    JobType,
    Project,
    WritingJob,
)


class StoreSession(ABC):
    """Transactional view over projects, chapters, jobs and ledgers."""

    # Projects -------------------------------------------------------------

    @abstractmethod
    def get_project(self, project_id: UUID, *, for_update: bool = False) -> Optional[Project]:
        """Load a project; ``for_update`` serialises writers on the row."""

    @abstractmethod
    def save_project(self, project: Project) -> None: ...

    @abstractmethod
    def list_active_project_ids(self) -> list[UUID]:
        """Projects whose status means a driver loop should be running."""

    # Chapters and prose ---------------------------------------------------

    @abstractmethod
    def list_chapters(self, project_id: UUID) -> list[Chapter]:
        """Chapters ordered by ``sort_order``."""

    @abstractmethod
    def get_chapter(self, chapter_id: UUID, *, for_update: bool = False) -> Optional[Chapter]: ...

    @abstractmethod
    def save_chapter(self, chapter: Chapter) -> None: ...

    @abstractmethod
    def list_blocks(self, chapter_id: UUID) -> list[ContentBlock]:
        """Content blocks ordered by ``sort_order``."""

    @abstractmethod
    def append_block(self, chapter_id: UUID, content: str, *, scene_index: int | None, now: datetime) -> ContentBlock:
        """Append prose after the chapter's last block."""

    # Jobs -----------------------------------------------------------------

    @abstractmethod
    def enqueue(self, jobs: Sequence[WritingJob]) -> None: ...

    @abstractmethod
    def claim_next(
        self,
        project_id: UUID,
        *,
        owner: str,
        lease_seconds: float,
        now: datetime,
        job_type: JobType | None = None,
    ) -> Optional[WritingJob]:
        """Lease the next eligible pending job of a project.

        Eligible means ``status = pending`` and ``next_retry_at <= now``, ordered
        by priority (desc) then sort order (asc). Nothing is returned while any
        job of the project is processing.
        """

    @abstractmethod
    def get_job(self, job_id: UUID, *, for_update: bool = False) -> Optional[WritingJob]: ...

    @abstractmethod
    def save_job(self, job: WritingJob) -> None: ...

    def mark_done(self, job: WritingJob, *, now: datetime, note: str | None = None) -> None:
        """Resolve a job successfully and release its lease.

        ``note`` lands in ``last_error``; skips use it to record their reason.
        """

        job.status = JobStatus.DONE
        job.completed_at = now
        job.attempt_count = 0
        job.last_error = note
        job.lease_owner = None
        job.lease_expires_at = None
        self.save_job(job)

    def mark_failed(self, job: WritingJob, error: str, *, now: datetime) -> None:
        job.status = JobStatus.FAILED
        job.completed_at = now
        job.last_error = error[:2000]
        job.lease_owner = None
        job.lease_expires_at = None
        self.save_job(job)

    @abstractmethod
    def list_jobs(
        self,
        project_id: UUID,
        *,
        statuses: Iterable[JobStatus] | None = None,
        job_type: JobType | None = None,
    ) -> list[WritingJob]:
        """Jobs in claim order (priority desc, sort order asc)."""

    def count_jobs(
        self,
        project_id: UUID,
        *,
        statuses: Iterable[JobStatus] | None = None,
        job_type: JobType | None = None,
    ) -> int:
        return len(self.list_jobs(project_id, statuses=statuses, job_type=job_type))

    @abstractmethod
    def update_jobs_status(
        self,
        project_id: UUID,
        from_status: JobStatus,
        to_status: JobStatus,
        *,
        next_retry_at: datetime | None = None,
    ) -> int:
        """Bulk status move; returns the number of rows touched."""

    @abstractmethod
    def delete_jobs(self, project_id: UUID) -> int: ...

    @abstractmethod
    def requeue_expired(self, *, now: datetime, project_id: UUID | None = None) -> int:
        """Return processing jobs whose lease has lapsed to pending."""

    @abstractmethod
    def earliest_retry_at(self, project_id: UUID, *, job_type: JobType | None = None) -> Optional[datetime]:
        """Earliest ``next_retry_at`` among pending jobs."""

    # Credits and sessions -------------------------------------------------

    @abstractmethod
    def get_ledger(self, user_id: UUID, period: str, *, for_update: bool = False) -> Optional[CreditLedger]: ...

    @abstractmethod
    def save_ledger(self, ledger: CreditLedger) -> None: ...

    @abstractmethod
    def has_debit(self, job_id: UUID) -> bool: ...

    @abstractmethod
    def record_debit(self, job_id: UUID, user_id: UUID, words: int, *, now: datetime) -> None: ...

    @abstractmethod
    def lookup_session_user(self, token_hash: str, *, now: datetime) -> Optional[UUID]:
        """Resolve a hashed bearer token to its user while the session is valid."""


class WritingStore(ABC):
    """Factory for store sessions."""

    name: str

    @abstractmethod
    def session(self) -> AbstractContextManager[StoreSession]:
        """Open a unit of work."""

    def initialise(self) -> None:
        """Create or verify back-end structures. No-op by default."""

    def close(self) -> None:
        """Release back-end resources. No-op by default."""
