"""In-process store used by tests and single-process local runs."""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Iterator, Optional, Sequence
from uuid import UUID

from autowriter_schemas import (
    ACTIVE_WRITING_STATUSES,
    Chapter,
    ContentBlock,
    CreditLedger,
    JobStatus,
    JobType,
    Project,
    WritingJob,
)

from .base import StoreSession, WritingStore


@dataclass
class _State:
    projects: dict[UUID, Project] = field(default_factory=dict)
    chapters: dict[UUID, Chapter] = field(default_factory=dict)
    blocks: dict[UUID, list[ContentBlock]] = field(default_factory=dict)
    jobs: dict[UUID, WritingJob] = field(default_factory=dict)
    ledgers: dict[tuple[UUID, str], CreditLedger] = field(default_factory=dict)
    debits: dict[UUID, tuple[UUID, int, datetime]] = field(default_factory=dict)
    sessions: dict[str, tuple[UUID, datetime]] = field(default_factory=dict)


def _claim_key(job: WritingJob) -> tuple[int, int, datetime]:
    return (-job.priority, job.sort_order, job.created_at)


class MemorySession(StoreSession):
    def __init__(self, state: _State) -> None:
        self._state = state

    def get_project(self, project_id: UUID, *, for_update: bool = False) -> Optional[Project]:
        project = self._state.projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    def save_project(self, project: Project) -> None:
        self._state.projects[project.id] = project.model_copy(deep=True)

    def list_active_project_ids(self) -> list[UUID]:
        return [
            project.id
            for project in self._state.projects.values()
            if project.writing_status in ACTIVE_WRITING_STATUSES
        ]

    def list_chapters(self, project_id: UUID) -> list[Chapter]:
        chapters = [c for c in self._state.chapters.values() if c.project_id == project_id]
        chapters.sort(key=lambda chapter: chapter.sort_order)
        return [chapter.model_copy(deep=True) for chapter in chapters]

    def get_chapter(self, chapter_id: UUID, *, for_update: bool = False) -> Optional[Chapter]:
        chapter = self._state.chapters.get(chapter_id)
        return chapter.model_copy(deep=True) if chapter else None

    def save_chapter(self, chapter: Chapter) -> None:
        self._state.chapters[chapter.id] = chapter.model_copy(deep=True)

    def list_blocks(self, chapter_id: UUID) -> list[ContentBlock]:
        return [block.model_copy() for block in self._state.blocks.get(chapter_id, [])]

    def append_block(
        self, chapter_id: UUID, content: str, *, scene_index: int | None, now: datetime
    ) -> ContentBlock:
        blocks = self._state.blocks.setdefault(chapter_id, [])
        sort_order = blocks[-1].sort_order + 1 if blocks else 0
        block = ContentBlock(
            chapter_id=chapter_id,
            sort_order=sort_order,
            content=content,
            scene_index=scene_index,
            created_at=now,
        )
        blocks.append(block)
        return block.model_copy()

    def enqueue(self, jobs: Sequence[WritingJob]) -> None:
        for job in jobs:
            self._state.jobs[job.id] = job.model_copy(deep=True)

    def claim_next(
        self,
        project_id: UUID,
        *,
        owner: str,
        lease_seconds: float,
        now: datetime,
        job_type: JobType | None = None,
    ) -> Optional[WritingJob]:
        jobs = [job for job in self._state.jobs.values() if job.project_id == project_id]
        if any(job.status == JobStatus.PROCESSING for job in jobs):
            return None
        eligible = [
            job
            for job in jobs
            if job.status == JobStatus.PENDING
            and job.next_retry_at <= now
            and (job_type is None or job.job_type == job_type)
        ]
        if not eligible:
            return None
        job = min(eligible, key=_claim_key)
        job.status = JobStatus.PROCESSING
        job.lease_owner = owner
        job.lease_expires_at = now + timedelta(seconds=lease_seconds)
        job.started_at = now
        return job.model_copy(deep=True)

    def get_job(self, job_id: UUID, *, for_update: bool = False) -> Optional[WritingJob]:
        job = self._state.jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def save_job(self, job: WritingJob) -> None:
        self._state.jobs[job.id] = job.model_copy(deep=True)

    def list_jobs(
        self,
        project_id: UUID,
        *,
        statuses: Iterable[JobStatus] | None = None,
        job_type: JobType | None = None,
    ) -> list[WritingJob]:
        wanted = set(statuses) if statuses is not None else None
        jobs = [
            job
            for job in self._state.jobs.values()
            if job.project_id == project_id
            and (wanted is None or job.status in wanted)
            and (job_type is None or job.job_type == job_type)
        ]
        jobs.sort(key=_claim_key)
        return [job.model_copy(deep=True) for job in jobs]

    def update_jobs_status(
        self,
        project_id: UUID,
        from_status: JobStatus,
        to_status: JobStatus,
        *,
        next_retry_at: datetime | None = None,
    ) -> int:
        touched = 0
        for job in self._state.jobs.values():
            if job.project_id != project_id or job.status != from_status:
                continue
            job.status = to_status
            if next_retry_at is not None:
                job.next_retry_at = next_retry_at
            touched += 1
        return touched

    def delete_jobs(self, project_id: UUID) -> int:
        doomed = [job_id for job_id, job in self._state.jobs.items() if job.project_id == project_id]
        for job_id in doomed:
            del self._state.jobs[job_id]
        return len(doomed)

    def requeue_expired(self, *, now: datetime, project_id: UUID | None = None) -> int:
        touched = 0
        for job in self._state.jobs.values():
            if project_id is not None and job.project_id != project_id:
                continue
            if job.status != JobStatus.PROCESSING:
                continue
            if job.lease_expires_at is not None and job.lease_expires_at > now:
                continue
            job.status = JobStatus.PENDING
            job.lease_owner = None
            job.lease_expires_at = None
            job.next_retry_at = now
            touched += 1
        return touched

    def earliest_retry_at(self, project_id: UUID, *, job_type: JobType | None = None) -> Optional[datetime]:
        pending = [
            job.next_retry_at
            for job in self._state.jobs.values()
            if job.project_id == project_id
            and job.status == JobStatus.PENDING
            and (job_type is None or job.job_type == job_type)
        ]
        return min(pending) if pending else None

    def get_ledger(self, user_id: UUID, period: str, *, for_update: bool = False) -> Optional[CreditLedger]:
        ledger = self._state.ledgers.get((user_id, period))
        return ledger.model_copy() if ledger else None

    def save_ledger(self, ledger: CreditLedger) -> None:
        self._state.ledgers[(ledger.user_id, ledger.period)] = ledger.model_copy()

    def has_debit(self, job_id: UUID) -> bool:
        return job_id in self._state.debits

    def record_debit(self, job_id: UUID, user_id: UUID, words: int, *, now: datetime) -> None:
        self._state.debits.setdefault(job_id, (user_id, words, now))

    def lookup_session_user(self, token_hash: str, *, now: datetime) -> Optional[UUID]:
        entry = self._state.sessions.get(token_hash)
        if entry is None:
            return None
        user_id, expires_at = entry
        if expires_at < now:
            del self._state.sessions[token_hash]
            return None
        return user_id


class MemoryStore(WritingStore):
    """Store backed by plain dictionaries.

    Sessions are serialised by a re-entrant lock and each one works on the
    live state; a snapshot taken on entry is restored if the block raises.
    """

    name = "memory"

    def __init__(self) -> None:
        self._state = _State()
        self._lock = threading.RLock()

    @contextmanager
    def session(self) -> Iterator[StoreSession]:
        with self._lock:
            snapshot = copy.deepcopy(self._state)
            try:
                yield MemorySession(self._state)
            except BaseException:
                self._restore(snapshot)
                raise

    def _restore(self, snapshot: _State) -> None:
        for name in _State.__dataclass_fields__:
            setattr(self._state, name, getattr(snapshot, name))

    def add_session(self, token_hash: str, user_id: UUID, expires_at: datetime) -> None:
        with self._lock:
            self._state.sessions[token_hash] = (user_id, expires_at)

    def debit_count(self) -> int:
        with self._lock:
            return len(self._state.debits)
