"""User control actions: start, pause, resume and cancel a writing run.

Each action runs inside the caller's store session so the status change and
the job-table mutation commit together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from uuid import UUID

from autowriter_schemas import (
    Chapter,
    ChapterStatus,
    ControlAction,
    JobStatus,
    Project,
    SceneStatus,
    WritingJob,
    WritingStatus,
)

from .exceptions import ActiveRunError, NoChaptersError, ProjectNotFoundError
from .ledger import ensure_credits
from .progress import phase_status, recount_project
from .state_machine import ensure_transition, transition
from .store import StoreSession

logger = logging.getLogger(__name__)

STOPPED_BY_USER = "Writing stopped by user"

RESUMABLE_STATUSES = frozenset(
    {
        WritingStatus.PAUSED,
        WritingStatus.FAILED,
        WritingStatus.QUEUED,
        WritingStatus.GENERATING_OUTLINES,
        WritingStatus.WRITING,
    }
)


@dataclass(slots=True)
class ControlResult:
    project: Project
    action: ControlAction
    jobs_created: int = 0
    jobs_affected: int = 0


def _load(session: StoreSession, project_id: UUID) -> Project:
    project = session.get_project(project_id, for_update=True)
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project


def _reset_chapter(chapter: Chapter) -> None:
    for stub in chapter.scene_outline or []:
        stub.status = SceneStatus.PENDING
        stub.error = None
    chapter.outline_error = None
    chapter.writing_status = ChapterStatus.OUTLINE_READY if chapter.has_outline else ChapterStatus.PENDING


def build_initial_jobs(project: Project, chapters: list[Chapter], *, now: datetime) -> list[WritingJob]:
    """One outline job per chapter lacking an outline, one scene job per existing stub."""

    jobs: list[WritingJob] = []
    for position, chapter in enumerate(chapters):
        if not chapter.has_outline:
            jobs.append(WritingJob.outline(project.id, chapter.id, sort_order=position, now=now))
            continue
        for index, stub in enumerate(chapter.scene_outline or []):
            jobs.append(
                WritingJob.scene(
                    project.id,
                    chapter.id,
                    chapter_position=position,
                    scene_index=index,
                    stub=stub,
                    now=now,
                )
            )
    return jobs


def start_writing(session: StoreSession, project_id: UUID, *, now: datetime) -> ControlResult:
    """Queue a fresh run.

    Raises:
        ProjectNotFoundError: Unknown project.
        ActiveRunError: Jobs are still pending or processing.
        NoChaptersError: Nothing to write.
        IllegalTransitionError: The current status cannot be restarted.
        InsufficientCreditsError: The owner has no word credits left.
    """

    project = _load(session, project_id)
    active = session.count_jobs(project_id, statuses=[JobStatus.PENDING, JobStatus.PROCESSING])
    if active:
        raise ActiveRunError(f"Project {project_id} already has {active} active writing jobs")
    chapters = session.list_chapters(project_id)
    if not chapters:
        raise NoChaptersError(f"Project {project_id} has no chapters to write")
    ensure_transition(project.writing_status, WritingStatus.QUEUED)
    ensure_credits(session, project.user_id, now=now)

    session.delete_jobs(project_id)
    for chapter in chapters:
        _reset_chapter(chapter)
        session.save_chapter(chapter)

    transition(project, WritingStatus.QUEUED, now=now)
    project.writing_error = None
    project.writing_started_at = now
    project.writing_completed_at = None
    project.last_activity_at = now
    recount_project(project, chapters)

    jobs = build_initial_jobs(project, chapters, now=now)
    session.enqueue(jobs)
    transition(project, phase_status(chapters), now=now)
    session.save_project(project)

    logger.info(
        "Writing run queued",
        extra={
            "project_id": str(project_id),
            "jobs_created": len(jobs),
            "writing_status": project.writing_status.value,
        },
    )
    return ControlResult(project=project, action=ControlAction.START, jobs_created=len(jobs))


def pause_writing(session: StoreSession, project_id: UUID, *, now: datetime) -> ControlResult:
    """Park pending jobs; a job already processing finishes normally."""

    project = _load(session, project_id)
    transition(project, WritingStatus.PAUSED, now=now)
    paused = session.update_jobs_status(project_id, JobStatus.PENDING, JobStatus.PAUSED)
    project.last_activity_at = now
    session.save_project(project)
    logger.info("Writing run paused", extra={"project_id": str(project_id), "jobs_paused": paused})
    return ControlResult(project=project, action=ControlAction.PAUSE, jobs_affected=paused)


def resume_writing(session: StoreSession, project_id: UUID, *, now: datetime) -> ControlResult:
    """Make parked and backed-off jobs eligible immediately.

    Resuming a project that is already running only clears retry delays.
    """

    project = _load(session, project_id)
    if project.writing_status not in RESUMABLE_STATUSES:
        ensure_transition(project.writing_status, WritingStatus.WRITING)
    ensure_credits(session, project.user_id, now=now)

    resumed = session.update_jobs_status(project_id, JobStatus.PENDING, JobStatus.PENDING, next_retry_at=now)
    resumed += session.update_jobs_status(project_id, JobStatus.PAUSED, JobStatus.PENDING, next_retry_at=now)

    if project.writing_status not in {WritingStatus.WRITING, WritingStatus.GENERATING_OUTLINES}:
        chapters = session.list_chapters(project_id)
        transition(project, phase_status(chapters), now=now)
    project.writing_error = None
    project.last_activity_at = now
    session.save_project(project)
    logger.info(
        "Writing run resumed",
        extra={
            "project_id": str(project_id),
            "jobs_resumed": resumed,
            "writing_status": project.writing_status.value,
        },
    )
    return ControlResult(project=project, action=ControlAction.RESUME, jobs_affected=resumed)


def cancel_writing(session: StoreSession, project_id: UUID, *, now: datetime) -> ControlResult:
    """Drop every job, reset stubs to pending and return the project to idle.

    Prose already written stays in place.
    """

    project = _load(session, project_id)
    deleted = session.delete_jobs(project_id)
    chapters = session.list_chapters(project_id)
    for chapter in chapters:
        _reset_chapter(chapter)
        session.save_chapter(chapter)

    transition(project, WritingStatus.IDLE, now=now)
    recount_project(project, chapters)
    project.total_scenes = 0
    project.completed_scenes = 0
    project.failed_scenes = 0
    project.writing_error = STOPPED_BY_USER
    project.last_activity_at = now
    session.save_project(project)
    logger.info("Writing run cancelled", extra={"project_id": str(project_id), "jobs_deleted": deleted})
    return ControlResult(project=project, action=ControlAction.CANCEL, jobs_affected=deleted)


ACTIONS: dict[ControlAction, Callable[..., ControlResult]] = {
    ControlAction.START: start_writing,
    ControlAction.PAUSE: pause_writing,
    ControlAction.RESUME: resume_writing,
    ControlAction.CANCEL: cancel_writing,
}


def apply_control(
    session: StoreSession,
    project_id: UUID,
    action: ControlAction,
    *,
    now: datetime,
) -> ControlResult:
    return ACTIONS[action](session, project_id, now=now)
