"""Phase advancement, self-healing and completion shared by workers and the driver."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from autowriter_schemas import (
    OPEN_JOB_STATUSES,
    Chapter,
    JobType,
    Project,
    SceneStatus,
    WritingJob,
    WritingStatus,
)

from .progress import current_phase, work_remaining
from .state_machine import transition
from .store import StoreSession

logger = logging.getLogger(__name__)


def advance_phase(project: Project, chapters: Sequence[Chapter], *, now: datetime) -> bool:
    """Move queued/outline projects forward once the phase allows it."""

    phase = current_phase(chapters)
    if project.writing_status == WritingStatus.QUEUED:
        target = WritingStatus.GENERATING_OUTLINES if phase == "outline" else WritingStatus.WRITING
        return transition(project, target, now=now)
    if project.writing_status == WritingStatus.GENERATING_OUTLINES and phase == "scene":
        return transition(project, WritingStatus.WRITING, now=now)
    return False


def missing_jobs(
    project: Project,
    chapters: Sequence[Chapter],
    open_jobs: Sequence[WritingJob],
    *,
    now: datetime,
    include_outlines: bool = True,
) -> list[WritingJob]:
    """Jobs for unresolved work that has no open job.

    Covers chapters without an outline (and not given up on) and every stub
    still pending or stuck in ``writing``. Stuck stubs are reset to pending in
    place; callers persist the chapters.
    """

    outline_jobs = {job.chapter_id for job in open_jobs if job.job_type == JobType.GENERATE_OUTLINE}
    scene_jobs = {
        (job.chapter_id, job.scene_index) for job in open_jobs if job.job_type == JobType.WRITE_SCENE
    }
    created: list[WritingJob] = []
    for position, chapter in enumerate(chapters):
        if not chapter.outline_resolved:
            if include_outlines and chapter.id not in outline_jobs:
                created.append(WritingJob.outline(project.id, chapter.id, sort_order=position, now=now))
            continue
        for index, stub in enumerate(chapter.scene_outline or []):
            if stub.is_resolved or (chapter.id, index) in scene_jobs:
                continue
            stub.status = SceneStatus.PENDING
            created.append(
                WritingJob.scene(
                    project.id,
                    chapter.id,
                    chapter_position=position,
                    scene_index=index,
                    stub=stub,
                    now=now,
                )
            )
    return created


def enqueue_missing_work(
    session: StoreSession,
    project: Project,
    chapters: Sequence[Chapter],
    *,
    now: datetime,
    include_outlines: bool = True,
) -> int:
    open_jobs = session.list_jobs(project.id, statuses=OPEN_JOB_STATUSES)
    jobs = missing_jobs(project, chapters, open_jobs, now=now, include_outlines=include_outlines)
    if not jobs:
        return 0
    touched = {job.chapter_id for job in jobs}
    for chapter in chapters:
        if chapter.id in touched:
            session.save_chapter(chapter)
    session.enqueue(jobs)
    logger.info(
        "Enqueued missing writing jobs",
        extra={"project_id": str(project.id), "jobs_created": len(jobs)},
    )
    return len(jobs)


def complete_if_finished(
    session: StoreSession,
    project: Project,
    chapters: Sequence[Chapter],
    *,
    now: datetime,
) -> bool:
    """Mark a writing project completed once no stub or job is outstanding."""

    if project.writing_status != WritingStatus.WRITING:
        return False
    jobs = session.list_jobs(project.id, statuses=OPEN_JOB_STATUSES)
    if work_remaining(chapters, jobs):
        return False
    transition(project, WritingStatus.COMPLETED, now=now)
    project.current_chapter_index = None
    project.current_scene_index = None
    logger.info(
        "Writing run completed",
        extra={
            "project_id": str(project.id),
            "completed_scenes": project.completed_scenes,
            "failed_scenes": project.failed_scenes,
        },
    )
    return True
