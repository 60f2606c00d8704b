"""Counters, phase detection and progress snapshots derived from stored state."""

from __future__ import annotations

from typing import Literal, Optional, Sequence
from uuid import UUID

from autowriter_schemas import (
    Chapter,
    JobStatus,
    Project,
    ProgressSnapshot,
    SceneStatus,
    WritingJob,
    WritingStatus,
)

from .config import PipelineSettings
from .store.base import StoreSession

Phase = Literal["outline", "scene"]


def current_phase(chapters: Sequence[Chapter]) -> Phase:
    """Outline phase lasts while any chapter has neither an outline nor a failed one."""

    return "outline" if any(not chapter.outline_resolved for chapter in chapters) else "scene"


def phase_status(chapters: Sequence[Chapter]) -> WritingStatus:
    if current_phase(chapters) == "outline":
        return WritingStatus.GENERATING_OUTLINES
    return WritingStatus.WRITING


def recount_project(project: Project, chapters: Sequence[Chapter]) -> None:
    """Recompute scene counters, word count and the cursor from the chapters.

    ``total_scenes`` only counts real stubs, so it grows as outlines land and
    ``completed_scenes + failed_scenes`` can never exceed it.
    """

    total = completed = failed = 0
    cursor: tuple[int, int] | None = None
    for position, chapter in enumerate(chapters):
        for index, stub in enumerate(chapter.scene_outline or []):
            total += 1
            if stub.status == SceneStatus.DONE:
                completed += 1
            elif stub.status in {SceneStatus.FAILED, SceneStatus.SKIPPED}:
                failed += 1
            elif cursor is None:
                cursor = (position, index)
    project.total_scenes = total
    project.completed_scenes = completed
    project.failed_scenes = failed
    project.word_count = sum(chapter.word_count for chapter in chapters)
    project.current_chapter_index = cursor[0] if cursor else None
    project.current_scene_index = cursor[1] if cursor else None


def work_remaining(chapters: Sequence[Chapter], jobs: Sequence[WritingJob]) -> bool:
    """True while any outline or stub is unresolved or any job is still open."""

    if current_phase(chapters) == "outline":
        return True
    for chapter in chapters:
        if any(not stub.is_resolved for stub in chapter.scene_outline or []):
            return True
    open_statuses = {JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.PAUSED}
    return any(job.status in open_statuses for job in jobs)


def build_snapshot(
    project: Project,
    chapters: Sequence[Chapter],
    jobs: Sequence[WritingJob],
    settings: PipelineSettings,
) -> ProgressSnapshot:
    stubs = [stub for chapter in chapters for stub in chapter.scene_outline or []]
    completed = sum(1 for stub in stubs if stub.status == SceneStatus.DONE)
    failed = sum(1 for stub in stubs if stub.status == SceneStatus.FAILED)
    skipped = sum(1 for stub in stubs if stub.status == SceneStatus.SKIPPED)
    outlines_ready = sum(1 for chapter in chapters if chapter.has_outline)
    unresolved = sum(1 for chapter in chapters if not chapter.outline_resolved)
    estimated = len(stubs) + unresolved * settings.estimated_scenes_per_chapter

    current_chapter_title = current_scene_title = None
    chapter_index = project.current_chapter_index
    scene_index = project.current_scene_index
    if chapter_index is not None and 0 <= chapter_index < len(chapters):
        chapter = chapters[chapter_index]
        current_chapter_title = chapter.title
        stub = chapter.stub(scene_index) if scene_index is not None else None
        current_scene_title = stub.title if stub else None

    if project.writing_status == WritingStatus.COMPLETED:
        percent = 100.0
    elif estimated:
        percent = round(min((completed + failed + skipped) / estimated * 100, 100.0), 1)
    else:
        percent = 0.0

    return ProgressSnapshot(
        project_id=project.id,
        writing_status=project.writing_status,
        total=len(stubs),
        completed=completed,
        failed=failed,
        skipped=skipped,
        pending=sum(1 for job in jobs if job.status == JobStatus.PENDING),
        outlines_ready=outlines_ready,
        outlines_total=len(chapters),
        estimated_total_scenes=estimated,
        current_chapter_title=current_chapter_title,
        current_scene_title=current_scene_title,
        current_chapter_index=chapter_index,
        current_scene_index=scene_index,
        word_count=project.word_count,
        target_word_count=project.target_word_count,
        percent=percent,
        writing_error=project.writing_error,
        last_activity_at=project.last_activity_at,
    )


def load_snapshot(
    session: StoreSession,
    project_id: UUID,
    settings: PipelineSettings,
) -> Optional[ProgressSnapshot]:
    project = session.get_project(project_id)
    if project is None:
        return None
    chapters = session.list_chapters(project_id)
    jobs = session.list_jobs(project_id)
    return build_snapshot(project, chapters, jobs, settings)
