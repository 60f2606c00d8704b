"""Scene worker: writes the prose for one scene stub and appends it to the chapter."""

from __future__ import annotations

import logging
from datetime import datetime

from autowriter_jobs.store import StoreSession
from autowriter_providers import ProviderRequest
from autowriter_providers.exceptions import ProviderContentError
from autowriter_schemas import (
    Chapter,
    ChapterStatus,
    JobOutcome,
    JobType,
    Project,
    SceneStatus,
    WritingJob,
)
from autowriter_schemas.utils import count_words, split_paragraphs

from ..context import previous_prose, summarise_prompt
from ..workers import JobWorker, WorkItem
from .prompts import SCENE_PROMPT, SCENE_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_TARGET_WORDS = 1000


def _refresh_chapter_status(chapter: Chapter) -> None:
    stubs = chapter.scene_outline or []
    if stubs and all(stub.is_resolved for stub in stubs):
        chapter.writing_status = ChapterStatus.COMPLETED
    elif any(stub.status != SceneStatus.PENDING for stub in stubs):
        chapter.writing_status = ChapterStatus.WRITING


class SceneWorker(JobWorker):
    job_type = JobType.WRITE_SCENE
    name = "scene"

    def prepare(
        self, session: StoreSession, job: WritingJob, project: Project, chapter: Chapter, now: datetime
    ) -> WorkItem | JobOutcome:
        stub = chapter.stub(job.scene_index) if job.scene_index is not None else None
        if stub is None:
            self._skip(session, job, now, reason="scene stub no longer exists")
            return JobOutcome.SKIPPED
        if stub.is_resolved:
            self._skip(session, job, now, reason=f"scene already {stub.status.value}")
            return JobOutcome.SKIPPED

        stub.status = SceneStatus.WRITING
        chapter.writing_status = ChapterStatus.WRITING
        session.save_chapter(chapter)

        excerpt = previous_prose(session.list_blocks(chapter.id), self.settings.context_chars)
        return WorkItem(
            job=job,
            project=project,
            chapter=chapter,
            context={"previous_prose": excerpt},
        )

    async def generate(self, item: WorkItem) -> str:
        chapter = item.chapter
        index = item.job.scene_index or 0
        stub = chapter.stub(index) or item.job.scene_snapshot
        if stub is None:
            raise ProviderContentError("Scene plan missing")
        following = chapter.stub(index + 1)

        prompt = SCENE_PROMPT.format(
            scene_number=index + 1,
            scene_total=len(chapter.scene_outline or []) or 1,
            chapter_title=chapter.title,
            book_title=item.project.title,
            genre=item.project.genre or "general fiction",
            chapter_summary=chapter.summary or chapter.title,
            scene_title=stub.title,
            pov=stub.pov or "as established",
            location=stub.location or "as established",
            section_type=stub.section_type,
            description=stub.description or stub.title,
            key_events="; ".join(stub.key_events) or "none listed",
            emotional_arc=stub.emotional_arc or "not specified",
            target_words=stub.target_words or DEFAULT_TARGET_WORDS,
            next_scene=f"{following.title}: {following.description}" if following else "none, this closes the chapter",
            previous_prose=item.context.get("previous_prose") or "(the chapter starts with this scene)",
        )
        prompt, trimmed = summarise_prompt(prompt)
        if trimmed:
            logger.info("Scene prompt trimmed to context budget")

        request = ProviderRequest(
            prompt=prompt,
            system_prompt=SCENE_SYSTEM_PROMPT,
            metadata={"task": "scene", "title": stub.title, "project_id": str(item.project.id)},
        )
        response = await self.call_provider(request)
        text = response.text.strip()
        if len(text) < self.settings.min_scene_length:
            raise ProviderContentError(
                f"Scene prose too short ({len(text)} characters, minimum {self.settings.min_scene_length})"
            )
        return text

    def apply_success(
        self, session: StoreSession, job: WritingJob, chapter: Chapter, result: str, now: datetime
    ) -> int | None:
        stub = chapter.stub(job.scene_index) if job.scene_index is not None else None
        if stub is None or stub.is_resolved:
            return None
        paragraphs = split_paragraphs(result)
        for paragraph in paragraphs:
            session.append_block(chapter.id, paragraph, scene_index=job.scene_index, now=now)
        words = count_words(result)
        chapter.word_count += words
        stub.status = SceneStatus.DONE
        stub.error = None
        _refresh_chapter_status(chapter)
        session.save_chapter(chapter)
        logger.info("Scene written", extra={"words": words, "paragraphs": len(paragraphs)})
        return words

    def apply_content_failure(
        self, session: StoreSession, job: WritingJob, chapter: Chapter, message: str, now: datetime
    ) -> None:
        stub = chapter.stub(job.scene_index) if job.scene_index is not None else None
        if stub is None or stub.is_resolved:
            return
        stub.status = SceneStatus.FAILED
        stub.error = message
        _refresh_chapter_status(chapter)
        session.save_chapter(chapter)

    def release(self, session: StoreSession, job: WritingJob, chapter: Chapter | None, now: datetime) -> None:
        if chapter is None or job.scene_index is None:
            return
        stub = chapter.stub(job.scene_index)
        if stub is not None and stub.status == SceneStatus.WRITING:
            stub.status = SceneStatus.PENDING
            session.save_chapter(chapter)
