"""Outline worker: turns a chapter summary into an ordered list of scene stubs."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Sequence

from pydantic import BaseModel, Field, ValidationError

from autowriter_jobs.lifecycle import advance_phase, enqueue_missing_work
from autowriter_jobs.progress import current_phase
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
    SceneStub,
    WritingJob,
)
from autowriter_schemas.utils import count_words

from ..workers import JobWorker, WorkItem
from .prompts import OUTLINE_PROMPT, OUTLINE_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class OutlineScene(BaseModel):
    """Scene entry as requested from the provider."""

    scene_number: int = Field(..., ge=1)
    title: str
    pov: str | None = None
    section_type: str = "scene"
    location: str | None = None
    target_words: int | None = None
    description: str = ""
    key_events: list[str] = Field(default_factory=list)
    emotional_arc: str | None = None


class OutlinePayload(BaseModel):
    scenes: list[OutlineScene]


OUTLINE_SCHEMA = OutlinePayload.model_json_schema()


def parse_outline(text: str) -> list[SceneStub]:
    """Parse provider output into pending stubs numbered in reading order.

    Accepts either ``{"scenes": [...]}`` or a bare list, optionally wrapped in a
    markdown code fence.

    Raises:
        ProviderContentError: If the text is not a non-empty, valid scene list.
    """

    cleaned = _FENCE_PATTERN.sub("", text.strip())
    try:
        data: Any = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ProviderContentError("Outline response was not valid JSON") from exc

    raw_scenes = data.get("scenes") if isinstance(data, dict) else data
    if not isinstance(raw_scenes, list) or not raw_scenes:
        raise ProviderContentError("Outline response contained no scenes")

    stubs: list[SceneStub] = []
    try:
        for index, raw in enumerate(raw_scenes):
            if isinstance(raw, dict):
                raw = {**raw, "scene_number": index + 1}
            scene = OutlineScene.model_validate(raw)
            stubs.append(SceneStub(**scene.model_dump(), status=SceneStatus.PENDING))
    except ValidationError as exc:
        raise ProviderContentError(f"Outline scene {len(stubs) + 1} is malformed: {exc.errors()[0]['msg']}") from exc
    return stubs


class OutlineWorker(JobWorker):
    job_type = JobType.GENERATE_OUTLINE
    name = "outline"

    def prepare(
        self, session: StoreSession, job: WritingJob, project: Project, chapter: Chapter, now: datetime
    ) -> WorkItem | JobOutcome:
        if chapter.has_outline:
            self._skip(session, job, now, reason="chapter already has an outline")
            return JobOutcome.SKIPPED
        chapters = session.list_chapters(project.id)
        return WorkItem(job=job, project=project, chapter=chapter, chapters=chapters)

    async def generate(self, item: WorkItem) -> list[SceneStub]:
        chapters = list(item.chapters)
        position = next((i for i, c in enumerate(chapters) if c.id == item.chapter.id), 0)
        previous_chapter = chapters[position - 1].title if position > 0 else "none, this is the opening chapter"
        next_chapter = chapters[position + 1].title if position + 1 < len(chapters) else "none, this is the final chapter"
        target_words = (
            f"{item.project.target_word_count} words" if item.project.target_word_count else "not specified"
        )

        prompt = OUTLINE_PROMPT.format(
            chapter_number=position + 1,
            chapter_total=len(chapters) or 1,
            book_title=item.project.title,
            genre=item.project.genre or "general fiction",
            chapter_title=item.chapter.title,
            chapter_summary=item.chapter.summary or item.chapter.title,
            previous_chapter=previous_chapter,
            next_chapter=next_chapter,
            target_words=target_words,
        )
        request = ProviderRequest(
            prompt=prompt,
            system_prompt=OUTLINE_SYSTEM_PROMPT,
            json_schema=OUTLINE_SCHEMA,
            metadata={"task": "outline", "title": item.chapter.title, "project_id": str(item.project.id)},
        )
        response = await self.call_provider(request)
        stubs = parse_outline(response.text)
        logger.info("Outline parsed", extra={"scene_count": len(stubs)})
        return stubs

    def apply_success(
        self, session: StoreSession, job: WritingJob, chapter: Chapter, result: list[SceneStub], now: datetime
    ) -> int | None:
        if chapter.has_outline:
            return None
        chapter.scene_outline = result
        chapter.writing_status = ChapterStatus.OUTLINE_READY
        chapter.outline_error = None
        session.save_chapter(chapter)
        return sum(count_words(f"{stub.title} {stub.description}") for stub in result)

    def apply_content_failure(
        self, session: StoreSession, job: WritingJob, chapter: Chapter, message: str, now: datetime
    ) -> None:
        chapter.writing_status = ChapterStatus.OUTLINE_FAILED
        chapter.outline_error = message
        session.save_chapter(chapter)

    def after_resolution(
        self, session: StoreSession, project: Project, chapters: Sequence[Chapter], now: datetime
    ) -> None:
        if current_phase(chapters) != "scene":
            return
        # Last outline resolved: queue every stub without a job in one batch.
        enqueue_missing_work(session, project, chapters, now=now, include_outlines=False)
        advance_phase(project, chapters, now=now)
