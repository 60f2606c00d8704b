"""Domain models describing projects, chapters and their scene outlines."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from ..enums import ChapterStatus, SceneStatus, WritingStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SceneStub(BaseModel):
    """One planned scene inside a chapter outline."""

    scene_number: int = Field(..., ge=1)
    title: str = Field(..., min_length=1, max_length=300)
    pov: Optional[str] = Field(None, max_length=200)
    section_type: str = Field("scene", max_length=50)
    location: Optional[str] = Field(None, max_length=300)
    target_words: Optional[int] = Field(None, ge=50, le=20000)
    description: str = Field("", max_length=4000)
    key_events: list[str] = Field(default_factory=list)
    emotional_arc: Optional[str] = Field(None, max_length=1000)
    status: SceneStatus = SceneStatus.PENDING
    error: Optional[str] = None

    @field_validator("title", "description")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()

    @property
    def is_resolved(self) -> bool:
        return self.status in {SceneStatus.DONE, SceneStatus.FAILED, SceneStatus.SKIPPED}


class Chapter(BaseModel):
    """Chapter whose scenes are written one job at a time."""

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    title: str = Field(..., min_length=1, max_length=300)
    summary: Optional[str] = Field(None, max_length=4000)
    sort_order: int = Field(..., ge=0)
    scene_outline: Optional[list[SceneStub]] = None
    word_count: int = Field(0, ge=0)
    writing_status: ChapterStatus = ChapterStatus.PENDING
    outline_error: Optional[str] = None

    @property
    def has_outline(self) -> bool:
        return bool(self.scene_outline)

    @property
    def outline_resolved(self) -> bool:
        """True once the outline exists or has been given up on."""

        return self.has_outline or self.writing_status == ChapterStatus.OUTLINE_FAILED

    def stub(self, scene_index: int) -> Optional[SceneStub]:
        if not self.scene_outline or scene_index < 0 or scene_index >= len(self.scene_outline):
            return None
        return self.scene_outline[scene_index]


class ContentBlock(BaseModel):
    """Prose appended to a chapter by the scene writer."""

    id: UUID = Field(default_factory=uuid4)
    chapter_id: UUID
    sort_order: int = Field(..., ge=0)
    content: str
    scene_index: Optional[int] = Field(None, ge=0)
    created_at: datetime = Field(default_factory=utcnow)


class Project(BaseModel):
    """A book being generated unattended."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=300)
    genre: Optional[str] = Field(None, max_length=100)
    writing_status: WritingStatus = WritingStatus.IDLE
    total_scenes: int = Field(0, ge=0)
    completed_scenes: int = Field(0, ge=0)
    failed_scenes: int = Field(0, ge=0)
    current_chapter_index: Optional[int] = None
    current_scene_index: Optional[int] = None
    word_count: int = Field(0, ge=0)
    target_word_count: Optional[int] = Field(None, ge=0)
    writing_error: Optional[str] = None
    writing_started_at: Optional[datetime] = None
    writing_completed_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
