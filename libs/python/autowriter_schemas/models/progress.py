"""Progress views published to the API and to in-process observers."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..enums import JobOutcome, JobType, WritingStatus
from .project import utcnow


class ProgressSnapshot(BaseModel):
    """Aggregate view of a project's writing run."""

    project_id: UUID
    writing_status: WritingStatus
    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    pending: int = 0
    outlines_ready: int = 0
    outlines_total: int = 0
    estimated_total_scenes: int = 0
    current_chapter_title: Optional[str] = None
    current_scene_title: Optional[str] = None
    current_chapter_index: Optional[int] = None
    current_scene_index: Optional[int] = None
    word_count: int = 0
    target_word_count: Optional[int] = None
    percent: float = Field(0.0, ge=0, le=100)
    writing_error: Optional[str] = None
    last_activity_at: Optional[datetime] = None


class ProgressEvent(BaseModel):
    """Emitted after every job attempt so observers need not poll."""

    project_id: UUID
    job_id: Optional[UUID] = None
    job_type: Optional[JobType] = None
    outcome: JobOutcome
    writing_status: WritingStatus
    completed_scenes: int = 0
    failed_scenes: int = 0
    total_scenes: int = 0
    occurred_at: datetime = Field(default_factory=utcnow)
