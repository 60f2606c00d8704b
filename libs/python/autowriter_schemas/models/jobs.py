"""Durable job and credit ledger records."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ..enums import JobStatus, JobType
from .project import SceneStub, utcnow

OUTLINE_PRIORITY = 10
SCENE_PRIORITY = 5
SCENE_SORT_STRIDE = 1000


class WritingJob(BaseModel):
    """Unit of durable work: one chapter outline or one scene."""

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    chapter_id: UUID
    job_type: JobType
    status: JobStatus = JobStatus.PENDING
    scene_index: Optional[int] = Field(None, ge=0)
    scene_snapshot: Optional[SceneStub] = None
    priority: int = 0
    sort_order: int = 0
    attempt_count: int = Field(0, ge=0)
    next_retry_at: datetime = Field(default_factory=utcnow)
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def outline(cls, project_id: UUID, chapter_id: UUID, *, sort_order: int, now: datetime) -> "WritingJob":
        return cls(
            project_id=project_id,
            chapter_id=chapter_id,
            job_type=JobType.GENERATE_OUTLINE,
            priority=OUTLINE_PRIORITY,
            sort_order=sort_order,
            next_retry_at=now,
            created_at=now,
        )

    @classmethod
    def scene(
        cls,
        project_id: UUID,
        chapter_id: UUID,
        *,
        chapter_position: int,
        scene_index: int,
        stub: SceneStub,
        now: datetime,
    ) -> "WritingJob":
        return cls(
            project_id=project_id,
            chapter_id=chapter_id,
            job_type=JobType.WRITE_SCENE,
            scene_index=scene_index,
            scene_snapshot=stub.model_copy(),
            priority=SCENE_PRIORITY,
            sort_order=chapter_position * SCENE_SORT_STRIDE + scene_index,
            next_retry_at=now,
            created_at=now,
        )


class CreditLedger(BaseModel):
    """Per-user word allowance for one billing period (``YYYY-MM``)."""

    user_id: UUID
    period: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    monthly_limit: int = Field(0, ge=0)
    used_this_period: int = Field(0, ge=0)
    overflow_balance: int = Field(0, ge=0)

    @property
    def monthly_remaining(self) -> int:
        return max(self.monthly_limit - self.used_this_period, 0)

    @property
    def available(self) -> int:
        return self.monthly_remaining + self.overflow_balance
