"""Pydantic models for the orchestrator API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from autowriter_schemas import JobOutcome, JobType, WritingStatus, utcnow

TickResultKind = Literal["processed", "idle", "stopped", "skipped", "completed", "stalled", "healed", "missing"]


class WorkerRequest(BaseModel):
    project_id: UUID


class TickResponse(BaseModel):
    project_id: UUID
    result: TickResultKind
    job_id: Optional[UUID] = None
    job_type: Optional[JobType] = None
    outcome: Optional[JobOutcome] = None
    writing_status: Optional[WritingStatus] = None
    delay_seconds: Optional[float] = Field(None, ge=0)
    received_at: datetime = Field(default_factory=utcnow)


class DriveResponse(BaseModel):
    project_id: UUID
    armed: bool
