"""Enum definitions shared across the writing pipeline."""

from __future__ import annotations

from enum import Enum


class WritingStatus(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    GENERATING_OUTLINES = "generating_outlines"
    WRITING = "writing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class ChapterStatus(str, Enum):
    PENDING = "pending"
    OUTLINE_READY = "outline_ready"
    WRITING = "writing"
    COMPLETED = "completed"
    OUTLINE_FAILED = "outline_failed"


class SceneStatus(str, Enum):
    PENDING = "pending"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobType(str, Enum):
    GENERATE_OUTLINE = "generate_outline"
    WRITE_SCENE = "write_scene"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    DONE = "done"
    FAILED = "failed"


class ControlAction(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


class FailureKind(str, Enum):
    """How a failed attempt is treated by the retry policy."""

    TRANSIENT = "transient"
    CONTENT = "content"
    RESOURCE = "resource"


class JobOutcome(str, Enum):
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"
    RETRY = "retry"
    RECOVERY = "recovery"
    PAUSED = "paused"
    DISCARDED = "discarded"


ACTIVE_WRITING_STATUSES = frozenset(
    {WritingStatus.QUEUED, WritingStatus.GENERATING_OUTLINES, WritingStatus.WRITING}
)
RESOLVED_SCENE_STATUSES = frozenset({SceneStatus.DONE, SceneStatus.FAILED, SceneStatus.SKIPPED})
OPEN_JOB_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.PAUSED})
