"""Shared domain models and enums for the writing pipeline."""

from .enums import (
    ACTIVE_WRITING_STATUSES,
    OPEN_JOB_STATUSES,
    RESOLVED_SCENE_STATUSES,
    ChapterStatus,
    ControlAction,
    FailureKind,
    JobOutcome,
    JobStatus,
    JobType,
    SceneStatus,
    WritingStatus,
)
from .models import (
    OUTLINE_PRIORITY,
    SCENE_PRIORITY,
    Chapter,
    ContentBlock,
    CreditLedger,
    ProgressEvent,
    ProgressSnapshot,
    Project,
    SceneStub,
    WritingJob,
    utcnow,
)

__all__ = [
    "ACTIVE_WRITING_STATUSES",
    "OPEN_JOB_STATUSES",
    "RESOLVED_SCENE_STATUSES",
    "Chapter",
    "ChapterStatus",
    "ContentBlock",
    "ControlAction",
    "CreditLedger",
    "FailureKind",
    "JobOutcome",
    "JobStatus",
    "JobType",
    "OUTLINE_PRIORITY",
    "ProgressEvent",
    "ProgressSnapshot",
    "Project",
    "SCENE_PRIORITY",
    "SceneStatus",
    "SceneStub",
    "WritingJob",
    "WritingStatus",
    "utcnow",
]
