"""Durable job queue, project state machine and control actions for unattended writing."""

from .config import PipelineSettings, get_pipeline_settings, load_pipeline_settings
from .control import (
    ControlResult,
    apply_control,
    cancel_writing,
    pause_writing,
    resume_writing,
    start_writing,
)
from .events import ProgressBroadcaster
from .exceptions import (
    ActiveRunError,
    IllegalTransitionError,
    InsufficientCreditsError,
    NoChaptersError,
    ProjectNotFoundError,
    StoreConfigError,
    WritingPipelineError,
)
from .progress import build_snapshot, current_phase, load_snapshot, phase_status, recount_project
from .state_machine import can_transition, ensure_transition, transition
from .store import MemoryStore, StoreSession, WritingStore, create_store

__all__ = [
    "ActiveRunError",
    "ControlResult",
    "IllegalTransitionError",
    "InsufficientCreditsError",
    "MemoryStore",
    "NoChaptersError",
    "PipelineSettings",
    "ProgressBroadcaster",
    "ProjectNotFoundError",
    "StoreConfigError",
    "StoreSession",
    "WritingPipelineError",
    "WritingStore",
    "apply_control",
    "build_snapshot",
    "can_transition",
    "cancel_writing",
    "create_store",
    "current_phase",
    "ensure_transition",
    "get_pipeline_settings",
    "load_pipeline_settings",
    "load_snapshot",
    "pause_writing",
    "phase_status",
    "recount_project",
    "resume_writing",
    "start_writing",
    "transition",
]
