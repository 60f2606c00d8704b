"""Closed transition table for a project's writing status."""

from __future__ import annotations

from datetime import datetime
from typing import Mapping

from autowriter_schemas import Project, WritingStatus

from .exceptions import IllegalTransitionError

S = WritingStatus

TRANSITIONS: Mapping[WritingStatus, frozenset[WritingStatus]] = {
    S.IDLE: frozenset({S.QUEUED}),
    S.QUEUED: frozenset({S.GENERATING_OUTLINES, S.WRITING, S.PAUSED, S.FAILED, S.IDLE}),
    S.GENERATING_OUTLINES: frozenset({S.WRITING, S.PAUSED, S.FAILED, S.IDLE}),
    S.WRITING: frozenset({S.COMPLETED, S.PAUSED, S.FAILED, S.IDLE}),
    S.PAUSED: frozenset({S.GENERATING_OUTLINES, S.WRITING, S.IDLE}),
    S.FAILED: frozenset({S.QUEUED, S.GENERATING_OUTLINES, S.WRITING, S.IDLE}),
    S.COMPLETED: frozenset({S.QUEUED, S.IDLE}),
}


def can_transition(current: WritingStatus, target: WritingStatus) -> bool:
    """Return True when ``current -> target`` is legal; staying put always is."""

    return current == target or target in TRANSITIONS[current]


def ensure_transition(current: WritingStatus, target: WritingStatus) -> None:
    if not can_transition(current, target):
        raise IllegalTransitionError(current.value, target.value)


def transition(project: Project, target: WritingStatus, *, now: datetime) -> bool:
    """Move ``project`` to ``target`` in place.

    Returns False for a same-state move, which leaves the record untouched.

    Raises:
        IllegalTransitionError: If the table does not allow the move.
    """

    ensure_transition(project.writing_status, target)
    if project.writing_status == target:
        return False
    project.writing_status = target
    project.updated_at = now
    if target == S.COMPLETED:
        project.writing_completed_at = now
    return True
