"""Domain errors raised by the writing pipeline."""

from __future__ import annotations

from uuid import UUID


class WritingPipelineError(RuntimeError):
    """Base error for the writing pipeline."""


class ProjectNotFoundError(WritingPipelineError):
    def __init__(self, project_id: UUID) -> None:
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class IllegalTransitionError(WritingPipelineError):
    """Raised when a project status change is not in the transition table."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move writing status from {current} to {target}")
        self.current = current
        self.target = target


class ActiveRunError(WritingPipelineError):
    """Raised when a start is requested while jobs are still queued or running."""


class NoChaptersError(WritingPipelineError):
    """Raised when a start is requested for a project without chapters."""


class InsufficientCreditsError(WritingPipelineError):
    """Raised when the owner's credit ledger cannot cover more generation."""

    def __init__(self, user_id: UUID, available: int) -> None:
        super().__init__(
            "Not enough word credits to continue writing. "
            "Top up your balance or wait for the monthly reset, then resume."
        )
        self.user_id = user_id
        self.available = available


class StoreConfigError(WritingPipelineError):
    """Raised when the job store back end cannot be selected or opened."""
