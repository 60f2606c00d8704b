"""Attempt bookkeeping for failed jobs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from autowriter_schemas import JobOutcome, JobStatus, WritingJob

from .config import PipelineSettings


@dataclass(slots=True)
class RetryDecision:
    outcome: JobOutcome
    attempt_count: int
    next_retry_at: datetime


def plan_retry(
    job: WritingJob,
    settings: PipelineSettings,
    *,
    now: datetime,
    retry_after: float | None = None,
) -> RetryDecision:
    """Decide when a transiently failed job becomes eligible again.

    Below ``max_retries`` the job is retried at once (or after the provider's
    ``retry_after`` hint). Reaching the limit schedules a recovery after
    ``recovery_delay_seconds`` and starts the count over, so the job is never
    dropped.
    """

    attempts = job.attempt_count + 1
    if attempts < settings.max_retries:
        delay = max(retry_after or 0.0, 0.0)
        return RetryDecision(JobOutcome.RETRY, attempts, now + timedelta(seconds=delay))
    return RetryDecision(
        JobOutcome.RECOVERY,
        0,
        now + timedelta(seconds=settings.recovery_delay_seconds),
    )


def apply_retry(job: WritingJob, decision: RetryDecision, *, error: str) -> None:
    job.status = JobStatus.PENDING
    job.attempt_count = decision.attempt_count
    job.next_retry_at = decision.next_retry_at
    job.last_error = error[:2000]
    job.lease_owner = None
    job.lease_expires_at = None
