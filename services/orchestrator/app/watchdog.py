"""Stall watchdog: forces one resume when a writing project stops making progress."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

from fastapi.concurrency import run_in_threadpool

from autowriter_jobs import PipelineSettings, WritingPipelineError, resume_writing
from autowriter_jobs.store import WritingStore
from autowriter_observability import record_watchdog_resume
from autowriter_schemas import ProgressEvent, WritingStatus, utcnow

from .workers import SERVICE_NAME, Clock

logger = logging.getLogger(__name__)

Rearm = Callable[[UUID], Any]


@dataclass(slots=True)
class _Track:
    completed: int
    changed_at: datetime
    resumed: bool = False


class StallWatchdog:
    """Track ``completed_scenes`` per project from events and periodic checks.

    A project counts as stalled when it is ``writing`` and the counter has not
    moved for ``watchdog_stall_seconds``. Each stall episode triggers exactly
    one resume; the episode ends when the counter changes.
    """

    def __init__(
        self,
        store: WritingStore,
        settings: PipelineSettings,
        *,
        rearm: Optional[Rearm] = None,
        clock: Clock = utcnow,
        service_name: str = SERVICE_NAME,
    ) -> None:
        self.store = store
        self.settings = settings
        self.rearm = rearm
        self.clock = clock
        self.service_name = service_name
        self._tracks: dict[UUID, _Track] = {}

    def observe(self, event: ProgressEvent) -> None:
        """Progress listener; register with :class:`ProgressBroadcaster`."""

        self._update(event.project_id, event.completed_scenes, self.clock())

    def _update(self, project_id: UUID, completed: int, now: datetime) -> _Track:
        track = self._tracks.get(project_id)
        if track is None or track.completed != completed:
            track = _Track(completed=completed, changed_at=now)
            self._tracks[project_id] = track
        return track

    def forget(self, project_id: UUID) -> None:
        self._tracks.pop(project_id, None)

    async def check(self, project_ids: Iterable[UUID]) -> list[UUID]:
        """Resume every stalled project among ``project_ids``; returns those resumed."""

        resumed: list[UUID] = []
        for project_id in project_ids:
            if await self._check_one(project_id):
                resumed.append(project_id)
        return resumed

    async def _check_one(self, project_id: UUID) -> bool:
        project = await run_in_threadpool(self._load, project_id)
        if project is None or project.writing_status != WritingStatus.WRITING:
            self.forget(project_id)
            return False

        now = self.clock()
        track = self._update(project_id, project.completed_scenes, now)
        if track.resumed:
            return False
        if now - track.changed_at < timedelta(seconds=self.settings.watchdog_stall_seconds):
            return False

        track.resumed = True
        try:
            await run_in_threadpool(self._resume, project_id)
        except WritingPipelineError as exc:
            logger.warning(
                "Stalled project could not be resumed",
                extra={"project_id": str(project_id), "error": str(exc)},
            )
            return False
        record_watchdog_resume(service_name=self.service_name)
        logger.warning(
            "Writing stalled; forcing resume",
            extra={
                "project_id": str(project_id),
                "completed_scenes": track.completed,
                "stalled_seconds": (now - track.changed_at).total_seconds(),
            },
        )
        if self.rearm is not None:
            result = self.rearm(project_id)
            if inspect.isawaitable(result):
                await result
        return True

    def _load(self, project_id: UUID):
        with self.store.session() as session:
            return session.get_project(project_id)

    def _resume(self, project_id: UUID) -> None:
        with self.store.session() as session:
            resume_writing(session, project_id, now=self.clock())
