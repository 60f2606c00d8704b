"""In-process pool of per-project driver loops."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from fastapi.concurrency import run_in_threadpool

from autowriter_jobs import PipelineSettings
from autowriter_jobs.store import WritingStore
from autowriter_schemas import utcnow

from .watchdog import StallWatchdog
from .workers import Clock

logger = logging.getLogger(__name__)

Runner = Callable[[UUID], Awaitable[Any]]


class WorkerPool:
    """Keep at most one driving task per project alive in this process."""

    def __init__(
        self,
        store: WritingStore,
        runner: Runner,
        settings: PipelineSettings,
        *,
        watchdog: Optional[StallWatchdog] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.runner = runner
        self.settings = settings
        self.watchdog = watchdog
        self.clock = clock
        self._tasks: dict[UUID, asyncio.Task] = {}

    def active(self) -> set[UUID]:
        return {project_id for project_id, task in self._tasks.items() if not task.done()}

    def arm(self, project_id: UUID) -> bool:
        """Start a driving task for ``project_id`` unless one is already running."""

        task = self._tasks.get(project_id)
        if task is not None and not task.done():
            return False
        self._tasks[project_id] = asyncio.create_task(
            self._drive(project_id), name=f"drive-{project_id}"
        )
        logger.info("Armed project driver", extra={"project_id": str(project_id)})
        return True

    async def _drive(self, project_id: UUID) -> None:
        try:
            await self.runner(project_id)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001 - next sweep re-arms the project
            logger.exception("Project driver failed", extra={"project_id": str(project_id)})
        finally:
            if self._tasks.get(project_id) is asyncio.current_task():
                self._tasks.pop(project_id, None)

    async def sweep(self) -> list[UUID]:
        """Re-queue expired leases, arm every active project and run the watchdog."""

        project_ids = await run_in_threadpool(self._active_projects)
        armed = [project_id for project_id in project_ids if self.arm(project_id)]
        if self.watchdog is not None:
            await self.watchdog.check(project_ids)
        if armed:
            logger.info("Pool sweep armed projects", extra={"armed": len(armed)})
        return armed

    def _active_projects(self) -> list[UUID]:
        with self.store.session() as session:
            requeued = session.requeue_expired(now=self.clock())
            if requeued:
                logger.warning("Re-queued jobs with expired leases", extra={"requeued": requeued})
            return session.list_active_project_ids()

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.sweep()
            except Exception:  # noqa: BLE001 - keep sweeping after store hiccups
                logger.exception("Pool sweep failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.settings.pool_sweep_seconds)
            except asyncio.TimeoutError:
                pass

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
