"""Tests for the stall watchdog and the worker pool."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from autowriter_jobs import PipelineSettings, ProgressBroadcaster, start_writing
from autowriter_jobs.store import MemoryStore
from autowriter_schemas import JobOutcome, JobStatus, JobType, ProgressEvent, WritingStatus

from services.orchestrator.app.pool import WorkerPool
from services.orchestrator.app.watchdog import StallWatchdog

from tests.utils.builders import ManualClock, seed_project


pytestmark = pytest.mark.anyio("asyncio")


def _writing_project(store: MemoryStore, clock: ManualClock):
    project, _ = seed_project(store, [2])
    with store.session() as session:
        start_writing(session, project.id, now=clock())
    return project


def _event(project_id, completed: int, clock: ManualClock) -> ProgressEvent:
    return ProgressEvent(
        project_id=project_id,
        job_id=uuid4(),
        job_type=JobType.WRITE_SCENE,
        outcome=JobOutcome.DONE,
        writing_status=WritingStatus.WRITING,
        completed_scenes=completed,
        failed_scenes=0,
        total_scenes=2,
        occurred_at=clock(),
    )


async def test_watchdog_resumes_once_per_stall(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project = _writing_project(store, clock)
    rearmed = []
    watchdog = StallWatchdog(store, settings, rearm=rearmed.append, clock=clock)

    assert await watchdog.check([project.id]) == []
    with store.session() as session:
        job = session.list_jobs(project.id)[0]
        job.next_retry_at = clock() + timedelta(hours=1)
        session.save_job(job)

    clock.advance(settings.watchdog_stall_seconds + 1)
    assert await watchdog.check([project.id]) == [project.id]
    assert rearmed == [project.id]
    with store.session() as session:
        assert session.get_job(job.id).next_retry_at == clock()

    clock.advance(settings.watchdog_stall_seconds + 1)
    assert await watchdog.check([project.id]) == []
    assert rearmed == [project.id]


async def test_progress_event_starts_a_new_episode(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project = _writing_project(store, clock)
    broadcaster = ProgressBroadcaster()
    rearmed = []
    watchdog = StallWatchdog(store, settings, rearm=rearmed.append, clock=clock)
    broadcaster.add_listener(watchdog.observe)

    await watchdog.check([project.id])
    clock.advance(settings.watchdog_stall_seconds + 1)
    await watchdog.check([project.id])
    assert len(rearmed) == 1

    with store.session() as session:
        stored = session.get_project(project.id)
        stored.completed_scenes = 1
        session.save_project(stored)
    await broadcaster.publish(_event(project.id, 1, clock))

    clock.advance(settings.watchdog_stall_seconds - 1)
    assert await watchdog.check([project.id]) == []
    clock.advance(2)
    assert await watchdog.check([project.id]) == [project.id]
    assert len(rearmed) == 2


async def test_watchdog_ignores_projects_not_writing(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _ = seed_project(store, [1], status=WritingStatus.PAUSED)
    watchdog = StallWatchdog(store, settings, clock=clock)
    await watchdog.check([project.id])
    clock.advance(settings.watchdog_stall_seconds * 3)
    assert await watchdog.check([project.id, uuid4()]) == []


async def test_pool_keeps_one_driver_per_project(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    release = asyncio.Event()
    started = []

    async def runner(project_id):
        started.append(project_id)
        await release.wait()

    pool = WorkerPool(store, runner, settings, clock=clock)
    project_id = uuid4()

    assert pool.arm(project_id) is True
    assert pool.arm(project_id) is False
    await asyncio.sleep(0)
    assert pool.active() == {project_id}

    release.set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert pool.active() == set()
    assert pool.arm(project_id) is True
    await pool.shutdown()
    assert started[0] == project_id


async def test_pool_survives_runner_errors(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    async def runner(project_id):
        raise RuntimeError("driver exploded")

    pool = WorkerPool(store, runner, settings, clock=clock)
    project_id = uuid4()
    pool.arm(project_id)
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert pool.active() == set()
    assert pool.arm(project_id) is True
    await pool.shutdown()


async def test_sweep_arms_active_projects_and_requeues_leases(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    active = _writing_project(store, clock)
    seed_project(store, [1], status=WritingStatus.IDLE)
    with store.session() as session:
        job = session.claim_next(active.id, owner="crashed", lease_seconds=10, now=clock())

    armed = []

    async def runner(project_id):
        armed.append(project_id)

    watchdog = StallWatchdog(store, settings, clock=clock)
    pool = WorkerPool(store, runner, settings, watchdog=watchdog, clock=clock)
    clock.advance(11)

    assert await pool.sweep() == [active.id]
    await pool.shutdown()
    with store.session() as session:
        assert session.get_job(job.id).status == JobStatus.PENDING


async def test_run_forever_stops_on_event(
    store: MemoryStore, clock: ManualClock
) -> None:
    settings = PipelineSettings(pool_sweep_seconds=0.01)

    async def runner(project_id):
        return None

    pool = WorkerPool(store, runner, settings, clock=clock)
    stop = asyncio.Event()
    loop_task = asyncio.create_task(pool.run_forever(stop))
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(loop_task, timeout=1)
