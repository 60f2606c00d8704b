"""Tests for the orchestration driver."""

import asyncio
from uuid import uuid4

import pytest

from autowriter_jobs import PipelineSettings, ProgressBroadcaster, start_writing
from autowriter_jobs.store import MemoryStore
from autowriter_providers import (
    LLMProvider,
    MockProvider,
    ProviderCapabilities,
    ProviderRateLimitError,
    ProviderRequest,
    ProviderResponse,
    ProviderTransientError,
)
from autowriter_schemas import JobOutcome, JobStatus, JobType, SceneStatus, WritingStatus

from services.orchestrator.app.driver import OrchestrationDriver
from services.orchestrator.app.outline import OutlineWorker
from services.orchestrator.app.scene import SceneWorker

from tests.utils.builders import PROSE, ManualClock, outline_json, seed_project


pytestmark = pytest.mark.anyio("asyncio")


def _driver(store, provider, settings, clock, broadcaster=None) -> OrchestrationDriver:
    async def _sleep(seconds: float) -> None:
        clock.advance(seconds)

    kwargs = dict(broadcaster=broadcaster, clock=clock)
    workers = {
        JobType.GENERATE_OUTLINE: OutlineWorker(store, provider, settings, **kwargs),
        JobType.WRITE_SCENE: SceneWorker(store, provider, settings, **kwargs),
    }
    return OrchestrationDriver(store, workers, settings, clock=clock, sleep=_sleep)


def _start(store: MemoryStore, counts, clock: ManualClock):
    project, chapters = seed_project(store, counts)
    with store.session() as session:
        result = start_writing(session, project.id, now=clock())
    return project, chapters, result


async def test_book_with_partial_outline_runs_to_completion(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, chapters, started = _start(store, [3, None], clock)
    assert started.jobs_created == 4
    assert started.project.writing_status == WritingStatus.GENERATING_OUTLINES

    provider = MockProvider(responses=[outline_json(2), PROSE, PROSE, PROSE, "Too short.", PROSE])
    broadcaster = ProgressBroadcaster()
    events = broadcaster.subscribe(maxsize=50)
    driver = _driver(store, provider, settings, clock, broadcaster)

    first = await driver.tick(project.id)
    assert first.result == "processed"
    assert first.job_type == JobType.GENERATE_OUTLINE
    assert first.delay_seconds == settings.outline_tick_seconds
    with store.session() as session:
        stored = session.get_project(project.id)
        assert session.count_jobs(project.id, job_type=JobType.WRITE_SCENE) == 5
    assert stored.writing_status == WritingStatus.WRITING
    assert stored.total_scenes == 5

    final = await driver.run(project.id)

    assert final.writing_status == WritingStatus.COMPLETED
    with store.session() as session:
        stored = session.get_project(project.id)
        second = session.get_chapter(chapters[1].id)
    assert stored.writing_status == WritingStatus.COMPLETED
    assert (stored.completed_scenes, stored.failed_scenes, stored.total_scenes) == (4, 1, 5)
    assert [stub.status for stub in second.scene_outline] == [SceneStatus.FAILED, SceneStatus.DONE]

    tasks = [request.metadata["task"] for request in provider.requests]
    assert tasks == ["outline", "scene", "scene", "scene", "scene", "scene"]

    totals = []
    while not events.empty():
        event = events.get_nowait()
        assert event.completed_scenes + event.failed_scenes <= event.total_scenes
        totals.append(event.total_scenes)
    assert len(totals) == 6
    assert totals == sorted(totals)


async def test_scene_endpoint_waits_during_outline_phase(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _, _ = _start(store, [2, None], clock)
    provider = MockProvider()
    driver = _driver(store, provider, settings, clock)

    response = await driver.tick(project.id, job_type=JobType.WRITE_SCENE)

    assert response.result == "idle"
    assert provider.requests == []

    response = await driver.tick(project.id, job_type=JobType.GENERATE_OUTLINE)
    assert response.result == "processed"
    assert response.outcome == JobOutcome.DONE


async def test_outlines_finish_before_scenes_even_when_backing_off(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _, _ = _start(store, [2, None], clock)
    provider = MockProvider(responses=[ProviderRateLimitError("busy", retry_after=20)])
    driver = _driver(store, provider, settings, clock)

    first = await driver.tick(project.id)
    assert first.outcome == JobOutcome.RETRY

    waiting = await driver.tick(project.id)
    assert waiting.result == "idle"
    assert waiting.delay_seconds == pytest.approx(20)
    assert len(provider.requests) == 1

    clock.advance(20)
    await driver.tick(project.id)
    assert [r.metadata["task"] for r in provider.requests] == ["outline", "outline"]


class _BlockingProvider(LLMProvider):
    name = "blocking"

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities()

    async def generate(self, request: ProviderRequest) -> ProviderResponse:
        self.calls += 1
        self.entered.set()
        await self.release.wait()
        return ProviderResponse(text=PROSE, raw={}, model="stub", prompt_tokens=1, completion_tokens=1)


async def test_concurrent_ticks_never_run_two_workers(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _, _ = _start(store, [3], clock)
    provider = _BlockingProvider()
    driver = _driver(store, provider, settings, clock)
    other_process = _driver(store, provider, settings, clock)

    running = asyncio.create_task(driver.tick(project.id))
    await provider.entered.wait()

    same_process = await driver.tick(project.id)
    elsewhere = await other_process.tick(project.id)
    assert same_process.result == "skipped"
    assert elsewhere.result == "idle"
    assert provider.calls == 1

    provider.release.set()
    finished = await running
    assert finished.outcome == JobOutcome.DONE


async def test_inactive_project_stops_the_loop(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _ = seed_project(store, [1], status=WritingStatus.PAUSED)
    driver = _driver(store, MockProvider(), settings, clock)
    response = await driver.run(project.id)
    assert response.result == "stopped"
    assert response.writing_status == WritingStatus.PAUSED


async def test_unknown_project_is_reported_missing(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    driver = _driver(store, MockProvider(), settings, clock)
    assert (await driver.tick(uuid4())).result == "missing"


async def test_missing_scene_jobs_are_recreated(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, chapters, _ = _start(store, [2], clock)
    with store.session() as session:
        session.delete_jobs(project.id)
        chapter = session.get_chapter(chapters[0].id)
        chapter.scene_outline[1].status = SceneStatus.WRITING
        session.save_chapter(chapter)

    driver = _driver(store, MockProvider(), settings, clock)
    healed = await driver.tick(project.id)

    assert healed.result == "healed"
    with store.session() as session:
        assert session.count_jobs(project.id, statuses=[JobStatus.PENDING]) == 2
        chapter = session.get_chapter(chapters[0].id)
    assert chapter.scene_outline[1].status == SceneStatus.PENDING

    final = await driver.run(project.id)
    assert final.writing_status == WritingStatus.COMPLETED


async def test_expired_lease_is_recovered_after_crash(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _, _ = _start(store, [1], clock)
    with store.session() as session:
        session.claim_next(project.id, owner="crashed", lease_seconds=settings.lease_seconds, now=clock())

    driver = _driver(store, MockProvider(), settings, clock)
    assert (await driver.tick(project.id)).result == "idle"

    clock.advance(settings.lease_seconds + 1)
    response = await driver.tick(project.id)
    assert response.result == "processed"
    assert response.outcome == JobOutcome.DONE


async def test_provider_outage_longer_than_stall_timeout_keeps_retrying(
    store: MemoryStore, clock: ManualClock
) -> None:
    settings = PipelineSettings(stall_timeout_seconds=60)
    project, _, _ = _start(store, [1], clock)
    started_at = clock()
    provider = MockProvider(responses=[ProviderTransientError("503") for _ in range(80)])
    driver = _driver(store, provider, settings, clock)

    for _ in range(60):
        response = await driver.tick(project.id)
        assert response.result in {"processed", "idle"}
        clock.advance(response.delay_seconds or 0.0)

    assert (clock() - started_at).total_seconds() > settings.stall_timeout_seconds
    with store.session() as session:
        stored = session.get_project(project.id)
        jobs = session.list_jobs(project.id)
    assert stored.writing_status == WritingStatus.WRITING
    assert stored.writing_error is None
    assert [job.status for job in jobs] == [JobStatus.PENDING]


async def test_nothing_to_dequeue_for_too_long_marks_project_failed(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _, _ = _start(store, [1], clock)
    with store.session() as session:
        session.update_jobs_status(project.id, JobStatus.PENDING, JobStatus.PAUSED)

    driver = _driver(store, MockProvider(), settings, clock)
    assert (await driver.tick(project.id)).result == "idle"

    clock.advance(settings.stall_timeout_seconds + 1)
    response = await driver.tick(project.id)

    assert response.result == "stalled"
    with store.session() as session:
        stored = session.get_project(project.id)
    assert stored.writing_status == WritingStatus.FAILED
    assert "resume" in stored.writing_error

async def test_recovery_delay_keeps_job_alive(
    store: MemoryStore, clock: ManualClock
) -> None:
    settings = PipelineSettings(max_retries=2, recovery_delay_seconds=30)
    project, _, _ = _start(store, [1], clock)
    provider = MockProvider(responses=[ProviderTransientError("503"), ProviderTransientError("503")])
    driver = _driver(store, provider, settings, clock)

    assert (await driver.tick(project.id)).outcome == JobOutcome.RETRY
    assert (await driver.tick(project.id)).outcome == JobOutcome.RECOVERY
    waiting = await driver.tick(project.id)
    assert waiting.result == "idle"
    assert waiting.delay_seconds == pytest.approx(30)

    clock.advance(30)
    assert (await driver.tick(project.id)).outcome == JobOutcome.DONE
