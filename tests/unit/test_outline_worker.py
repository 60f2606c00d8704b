"""Tests for outline parsing and the outline worker."""

import pytest

from autowriter_jobs import PipelineSettings, start_writing
from autowriter_jobs.ledger import current_period
from autowriter_jobs.store import MemoryStore
from autowriter_providers import MockProvider, ProviderContentError, ProviderTransientError
from autowriter_schemas import (
    ChapterStatus,
    CreditLedger,
    JobOutcome,
    JobStatus,
    JobType,
    SceneStatus,
    WritingStatus,
)

from services.orchestrator.app.outline import OutlineWorker, parse_outline

from tests.utils.builders import ManualClock, outline_json, seed_project


pytestmark = pytest.mark.anyio("asyncio")


def test_parse_outline_accepts_fenced_json() -> None:
    stubs = parse_outline(f"```json\n{outline_json(2)}\n```")
    assert [stub.title for stub in stubs] == ["Beat 1", "Beat 2"]
    assert all(stub.status == SceneStatus.PENDING for stub in stubs)


def test_parse_outline_accepts_bare_list_and_renumbers() -> None:
    stubs = parse_outline('[{"scene_number": 7, "title": "Arrival"}, {"scene_number": 3, "title": "Departure"}]')
    assert [stub.scene_number for stub in stubs] == [1, 2]


@pytest.mark.parametrize("text", ["not json", '{"scenes": []}', '{"scenes": [{"description": "no title"}]}', "42"])
def test_parse_outline_rejects_unusable_output(text: str) -> None:
    with pytest.raises(ProviderContentError):
        parse_outline(text)


def _claim(store: MemoryStore, project_id, clock: ManualClock):
    with store.session() as session:
        return session.claim_next(
            project_id,
            owner="test-worker",
            lease_seconds=300,
            now=clock(),
            job_type=JobType.GENERATE_OUTLINE,
        )


def _start(store: MemoryStore, counts, clock: ManualClock):
    project, chapters = seed_project(store, counts)
    with store.session() as session:
        start_writing(session, project.id, now=clock())
    return project, chapters


async def test_outline_success_queues_scenes_and_starts_writing(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, chapters = _start(store, [1, None], clock)
    provider = MockProvider(scene_count=2)
    worker = OutlineWorker(store, provider, settings, clock=clock)

    outcome = await worker.process(_claim(store, project.id, clock))

    assert outcome == JobOutcome.DONE
    assert provider.requests[0].metadata["task"] == "outline"
    assert provider.requests[0].json_schema is not None
    with store.session() as session:
        chapter = session.get_chapter(chapters[1].id)
        stored = session.get_project(project.id)
        scene_jobs = session.list_jobs(project.id, job_type=JobType.WRITE_SCENE)

    assert chapter.writing_status == ChapterStatus.OUTLINE_READY
    assert len(chapter.scene_outline) == 2
    assert stored.writing_status == WritingStatus.WRITING
    assert stored.total_scenes == 3
    assert len(scene_jobs) == 3
    assert stored.last_activity_at == clock()


async def test_outline_waits_for_other_chapters(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _ = _start(store, [None, None], clock)
    worker = OutlineWorker(store, MockProvider(scene_count=2), settings, clock=clock)

    await worker.process(_claim(store, project.id, clock))

    with store.session() as session:
        stored = session.get_project(project.id)
        assert session.count_jobs(project.id, job_type=JobType.WRITE_SCENE) == 0
    assert stored.writing_status == WritingStatus.GENERATING_OUTLINES
    assert stored.total_scenes == 2


async def test_malformed_outline_fails_chapter(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, chapters = _start(store, [None], clock)
    worker = OutlineWorker(store, MockProvider(responses=["I cannot help with that."]), settings, clock=clock)

    job = _claim(store, project.id, clock)
    outcome = await worker.process(job)

    assert outcome == JobOutcome.FAILED
    with store.session() as session:
        chapter = session.get_chapter(chapters[0].id)
        stored = session.get_project(project.id)
        row = session.get_job(job.id)
    assert chapter.writing_status == ChapterStatus.OUTLINE_FAILED
    assert chapter.outline_error
    assert row.status == JobStatus.FAILED
    assert stored.writing_status == WritingStatus.COMPLETED


async def test_transient_failure_returns_job_to_queue(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _ = _start(store, [None], clock)
    provider = MockProvider(responses=[ProviderTransientError("connection reset")])
    worker = OutlineWorker(store, provider, settings, clock=clock)

    job = _claim(store, project.id, clock)
    outcome = await worker.process(job)

    assert outcome == JobOutcome.RETRY
    with store.session() as session:
        row = session.get_job(job.id)
    assert row.status == JobStatus.PENDING
    assert row.attempt_count == 1
    assert row.lease_owner is None
    assert row.last_error == "connection reset"


async def test_exhausted_credits_park_job_and_fail_project(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _ = _start(store, [None], clock)
    with store.session() as session:
        session.save_ledger(
            CreditLedger(
                user_id=project.user_id,
                period=current_period(clock()),
                monthly_limit=100,
                used_this_period=100,
            )
        )
    provider = MockProvider()
    worker = OutlineWorker(store, provider, settings, clock=clock)

    job = _claim(store, project.id, clock)
    outcome = await worker.process(job)

    assert outcome == JobOutcome.PAUSED
    assert provider.requests == []
    with store.session() as session:
        row = session.get_job(job.id)
        stored = session.get_project(project.id)
    assert row.status == JobStatus.PAUSED
    assert stored.writing_status == WritingStatus.FAILED
    assert "credits" in stored.writing_error


async def test_outline_words_are_debited(
    store: MemoryStore, clock: ManualClock, settings: PipelineSettings
) -> None:
    project, _ = _start(store, [None], clock)
    with store.session() as session:
        session.save_ledger(
            CreditLedger(user_id=project.user_id, period=current_period(clock()), monthly_limit=1000)
        )
    worker = OutlineWorker(store, MockProvider(responses=[outline_json(2)]), settings, clock=clock)

    await worker.process(_claim(store, project.id, clock))

    with store.session() as session:
        ledger = session.get_ledger(project.user_id, current_period(clock()))
    # "Beat 1 Beat 1 unfolds." counts five words per stub.
    assert ledger.used_this_period == 10
