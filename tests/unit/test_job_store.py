"""Tests for the in-memory job store."""

from datetime import timedelta
from uuid import uuid4

import pytest

from autowriter_jobs.store import MemoryStore, create_store
from autowriter_jobs.exceptions import StoreConfigError
from autowriter_schemas import JobStatus, JobType, WritingJob

from tests.utils.builders import START, make_stub


def _scene(project_id, chapter_id, position, index):
    return WritingJob.scene(
        project_id,
        chapter_id,
        chapter_position=position,
        scene_index=index,
        stub=make_stub(index + 1),
        now=START,
    )


def test_claim_prefers_outlines_then_reading_order(store: MemoryStore) -> None:
    project_id, chapter_a, chapter_b = uuid4(), uuid4(), uuid4()
    jobs = [
        _scene(project_id, chapter_b, 1, 0),
        _scene(project_id, chapter_a, 0, 1),
        WritingJob.outline(project_id, chapter_b, sort_order=1, now=START),
        _scene(project_id, chapter_a, 0, 0),
    ]
    with store.session() as session:
        session.enqueue(jobs)

    claimed = []
    for _ in range(4):
        with store.session() as session:
            job = session.claim_next(project_id, owner="w", lease_seconds=60, now=START)
            claimed.append((job.job_type, job.chapter_id, job.scene_index))
            job.status = JobStatus.DONE
            session.save_job(job)

    assert claimed == [
        (JobType.GENERATE_OUTLINE, chapter_b, None),
        (JobType.WRITE_SCENE, chapter_a, 0),
        (JobType.WRITE_SCENE, chapter_a, 1),
        (JobType.WRITE_SCENE, chapter_b, 0),
    ]


def test_only_one_job_per_project_is_processing(store: MemoryStore) -> None:
    project_id, chapter_id = uuid4(), uuid4()
    with store.session() as session:
        session.enqueue([_scene(project_id, chapter_id, 0, i) for i in range(3)])
        first = session.claim_next(project_id, owner="w1", lease_seconds=60, now=START)
        second = session.claim_next(project_id, owner="w2", lease_seconds=60, now=START)

    assert first is not None
    assert first.lease_owner == "w1"
    assert first.lease_expires_at == START + timedelta(seconds=60)
    assert second is None


def test_claim_respects_retry_time_and_type(store: MemoryStore) -> None:
    project_id, chapter_id = uuid4(), uuid4()
    later = _scene(project_id, chapter_id, 0, 0)
    later.next_retry_at = START + timedelta(seconds=30)
    with store.session() as session:
        session.enqueue([later])
        assert session.claim_next(project_id, owner="w", lease_seconds=60, now=START) is None
        assert session.earliest_retry_at(project_id) == START + timedelta(seconds=30)
        assert (
            session.claim_next(
                project_id,
                owner="w",
                lease_seconds=60,
                now=START + timedelta(seconds=31),
                job_type=JobType.GENERATE_OUTLINE,
            )
            is None
        )
        assert session.claim_next(project_id, owner="w", lease_seconds=60, now=START + timedelta(seconds=31))


def test_expired_leases_are_requeued(store: MemoryStore) -> None:
    project_id, chapter_id = uuid4(), uuid4()
    with store.session() as session:
        session.enqueue([_scene(project_id, chapter_id, 0, 0)])
        job = session.claim_next(project_id, owner="w", lease_seconds=60, now=START)

    with store.session() as session:
        assert session.requeue_expired(now=START + timedelta(seconds=59)) == 0
        assert session.requeue_expired(now=START + timedelta(seconds=61)) == 1
        row = session.get_job(job.id)

    assert row.status == JobStatus.PENDING
    assert row.lease_owner is None


def test_session_rolls_back_on_error(store: MemoryStore) -> None:
    project_id, chapter_id = uuid4(), uuid4()
    with pytest.raises(RuntimeError):
        with store.session() as session:
            session.enqueue([_scene(project_id, chapter_id, 0, 0)])
            raise RuntimeError("boom")

    with store.session() as session:
        assert session.list_jobs(project_id) == []


def test_pause_and_delete_jobs(store: MemoryStore) -> None:
    project_id, chapter_id = uuid4(), uuid4()
    with store.session() as session:
        session.enqueue([_scene(project_id, chapter_id, 0, i) for i in range(3)])
        assert session.update_jobs_status(project_id, JobStatus.PENDING, JobStatus.PAUSED) == 3
        assert session.count_jobs(project_id, statuses=[JobStatus.PAUSED]) == 3
        assert session.delete_jobs(project_id) == 3
        assert session.count_jobs(project_id) == 0


def test_returned_records_are_copies(store: MemoryStore) -> None:
    project_id, chapter_id = uuid4(), uuid4()
    job = _scene(project_id, chapter_id, 0, 0)
    with store.session() as session:
        session.enqueue([job])
        loaded = session.get_job(job.id)
        loaded.status = JobStatus.FAILED
        assert session.get_job(job.id).status == JobStatus.PENDING


def test_blocks_append_in_order(store: MemoryStore) -> None:
    chapter_id = uuid4()
    with store.session() as session:
        session.append_block(chapter_id, "one", scene_index=0, now=START)
        session.append_block(chapter_id, "two", scene_index=1, now=START)
        blocks = session.list_blocks(chapter_id)
    assert [(b.sort_order, b.content) for b in blocks] == [(0, "one"), (1, "two")]


def test_session_lookup_honours_expiry(store: MemoryStore) -> None:
    user_id = uuid4()
    store.add_session("hash", user_id, START + timedelta(hours=1))
    with store.session() as session:
        assert session.lookup_session_user("hash", now=START) == user_id
        assert session.lookup_session_user("hash", now=START + timedelta(hours=2)) is None
        assert session.lookup_session_user("missing", now=START) is None


def test_create_store_selection(monkeypatch: pytest.MonkeyPatch) -> None:
    assert isinstance(create_store("memory"), MemoryStore)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(StoreConfigError):
        create_store("postgres")
    with pytest.raises(StoreConfigError):
        create_store("sqlite")


def test_mark_done_and_failed_release_the_lease(store: MemoryStore) -> None:
    project_id, chapter_id = uuid4(), uuid4()
    with store.session() as session:
        session.enqueue([_scene(project_id, chapter_id, 0, 0), _scene(project_id, chapter_id, 0, 1)])

    with store.session() as session:
        first = session.claim_next(project_id, owner="w", lease_seconds=60, now=START)
        first.attempt_count = 3
        session.mark_done(first, now=START, note="skipped: stub removed")
        second = session.claim_next(project_id, owner="w", lease_seconds=60, now=START)
        session.mark_failed(second, "x" * 3000, now=START)

    with store.session() as session:
        done = session.get_job(first.id)
        failed = session.get_job(second.id)

    assert done.status == JobStatus.DONE
    assert done.attempt_count == 0
    assert done.last_error == "skipped: stub removed"
    assert done.lease_owner is None
    assert failed.status == JobStatus.FAILED
    assert len(failed.last_error) == 2000
    assert failed.completed_at == START
