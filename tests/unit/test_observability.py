"""Tests for structured logging and progress fan-out."""

import json
import logging
import sys
from uuid import uuid4

import pytest

from autowriter_jobs import ProgressBroadcaster
from autowriter_observability import current_log_context, log_context
from autowriter_observability.logging import ContextFilter, JsonFormatter
from autowriter_schemas import JobOutcome, JobType, ProgressEvent, WritingStatus

from tests.utils.builders import START


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("autowriter.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_log_context_binds_and_unbinds() -> None:
    project_id = uuid4()
    with log_context(project_id=project_id, job_type="write_scene"):
        assert current_log_context() == {"project_id": str(project_id), "job_type": "write_scene"}
        with log_context(job_type=None, attempt=2):
            assert current_log_context() == {"project_id": str(project_id), "attempt": 2}
    assert current_log_context() == {}


def test_json_formatter_groups_job_and_provider_fields() -> None:
    project_id = uuid4()
    record = _record(
        "Scene written",
        words=812,
        unserialisable=object(),
        provider="mock",
        prompt_tokens=120,
        attempt=3,
    )
    with log_context(project_id=project_id, job_id="job-1", attempt=1):
        ContextFilter("orchestrator").filter(record)
    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "Scene written"
    assert payload["service"] == "orchestrator"
    assert payload["job"] == {"project_id": str(project_id), "job_id": "job-1", "attempt": 3}
    assert payload["llm"] == {"provider": "mock", "prompt_tokens": 120}
    assert "http" not in payload
    assert payload["words"] == 812
    assert "unserialisable" not in payload
    assert "job_id" not in payload


def test_json_formatter_keeps_explicit_service_and_exceptions() -> None:
    try:
        raise ValueError("bad outline")
    except ValueError:
        record = logging.LogRecord(
            "autowriter.test", logging.ERROR, __file__, 1, "Outline failed", None, sys.exc_info()
        )
    record.service = "api"
    ContextFilter("orchestrator").filter(record)
    payload = json.loads(JsonFormatter().format(record))

    assert payload["service"] == "api"
    assert payload["level"] == "ERROR"
    assert "ValueError: bad outline" in payload["exc_info"]
    assert "job" not in payload


def _event() -> ProgressEvent:
    return ProgressEvent(
        project_id=uuid4(),
        job_id=uuid4(),
        job_type=JobType.WRITE_SCENE,
        outcome=JobOutcome.DONE,
        writing_status=WritingStatus.WRITING,
        completed_scenes=1,
        failed_scenes=0,
        total_scenes=3,
        occurred_at=START,
    )


@pytest.mark.anyio("asyncio")
async def test_broadcaster_drops_oldest_and_isolates_listeners() -> None:
    broadcaster = ProgressBroadcaster()
    queue = broadcaster.subscribe(maxsize=2)
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    async def recording(event):
        seen.append(event.job_id)

    broadcaster.add_listener(broken)
    broadcaster.add_listener(recording)

    events = [_event() for _ in range(3)]
    for event in events:
        await broadcaster.publish(event)

    assert [queue.get_nowait().job_id for _ in range(2)] == [events[1].job_id, events[2].job_id]
    assert seen == [event.job_id for event in events]

    broadcaster.unsubscribe(queue)
    await broadcaster.publish(_event())
    assert queue.empty()
