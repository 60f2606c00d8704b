"""Tests for the user-facing writing control API."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import httpx
import pytest
from fastapi.testclient import TestClient

from apps.api.app import main as api_main
from autowriter_jobs.ledger import current_period
from autowriter_jobs.store import MemoryStore
from autowriter_schemas import CreditLedger

from tests.utils.builders import hash_token, seed_project

TOKEN = "session-token"


class _RecordingNotifier:
    def __init__(self) -> None:
        self.notified = []

    async def notify(self, project_id) -> bool:
        self.notified.append(project_id)
        return True


@pytest.fixture
def user_id(store: MemoryStore):
    user = uuid4()
    store.add_session(hash_token(TOKEN), user, datetime.now(timezone.utc) + timedelta(hours=1))
    return user


@pytest.fixture
def notifier() -> _RecordingNotifier:
    return _RecordingNotifier()


@pytest.fixture
def client(store: MemoryStore, notifier: _RecordingNotifier):
    api_main.app.dependency_overrides[api_main.get_store] = lambda: store
    api_main.app.dependency_overrides[api_main.get_notifier] = lambda: notifier
    with TestClient(api_main.app) as test_client:
        yield test_client
    api_main.app.dependency_overrides.clear()


def _auth() -> dict[str, str]:
    return {"Authorization": f"Bearer {TOKEN}"}


def test_requires_authentication(client: TestClient, store: MemoryStore, user_id) -> None:
    project, _ = seed_project(store, [1], user_id=user_id)
    response = client.post(f"/projects/{project.id}/writing", json={"action": "start"})
    assert response.status_code == 401

    response = client.get(
        f"/projects/{project.id}/writing", headers={"Authorization": "Bearer wrong"}
    )
    assert response.status_code == 401


def test_start_queues_jobs_and_notifies_orchestrator(
    client: TestClient, store: MemoryStore, user_id, notifier: _RecordingNotifier
) -> None:
    project, _ = seed_project(store, [3, None], user_id=user_id)

    response = client.post(f"/projects/{project.id}/writing", json={"action": "start"}, headers=_auth())

    assert response.status_code == 200
    body = response.json()
    assert body["jobs_created"] == 4
    assert body["writing_status"] == "generating_outlines"
    assert body["progress"]["total"] == 3
    assert body["progress"]["estimated_total_scenes"] == 8
    assert notifier.notified == [project.id]


def test_second_start_conflicts(client: TestClient, store: MemoryStore, user_id) -> None:
    project, _ = seed_project(store, [1], user_id=user_id)
    client.post(f"/projects/{project.id}/writing", json={"action": "start"}, headers=_auth())
    response = client.post(f"/projects/{project.id}/writing", json={"action": "start"}, headers=_auth())
    assert response.status_code == 409


def test_start_without_chapters_is_bad_request(client: TestClient, store: MemoryStore, user_id) -> None:
    project, _ = seed_project(store, [], user_id=user_id)
    response = client.post(f"/projects/{project.id}/writing", json={"action": "start"}, headers=_auth())
    assert response.status_code == 400


def test_start_without_credits_is_payment_required(
    client: TestClient, store: MemoryStore, user_id, notifier: _RecordingNotifier
) -> None:
    project, _ = seed_project(store, [1], user_id=user_id)
    with store.session() as session:
        session.save_ledger(
            CreditLedger(
                user_id=user_id,
                period=current_period(datetime.now(timezone.utc)),
                monthly_limit=50,
                used_this_period=50,
            )
        )
    response = client.post(f"/projects/{project.id}/writing", json={"action": "start"}, headers=_auth())
    assert response.status_code == 402
    assert notifier.notified == []


def test_other_users_project_is_forbidden(client: TestClient, store: MemoryStore, user_id) -> None:
    project, _ = seed_project(store, [1])
    response = client.post(f"/projects/{project.id}/writing", json={"action": "start"}, headers=_auth())
    assert response.status_code == 403
    response = client.get(f"/projects/{uuid4()}/writing", headers=_auth())
    assert response.status_code == 404


def test_pause_resume_and_cancel(
    client: TestClient, store: MemoryStore, user_id, notifier: _RecordingNotifier
) -> None:
    project, _ = seed_project(store, [2], user_id=user_id)
    url = f"/projects/{project.id}/writing"
    client.post(url, json={"action": "start"}, headers=_auth())

    paused = client.post(url, json={"action": "pause"}, headers=_auth())
    assert paused.json()["writing_status"] == "paused"
    assert paused.json()["jobs_affected"] == 2

    resumed = client.post(url, json={"action": "resume"}, headers=_auth())
    assert resumed.json()["writing_status"] == "writing"

    cancelled = client.post(url, json={"action": "cancel"}, headers=_auth())
    assert cancelled.json()["writing_status"] == "idle"
    assert cancelled.json()["progress"]["writing_error"] == "Writing stopped by user"
    assert notifier.notified == [project.id, project.id]

    again = client.post(url, json={"action": "resume"}, headers=_auth())
    assert again.status_code == 409


def test_progress_reads_with_cookie(client: TestClient, store: MemoryStore, user_id) -> None:
    project, _ = seed_project(store, [2], user_id=user_id)
    client.cookies.set(api_main.AUTH_COOKIE_NAME, TOKEN)
    response = client.get(f"/projects/{project.id}/writing")
    assert response.status_code == 200
    assert response.json()["writing_status"] == "idle"
    assert response.json()["total"] == 2


def test_unknown_action_is_rejected(client: TestClient, store: MemoryStore, user_id) -> None:
    project, _ = seed_project(store, [1], user_id=user_id)
    response = client.post(f"/projects/{project.id}/writing", json={"action": "rewind"}, headers=_auth())
    assert response.status_code == 422


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(("status_code", "expected"), [(200, True), (503, False)])
async def test_notifier_reports_delivery(status_code: int, expected: bool) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(status_code, json={"armed": True})

    project_id = uuid4()
    notifier = api_main.OrchestratorNotifier(
        "http://orchestrator.test", 1.0, transport=httpx.MockTransport(handler)
    )
    assert await notifier.notify(project_id) is expected
    assert seen == [f"/orchestrator/projects/{project_id}/drive"]
