"""
AI Jury API Tests

Request/response contracts, error body shape, per-session locking and
feature flags.
"""
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from ai_jury.config import FeatureFlags
from ai_jury.database import get_db
from ai_jury.main import app
from ai_jury.routes import jury as jury_routes


@pytest_asyncio.fixture
async def client(db_session, executor, tracker) -> AsyncGenerator[AsyncClient, None]:
    """Test client sharing the test database session, executor and tracker."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[jury_routes.get_layer_executor] = lambda: executor
    app.dependency_overrides[jury_routes.get_progress_tracker] = lambda: tracker

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    jury_routes._session_locks.clear()


@pytest_asyncio.fixture
async def event(seeder):
    event, (defi, gaming) = await seeder.event()
    await seeder.project(event, defi, submitted=False)
    for category in (defi, gaming):
        project = await seeder.project(event, category)
        await seeder.full_reports(project)
    return event


async def create(client, event_id, **criteria):
    response = await client.post(
        "/api/ai-jury/sessions",
        json={"eventId": event_id, "eligibilityCriteria": criteria}
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestSessionRoutes:

    @pytest.mark.asyncio
    async def test_create_session(self, client, event):
        data = await create(client, event.id, submissionDeadline=True)

        assert data["status"] == "PENDING"
        assert data["total_projects"] == 3
        assert data["eligibility_criteria"]["submission_deadline"] is True

    @pytest.mark.asyncio
    async def test_create_conflict_uses_error_body(self, client, event):
        first = await create(client, event.id)

        response = await client.post("/api/ai-jury/sessions", json={"event_id": event.id})

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "ActiveSessionExistsError"
        assert body["code"] == "ACTIVE_SESSION_EXISTS"
        assert body["details"] == {"session_id": first["id"]}

    @pytest.mark.asyncio
    async def test_unknown_event(self, client):
        response = await client.post("/api/ai-jury/sessions", json={"eventId": 999})

        assert response.status_code == 404
        assert response.json()["code"] == "EVENT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_validation_error_shape(self, client):
        response = await client.post("/api/ai-jury/sessions", json={"eventId": 0})

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["errors"]

    @pytest.mark.asyncio
    async def test_get_session_by_event(self, client, event):
        created = await create(client, event.id)

        response = await client.get("/api/ai-jury/sessions", params={"event_id": event.id})

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]
        assert response.json()["layer_results"] == {}


class TestExecuteLayer:

    @pytest.mark.asyncio
    async def test_full_run_through_api(self, client, event):
        session = await create(client, event.id, submissionDeadline=True)
        url = f"/api/ai-jury/sessions/{session['id']}"

        for layer in (1, 2, 3, 4):
            response = await client.post(f"{url}/execute-layer", json={"layer": layer})
            assert response.status_code == 200, response.text

        body = response.json()
        assert body["layer"] == 4
        assert body["processed"] == 2
        assert body["final_results"]["total_winners"] == 2

        progress = (await client.get(f"{url}/progress")).json()
        assert progress["status"] == "COMPLETED"
        assert progress["layer_progress"]["1"] == {"total": 3, "processed": 3, "eliminated": 1}

        results = await client.get(f"{url}/results")
        assert results.status_code == 200
        assert len(results.json()["ranking"]) == 2

    @pytest.mark.asyncio
    async def test_layer_outside_range_rejected(self, client, event):
        session = await create(client, event.id)

        response = await client.post(f"/api/ai-jury/sessions/{session['id']}/execute-layer", json={"layer": 5})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_out_of_turn(self, client, event):
        session = await create(client, event.id)

        response = await client.post(f"/api/ai-jury/sessions/{session['id']}/execute-layer", json={"layer": 3})

        assert response.status_code == 409
        assert response.json()["code"] == "LAYER_OUT_OF_TURN"

    @pytest.mark.asyncio
    async def test_unknown_session(self, client):
        response = await client.post("/api/ai-jury/sessions/77/execute-layer", json={"layer": 1})

        assert response.status_code == 404
        assert response.json()["code"] == "SESSION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_concurrent_execution_rejected(self, client, event):
        session = await create(client, event.id)
        lock = jury_routes._session_lock(session["id"])
        await lock.acquire()
        try:
            response = await client.post(
                f"/api/ai-jury/sessions/{session['id']}/execute-layer", json={"layer": 1}
            )
        finally:
            lock.release()

        assert response.status_code == 409
        assert response.json()["code"] == "LAYER_IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_unknown_sessions_leave_no_locks(self, client):
        for session_id in range(1000, 1050):
            response = await client.post(f"/api/ai-jury/sessions/{session_id}/execute-layer", json={"layer": 1})
            assert response.status_code == 404
            await client.post(f"/api/ai-jury/sessions/{session_id}/reset")
            await client.delete(f"/api/ai-jury/sessions/{session_id}")

        assert jury_routes._session_locks == {}

    @pytest.mark.asyncio
    async def test_lock_released_after_execution(self, client, event):
        session = await create(client, event.id)
        url = f"/api/ai-jury/sessions/{session['id']}"

        assert (await client.post(f"{url}/execute-layer", json={"layer": 1})).status_code == 200
        assert (await client.post(f"{url}/execute-layer", json={"layer": 3})).status_code == 409
        assert (await client.post(f"{url}/reset")).status_code == 200

        assert jury_routes._session_locks == {}

    @pytest.mark.asyncio
    async def test_results_before_completion(self, client, event):
        session = await create(client, event.id)

        response = await client.get(f"/api/ai-jury/sessions/{session['id']}/results")

        assert response.status_code == 409
        assert response.json()["code"] == "SESSION_NOT_COMPLETED"


class TestLiveProgress:

    @pytest.mark.asyncio
    async def test_untracked_session(self, client):
        response = await client.get("/api/ai-jury/sessions/5/live-progress")

        assert response.status_code == 200
        assert response.json()["status"] == "not_found"

    @pytest.mark.asyncio
    async def test_tracked_session(self, client, event):
        session = await create(client, event.id)
        await client.post(f"/api/ai-jury/sessions/{session['id']}/execute-layer", json={"layer": 1})

        data = (await client.get(f"/api/ai-jury/sessions/{session['id']}/live-progress")).json()

        assert data["session_id"] == session["id"]
        assert data["layers"]["1"]["processed_projects"] == 3
        assert data["recent_events"][-1]["type"] == "layer_completed"

    @pytest.mark.asyncio
    async def test_stream_of_finished_session_ends_after_snapshot(self, client, event):
        session = await create(client, event.id)
        url = f"/api/ai-jury/sessions/{session['id']}"
        for layer in (1, 2, 3, 4):
            await client.post(f"{url}/execute-layer", json={"layer": layer})

        response = await client.get(f"{url}/live-progress/stream")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.text.startswith("event: snapshot\n")
        assert response.text.count("event: ") == 1


class TestReset:

    @pytest.mark.asyncio
    async def test_soft_reset_without_body(self, client, event):
        session = await create(client, event.id)
        await client.post(f"/api/ai-jury/sessions/{session['id']}/execute-layer", json={"layer": 1})

        response = await client.post(f"/api/ai-jury/sessions/{session['id']}/reset")

        assert response.status_code == 200
        assert response.json()["mode"] == "soft"
        progress = (await client.get(f"/api/ai-jury/sessions/{session['id']}/progress")).json()
        assert progress["status"] == "PENDING"
        assert progress["layer_progress"]["1"]["processed"] == 0

    @pytest.mark.asyncio
    async def test_delete_session(self, client, event):
        session = await create(client, event.id)

        response = await client.delete(f"/api/ai-jury/sessions/{session['id']}")

        assert response.status_code == 200
        assert response.json()["mode"] == "hard"
        missing = await client.get(f"/api/ai-jury/sessions/{session['id']}/progress")
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_mode(self, client, event):
        session = await create(client, event.id)

        response = await client.post(f"/api/ai-jury/sessions/{session['id']}/reset", json={"mode": "wipe"})

        assert response.status_code == 422


class TestFeatureFlags:

    @pytest.mark.asyncio
    async def test_jury_disabled(self, client, monkeypatch):
        monkeypatch.setattr(FeatureFlags, "FEATURE_AI_JURY", False)

        response = await client.get("/api/ai-jury/sessions", params={"event_id": 1})

        assert response.status_code == 403
        assert response.json()["code"] == "FEATURE_DISABLED"
        assert response.json()["message"] == "AI jury is disabled"

    @pytest.mark.asyncio
    async def test_hard_reset_disabled(self, client, event, monkeypatch):
        session = await create(client, event.id)
        monkeypatch.setattr(FeatureFlags, "FEATURE_HARD_RESET", False)

        delete = await client.delete(f"/api/ai-jury/sessions/{session['id']}")
        reset = await client.post(f"/api/ai-jury/sessions/{session['id']}/reset", json={"mode": "hard"})
        soft = await client.post(f"/api/ai-jury/sessions/{session['id']}/reset", json={"mode": "soft"})

        assert delete.status_code == 403
        assert reset.status_code == 403
        assert soft.status_code == 200

    @pytest.mark.asyncio
    async def test_stream_disabled(self, client, monkeypatch):
        monkeypatch.setattr(FeatureFlags, "FEATURE_LIVE_PROGRESS_STREAM", False)

        response = await client.get("/api/ai-jury/sessions/1/live-progress/stream")

        assert response.status_code == 403


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
