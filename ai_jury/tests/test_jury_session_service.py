"""
Jury Session Service Tests
"""
import pytest
import pytest_asyncio
from sqlalchemy import select, func

from ai_jury.exceptions import (
    ActiveSessionExistsError, EventNotFoundError, SessionNotCompletedError, SessionNotFoundError
)
from ai_jury.orm import JurySession, JuryLayerResult, JuryStatus
from ai_jury.services import jury_session_service
from ai_jury.services.jury_session_service import ResetMode


@pytest_asyncio.fixture
async def event_with_projects(seeder):
    event, (defi, gaming) = await seeder.event()
    await seeder.project(event, defi, submitted=False)
    for category in (defi, gaming, gaming):
        project = await seeder.project(event, category)
        await seeder.full_reports(project)
    return event


class TestCreateSession:

    @pytest.mark.asyncio
    async def test_snapshots_projects_and_criteria(self, db_session, event_with_projects):
        session = await jury_session_service.create_session(
            db_session, event_with_projects.id, {"submissionDeadline": True}
        )

        assert session.status == JuryStatus.PENDING.value
        assert session.current_layer == 1
        assert session.total_projects == 4
        assert session.eliminated_projects == 0
        assert session.eligibility_criteria == {
            "submission_deadline": True,
            "repository_access": False,
            "repository_public": False,
        }

    @pytest.mark.asyncio
    async def test_unknown_event(self, db_session):
        with pytest.raises(EventNotFoundError):
            await jury_session_service.create_session(db_session, 404, {})

    @pytest.mark.asyncio
    async def test_one_active_session_per_event(self, db_session, event_with_projects):
        first = await jury_session_service.create_session(db_session, event_with_projects.id)

        with pytest.raises(ActiveSessionExistsError) as exc_info:
            await jury_session_service.create_session(db_session, event_with_projects.id)

        assert exc_info.value.details["session_id"] == first.id

    @pytest.mark.asyncio
    async def test_failed_session_does_not_block(self, db_session, event_with_projects):
        first = await jury_session_service.create_session(db_session, event_with_projects.id)
        first.status = JuryStatus.FAILED.value
        await db_session.commit()

        second = await jury_session_service.create_session(db_session, event_with_projects.id)

        assert second.id != first.id


class TestQueries:

    @pytest.mark.asyncio
    async def test_get_session_groups_results_by_layer(self, db_session, executor, event_with_projects):
        session = await jury_session_service.create_session(
            db_session, event_with_projects.id, {"submission_deadline": True}
        )
        await executor.execute_layer(db_session, session.id, 1)
        await executor.execute_layer(db_session, session.id, 2)

        data = await jury_session_service.get_session(db_session, event_with_projects.id)

        assert data["id"] == session.id
        assert data["status"] == JuryStatus.LAYER_2_HEDERA.value
        assert sorted(data["layer_results"]) == ["1", "2"]
        assert len(data["layer_results"]["1"]) == 4
        assert len(data["layer_results"]["2"]) == 3

    @pytest.mark.asyncio
    async def test_get_session_without_any(self, db_session, event_with_projects):
        with pytest.raises(SessionNotFoundError):
            await jury_session_service.get_session(db_session, event_with_projects.id)

    @pytest.mark.asyncio
    async def test_progress_counts(self, db_session, executor, event_with_projects):
        session = await jury_session_service.create_session(
            db_session, event_with_projects.id, {"submission_deadline": True}
        )
        await executor.execute_layer(db_session, session.id, 1)

        progress = await jury_session_service.get_progress(db_session, session.id)

        assert progress["current_layer"] == 2
        assert progress["eliminated_projects"] == 1
        assert progress["layer_progress"]["1"] == {"total": 4, "processed": 4, "eliminated": 1}
        assert progress["layer_progress"]["2"] == {"total": 4, "processed": 0, "eliminated": 0}
        assert sorted(progress["layer_progress"]) == ["1", "2", "3", "4"]

    @pytest.mark.asyncio
    async def test_final_results_require_completion(self, db_session, event_with_projects):
        session = await jury_session_service.create_session(db_session, event_with_projects.id)

        with pytest.raises(SessionNotCompletedError):
            await jury_session_service.get_final_results(db_session, session.id)

    @pytest.mark.asyncio
    async def test_final_results_with_ranking(self, db_session, executor, event_with_projects):
        session = await jury_session_service.create_session(
            db_session, event_with_projects.id, {"submission_deadline": True}
        )
        for layer in (1, 2, 3, 4):
            await executor.execute_layer(db_session, session.id, layer)

        data = await jury_session_service.get_final_results(db_session, session.id)

        assert data["status"] == JuryStatus.COMPLETED.value
        assert data["completed_at"] is not None
        assert data["final_results"]["total_winners"] == 3
        assert len(data["ranking"]) == 3
        scores = [row["score"] for row in data["ranking"]]
        assert scores == sorted(scores, reverse=True)


class TestReset:

    @pytest_asyncio.fixture
    async def finished_session(self, db_session, executor, event_with_projects) -> JurySession:
        session = await jury_session_service.create_session(
            db_session, event_with_projects.id, {"submission_deadline": True}
        )
        for layer in (1, 2, 3, 4):
            await executor.execute_layer(db_session, session.id, layer)
        return session

    @pytest.mark.asyncio
    async def test_soft_reset_keeps_session_and_criteria(self, db_session, tracker, finished_session):
        response = await jury_session_service.reset_session(db_session, finished_session.id, tracker=tracker)

        assert response["mode"] == ResetMode.SOFT
        session = await db_session.get(JurySession, finished_session.id, populate_existing=True)
        assert session.status == JuryStatus.PENDING.value
        assert session.current_layer == 1
        assert session.eliminated_projects == 0
        assert session.final_results is None
        assert session.eligibility_criteria["submission_deadline"] is True

        remaining = await db_session.scalar(
            select(func.count()).select_from(JuryLayerResult).where(JuryLayerResult.session_id == session.id)
        )
        assert remaining == 0
        assert tracker.get_progress(session.id) is None

    @pytest.mark.asyncio
    async def test_hard_reset_deletes_session(self, db_session, tracker, finished_session):
        session_id = finished_session.id

        await jury_session_service.reset_session(db_session, session_id, mode=ResetMode.HARD, tracker=tracker)

        assert await db_session.scalar(select(func.count()).select_from(JurySession)) == 0
        assert await db_session.scalar(select(func.count()).select_from(JuryLayerResult)) == 0
        with pytest.raises(SessionNotFoundError):
            await jury_session_service.get_progress(db_session, session_id)

    @pytest.mark.asyncio
    async def test_unknown_mode(self, db_session, tracker, finished_session):
        with pytest.raises(ValueError):
            await jury_session_service.reset_session(db_session, finished_session.id, mode="wipe", tracker=tracker)

    @pytest.mark.asyncio
    async def test_reset_unknown_session(self, db_session, tracker):
        with pytest.raises(SessionNotFoundError):
            await jury_session_service.reset_session(db_session, 42, tracker=tracker)
