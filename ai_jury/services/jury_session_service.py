"""
Jury Session Service

Session lifecycle around the layer executor: creation, lookup, progress
from the database, final results and resets.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from ai_jury.exceptions import (
    ActiveSessionExistsError, EventNotFoundError, SessionNotFoundError, SessionNotCompletedError
)
from ai_jury.orm.competition import CompetitionEvent, Project
from ai_jury.orm.jury_session import JurySession, JuryLayerResult, JuryStatus, TOTAL_LAYERS
from ai_jury.services.layer_policies import EligibilityCriteria
from ai_jury.services.progress_tracker import ProgressTracker, progress_tracker
from ai_jury.state_machines.jury_session_state import JurySessionStateMachine

logger = logging.getLogger(__name__)


class ResetMode:
    SOFT = "soft"
    HARD = "hard"

    ALL = (SOFT, HARD)


async def _get_session_or_404(db: AsyncSession, session_id: int) -> JurySession:
    result = await db.execute(select(JurySession).where(JurySession.id == session_id))
    session = result.scalar_one_or_none()
    if not session:
        raise SessionNotFoundError(f"AI jury session {session_id} not found")
    return session


async def create_session(
    db: AsyncSession,
    event_id: int,
    eligibility_criteria: Optional[Dict[str, Any]] = None
) -> JurySession:
    """
    Create a PENDING jury session for an event.

    The project count is snapshotted now; projects added later are still
    evaluated but do not change total_projects.

    Raises:
        EventNotFoundError: If the event does not exist
        ActiveSessionExistsError: If a session for the event is neither
            COMPLETED nor FAILED
    """
    event = await db.get(CompetitionEvent, event_id)
    if not event:
        raise EventNotFoundError(event_id)

    result = await db.execute(
        select(JurySession)
        .where(
            JurySession.event_id == event_id,
            JurySession.status.notin_([JuryStatus.COMPLETED.value, JuryStatus.FAILED.value])
        )
        .order_by(JurySession.created_at.desc())
        .limit(1)
    )
    existing = result.scalar_one_or_none()
    if existing:
        raise ActiveSessionExistsError(event_id, existing.id)

    total_projects = await db.scalar(
        select(func.count()).select_from(Project).where(Project.event_id == event_id)
    ) or 0

    criteria = EligibilityCriteria.from_dict(eligibility_criteria)
    session = JurySession(
        event_id=event_id,
        status=JuryStatus.PENDING.value,
        current_layer=1,
        total_layers=TOTAL_LAYERS,
        total_projects=total_projects,
        eliminated_projects=0,
        eligibility_criteria=criteria.to_dict(),
    )
    db.add(session)
    await db.commit()
    await db.refresh(session)

    logger.info(f"Created AI jury session {session.id} for event {event_id} ({total_projects} projects)")
    return session


def _group_by_layer(rows: List[JuryLayerResult]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        grouped.setdefault(str(row.layer), []).append(row.to_dict())
    return grouped


async def get_session(db: AsyncSession, event_id: int) -> Dict[str, Any]:
    """Latest session of an event with its results grouped by layer."""
    result = await db.execute(
        select(JurySession)
        .where(JurySession.event_id == event_id)
        .order_by(JurySession.created_at.desc(), JurySession.id.desc())
        .limit(1)
    )
    session = result.scalar_one_or_none()
    if not session:
        raise SessionNotFoundError(f"No AI jury session found for event {event_id}")

    rows_result = await db.execute(
        select(JuryLayerResult)
        .where(JuryLayerResult.session_id == session.id)
        .order_by(JuryLayerResult.layer.asc(), JuryLayerResult.project_id.asc())
    )

    return {
        **session.to_dict(),
        "layer_results": _group_by_layer(list(rows_result.scalars().all())),
    }


async def get_progress(db: AsyncSession, session_id: int) -> Dict[str, Any]:
    """Per-layer processed/eliminated counts derived from persisted rows."""
    session = await _get_session_or_404(db, session_id)

    processed_result = await db.execute(
        select(JuryLayerResult.layer, JuryLayerResult.eliminated, func.count(JuryLayerResult.id))
        .where(JuryLayerResult.session_id == session_id)
        .group_by(JuryLayerResult.layer, JuryLayerResult.eliminated)
    )

    layer_progress: Dict[str, Dict[str, int]] = {
        str(layer): {"total": session.total_projects, "processed": 0, "eliminated": 0}
        for layer in range(1, TOTAL_LAYERS + 1)
    }
    for layer, eliminated, count in processed_result.all():
        entry = layer_progress[str(layer)]
        entry["processed"] += count
        if eliminated:
            entry["eliminated"] += count

    return {
        "session_id": session.id,
        "status": session.status,
        "current_layer": session.current_layer,
        "total_layers": session.total_layers,
        "total_projects": session.total_projects,
        "eliminated_projects": session.eliminated_projects,
        "layer_progress": layer_progress,
    }


async def get_final_results(db: AsyncSession, session_id: int) -> Dict[str, Any]:
    """
    Final results of a completed session plus the full Layer 4 ranking.

    Raises:
        SessionNotCompletedError: Unless the session is COMPLETED
    """
    session = await _get_session_or_404(db, session_id)
    if session.status != JuryStatus.COMPLETED.value:
        raise SessionNotCompletedError(session.id, session.status)

    result = await db.execute(
        select(JuryLayerResult)
        .where(JuryLayerResult.session_id == session_id, JuryLayerResult.layer == TOTAL_LAYERS)
        .order_by(JuryLayerResult.score.desc(), JuryLayerResult.project_id.asc())
    )

    return {
        "session_id": session.id,
        "status": session.status,
        "completed_at": session.completed_at.isoformat() if session.completed_at else None,
        "final_results": session.final_results,
        "ranking": [row.to_dict() for row in result.scalars().all()],
    }


async def reset_session(
    db: AsyncSession,
    session_id: int,
    mode: str = ResetMode.SOFT,
    tracker: Optional[ProgressTracker] = None
) -> Dict[str, Any]:
    """
    Reset a session.

    soft: delete every layer result and return the session to PENDING at
          layer 1, keeping its eligibility criteria
    hard: delete the session together with its layer results

    Live progress for the session is discarded in both modes.
    """
    if mode not in ResetMode.ALL:
        raise ValueError(f"Unknown reset mode {mode!r}")

    tracker = tracker if tracker is not None else progress_tracker
    session = await _get_session_or_404(db, session_id)

    await db.execute(delete(JuryLayerResult).where(JuryLayerResult.session_id == session_id))

    if mode == ResetMode.HARD:
        await db.delete(session)
        await db.commit()
        tracker.clear_session(session_id)
        logger.info(f"Deleted AI jury session {session_id}")
        return {"session_id": session_id, "mode": mode, "message": "Session deleted successfully"}

    JurySessionStateMachine(db, session).reset()
    await db.commit()
    tracker.clear_session(session_id)

    logger.info(f"Reset AI jury session {session_id}")
    return {"session_id": session_id, "mode": mode, "message": "Session reset successfully"}
