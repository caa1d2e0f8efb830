"""
Results Writer

Persists one layer's results for a session as a single transaction:

1. count and delete the rows previously written for (session, layer)
2. insert the new rows in chunks
3. adjust the session's elimination counter by the difference
4. advance the layer pointer, or for the last layer aggregate the final
   results and complete the session

Either everything is committed or nothing is: a failure rolls back and
leaves the earlier rows, counter and pointer as they were.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy import select, delete, insert, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ai_jury.config import jury_config
from ai_jury.exceptions import ResultsPersistenceError
from ai_jury.orm.jury_session import JurySession, JuryLayerResult, JuryStatus, TOTAL_LAYERS
from ai_jury.services.batch_processor import iter_batches
from ai_jury.services.final_aggregator import generate_final_results
from ai_jury.services.layer_policies import LayerDecision
from ai_jury.state_machines.jury_session_state import JurySessionStateMachine

logger = logging.getLogger(__name__)

Aggregator = Callable[[AsyncSession, int, int], Awaitable[Dict[str, Any]]]


@dataclass
class ProjectLayerResult:
    """One project's outcome in one layer, ready to persist."""
    project_id: int
    eliminated: bool
    score: float
    reason: str
    evidence: Dict[str, Any] = field(default_factory=dict)
    project_name: Optional[str] = None
    processed_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_decision(
        cls,
        project_id: int,
        decision: LayerDecision,
        project_name: Optional[str] = None
    ) -> "ProjectLayerResult":
        return cls(
            project_id=project_id,
            eliminated=decision.eliminated,
            score=decision.score,
            reason=decision.reason,
            evidence=decision.evidence,
            project_name=project_name,
        )

    def to_row(self, session_id: int, layer: int) -> Dict[str, Any]:
        now = datetime.utcnow()
        return {
            "session_id": session_id,
            "layer": layer,
            "project_id": self.project_id,
            "eliminated": self.eliminated,
            "score": self.score,
            "reason": self.reason,
            "evidence": self.evidence or {},
            "processed_at": self.processed_at,
            "created_at": now,
            "updated_at": now,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "project_name": self.project_name,
            "eliminated": self.eliminated,
            "score": self.score,
            "reason": self.reason,
            "evidence": self.evidence,
            "processed_at": self.processed_at.isoformat(),
        }


async def write_layer_results(
    db: AsyncSession,
    session: JurySession,
    layer: int,
    results: Sequence[ProjectLayerResult],
    chunk_size: Optional[int] = None,
    top_n: Optional[int] = None,
    aggregator: Aggregator = generate_final_results,
) -> Optional[Dict[str, Any]]:
    """
    Replace the results of a layer and move the session forward, atomically.

    Args:
        db: Database session; committed on success, rolled back on failure
        session: Jury session being executed
        layer: Layer the results belong to (1-4)
        results: Every processed project of the layer
        chunk_size: Rows per INSERT statement
        top_n: Winners per category when the last layer completes
        aggregator: Final results builder, called after the rows are flushed

    Returns:
        The final results when the last layer was written, otherwise None

    Raises:
        ResultsPersistenceError: If anything fails; nothing is persisted
    """
    chunk_size = chunk_size or jury_config.insert_chunk_size
    top_n = top_n or jury_config.top_n_per_category
    session_id = session.id

    try:
        previous_eliminated = await db.scalar(
            select(func.count())
            .select_from(JuryLayerResult)
            .where(
                JuryLayerResult.session_id == session_id,
                JuryLayerResult.layer == layer,
                JuryLayerResult.eliminated == True  # noqa: E712
            )
        ) or 0

        await db.execute(
            delete(JuryLayerResult).where(
                JuryLayerResult.session_id == session_id,
                JuryLayerResult.layer == layer
            )
        )

        rows = [result.to_row(session_id, layer) for result in results]
        for chunk in iter_batches(rows, chunk_size):
            await db.execute(insert(JuryLayerResult), list(chunk))

        new_eliminated = sum(1 for result in results if result.eliminated)
        session.eliminated_projects = session.eliminated_projects + new_eliminated - previous_eliminated
        session.current_layer = layer + 1

        final_results = None
        if layer == TOTAL_LAYERS:
            await db.flush()
            final_results = await aggregator(db, session_id, top_n)
            session.final_results = final_results
            await JurySessionStateMachine(db, session).transition(JuryStatus.COMPLETED)

        await db.commit()

    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            f"Failed to persist layer {layer} results for session {session_id}: {str(e)}",
            exc_info=True
        )
        raise ResultsPersistenceError(session_id, layer, e) from e

    logger.info(
        f"Persisted {len(rows)} layer {layer} results for session {session_id} "
        f"({new_eliminated} eliminated, replaced {previous_eliminated} previous eliminations)"
    )
    return final_results


async def load_eliminated_project_ids(db: AsyncSession, session_id: int, before_layer: int) -> List[int]:
    """Projects eliminated by any layer lower than before_layer."""
    result = await db.execute(
        select(JuryLayerResult.project_id)
        .where(
            JuryLayerResult.session_id == session_id,
            JuryLayerResult.layer < before_layer,
            JuryLayerResult.eliminated == True  # noqa: E712
        )
        .distinct()
    )
    return list(result.scalars().all())
