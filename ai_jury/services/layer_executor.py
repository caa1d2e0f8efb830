"""
Layer Executor

Runs one jury layer for one session:

1. validate the layer and the session's position (before any work)
2. move the session to the layer's status and commit
3. evaluate every candidate project in batches
4. persist all results in a single transaction

Per-project failures become decisions (see layer_policies.decision_for_error)
and never abort a layer. A persistence failure marks the session FAILED.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ai_jury.config import jury_config
from ai_jury.exceptions import InvalidLayerError, ResultsPersistenceError, SessionNotFoundError
from ai_jury.orm.jury_session import JurySession, JuryStatus
from ai_jury.services.batch_processor import process_in_batches
from ai_jury.services.layer_policies import (
    LAYER_POLICIES, EligibilityCriteria, LayerDecision,
    decide_eligibility, decide_technology, decide_code_quality, decide_final_analysis,
    decision_for_error, repository_to_check
)
from ai_jury.services.progress_tracker import ProgressTracker, progress_tracker
from ai_jury.services.project_reader import ProjectReader, ProjectSnapshot
from ai_jury.services.repository_checker import GitHubRepositoryChecker
from ai_jury.services.results_writer import (
    ProjectLayerResult, write_layer_results, load_eliminated_project_ids
)
from ai_jury.state_machines.jury_session_state import JurySessionStateMachine

logger = logging.getLogger(__name__)

SCORING_POLICIES: Dict[int, Callable[[ProjectSnapshot], LayerDecision]] = {
    2: decide_technology,
    3: decide_code_quality,
    4: decide_final_analysis,
}


@dataclass
class LayerExecutionResult:
    session_id: int
    layer: int
    processed: int
    eliminated: int
    advanced: int
    results: List[ProjectLayerResult] = field(default_factory=list)
    replayed: bool = False
    final_results: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "layer": self.layer,
            "processed": self.processed,
            "eliminated": self.eliminated,
            "advanced": self.advanced,
            "replayed": self.replayed,
            "results": [result.to_dict() for result in self.results],
            "final_results": self.final_results,
        }


def validate_layer(layer: Any) -> int:
    """Return layer if it names one of the four layers, else raise InvalidLayerError."""
    if isinstance(layer, bool) or not isinstance(layer, int) or layer not in LAYER_POLICIES:
        raise InvalidLayerError(layer)
    return layer


class LayerExecutor:
    """
    Executes jury layers.

    Collaborators are injectable; defaults read the environment config and
    share the process-wide progress tracker.
    """

    def __init__(
        self,
        reader: Optional[ProjectReader] = None,
        checker: Optional[GitHubRepositoryChecker] = None,
        tracker: Optional[ProgressTracker] = None,
        batch_size: Optional[int] = None,
        cooldown_seconds: Optional[float] = None,
        chunk_size: Optional[int] = None,
        top_n: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.reader = reader or ProjectReader()
        self.checker = checker or GitHubRepositoryChecker()
        self.tracker = tracker if tracker is not None else progress_tracker
        self.batch_size = batch_size or jury_config.batch_size
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else jury_config.batch_cooldown_seconds
        )
        self.chunk_size = chunk_size or jury_config.insert_chunk_size
        self.top_n = top_n or jury_config.top_n_per_category
        self._sleep = sleep

    async def execute_layer(self, db: AsyncSession, session_id: int, layer: int) -> LayerExecutionResult:
        """
        Execute one layer of a jury session.

        Args:
            db: Database session
            session_id: Jury session to advance
            layer: Layer number (1-4)

        Returns:
            LayerExecutionResult with every processed project

        Raises:
            InvalidLayerError: If layer is not 1-4
            SessionNotFoundError: If the session does not exist
            SessionClosedError: If the session is COMPLETED or FAILED
            LayerOutOfTurnError: If the layer is not the session's current one
            ResultsPersistenceError: If results could not be committed
        """
        layer = validate_layer(layer)
        policy = LAYER_POLICIES[layer]

        session = await self._load_session(db, session_id, for_update=True)
        machine = JurySessionStateMachine(db, session)
        machine.ensure_can_execute(layer)
        replayed = machine.is_replay(layer)

        event_id = session.event_id
        criteria = EligibilityCriteria.from_dict(session.eligibility_criteria)

        await machine.transition(policy.status)
        await db.commit()
        await db.refresh(session)

        projects = await self.reader.fetch(db, event_id)
        if len(projects) > session.total_projects:
            # Projects added after creation; committed with this layer's results
            logger.info(
                f"Session {session_id}: event now has {len(projects)} projects "
                f"(was {session.total_projects} at creation)"
            )
            session.total_projects = len(projects)
        if layer > 1:
            eliminated_ids = set(await load_eliminated_project_ids(db, session_id, layer))
            candidates = [project for project in projects if project.id not in eliminated_ids]
        else:
            candidates = projects

        logger.info(
            f"{'Replaying' if replayed else 'Executing'} layer {layer} ({policy.name}) "
            f"for session {session_id}: {len(candidates)} of {len(projects)} projects"
        )

        if layer == 1:
            self.tracker.session_initialized(session_id, session.total_projects)
        self.tracker.layer_started(session_id, layer, len(candidates))

        async def evaluate(project: ProjectSnapshot) -> ProjectLayerResult:
            self.tracker.project_started(session_id, layer, project.id)
            try:
                decision = await self._decide(layer, project, criteria)
            except Exception as e:
                logger.warning(f"Layer {layer} evaluation failed for project {project.id}: {str(e)}")
                decision = decision_for_error(layer, e)
            self.tracker.project_completed(session_id, layer, project.id, decision.eliminated, decision.score)
            return ProjectLayerResult.from_decision(project.id, decision, project.name)

        started = time.monotonic()
        results = await process_in_batches(
            candidates,
            evaluate,
            batch_size=self.batch_size,
            cooldown_seconds=self.cooldown_seconds,
            on_batch_complete=lambda index, batch: logger.debug(
                f"Session {session_id} layer {layer}: batch {index + 1} finished ({len(batch)} projects)"
            ),
            sleep=self._sleep,
        )

        try:
            final_results = await write_layer_results(
                db, session, layer, results,
                chunk_size=self.chunk_size,
                top_n=self.top_n,
            )
        except ResultsPersistenceError as e:
            await self._mark_failed(db, session_id, e.message)
            self.tracker.session_failed(session_id, e.message)
            raise

        eliminated = sum(1 for result in results if result.eliminated)
        advanced = len(results) - eliminated
        self.tracker.layer_completed(session_id, layer, eliminated, advanced)
        if final_results is not None:
            self.tracker.session_completed(session_id, final_results)

        logger.info(
            f"Layer {layer} finished for session {session_id} in {time.monotonic() - started:.2f}s - "
            f"{eliminated} eliminated, {advanced} advanced"
        )

        return LayerExecutionResult(
            session_id=session_id,
            layer=layer,
            processed=len(results),
            eliminated=eliminated,
            advanced=advanced,
            results=results,
            replayed=replayed,
            final_results=final_results,
        )

    async def _decide(
        self,
        layer: int,
        project: ProjectSnapshot,
        criteria: EligibilityCriteria
    ) -> LayerDecision:
        if layer == 1:
            target = repository_to_check(project, criteria)
            repository = None
            checked_at = None
            if target is not None:
                owner, repo = target
                repository = await self.checker.check(owner, repo)
                checked_at = datetime.utcnow()
            return decide_eligibility(project, criteria, repository, checked_at)

        return SCORING_POLICIES[layer](project)

    async def _load_session(self, db: AsyncSession, session_id: int, for_update: bool = False) -> JurySession:
        query = select(JurySession).where(JurySession.id == session_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        session = result.scalar_one_or_none()
        if not session:
            raise SessionNotFoundError(f"AI jury session {session_id} not found")
        return session

    async def _mark_failed(self, db: AsyncSession, session_id: int, reason: str) -> None:
        """Flip the session to FAILED in a fresh transaction."""
        try:
            session = await self._load_session(db, session_id)
            if session.is_terminal:
                return
            await JurySessionStateMachine(db, session).transition(JuryStatus.FAILED, reason=reason)
            await db.commit()
            logger.error(f"Jury session {session_id} marked FAILED: {reason}")
        except SQLAlchemyError:
            await db.rollback()
            logger.error(f"Could not mark jury session {session_id} as FAILED", exc_info=True)
