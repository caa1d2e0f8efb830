"""
Jury Session State Machine

Server-side enforcement of the jury session lifecycle:

    PENDING -> LAYER_1 -> LAYER_2 -> LAYER_3 -> LAYER_4 -> COMPLETED
                  any non-terminal state -> FAILED

A layer state may transition to itself so the most recent layer can be
executed again. COMPLETED and FAILED are left only through a reset.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ai_jury.exceptions import (
    InvalidLayerError, InvalidTransitionError, LayerOutOfTurnError, SessionClosedError
)
from ai_jury.orm.jury_session import JurySession, JuryStatus, TOTAL_LAYERS

logger = logging.getLogger(__name__)

LAYER_STATUSES: Dict[int, JuryStatus] = {
    1: JuryStatus.LAYER_1_ELIGIBILITY,
    2: JuryStatus.LAYER_2_HEDERA,
    3: JuryStatus.LAYER_3_CODE_QUALITY,
    4: JuryStatus.LAYER_4_FINAL_ANALYSIS,
}


def status_for_layer(layer: int) -> JuryStatus:
    """Status a session holds while (and after) executing a layer."""
    if layer not in LAYER_STATUSES:
        raise InvalidLayerError(layer)
    return LAYER_STATUSES[layer]


class JurySessionStateMachine:
    """
    Validates and applies status changes on a JurySession.

    Changes are flushed, never committed; the caller owns the transaction.
    """

    # Valid state transitions: {current_state: [allowed_next_states]}
    ALLOWED_TRANSITIONS: Dict[JuryStatus, List[JuryStatus]] = {
        JuryStatus.PENDING: [
            JuryStatus.LAYER_1_ELIGIBILITY,
            JuryStatus.FAILED
        ],
        JuryStatus.LAYER_1_ELIGIBILITY: [
            JuryStatus.LAYER_1_ELIGIBILITY,
            JuryStatus.LAYER_2_HEDERA,
            JuryStatus.FAILED
        ],
        JuryStatus.LAYER_2_HEDERA: [
            JuryStatus.LAYER_2_HEDERA,
            JuryStatus.LAYER_3_CODE_QUALITY,
            JuryStatus.FAILED
        ],
        JuryStatus.LAYER_3_CODE_QUALITY: [
            JuryStatus.LAYER_3_CODE_QUALITY,
            JuryStatus.LAYER_4_FINAL_ANALYSIS,
            JuryStatus.FAILED
        ],
        JuryStatus.LAYER_4_FINAL_ANALYSIS: [
            JuryStatus.LAYER_4_FINAL_ANALYSIS,
            JuryStatus.COMPLETED,
            JuryStatus.FAILED
        ],
        JuryStatus.COMPLETED: [],
        JuryStatus.FAILED: []
    }

    def __init__(self, db: AsyncSession, session: JurySession):
        self.db = db
        self.session = session

    @property
    def status(self) -> JuryStatus:
        return self.session.jury_status

    def can_transition(self, to_status: JuryStatus) -> bool:
        return to_status in self.ALLOWED_TRANSITIONS.get(self.status, [])

    async def transition(self, to_status: JuryStatus, reason: Optional[str] = None) -> JurySession:
        """
        Move the session to to_status.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current status
        """
        from_status = self.status
        if not self.can_transition(to_status):
            allowed = [s.value for s in self.ALLOWED_TRANSITIONS.get(from_status, [])]
            raise InvalidTransitionError(from_status.value, to_status.value, allowed)

        self.session.status = to_status.value
        if to_status == JuryStatus.COMPLETED:
            self.session.completed_at = datetime.utcnow()
        if to_status == JuryStatus.FAILED:
            self.session.failure_reason = reason

        await self.db.flush()

        if from_status != to_status:
            logger.info(f"Jury session {self.session.id}: {from_status.value} -> {to_status.value}")
        return self.session

    def ensure_can_execute(self, layer: int) -> None:
        """
        Check that a layer may run now.

        Allowed when the session points at the layer, or when the layer is the
        most recently completed one and the next layer has not started yet.

        Raises:
            InvalidLayerError: If layer is not 1-4
            SessionClosedError: If the session is COMPLETED or FAILED
            LayerOutOfTurnError: If the layer is skipped ahead or already passed
        """
        layer_status = status_for_layer(layer)

        if self.session.is_terminal:
            raise SessionClosedError(self.session.id, self.session.status)

        current = self.session.current_layer
        if current == layer:
            return
        if current == layer + 1 and self.status == layer_status:
            return

        raise LayerOutOfTurnError(self.session.id, layer, current)

    def is_replay(self, layer: int) -> bool:
        return self.session.current_layer == layer + 1

    def reset(self) -> JurySession:
        """Return the session to PENDING at layer 1 and drop its outcome."""
        self.session.status = JuryStatus.PENDING.value
        self.session.current_layer = 1
        self.session.eliminated_projects = 0
        self.session.final_results = None
        self.session.failure_reason = None
        self.session.completed_at = None
        logger.info(f"Jury session {self.session.id} reset to {JuryStatus.PENDING.value}")
        return self.session


__all__ = [
    "JurySessionStateMachine",
    "LAYER_STATUSES",
    "status_for_layer",
    "TOTAL_LAYERS",
]
