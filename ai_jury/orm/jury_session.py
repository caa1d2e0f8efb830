"""
AI jury sessions and their per-layer results.
"""
from enum import Enum
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Text, DateTime, ForeignKey,
    UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from ai_jury.orm.base import BaseModel, UniversalJSON

TOTAL_LAYERS = 4
DONE_LAYER = TOTAL_LAYERS + 1


class JuryStatus(str, Enum):
    """AI jury session lifecycle status."""
    PENDING = "PENDING"
    LAYER_1_ELIGIBILITY = "LAYER_1_ELIGIBILITY"
    LAYER_2_HEDERA = "LAYER_2_HEDERA"
    LAYER_3_CODE_QUALITY = "LAYER_3_CODE_QUALITY"
    LAYER_4_FINAL_ANALYSIS = "LAYER_4_FINAL_ANALYSIS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JurySession(BaseModel):
    """
    One tournament run over one competition event.

    Attributes:
        event_id: Owning competition event
        status: JuryStatus value
        current_layer: Next layer to execute (1-4), 5 once every layer is done
        total_projects: Project count snapshot taken at creation
        eliminated_projects: Running count of eliminated projects
        eligibility_criteria: Layer 1 flags
            {"submission_deadline", "repository_access", "repository_public"}
        final_results: Per-category winners, set only when COMPLETED
    """
    __tablename__ = "ai_jury_sessions"

    event_id = Column(Integer, ForeignKey("competition_events.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(30), nullable=False, default=JuryStatus.PENDING.value)
    current_layer = Column(Integer, nullable=False, default=1)
    total_layers = Column(Integer, nullable=False, default=TOTAL_LAYERS)
    total_projects = Column(Integer, nullable=False, default=0)
    eliminated_projects = Column(Integer, nullable=False, default=0)
    eligibility_criteria = Column(UniversalJSON, nullable=False, default=dict)
    final_results = Column(UniversalJSON, nullable=True)
    failure_reason = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    layer_results = relationship(
        "JuryLayerResult",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("current_layer >= 1 AND current_layer <= 5", name="ck_jury_current_layer_range"),
        CheckConstraint("eliminated_projects >= 0", name="ck_jury_eliminated_non_negative"),
        CheckConstraint("eliminated_projects <= total_projects", name="ck_jury_eliminated_le_total"),
        Index("idx_jury_sessions_event_created", "event_id", "created_at"),
    )

    @property
    def jury_status(self) -> JuryStatus:
        return JuryStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JuryStatus.COMPLETED.value, JuryStatus.FAILED.value)

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "event_id": self.event_id,
            "status": self.status,
            "current_layer": self.current_layer,
            "total_layers": self.total_layers,
            "total_projects": self.total_projects,
            "eliminated_projects": self.eliminated_projects,
            "eligibility_criteria": self.eligibility_criteria or {},
            "final_results": self.final_results,
            "failure_reason": self.failure_reason,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class JuryLayerResult(BaseModel):
    """
    Outcome of one layer for one project.

    Rows for a (session, layer) pair are written together and replaced
    together when the layer is executed again.
    """
    __tablename__ = "ai_jury_layer_results"

    session_id = Column(Integer, ForeignKey("ai_jury_sessions.id", ondelete="CASCADE"), nullable=False)
    layer = Column(Integer, nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    eliminated = Column(Boolean, nullable=False, default=False)
    score = Column(Float, nullable=True)
    reason = Column(Text, nullable=True)
    evidence = Column(UniversalJSON, nullable=False, default=dict)
    processed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    session = relationship("JurySession", back_populates="layer_results")

    __table_args__ = (
        UniqueConstraint("session_id", "layer", "project_id", name="uq_jury_result_session_layer_project"),
        CheckConstraint("layer >= 1 AND layer <= 4", name="ck_jury_result_layer_range"),
        Index("idx_jury_results_session_layer", "session_id", "layer"),
    )

    def to_dict(self):
        return {
            "project_id": self.project_id,
            "layer": self.layer,
            "eliminated": self.eliminated,
            "score": self.score,
            "reason": self.reason,
            "evidence": self.evidence or {},
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
