"""
Competition events, their categories (tracks), projects and the analysis
reports produced upstream.

These tables are owned by other subsystems; the jury engine only reads them.
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from ai_jury.orm.base import BaseModel, UniversalJSON


class ReportKind(str, Enum):
    """Analysis kinds produced by the upstream analyzers."""
    CODE_QUALITY = "code_quality"
    TECHNOLOGY = "technology"
    COHERENCE = "coherence"
    INNOVATION = "innovation"


class ReportStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CompetitionEvent(BaseModel):
    """A hackathon or similar competition whose projects are judged."""
    __tablename__ = "competition_events"

    name = Column(String(255), nullable=False)

    categories = relationship("Category", back_populates="event", cascade="all, delete-orphan")
    projects = relationship("Project", back_populates="event", cascade="all, delete-orphan")


class Category(BaseModel):
    """A track of an event; final rankings are produced per category."""
    __tablename__ = "categories"

    event_id = Column(Integer, ForeignKey("competition_events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    event = relationship("CompetitionEvent", back_populates="categories")


class Project(BaseModel):
    """A competition submission."""
    __tablename__ = "projects"

    event_id = Column(Integer, ForeignKey("competition_events.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    repository_url = Column(String(512), nullable=True)
    submitted_at = Column(DateTime, nullable=True)

    event = relationship("CompetitionEvent", back_populates="projects")
    category = relationship("Category")
    reports = relationship("AnalysisReport", back_populates="project", cascade="all, delete-orphan")


class AnalysisReport(BaseModel):
    """
    One analyzer run for a project.

    Attributes:
        kind: ReportKind value
        status: ReportStatus value
        scores: kind-specific scalar scores, e.g.
            code_quality: {"overall_score", "richness_score", "technical_score", "security_score"}
            technology:   {"confidence", "usage_score"}
            coherence:    {"score"}
            innovation:   {"score", "novelty_score", "creativity_score"}
        technology_category: technology reports only
            (HEDERA, OTHER_BLOCKCHAIN, NO_BLOCKCHAIN)
    """
    __tablename__ = "analysis_reports"

    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default=ReportStatus.PENDING.value)
    scores = Column(UniversalJSON, nullable=False, default=dict)
    technology_category = Column(String(50), nullable=True)

    project = relationship("Project", back_populates="reports")

    __table_args__ = (
        Index("idx_reports_project_kind_created", "project_id", "kind", "created_at"),
    )
