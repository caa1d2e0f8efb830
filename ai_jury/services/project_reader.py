"""
Project Reader

Loads an event's projects together with the most recent analysis report of
each kind, and turns them into plain snapshots for the layer policies.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ai_jury.orm.competition import Project, AnalysisReport, ReportKind, ReportStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportSnapshot:
    """Most recent analyzer output of one kind for a project."""
    id: Optional[int]
    kind: str
    status: str
    scores: Dict[str, Any] = field(default_factory=dict)
    technology_category: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == ReportStatus.COMPLETED.value

    def score(self, key: str) -> Optional[float]:
        value = self.scores.get(key) if self.scores else None
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class ProjectSnapshot:
    """Read-only view of a project as seen by the layer policies."""
    id: int
    name: str
    category_id: Optional[int] = None
    submitted_at: Optional[datetime] = None
    repository_url: Optional[str] = None
    reports: Dict[str, ReportSnapshot] = field(default_factory=dict)

    def report(self, kind: ReportKind) -> Optional[ReportSnapshot]:
        return self.reports.get(kind.value)


def _to_report_snapshot(report: AnalysisReport) -> ReportSnapshot:
    return ReportSnapshot(
        id=report.id,
        kind=report.kind,
        status=report.status,
        scores=dict(report.scores or {}),
        technology_category=report.technology_category,
        created_at=report.created_at,
    )


class ProjectReader:
    """Reads the project pool of a competition event."""

    async def fetch(self, db: AsyncSession, event_id: int) -> List[ProjectSnapshot]:
        """
        Fetch all projects of an event, ordered by project id.

        Args:
            db: Database session
            event_id: Competition event

        Returns:
            Project snapshots with the latest report of each kind attached
        """
        result = await db.execute(
            select(Project)
            .where(Project.event_id == event_id)
            .order_by(Project.id)
        )
        projects = list(result.scalars().all())
        if not projects:
            return []

        latest = await self._latest_reports(db, event_id)

        return [
            ProjectSnapshot(
                id=project.id,
                name=project.name,
                category_id=project.category_id,
                submitted_at=project.submitted_at,
                repository_url=project.repository_url,
                reports=latest.get(project.id, {}),
            )
            for project in projects
        ]

    async def _latest_reports(
        self,
        db: AsyncSession,
        event_id: int
    ) -> Dict[int, Dict[str, ReportSnapshot]]:
        result = await db.execute(
            select(AnalysisReport)
            .join(Project, Project.id == AnalysisReport.project_id)
            .where(Project.event_id == event_id)
            .order_by(
                AnalysisReport.project_id,
                AnalysisReport.kind,
                AnalysisReport.created_at.desc(),
                AnalysisReport.id.desc(),
            )
        )

        latest: Dict[int, Dict[str, ReportSnapshot]] = {}
        for report in result.scalars().all():
            by_kind = latest.setdefault(report.project_id, {})
            # Rows arrive newest first within (project, kind)
            if report.kind not in by_kind:
                by_kind[report.kind] = _to_report_snapshot(report)

        return latest
