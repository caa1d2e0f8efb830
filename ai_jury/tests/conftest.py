"""
Shared fixtures: in-memory database, competition seeding and fake
collaborators for the layer executor.
"""
from datetime import datetime
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ai_jury.orm import Base, CompetitionEvent, Category, Project, AnalysisReport, ReportKind, ReportStatus
from ai_jury.services.layer_executor import LayerExecutor
from ai_jury.services.progress_tracker import ProgressTracker
from ai_jury.services.repository_checker import RepositoryAccess

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


class CompetitionSeeder:
    """Creates events, categories, projects and analysis reports."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._counter = 0

    async def event(self, name: str = "Test Hackathon", categories: Tuple[str, ...] = ("DeFi", "Gaming")):
        event = CompetitionEvent(name=name)
        self.db.add(event)
        await self.db.flush()

        created = []
        for category_name in categories:
            category = Category(event_id=event.id, name=category_name)
            self.db.add(category)
            created.append(category)
        await self.db.commit()
        return event, created

    async def project(
        self,
        event: CompetitionEvent,
        category: Optional[Category] = None,
        name: Optional[str] = None,
        submitted: bool = True,
        repository_url: Optional[str] = "default",
    ) -> Project:
        self._counter += 1
        if repository_url == "default":
            repository_url = f"https://github.com/acme/project-{self._counter}"
        project = Project(
            event_id=event.id,
            category_id=category.id if category else None,
            name=name or f"Project {self._counter}",
            repository_url=repository_url,
            submitted_at=datetime(2026, 3, 1, 12, 0) if submitted else None,
        )
        self.db.add(project)
        await self.db.commit()
        await self.db.refresh(project)
        return project

    async def report(
        self,
        project: Project,
        kind: ReportKind,
        scores: Optional[Dict] = None,
        status: ReportStatus = ReportStatus.COMPLETED,
        technology_category: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> AnalysisReport:
        report = AnalysisReport(
            project_id=project.id,
            kind=kind.value,
            status=status.value,
            scores=scores or {},
            technology_category=technology_category,
            created_at=created_at or datetime.utcnow(),
        )
        self.db.add(report)
        await self.db.commit()
        await self.db.refresh(report)
        return report

    async def full_reports(
        self,
        project: Project,
        technology: str = "HEDERA",
        confidence: float = 80,
        usage: float = 70,
        overall: float = 75,
        richness: float = 70,
        coherence: float = 70,
        innovation: float = 80,
    ) -> None:
        """Completed reports of every kind for a project."""
        await self.report(
            project, ReportKind.TECHNOLOGY,
            {"confidence": confidence, "usage_score": usage},
            technology_category=technology,
        )
        await self.report(
            project, ReportKind.CODE_QUALITY,
            {"overall_score": overall, "richness_score": richness, "technical_score": 70, "security_score": 80},
        )
        await self.report(project, ReportKind.COHERENCE, {"score": coherence})
        await self.report(project, ReportKind.INNOVATION, {"score": innovation})


@pytest.fixture
def seeder(db_session: AsyncSession) -> CompetitionSeeder:
    return CompetitionSeeder(db_session)


class FakeRepositoryChecker:
    """Repository checker answering from a table instead of GitHub."""

    def __init__(self, responses: Optional[Dict[str, RepositoryAccess]] = None):
        self.responses = responses or {}
        self.calls: List[str] = []

    async def check(self, owner: str, repo: str) -> RepositoryAccess:
        key = f"{owner}/{repo}"
        self.calls.append(key)
        return self.responses.get(key, RepositoryAccess(accessible=True, is_public=True))


@pytest.fixture
def fake_checker() -> FakeRepositoryChecker:
    return FakeRepositoryChecker()


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def tracker(clock: ManualClock) -> ProgressTracker:
    return ProgressTracker(retention_seconds=60, max_sessions=10, recent_events=20, clock=clock)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def executor(fake_checker, tracker, sleeps) -> LayerExecutor:
    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return LayerExecutor(
        checker=fake_checker,
        tracker=tracker,
        batch_size=50,
        cooldown_seconds=0.1,
        chunk_size=1000,
        top_n=5,
        sleep=record_sleep,
    )