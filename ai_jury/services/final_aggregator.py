"""
Final Aggregator

Turns Layer 4 scores into the per-category winners stored on a completed
jury session.

Ranking is deterministic: score descending, then project id ascending.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ai_jury.orm.competition import Project, Category
from ai_jury.orm.jury_session import JuryLayerResult, TOTAL_LAYERS

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 5


@dataclass(frozen=True)
class AggregateEntry:
    """A surviving project with its final score."""
    project_id: int
    category_id: Optional[int]
    score: float
    project_name: Optional[str] = None
    category_name: Optional[str] = None


def _ranking_key(entry: AggregateEntry):
    return (-entry.score, entry.project_id)


def aggregate_final_results(
    entries: Iterable[AggregateEntry],
    top_n: int = DEFAULT_TOP_N,
    generated_at: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Pick the top N projects of every category.

    Projects without a category are skipped and categories without any
    entry do not appear. Category ids are stored as strings so the result
    round-trips through JSON unchanged.

    Returns:
        {
            "top_projects_by_category": {"<category_id>": [project_id, ...]},
            "winners": {"<category_id>": [{rank, project_id, project_name, ..., score}, ...]},
            "generated_at": ISO timestamp,
            "total_categories": categories present,
            "total_winners": winners across categories,
            "top_n": N
        }
    """
    if top_n < 1:
        raise ValueError(f"top_n must be at least 1, got {top_n}")

    by_category: Dict[int, List[AggregateEntry]] = {}
    skipped = 0
    for entry in entries:
        if entry.category_id is None:
            skipped += 1
            continue
        by_category.setdefault(entry.category_id, []).append(entry)

    if skipped:
        logger.warning(f"Skipped {skipped} projects without a category in final aggregation")

    top_projects: Dict[str, List[int]] = {}
    winners: Dict[str, List[Dict[str, Any]]] = {}
    for category_id in sorted(by_category):
        ranked = sorted(by_category[category_id], key=_ranking_key)[:top_n]
        top_projects[str(category_id)] = [entry.project_id for entry in ranked]
        winners[str(category_id)] = [
            {
                "rank": rank,
                "project_id": entry.project_id,
                "project_name": entry.project_name,
                "category_id": entry.category_id,
                "category_name": entry.category_name,
                "score": entry.score,
            }
            for rank, entry in enumerate(ranked, start=1)
        ]

    return {
        "top_projects_by_category": top_projects,
        "winners": winners,
        "generated_at": (generated_at or datetime.utcnow()).isoformat(),
        "total_categories": len(top_projects),
        "total_winners": sum(len(project_ids) for project_ids in top_projects.values()),
        "top_n": top_n,
    }


async def generate_final_results(
    db: AsyncSession,
    session_id: int,
    top_n: int = DEFAULT_TOP_N
) -> Dict[str, Any]:
    """
    Aggregate the Layer 4 rows of a session.

    Reads through the given session, so rows flushed but not yet committed
    in the same transaction are included.
    """
    result = await db.execute(
        select(
            JuryLayerResult.project_id,
            JuryLayerResult.score,
            Project.name,
            Project.category_id,
            Category.name,
        )
        .join(Project, Project.id == JuryLayerResult.project_id)
        .outerjoin(Category, Category.id == Project.category_id)
        .where(
            JuryLayerResult.session_id == session_id,
            JuryLayerResult.layer == TOTAL_LAYERS,
            JuryLayerResult.eliminated == False  # noqa: E712
        )
    )

    entries = [
        AggregateEntry(
            project_id=project_id,
            category_id=category_id,
            score=score if score is not None else 0.0,
            project_name=project_name,
            category_name=category_name,
        )
        for project_id, score, project_name, category_id, category_name in result.all()
    ]

    final_results = aggregate_final_results(entries, top_n=top_n)
    logger.info(
        f"Final results for session {session_id}: "
        f"{final_results['total_winners']} winners across {final_results['total_categories']} categories"
    )
    return final_results
