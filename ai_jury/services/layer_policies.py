"""
Layer Policies

Pure decision functions for the four jury layers:

    Layer 1  Eligibility         submission + repository checks, eliminates
    Layer 2  Technology filter   lenient blockchain/Hedera filter
    Layer 3  Code quality gate   scores, never eliminates
    Layer 4  Final analysis      coherence/innovation composite, never eliminates

Layers 2-4 never eliminate a project because an analyzer has not produced a
completed report: they substitute a default score and record it in the
evidence (default_score / report_status) so the result can be audited.
Layer 1 fails closed: a repository that cannot be checked is ineligible.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Optional, Tuple

from ai_jury.orm.competition import ReportKind
from ai_jury.orm.jury_session import JuryStatus
from ai_jury.state_machines.jury_session_state import LAYER_STATUSES
from ai_jury.services.project_reader import ProjectSnapshot, ReportSnapshot
from ai_jury.services.repository_checker import (
    RepositoryAccess, InvalidRepositoryUrlError, parse_repository_url
)

logger = logging.getLogger(__name__)

MISSING_REPORT_STATUS = "MISSING"

LAYER_2_DEFAULT_SCORE = 70.0
LAYER_2_UNKNOWN_CATEGORY_SCORE = 50.0
LAYER_3_DEFAULT_SCORE = 60.0
LAYER_3_RICHNESS_THRESHOLD = 50.0
LAYER_3_PENALTY_FLOOR = 30.0
LAYER_3_PENALTY_FACTOR = 0.5
LAYER_4_DEFAULT_SCORE = 65.0
COHERENCE_WEIGHT = Decimal("0.4")
INNOVATION_WEIGHT = Decimal("0.6")


@dataclass
class LayerDecision:
    """Outcome of a layer policy for one project."""
    eliminated: bool
    score: float
    reason: str
    evidence: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoreLookup:
    """A score read from a report, or the default used in its place."""
    value: float
    used_default: bool
    report_status: str


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def report_status_of(report: Optional[ReportSnapshot]) -> str:
    return report.status if report is not None else MISSING_REPORT_STATUS


def score_or_default(
    report: Optional[ReportSnapshot],
    score_key: str,
    default: float
) -> ScoreLookup:
    """
    Read score_key from a completed report, or fall back to default.

    Reports that are missing, pending, in progress or failed all fall back;
    report_status keeps the distinction. A completed report without the key
    scores 0.
    """
    if report is None or not report.is_completed:
        return ScoreLookup(value=default, used_default=True, report_status=report_status_of(report))

    value = report.score(score_key)
    return ScoreLookup(
        value=value if value is not None else 0.0,
        used_default=False,
        report_status=report.status
    )


# =============================================================================
# Layer 1: Eligibility
# =============================================================================

@dataclass(frozen=True)
class EligibilityCriteria:
    """Layer 1 flags; every check is off unless configured."""
    submission_deadline: bool = False
    repository_access: bool = False
    repository_public: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EligibilityCriteria":
        data = data or {}
        return cls(
            submission_deadline=bool(data.get("submission_deadline", data.get("submissionDeadline", False))),
            repository_access=bool(data.get("repository_access", data.get("repositoryAccess", False))),
            repository_public=bool(data.get("repository_public", data.get("repositoryPublic", False))),
        )

    @property
    def requires_repository(self) -> bool:
        return self.repository_access or self.repository_public

    def to_dict(self) -> Dict[str, bool]:
        return {
            "submission_deadline": self.submission_deadline,
            "repository_access": self.repository_access,
            "repository_public": self.repository_public,
        }


@dataclass(frozen=True)
class EligibilityContext:
    project: ProjectSnapshot
    criteria: EligibilityCriteria
    repository: Optional[RepositoryAccess]
    url_error: Optional[str]


@dataclass(frozen=True)
class EligibilityRule:
    """
    One eligibility check.

    applies: whether the criteria enable this rule
    failure: returns the elimination reason, or None when the project passes
    """
    name: str
    applies: Callable[[EligibilityCriteria], bool]
    failure: Callable[[EligibilityContext], Optional[str]]


def _submission_failure(ctx: EligibilityContext) -> Optional[str]:
    if ctx.project.submitted_at is None:
        return "Project was not properly submitted"
    return None


def _url_present_failure(ctx: EligibilityContext) -> Optional[str]:
    url = ctx.project.repository_url
    if not url or not url.strip():
        return "No GitHub repository URL provided"
    return None


def _url_parse_failure(ctx: EligibilityContext) -> Optional[str]:
    if ctx.url_error is not None:
        return f"Invalid GitHub repository URL: {ctx.url_error}"
    return None


def _accessible_failure(ctx: EligibilityContext) -> Optional[str]:
    if ctx.repository is None:
        return "Repository not accessible: accessibility check unavailable"
    if not ctx.repository.accessible:
        return f"Repository not accessible: {ctx.repository.error or 'Unknown error'}"
    return None


def _public_failure(ctx: EligibilityContext) -> Optional[str]:
    if ctx.repository is None:
        return "Repository accessibility issue: accessibility check unavailable"
    if not ctx.repository.is_public:
        if ctx.repository.error:
            return f"Repository accessibility issue: {ctx.repository.error}"
        return "Repository must be public but appears to be private"
    return None


# Evaluated in order; the first failing enabled rule decides the reason.
ELIGIBILITY_RULES: Tuple[EligibilityRule, ...] = (
    EligibilityRule("submission", lambda c: c.submission_deadline, _submission_failure),
    EligibilityRule("repository_url_present", lambda c: c.requires_repository, _url_present_failure),
    EligibilityRule("repository_url_parse", lambda c: c.requires_repository, _url_parse_failure),
    EligibilityRule("repository_accessible", lambda c: c.repository_access, _accessible_failure),
    EligibilityRule("repository_public", lambda c: c.repository_public, _public_failure),
)

_PRE_CHECK_RULES = ("submission", "repository_url_present", "repository_url_parse")


def _parse_url_error(url: Optional[str]) -> Optional[str]:
    if not url or not url.strip():
        return None
    try:
        parse_repository_url(url)
    except InvalidRepositoryUrlError as e:
        return str(e)
    return None


def repository_to_check(
    project: ProjectSnapshot,
    criteria: EligibilityCriteria
) -> Optional[Tuple[str, str]]:
    """
    Return the (owner, repo) the executor must check before deciding, or None.

    No check is needed when no repository flag is enabled, or when a rule
    evaluated before the repository rules already eliminates the project.
    """
    if not criteria.requires_repository:
        return None

    ctx = EligibilityContext(
        project=project,
        criteria=criteria,
        repository=None,
        url_error=_parse_url_error(project.repository_url),
    )
    for rule in ELIGIBILITY_RULES:
        if rule.name not in _PRE_CHECK_RULES or not rule.applies(criteria):
            continue
        if rule.failure(ctx) is not None:
            return None

    return parse_repository_url(project.repository_url)


def decide_eligibility(
    project: ProjectSnapshot,
    criteria: EligibilityCriteria,
    repository_check: Optional[RepositoryAccess] = None,
    checked_at: Optional[datetime] = None,
) -> LayerDecision:
    """
    Layer 1: walk ELIGIBILITY_RULES and eliminate on the first failure.

    Args:
        project: Project under evaluation
        criteria: Enabled eligibility checks
        repository_check: Accessibility check result, when one was performed
        checked_at: Time of the accessibility check (evidence only)
    """
    evidence: Dict[str, Any] = {}
    url_error = _parse_url_error(project.repository_url)

    if criteria.submission_deadline:
        evidence["submitted_at"] = project.submitted_at.isoformat() if project.submitted_at else None
    if criteria.requires_repository:
        evidence["repository_url"] = project.repository_url
        if url_error is not None:
            evidence["repository_error"] = url_error
        if repository_check is not None:
            evidence["repository_accessibility"] = {
                **repository_check.to_dict(),
                "checked_at": (checked_at or datetime.utcnow()).isoformat(),
            }

    ctx = EligibilityContext(project=project, criteria=criteria, repository=repository_check, url_error=url_error)

    for rule in ELIGIBILITY_RULES:
        if not rule.applies(criteria):
            continue
        reason = rule.failure(ctx)
        if reason is not None:
            evidence["failed_rule"] = rule.name
            return LayerDecision(eliminated=True, score=0.0, reason=reason, evidence=evidence)

    return LayerDecision(
        eliminated=False,
        score=100.0,
        reason="Meets all eligibility criteria",
        evidence=evidence
    )


# =============================================================================
# Layer 2: Technology filter
# =============================================================================

@dataclass(frozen=True)
class TechnologyRule:
    category: str
    eliminate: bool
    label: str


# First matching category wins; anything else gets the benefit of the doubt.
TECHNOLOGY_RULES: Tuple[TechnologyRule, ...] = (
    TechnologyRule("NO_BLOCKCHAIN", eliminate=True, label="no blockchain technology"),
    TechnologyRule("OTHER_BLOCKCHAIN", eliminate=False, label="blockchain technology"),
    TechnologyRule("HEDERA", eliminate=False, label="Hedera technology"),
)


def _match_technology_rule(category: Optional[str]) -> Optional[TechnologyRule]:
    normalized = (category or "").strip().upper()
    for rule in TECHNOLOGY_RULES:
        if rule.category == normalized:
            return rule
    return None


def decide_technology(project: ProjectSnapshot) -> LayerDecision:
    """Layer 2: eliminate only projects that definitely miss the target technology."""
    report = project.report(ReportKind.TECHNOLOGY)
    lookup = score_or_default(report, "confidence", LAYER_2_DEFAULT_SCORE)

    if lookup.used_default:
        if report is not None:
            reason = f"Technology analysis incomplete (status: {report.status}) - assigned default score"
        else:
            reason = "No technology analysis report available - assigned default score"
        return LayerDecision(
            eliminated=False,
            score=lookup.value,
            reason=reason,
            evidence={
                "technology_report": None,
                "default_score": True,
                "report_status": lookup.report_status,
            }
        )

    confidence = lookup.value
    usage = report.score("usage_score") or 0.0
    evidence: Dict[str, Any] = {
        "technology_report": {
            "id": report.id,
            "status": report.status,
            "technology_category": report.technology_category,
            "confidence": confidence,
            "usage_score": usage,
            "detected_technologies": report.scores.get("detected_technologies"),
            "created_at": report.created_at.isoformat() if report.created_at else None,
        },
        "default_score": False,
        "report_status": report.status,
    }

    rule = _match_technology_rule(report.technology_category)
    if rule is None:
        evidence["default_score"] = True
        return LayerDecision(
            eliminated=False,
            score=LAYER_2_UNKNOWN_CATEGORY_SCORE,
            reason="Unable to determine technology category - assigned neutral score",
            evidence=evidence
        )

    evidence["technology_category"] = rule.category
    if rule.eliminate:
        return LayerDecision(
            eliminated=True,
            score=0.0,
            reason=f"Project uses {rule.label}",
            evidence=evidence
        )

    return LayerDecision(
        eliminated=False,
        score=max(confidence, usage),
        reason=(
            f"Project uses {rule.label} ({rule.category}; "
            f"confidence: {round_half_up(confidence)}%, usage: {round_half_up(usage)}%)"
        ),
        evidence=evidence
    )


# =============================================================================
# Layer 3: Code quality gate
# =============================================================================

def decide_code_quality(project: ProjectSnapshot) -> LayerDecision:
    """Layer 3: thin or poor analysis lowers the score, never survival."""
    report = project.report(ReportKind.CODE_QUALITY)
    lookup = score_or_default(report, "overall_score", LAYER_3_DEFAULT_SCORE)

    if lookup.used_default:
        if report is not None:
            reason = f"Code quality analysis incomplete (status: {report.status}) - assigned default score"
        else:
            reason = "No code quality analysis report available - assigned default score"
        return LayerDecision(
            eliminated=False,
            score=lookup.value,
            reason=reason,
            evidence={
                "code_quality_report": None,
                "default_score": True,
                "report_status": lookup.report_status,
            }
        )

    overall = lookup.value
    richness = report.score("richness_score") or 0.0
    evidence = {
        "code_quality_report": {
            "id": report.id,
            "status": report.status,
            "created_at": report.created_at.isoformat() if report.created_at else None,
        },
        "default_score": False,
        "report_status": report.status,
        "richness_score": richness,
        "overall_score": overall,
        "technical_score": report.score("technical_score"),
        "security_score": report.score("security_score"),
    }

    if richness < LAYER_3_RICHNESS_THRESHOLD:
        evidence["penalized"] = True
        return LayerDecision(
            eliminated=False,
            score=max(LAYER_3_PENALTY_FLOOR, overall * LAYER_3_PENALTY_FACTOR),
            reason=(
                f"Code richness score ({round_half_up(richness)}%) is below "
                f"{round_half_up(LAYER_3_RICHNESS_THRESHOLD)}% threshold - penalized score applied"
            ),
            evidence=evidence
        )

    evidence["penalized"] = False
    return LayerDecision(
        eliminated=False,
        score=max(0.0, overall),
        reason=(
            f"Code quality meets standards (richness: {round_half_up(richness)}%, "
            f"overall: {round_half_up(overall)}%)"
        ),
        evidence=evidence
    )


# =============================================================================
# Layer 4: Final analysis
# =============================================================================

def _report_summary(report: Optional[ReportSnapshot], lookup: ScoreLookup) -> Optional[Dict[str, Any]]:
    if lookup.used_default:
        return None
    return {
        "id": report.id,
        "status": report.status,
        "score": lookup.value,
        "summary": report.scores.get("summary"),
        "created_at": report.created_at.isoformat() if report.created_at else None,
    }


def composite_score(coherence: float, innovation: float) -> int:
    """round(coherence * 0.4 + innovation * 0.6), halves rounded up."""
    weighted = Decimal(str(coherence)) * COHERENCE_WEIGHT + Decimal(str(innovation)) * INNOVATION_WEIGHT
    return int(weighted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def decide_final_analysis(project: ProjectSnapshot) -> LayerDecision:
    """Layer 4: pure ranking stage, innovation weighted above coherence."""
    coherence_report = project.report(ReportKind.COHERENCE)
    innovation_report = project.report(ReportKind.INNOVATION)
    coherence = score_or_default(coherence_report, "score", LAYER_4_DEFAULT_SCORE)
    innovation = score_or_default(innovation_report, "score", LAYER_4_DEFAULT_SCORE)

    evidence: Dict[str, Any] = {
        "coherence_report": _report_summary(coherence_report, coherence),
        "innovation_report": _report_summary(innovation_report, innovation),
    }
    if coherence.used_default:
        evidence["coherence_default"] = True
        evidence["coherence_report_status"] = coherence.report_status
    if innovation.used_default:
        evidence["innovation_default"] = True
        evidence["innovation_report_status"] = innovation.report_status
    evidence["default_score"] = coherence.used_default or innovation.used_default

    score = composite_score(coherence.value, innovation.value)
    evidence["composite_score"] = score
    evidence["coherence_weight"] = float(COHERENCE_WEIGHT)
    evidence["innovation_weight"] = float(INNOVATION_WEIGHT)

    coherence_text = f"{round_half_up(coherence.value)}/100" + (" (default)" if coherence.used_default else "")
    innovation_text = f"{round_half_up(innovation.value)}/100" + (" (default)" if innovation.used_default else "")

    return LayerDecision(
        eliminated=False,
        score=float(score),
        reason=f"Final analysis: Coherence {coherence_text}, Innovation {innovation_text}",
        evidence=evidence
    )


# =============================================================================
# Registry and error conversion
# =============================================================================

@dataclass(frozen=True)
class LayerPolicy:
    layer: int
    name: str
    status: JuryStatus
    # Score used when evaluation itself fails; None means fail closed
    default_score: Optional[float]


LAYER_POLICIES: Dict[int, LayerPolicy] = {
    1: LayerPolicy(1, "eligibility", LAYER_STATUSES[1], None),
    2: LayerPolicy(2, "technology", LAYER_STATUSES[2], LAYER_2_DEFAULT_SCORE),
    3: LayerPolicy(3, "code_quality", LAYER_STATUSES[3], LAYER_3_DEFAULT_SCORE),
    4: LayerPolicy(
        4, "final_analysis", LAYER_STATUSES[4],
        float(composite_score(LAYER_4_DEFAULT_SCORE, LAYER_4_DEFAULT_SCORE))
    ),
}


def decision_for_error(layer: int, error: BaseException) -> LayerDecision:
    """
    Turn an unexpected evaluation failure into a decision.

    Layer 1 eliminates (the project could not be shown eligible); later
    layers keep the project with the layer's default score.
    """
    policy = LAYER_POLICIES[layer]
    message = str(error) or type(error).__name__

    if policy.default_score is None:
        return LayerDecision(
            eliminated=True,
            score=0.0,
            reason=f"Eligibility evaluation failed: {message}",
            evidence={"error": message, "failed_rule": "evaluation_error"}
        )

    return LayerDecision(
        eliminated=False,
        score=policy.default_score,
        reason=f"{policy.name.replace('_', ' ').capitalize()} evaluation failed - assigned default score",
        evidence={"error": message, "default_score": True}
    )
