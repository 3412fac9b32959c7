"""Migration Complexity - Coarse LOW/MEDIUM/HIGH rating for a scoping report."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .schema import Report


# =============================================================================
# Scoring Constants
# =============================================================================

POINTS_LARGE_REPOS = 2
POINTS_MANY_PIPELINES = 2
POINTS_SOME_PIPELINES = 1
POINTS_HOOKS = 1
POINTS_MANY_WORK_ITEMS = 1

MANY_PIPELINES = 10
MANY_WORK_ITEMS = 100

# Upper score bound (inclusive) per level
LEVEL_THRESHOLDS = (
    (2, "LOW"),
    (4, "MEDIUM"),
)

LEVEL_GUIDANCE = {
    "LOW": "Straightforward migration",
    "MEDIUM": "Plan for 2-4 weeks migration window",
    "HIGH": "Plan for 4-8 weeks migration window",
}


@dataclass(frozen=True)
class ComplexityAssessment:
    """Migration complexity score with the findings that drove it."""
    score: int
    level: str
    drivers: tuple[str, ...] = field(default=())

    @property
    def guidance(self) -> str:
        return LEVEL_GUIDANCE[self.level]

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level,
            "guidance": self.guidance,
            "drivers": list(self.drivers),
        }


def complexity_level(score: int) -> str:
    """Map a numeric score to LOW / MEDIUM / HIGH."""
    for upper, level in LEVEL_THRESHOLDS:
        if score <= upper:
            return level
    return "HIGH"


def calculate_complexity(
    large_repos: int,
    pipelines: int,
    service_hooks: int,
    work_items: int,
) -> ComplexityAssessment:
    """
    Score migration complexity from headline counts.

    Scoring breakdown:
    - Large repositories present: +2
    - More than 10 pipelines: +2, otherwise any pipelines: +1
    - Service hooks present: +1
    - More than 100 work items: +1

    Levels: LOW (0-2), MEDIUM (3-4), HIGH (5+)
    """
    score = 0
    drivers: list[str] = []

    if large_repos > 0:
        score += POINTS_LARGE_REPOS
        drivers.append("Large repositories present - will require careful migration planning")

    if pipelines > MANY_PIPELINES:
        score += POINTS_MANY_PIPELINES
        drivers.append("Significant pipeline migration required")
    elif pipelines > 0:
        score += POINTS_SOME_PIPELINES
        drivers.append("Moderate pipeline migration required")

    if service_hooks > 0:
        score += POINTS_HOOKS
        drivers.append("Custom integrations need recreation")

    if work_items > MANY_WORK_ITEMS:
        score += POINTS_MANY_WORK_ITEMS
        drivers.append("Significant metadata migration recommended")

    return ComplexityAssessment(score=score, level=complexity_level(score), drivers=tuple(drivers))


def assess_complexity(report: "Report") -> ComplexityAssessment:
    """Complexity assessment for a finished report."""
    return calculate_complexity(
        large_repos=report.large_repo_count,
        pipelines=report.rollups.pipelines,
        service_hooks=report.rollups.service_hooks,
        work_items=report.rollups.work_items,
    )
