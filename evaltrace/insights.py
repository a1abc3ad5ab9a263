"""Rule-based insight generation over a built matrix.

Each rule is an independent object with ``evaluate(matrix, summary, coverage)``
returning zero or more :class:`GeneratedInsight`. The generator runs rules in
list order and concatenates their output without re-sorting, so emission
order is the tie-break. Rules only read their inputs.

Default rule order
------------------
- **progress_update**: evaluation not yet fully scored.
- **coverage_gap**: a vendor has more than 20% of requirements unscored.
- **category_leader**: best vendor average in a category, if at least 4.
- **consensus_needed**: evaluator scores on a cell spread out (population
  standard deviation above 1.0) and no consensus has been recorded.
- **risk_area**: every scored vendor is weak on a requirement.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable

from evaltrace.config import Settings, get_settings
from evaltrace.coverage import CoverageReport
from evaltrace.matrix import Matrix
from evaltrace.summary import MatrixSummary
from evaltrace.utils import mean, population_stdev


class InsightType(StrEnum):
    PROGRESS_UPDATE = "progress_update"
    COVERAGE_GAP = "coverage_gap"
    CATEGORY_LEADER = "category_leader"
    CONSENSUS_NEEDED = "consensus_needed"
    RISK_AREA = "risk_area"


class InsightPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITY_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1}


@dataclass(frozen=True)
class GeneratedInsight:
    insight_type: InsightType
    title: str
    description: str
    priority: InsightPriority
    supporting_data: dict[str, Any] = field(default_factory=dict)
    vendor_id: int | None = None
    category_id: int | None = None
    requirement_id: int | None = None
    generated_by: str = "system"

    def as_dict(self) -> dict[str, Any]:
        return {
            "insight_type": self.insight_type.value,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "supporting_data": self.supporting_data,
            "vendor_id": self.vendor_id,
            "category_id": self.category_id,
            "requirement_id": self.requirement_id,
            "generated_by": self.generated_by,
        }


class InsightRule(ABC):
    insight_type: InsightType

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    @abstractmethod
    def evaluate(
        self, matrix: Matrix, summary: MatrixSummary, coverage: CoverageReport,
    ) -> list[GeneratedInsight]: ...


class ProgressRule(InsightRule):
    insight_type = InsightType.PROGRESS_UPDATE

    def evaluate(self, matrix, summary, coverage):
        overall = coverage.overall
        pct = overall.scored_percent
        if pct >= 100:
            return []
        medium = pct < self.settings.progress_medium_below_percent
        return [GeneratedInsight(
            insight_type=self.insight_type,
            title=f"Evaluation {round(pct)}% Complete",
            description=(
                f"{overall.scored_cells} of {overall.total_cells} requirement-vendor "
                "combinations have been scored."
            ),
            priority=InsightPriority.MEDIUM if medium else InsightPriority.LOW,
            supporting_data={
                "scored": overall.scored_cells,
                "total": overall.total_cells,
                "percentage": pct,
            },
        )]


class CoverageGapRule(InsightRule):
    insight_type = InsightType.COVERAGE_GAP

    def evaluate(self, matrix, summary, coverage):
        s = self.settings
        out: list[GeneratedInsight] = []
        for vendor in matrix.vendors:
            vc = coverage.by_vendor.get(vendor.id)
            if vc is None or vc.missing_count == 0:
                continue
            missing_pct = vc.missing_percent
            if missing_pct <= s.coverage_gap_medium_percent:
                continue
            high = missing_pct > s.coverage_gap_high_percent
            out.append(GeneratedInsight(
                insight_type=self.insight_type,
                title=f"{vendor.name}: {vc.missing_count} Requirements Unscored",
                description=f"{round(missing_pct)}% of requirements have not been scored for {vendor.name}.",
                priority=InsightPriority.HIGH if high else InsightPriority.MEDIUM,
                vendor_id=vendor.id,
                supporting_data={
                    "missing_count": vc.missing_count,
                    "total": vc.total,
                    "percentage": missing_pct,
                    "missing_requirements": [r.title for r in vc.missing[:s.gap_display_limit]],
                },
            ))
        return out


def strictly_higher(candidate: float, incumbent: float) -> bool:
    """Default leader comparator: the earlier vendor keeps a tie."""
    return candidate > incumbent


class CategoryLeaderRule(InsightRule):
    """Names the vendor with the best average per category.

    Ties go to whichever vendor comes first in column (name) order unless a
    different ``prefers`` comparator is given.
    """
    insight_type = InsightType.CATEGORY_LEADER

    def __init__(
        self,
        settings: Settings | None = None,
        prefers: Callable[[float, float], bool] = strictly_higher,
    ):
        super().__init__(settings)
        self.prefers = prefers

    def evaluate(self, matrix, summary, coverage):
        out: list[GeneratedInsight] = []
        for category in matrix.categories:
            rows = [r for r in matrix.requirement_rows if r.category.id == category.id]
            if not rows:
                continue

            averages: list[tuple[int, float, int]] = []  # (vendor index, average, scored count)
            for idx in range(len(matrix.vendors)):
                values = [row.cells[idx].value for row in rows if row.cells[idx].value is not None]
                if values:
                    averages.append((idx, sum(values) / len(values), len(values)))

            leader: tuple[int, float, int] | None = None
            for entry in averages:
                if leader is None or self.prefers(entry[1], leader[1]):
                    leader = entry
            if leader is None or leader[1] < self.settings.category_leader_min_average:
                continue

            vendor = matrix.vendors[leader[0]]
            avg = leader[1]
            out.append(GeneratedInsight(
                insight_type=self.insight_type,
                title=f"{vendor.name} Leads in {category.name}",
                description=(
                    f"{vendor.name} has the highest average score ({avg:.1f}/5) "
                    f"in the {category.name} category."
                ),
                priority=InsightPriority.MEDIUM,
                vendor_id=vendor.id,
                category_id=category.id,
                supporting_data={
                    "average_score": avg,
                    "requirements_scored": leader[2],
                    "vendor_averages": [
                        {"vendor_id": matrix.vendors[i].id, "vendor": matrix.vendors[i].name,
                         "average_score": a, "requirements_scored": n}
                        for i, a, n in averages
                    ],
                },
            ))
        return out


class ConsensusNeededRule(InsightRule):
    insight_type = InsightType.CONSENSUS_NEEDED

    def evaluate(self, matrix, summary, coverage):
        out: list[GeneratedInsight] = []
        for row in matrix.requirement_rows:
            req = row.requirement
            for vendor, cell in zip(matrix.vendors, row.cells):
                scores = cell.individual_values
                if len(scores) < 2 or cell.consensus_value is not None:
                    continue
                spread = population_stdev(scores)
                if spread <= self.settings.consensus_stdev_threshold:
                    continue
                lo, hi = min(scores), max(scores)
                out.append(GeneratedInsight(
                    insight_type=self.insight_type,
                    title=f"High Score Variance: {req.title}",
                    description=(
                        f'Evaluator scores for {vendor.name} on "{req.title}" vary significantly '
                        f"({lo:g} to {hi:g}). Reconciliation recommended."
                    ),
                    priority=InsightPriority.HIGH,
                    vendor_id=vendor.id,
                    requirement_id=req.id,
                    supporting_data={
                        "scores": scores,
                        "mean": mean(scores),
                        "standard_deviation": spread,
                        "threshold": self.settings.consensus_stdev_threshold,
                        "min": lo,
                        "max": hi,
                    },
                ))
        return out


class RiskAreaRule(InsightRule):
    insight_type = InsightType.RISK_AREA

    def evaluate(self, matrix, summary, coverage):
        s = self.settings
        out: list[GeneratedInsight] = []
        for row in matrix.requirement_rows:
            req = row.requirement
            scored = [
                (vendor, cell.value) for vendor, cell in zip(matrix.vendors, row.cells)
                if cell.value is not None
            ]
            if len(scored) < s.risk_min_vendors:
                continue
            avg = sum(v for _, v in scored) / len(scored)
            if not all(v < s.risk_all_below for _, v in scored) or avg >= s.risk_average_below:
                continue
            out.append(GeneratedInsight(
                insight_type=self.insight_type,
                title=f"All Vendors Weak: {req.title}",
                description=(
                    f'All evaluated vendors score below average on "{req.title}" '
                    f"(avg {avg:.1f}/5). This may be a market gap or overly stringent requirement."
                ),
                priority=InsightPriority.HIGH,
                requirement_id=req.id,
                supporting_data={
                    "average_score": avg,
                    "vendor_scores": [
                        {"vendor_id": vendor.id, "vendor": vendor.name, "score": value}
                        for vendor, value in scored
                    ],
                },
            ))
        return out


def default_rules(settings: Settings | None = None) -> list[InsightRule]:
    settings = settings or get_settings()
    return [
        ProgressRule(settings),
        CoverageGapRule(settings),
        CategoryLeaderRule(settings),
        ConsensusNeededRule(settings),
        RiskAreaRule(settings),
    ]


def generate_insights(
    matrix: Matrix,
    summary: MatrixSummary,
    coverage: CoverageReport,
    rules: list[InsightRule] | None = None,
    settings: Settings | None = None,
) -> list[GeneratedInsight]:
    """Run each rule in order and concatenate what they emit."""
    insights: list[GeneratedInsight] = []
    for rule in rules if rules is not None else default_rules(settings):
        insights.extend(rule.evaluate(matrix, summary, coverage))
    return insights
