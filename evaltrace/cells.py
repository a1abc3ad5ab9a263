"""Cell evaluator: resolves one (requirement, vendor) pair into a matrix cell.

Resolution order
----------------
1. A consensus score on **any** linked criterion wins. When several linked
   criteria carry one, the configured consensus policy picks the value
   (``first`` in link order by default; ``mean``, ``min``, ``max``).
2. Otherwise the arithmetic mean of every individual score across all
   linked criteria.
3. Otherwise the cell is unscored.

The RAG status is derived from the resolved value every time a cell is
built and is never stored on its own.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from evaltrace.config import Settings, get_settings
from evaltrace.records import (
    ConsensusRecord, EvidenceIndex, EvidenceRecord, RequirementRecord, ScoreIndex, ScoreRecord,
    VendorRecord,
)
from evaltrace.utils import mean


class CellType(StrEnum):
    NO_SCORE = "no_score"
    SCORED = "scored"
    CONSENSUS = "consensus"


class RagStatus(StrEnum):
    GREEN = "green"
    AMBER = "amber"
    RED = "red"
    NONE = "none"


RAG_LABELS: dict[RagStatus, str] = {
    RagStatus.GREEN: "Strong Fit",
    RagStatus.AMBER: "Moderate Fit",
    RagStatus.RED: "Weak Fit",
    RagStatus.NONE: "Not Scored",
}


def _rag_for(value: float | None, green: float, amber: float) -> RagStatus:
    if value is None:
        return RagStatus.NONE
    if value >= green:
        return RagStatus.GREEN
    if value >= amber:
        return RagStatus.AMBER
    return RagStatus.RED


def classify_rag(value: float | None, settings: Settings | None = None) -> RagStatus:
    """Map a resolved score onto Red/Amber/Green using the configured thresholds."""
    s = settings or get_settings()
    return _rag_for(value, s.rag_green_threshold, s.rag_amber_threshold)


def rag_label(status: RagStatus | str) -> str:
    return RAG_LABELS[RagStatus(status)]


def resolve_consensus(candidates: list[ConsensusRecord], policy: str) -> float | None:
    """Pick the cell value when one or more linked criteria carry a consensus score."""
    if not candidates:
        return None
    values = [c.value for c in candidates]
    if policy == "mean":
        return sum(values) / len(values)
    if policy == "min":
        return min(values)
    if policy == "max":
        return max(values)
    return values[0]


@dataclass(frozen=True)
class MatrixCell:
    vendor_id: int
    requirement_id: int
    criterion_ids: tuple[int, ...]
    cell_type: CellType
    value: float | None
    consensus_value: float | None
    individual_scores: tuple[ScoreRecord, ...] = ()
    evidence: tuple[EvidenceRecord, ...] = ()
    rag_green_threshold: float = 4.0
    rag_amber_threshold: float = 3.0

    @property
    def rag_status(self) -> RagStatus:
        return _rag_for(self.value, self.rag_green_threshold, self.rag_amber_threshold)

    @property
    def evidence_count(self) -> int:
        return len(self.evidence)

    @property
    def is_scored(self) -> bool:
        return self.cell_type is not CellType.NO_SCORE

    @property
    def individual_values(self) -> list[float]:
        return [s.value for s in self.individual_scores]

    def as_dict(self) -> dict[str, Any]:
        status = self.rag_status
        return {
            "vendor_id": self.vendor_id,
            "requirement_id": self.requirement_id,
            "criterion_ids": list(self.criterion_ids),
            "cell_type": self.cell_type.value,
            "value": self.value,
            "consensus_value": self.consensus_value,
            "rag_status": status.value,
            "rag_label": RAG_LABELS[status],
            "individual_scores": self.individual_values,
            "evidence_count": self.evidence_count,
            "evidence_ids": [e.id for e in self.evidence],
        }


@dataclass
class CellEvaluator:
    """Builds cells against one snapshot's score and evidence indices."""
    scores: ScoreIndex
    evidence: EvidenceIndex
    settings: Settings = field(default_factory=get_settings)

    def evaluate(self, requirement: RequirementRecord, vendor: VendorRecord) -> MatrixCell:
        criterion_ids = requirement.criterion_ids
        individual: list[ScoreRecord] = []
        consensus: list[ConsensusRecord] = []
        for criterion_id in criterion_ids:
            bucket = self.scores.get(vendor.id, criterion_id)
            if bucket is None:
                continue
            if bucket.consensus is not None:
                consensus.append(bucket.consensus)
            individual.extend(bucket.scores)

        consensus_value = resolve_consensus(consensus, self.settings.consensus_policy)
        if consensus_value is not None:
            cell_type, value = CellType.CONSENSUS, consensus_value
        elif individual:
            cell_type, value = CellType.SCORED, mean(s.value for s in individual)
        else:
            cell_type, value = CellType.NO_SCORE, None

        return MatrixCell(
            vendor_id=vendor.id,
            requirement_id=requirement.id,
            criterion_ids=criterion_ids,
            cell_type=cell_type,
            value=value,
            consensus_value=consensus_value,
            individual_scores=tuple(individual),
            evidence=tuple(self.evidence.for_requirement(vendor.id, requirement.id)),
            rag_green_threshold=self.settings.rag_green_threshold,
            rag_amber_threshold=self.settings.rag_amber_threshold,
        )
