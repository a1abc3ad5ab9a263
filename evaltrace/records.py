"""Immutable snapshots of upstream entities and the typed lookups built from them.

The engine never works on ORM objects directly: the loader converts rows into
these records so that every downstream step is a pure function of one
snapshot.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import NamedTuple

# MoSCoW priority rank, higher sorts first
PRIORITY_RANK = {"must_have": 4, "should_have": 3, "could_have": 2, "wont_have": 1}


def priority_rank(priority: str | None) -> int:
    return PRIORITY_RANK.get((priority or "").strip().lower(), 0)


class VendorCriterionKey(NamedTuple):
    vendor_id: int
    criterion_id: int


class VendorRequirementKey(NamedTuple):
    vendor_id: int
    requirement_id: int


@dataclass(frozen=True)
class CriterionRecord:
    id: int
    name: str
    weight: float | None = None
    category_id: int | None = None
    description: str = ""


@dataclass(frozen=True)
class CategoryRecord:
    id: int | None
    name: str
    weight: float = 0.0
    sort_order: int = 0
    description: str = ""
    criteria: tuple[CriterionRecord, ...] = ()


UNCATEGORIZED = CategoryRecord(id=None, name="Uncategorized", weight=0.0, sort_order=10**9)


@dataclass(frozen=True)
class StakeholderAreaRecord:
    id: int
    name: str


@dataclass(frozen=True)
class RequirementRecord:
    id: int
    reference_code: str
    title: str
    priority: str = ""
    category_id: int | None = None
    stakeholder_area: StakeholderAreaRecord | None = None
    criteria: tuple[CriterionRecord, ...] = ()
    description: str = ""
    status: str = ""
    source_type: str = "manual"
    source_ref: int | None = None
    source_name: str = ""
    source_date: str = ""

    @property
    def criterion_ids(self) -> tuple[int, ...]:
        return tuple(c.id for c in self.criteria)

    @property
    def average_criterion_weight(self) -> float:
        """Mean linked-criterion weight; an unweighted criterion counts as 1, no criteria gives 1."""
        if not self.criteria:
            return 1.0
        weights = [c.weight if c.weight else 1.0 for c in self.criteria]
        return sum(weights) / len(weights)


@dataclass(frozen=True)
class VendorRecord:
    id: int
    name: str
    status: str = ""
    website: str = ""
    description: str = ""


@dataclass(frozen=True)
class ScoreRecord:
    id: int
    vendor_id: int
    criterion_id: int
    value: float
    evaluator_id: int | None = None
    evaluator_name: str = ""
    rationale: str = ""
    status: str = "submitted"


@dataclass(frozen=True)
class ConsensusRecord:
    id: int
    vendor_id: int
    criterion_id: int
    value: float
    rationale: str = ""


@dataclass(frozen=True)
class EvidenceLinkRecord:
    requirement_id: int | None = None
    criterion_id: int | None = None


@dataclass(frozen=True)
class EvidenceRecord:
    id: int
    vendor_id: int
    title: str
    type: str = ""
    content: str = ""
    confidence_level: str = ""
    links: tuple[EvidenceLinkRecord, ...] = ()


# ---------------------------------------------------------------------------
# Indices
# ---------------------------------------------------------------------------


@dataclass
class ScoreBucket:
    scores: list[ScoreRecord] = field(default_factory=list)
    consensus: ConsensusRecord | None = None


class ScoreIndex:
    """Scores and consensus grouped by ``(vendor_id, criterion_id)``."""

    def __init__(self, scores: list[ScoreRecord], consensus: list[ConsensusRecord]):
        self._buckets: dict[VendorCriterionKey, ScoreBucket] = {}
        for s in scores:
            self._bucket(VendorCriterionKey(s.vendor_id, s.criterion_id)).scores.append(s)
        for c in consensus:
            self._bucket(VendorCriterionKey(c.vendor_id, c.criterion_id)).consensus = c

    def _bucket(self, key: VendorCriterionKey) -> ScoreBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = ScoreBucket()
        return bucket

    def get(self, vendor_id: int, criterion_id: int) -> ScoreBucket | None:
        return self._buckets.get(VendorCriterionKey(vendor_id, criterion_id))


class EvidenceIndex:
    """Evidence grouped by vendor+requirement and, separately, vendor+criterion."""

    def __init__(self, evidence: list[EvidenceRecord]):
        self.by_vendor_requirement: dict[VendorRequirementKey, list[EvidenceRecord]] = defaultdict(list)
        self.by_vendor_criterion: dict[VendorCriterionKey, list[EvidenceRecord]] = defaultdict(list)
        for ev in evidence:
            for link in ev.links:
                if link.requirement_id is not None:
                    self.by_vendor_requirement[VendorRequirementKey(ev.vendor_id, link.requirement_id)].append(ev)
                if link.criterion_id is not None:
                    self.by_vendor_criterion[VendorCriterionKey(ev.vendor_id, link.criterion_id)].append(ev)

    def for_requirement(self, vendor_id: int, requirement_id: int) -> list[EvidenceRecord]:
        return list(self.by_vendor_requirement.get(VendorRequirementKey(vendor_id, requirement_id), ()))

    def for_criterion(self, vendor_id: int, criterion_id: int) -> list[EvidenceRecord]:
        return list(self.by_vendor_criterion.get(VendorCriterionKey(vendor_id, criterion_id), ()))


@dataclass(frozen=True)
class MatrixSnapshot:
    """Everything one matrix build needs, fetched in a single load."""
    project_id: int
    requirements: list[RequirementRecord]
    vendors: list[VendorRecord]
    categories: list[CategoryRecord]
    scores: list[ScoreRecord]
    consensus: list[ConsensusRecord]
    evidence: list[EvidenceRecord]

    def score_index(self) -> ScoreIndex:
        return ScoreIndex(self.scores, self.consensus)

    def evidence_index(self) -> EvidenceIndex:
        return EvidenceIndex(self.evidence)
