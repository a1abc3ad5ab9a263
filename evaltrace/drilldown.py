"""Drilldown chain: the evidentiary trail behind one (requirement, vendor) cell.

Levels, in order: Sources → Requirement → Evidence → Scores. A level with no
items is left out of the chain rather than rendered empty.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from evaltrace.cells import RAG_LABELS, classify_rag, resolve_consensus
from evaltrace.config import Settings, get_settings
from evaltrace.records import (
    ConsensusRecord, EvidenceRecord, RequirementRecord, ScoreRecord, VendorRecord,
)
from evaltrace.utils import mean, population_stdev

SOURCE_TYPES = ("workshop", "survey", "document")


@dataclass(frozen=True)
class ChainItem:
    item_type: str
    label: str
    id: int | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.item_type, "id": self.id, "label": self.label, **self.extras}


@dataclass(frozen=True)
class ChainLevel:
    level: int
    label: str
    items: tuple[ChainItem, ...]

    def as_dict(self) -> dict[str, Any]:
        return {"level": self.level, "label": self.label, "items": [i.as_dict() for i in self.items]}


@dataclass
class Drilldown:
    requirement: RequirementRecord
    vendor: VendorRecord
    sources: list[dict[str, Any]]
    scores: dict[str, Any]
    evidence: list[EvidenceRecord]
    levels: list[ChainLevel]

    def as_dict(self) -> dict[str, Any]:
        req = self.requirement
        return {
            "requirement": {
                "id": req.id, "reference_code": req.reference_code, "title": req.title,
                "description": req.description, "priority": req.priority,
                "category_id": req.category_id,
                "stakeholder_area": req.stakeholder_area.name if req.stakeholder_area else None,
                "criteria": [{"id": c.id, "name": c.name, "weight": c.weight} for c in req.criteria],
                "sources": self.sources,
            },
            "vendor": {"id": self.vendor.id, "name": self.vendor.name, "status": self.vendor.status},
            "scores": self.scores,
            "evidence": [
                {"id": e.id, "title": e.title, "type": e.type, "content": e.content,
                 "confidence_level": e.confidence_level}
                for e in self.evidence
            ],
            "levels": [lvl.as_dict() for lvl in self.levels],
        }


def format_sources(requirement: RequirementRecord) -> list[dict[str, Any]]:
    """Where a requirement came from; a manual entry without a linked source is reported as such."""
    if requirement.source_type in SOURCE_TYPES and (requirement.source_ref or requirement.source_name):
        source: dict[str, Any] = {
            "type": requirement.source_type,
            "id": requirement.source_ref,
            "name": requirement.source_name or None,
        }
        if requirement.source_date:
            source["date"] = requirement.source_date
        return [source]
    if requirement.source_type == "manual":
        return [{"type": "manual", "id": None, "name": "Manual Entry"}]
    return []


def score_breakdown(
    scores: list[ScoreRecord],
    consensus: list[ConsensusRecord],
    settings: Settings | None = None,
) -> dict[str, Any]:
    settings = settings or get_settings()
    values = [s.value for s in scores]

    def _rag(value: float) -> dict[str, str]:
        status = classify_rag(value, settings)
        return {"rag_status": status.value, "rag_label": RAG_LABELS[status]}

    return {
        "individual": [
            {"id": s.id, "criterion_id": s.criterion_id, "evaluator_id": s.evaluator_id,
             "evaluator": s.evaluator_name or None, "value": s.value, "rationale": s.rationale,
             "status": s.status, **_rag(s.value)}
            for s in scores
        ],
        "consensus": [
            {"id": c.id, "criterion_id": c.criterion_id, "value": c.value,
             "rationale": c.rationale, **_rag(c.value)}
            for c in consensus
        ],
        "resolved_consensus": resolve_consensus(consensus, settings.consensus_policy),
        "average": mean(values),
        "standard_deviation": population_stdev(values),
    }


def build_chain(
    requirement: RequirementRecord,
    scores: list[ScoreRecord],
    consensus: list[ConsensusRecord],
    evidence: list[EvidenceRecord],
    settings: Settings | None = None,
) -> list[ChainLevel]:
    settings = settings or get_settings()
    levels: list[ChainLevel] = []

    source_items: list[ChainItem] = []
    if requirement.stakeholder_area is not None:
        source_items.append(ChainItem("stakeholder", requirement.stakeholder_area.name,
                                      id=requirement.stakeholder_area.id))
    for source in format_sources(requirement):
        source_items.append(ChainItem(source["type"], source["name"] or "Unknown Source", id=source["id"]))
    if source_items:
        levels.append(ChainLevel(1, "Sources", tuple(source_items)))

    levels.append(ChainLevel(2, "Requirement", (
        ChainItem("requirement", requirement.title, id=requirement.id, extras={
            "priority": requirement.priority, "reference_code": requirement.reference_code,
        }),
    )))

    if evidence:
        levels.append(ChainLevel(3, "Evidence", tuple(
            ChainItem("evidence", ev.title, id=ev.id, extras={
                "evidence_type": ev.type, "confidence_level": ev.confidence_level,
            })
            for ev in evidence
        )))

    score_items = [
        ChainItem("score", f"{s.evaluator_name or 'Evaluator'}: {s.value:g}/5", id=s.id, extras={
            "score": s.value, "rag_status": classify_rag(s.value, settings).value,
        })
        for s in scores
    ]
    score_items.extend(
        ChainItem("consensus", f"Consensus: {c.value:g}/5", id=c.id, extras={
            "score": c.value, "criterion_id": c.criterion_id,
            "rag_status": classify_rag(c.value, settings).value,
        })
        for c in consensus
    )
    if score_items:
        levels.append(ChainLevel(4, "Scores", tuple(score_items)))

    return levels


def build_drilldown(
    requirement: RequirementRecord,
    vendor: VendorRecord,
    scores: list[ScoreRecord],
    consensus: list[ConsensusRecord],
    evidence: list[EvidenceRecord],
    settings: Settings | None = None,
) -> Drilldown:
    settings = settings or get_settings()
    return Drilldown(
        requirement=requirement,
        vendor=vendor,
        sources=format_sources(requirement),
        scores=score_breakdown(scores, consensus, settings),
        evidence=list(evidence),
        levels=build_chain(requirement, scores, consensus, evidence, settings),
    )
