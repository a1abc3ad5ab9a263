from __future__ import annotations

import pytest

from evaltrace.config import Settings
from evaltrace.drilldown import build_chain, build_drilldown, format_sources, score_breakdown
from evaltrace.records import (
    ConsensusRecord, CriterionRecord, EvidenceRecord, RequirementRecord, ScoreRecord, StakeholderAreaRecord,
    VendorRecord,
)

ACME = VendorRecord(id=1, name="Acme", status="short_list")
C1 = CriterionRecord(id=10, name="Workflow", weight=2)


def _requirement(**kwargs) -> RequirementRecord:
    base = dict(id=5, reference_code="REQ-005", title="Workflow automation", priority="must_have",
                category_id=1, criteria=(C1,))
    base.update(kwargs)
    return RequirementRecord(**base)


class TestSources:
    def test_workshop_source(self):
        req = _requirement(source_type="workshop", source_ref=7, source_name="Kickoff", source_date="2025-01-10")
        assert format_sources(req) == [{"type": "workshop", "id": 7, "name": "Kickoff", "date": "2025-01-10"}]

    def test_manual_entry(self):
        assert format_sources(_requirement(source_type="manual")) == [
            {"type": "manual", "id": None, "name": "Manual Entry"},
        ]

    def test_document_without_reference_has_no_source(self):
        assert format_sources(_requirement(source_type="document")) == []


class TestChain:
    def test_full_chain(self):
        req = _requirement(
            stakeholder_area=StakeholderAreaRecord(id=3, name="Sales"),
            source_type="survey", source_ref=2, source_name="Q1 survey",
        )
        scores = [ScoreRecord(id=1, vendor_id=1, criterion_id=10, value=4, evaluator_name="Alice")]
        consensus = [ConsensusRecord(id=9, vendor_id=1, criterion_id=10, value=4.5)]
        evidence = [EvidenceRecord(id=2, vendor_id=1, title="Demo notes", type="demo_note")]

        levels = build_chain(req, scores, consensus, evidence, Settings())

        assert [(lvl.level, lvl.label) for lvl in levels] == [
            (1, "Sources"), (2, "Requirement"), (3, "Evidence"), (4, "Scores"),
        ]
        assert [i.item_type for i in levels[0].items] == ["stakeholder", "survey"]
        assert levels[3].items[0].label == "Alice: 4/5"
        assert levels[3].items[1].item_type == "consensus"
        assert levels[3].items[1].extras["rag_status"] == "green"

    def test_empty_levels_omitted(self):
        levels = build_chain(_requirement(source_type="document"), [], [], [], Settings())
        assert [lvl.label for lvl in levels] == ["Requirement"]
        assert levels[0].level == 2

    def test_manual_entry_item(self):
        levels = build_chain(_requirement(source_type="manual"), [], [], [], Settings())
        assert levels[0].label == "Sources"
        assert levels[0].items[0].label == "Manual Entry"


def test_score_breakdown_statistics():
    scores = [ScoreRecord(id=i, vendor_id=1, criterion_id=10, value=v) for i, v in enumerate([3, 5], 1)]
    breakdown = score_breakdown(scores, [], Settings())
    assert breakdown["average"] == pytest.approx(4.0)
    assert breakdown["standard_deviation"] == pytest.approx(1.0)
    assert [s["rag_status"] for s in breakdown["individual"]] == ["amber", "green"]
    assert breakdown["resolved_consensus"] is None


def test_score_breakdown_without_scores():
    breakdown = score_breakdown([], [], Settings())
    assert breakdown["average"] is None
    assert breakdown["standard_deviation"] == 0.0


def test_drilldown_as_dict():
    drilldown = build_drilldown(_requirement(), ACME, [], [], [], Settings())
    data = drilldown.as_dict()
    assert data["requirement"]["reference_code"] == "REQ-005"
    assert data["requirement"]["criteria"] == [{"id": 10, "name": "Workflow", "weight": 2}]
    assert data["vendor"] == {"id": 1, "name": "Acme", "status": "short_list"}
    assert [lvl["label"] for lvl in data["levels"]] == ["Sources", "Requirement"]
