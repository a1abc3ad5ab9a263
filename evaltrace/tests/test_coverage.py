from __future__ import annotations

import pytest

from evaltrace.config import Settings
from evaltrace.coverage import analyze_coverage
from evaltrace.matrix import build_matrix
from evaltrace.records import (
    CategoryRecord, CriterionRecord, EvidenceLinkRecord, EvidenceRecord, MatrixSnapshot, RequirementRecord,
    ScoreRecord, VendorRecord,
)

CAT = CategoryRecord(id=1, name="Functional", weight=100)
C1 = CriterionRecord(id=10, name="Workflow")
ACME = VendorRecord(id=1, name="Acme")
BOLT = VendorRecord(id=2, name="Bolt")


def _matrix(n_requirements, scores=(), evidence=(), vendors=(ACME, BOLT)):
    reqs = [
        RequirementRecord(id=i, reference_code=f"REQ-{i}", title=f"Requirement {i}", category_id=1,
                          criteria=(CriterionRecord(id=100 + i, name=f"c{i}"),))
        for i in range(1, n_requirements + 1)
    ]
    snap = MatrixSnapshot(
        project_id=1, requirements=reqs, vendors=list(vendors), categories=[CAT],
        scores=list(scores), consensus=[], evidence=list(evidence),
    )
    return build_matrix(snap, Settings())


def _score(vendor_id, requirement_id, value=4):
    return ScoreRecord(id=vendor_id * 100 + requirement_id, vendor_id=vendor_id,
                       criterion_id=100 + requirement_id, value=value)


def _evidence(id, vendor_id, requirement_id):
    return EvidenceRecord(id=id, vendor_id=vendor_id, title=f"Evidence {id}",
                          links=(EvidenceLinkRecord(requirement_id=requirement_id),))


def test_scored_plus_unscored_equals_all_cells():
    matrix = _matrix(4, scores=[_score(1, 1), _score(1, 2), _score(2, 3)])
    overall = analyze_coverage(matrix, Settings()).overall
    assert overall.total_cells == 8
    assert overall.scored_cells == 3
    assert overall.unscored_cells == 5
    assert overall.scored_cells + overall.unscored_cells == 8
    assert overall.scored_percent == pytest.approx(37.5)


def test_vendor_missing_lists():
    matrix = _matrix(3, scores=[_score(1, 1), _score(1, 2), _score(1, 3), _score(2, 2)])
    report = analyze_coverage(matrix, Settings())
    acme, bolt = report.by_vendor[1], report.by_vendor[2]
    assert acme.missing_count == 0
    assert bolt.scored == 1
    assert [r.id for r in bolt.missing] == [1, 3]
    assert bolt.missing_percent == pytest.approx(200 / 3)
    assert [(g.requirement.id, g.vendor.id) for g in report.gaps] == [(1, 2), (3, 2)]
    assert all(g.gap_type == "no_score" for g in report.gaps)


def test_evidence_and_complete_cells():
    matrix = _matrix(
        2,
        scores=[_score(1, 1)],
        evidence=[_evidence(1, 1, 1), _evidence(2, 1, 2), _evidence(3, 2, 2)],
    )
    report = analyze_coverage(matrix, Settings())
    assert report.overall.evidence_cells == 3
    assert report.overall.complete_cells == 1
    assert report.by_vendor[1].has_evidence == 2
    cat = report.by_category[1]
    assert (cat.total, cat.scored, cat.has_evidence) == (2, 1, 3)


def test_gap_list_display_capped_but_count_is_not():
    matrix = _matrix(8, vendors=(ACME,))
    report = analyze_coverage(matrix, Settings(gap_display_limit=3))
    data = report.as_dict()["by_vendor"][0]
    assert data["missing_count"] == 8
    assert len(data["missing"]) == 3


def test_flat_gap_list_serialized_and_capped():
    matrix = _matrix(4, scores=[_score(1, 1)])
    data = analyze_coverage(matrix, Settings(gap_list_limit=3)).as_dict()
    assert data["gap_count"] == 7
    assert len(data["gaps"]) == 3
    assert data["gaps"][0] == {
        "requirement_id": 1, "reference_code": "REQ-1", "requirement_title": "Requirement 1",
        "vendor_id": 2, "vendor_name": "Bolt", "gap_type": "no_score",
    }
    assert [(g["requirement_id"], g["vendor_id"]) for g in data["gaps"]] == [(1, 2), (2, 1), (2, 2)]


def test_empty_matrix_is_all_zero():
    report = analyze_coverage(_matrix(0), Settings())
    assert report.overall.total_cells == 0
    assert report.overall.scored_percent == 0.0
    assert report.overall.evidence_percent == 0.0
    assert report.gaps == []
    assert report.by_category == {}
    assert report.by_vendor[1].missing_percent == 0.0
