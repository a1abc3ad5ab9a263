"""Matrix assembly and vendor summary rollups."""
from __future__ import annotations

import pytest

from evaltrace.cells import RagStatus
from evaltrace.config import Settings
from evaltrace.matrix import RowType, build_matrix, group_by_category, order_requirements, order_vendors
from evaltrace.records import (
    CategoryRecord, ConsensusRecord, CriterionRecord, MatrixSnapshot, RequirementRecord, ScoreRecord,
    VendorRecord,
)
from evaltrace.summary import calculate_summary

FUNCTIONAL = CategoryRecord(id=1, name="Functional", weight=60, sort_order=1)
TECHNICAL = CategoryRecord(id=2, name="Technical", weight=40, sort_order=2)
ACME = VendorRecord(id=1, name="Acme")
BOLT = VendorRecord(id=2, name="bolt")


def _snapshot(requirements, vendors, categories=(FUNCTIONAL, TECHNICAL), scores=(), consensus=()):
    return MatrixSnapshot(
        project_id=1, requirements=list(requirements), vendors=list(vendors),
        categories=list(categories), scores=list(scores), consensus=list(consensus), evidence=[],
    )


def _req(id, priority="", category_id=1, criteria=()):
    return RequirementRecord(
        id=id, reference_code=f"REQ-{id}", title=f"Requirement {id}", priority=priority,
        category_id=category_id, criteria=tuple(criteria),
    )


class TestOrdering:
    def test_vendors_by_name_case_insensitive(self):
        vendors = [VendorRecord(id=3, name="Cobalt"), BOLT, ACME, VendorRecord(id=9, name="acme")]
        assert [v.id for v in order_vendors(vendors)] == [1, 9, 2, 3]

    def test_requirements_by_moscow_then_load_order(self):
        reqs = [_req(1, "could_have"), _req(2, "must_have"), _req(3, ""), _req(4, "should_have"),
                _req(5, "must_have"), _req(6, "wont_have")]
        assert [r.id for r in order_requirements(reqs)] == [2, 5, 4, 1, 6, 3]

    def test_uncategorized_bucket_last(self):
        reqs = [_req(1, category_id=None), _req(2, category_id=2), _req(3, category_id=1), _req(4, category_id=77)]
        groups = group_by_category(reqs, [FUNCTIONAL, TECHNICAL])
        assert [(cat.name, [r.id for r in rs]) for cat, rs in groups] == [
            ("Functional", [3]),
            ("Technical", [2]),
            ("Uncategorized", [1, 4]),
        ]

    def test_empty_categories_emit_no_header(self):
        matrix = build_matrix(_snapshot([_req(1, category_id=2)], [ACME]), Settings())
        headers = [r.category.name for r in matrix.rows if r.row_type is RowType.CATEGORY_HEADER]
        assert headers == ["Technical"]


class TestBuildMatrix:
    def test_rows_and_cells(self):
        c1 = CriterionRecord(id=10, name="Workflow")
        scores = [ScoreRecord(id=1, vendor_id=2, criterion_id=10, value=3)]
        matrix = build_matrix(_snapshot([_req(1, "must_have", criteria=[c1]), _req(2)], [BOLT, ACME], scores=scores))

        assert [r.row_type for r in matrix.rows] == [RowType.CATEGORY_HEADER, RowType.REQUIREMENT, RowType.REQUIREMENT]
        assert [v.name for v in matrix.vendors] == ["Acme", "bolt"]
        first = matrix.requirement_rows[0]
        assert [c.vendor_id for c in first.cells] == [1, 2]
        assert first.cells[0].value is None
        assert first.cells[1].value == 3
        assert matrix.cells_for_vendor(2)[0].value == 3
        assert matrix.cells_for_vendor(404) == []

    def test_uncategorized_rows_accumulate_totals(self):
        c1 = CriterionRecord(id=10, name="Workflow")
        scores = [ScoreRecord(id=1, vendor_id=1, criterion_id=10, value=5)]
        matrix = build_matrix(_snapshot([_req(1, category_id=None, criteria=[c1])], [ACME], scores=scores))
        assert matrix.rows[0].category.name == "Uncategorized"
        assert matrix.vendor_totals[1].scored_count == 1
        assert matrix.vendor_totals[1].total_score == 5

    def test_deterministic(self):
        c1 = CriterionRecord(id=10, name="Workflow", weight=2)
        reqs = [_req(i, p, criteria=[c1]) for i, p in enumerate(["should_have", "must_have", "could_have"], 1)]
        scores = [ScoreRecord(id=1, vendor_id=1, criterion_id=10, value=4),
                  ScoreRecord(id=2, vendor_id=2, criterion_id=10, value=2)]
        snap = _snapshot(reqs, [ACME, BOLT], scores=scores)
        first = build_matrix(snap, Settings()).as_dict()
        second = build_matrix(snap, Settings()).as_dict()
        assert first == second


class TestSummary:
    def test_weighted_rollup(self):
        # A: weights [2,4] (mean 3), scores [3,5] -> 4; B: weight 1, score 4
        c1 = CriterionRecord(id=10, name="Workflow", weight=2)
        c2 = CriterionRecord(id=11, name="Reporting", weight=4)
        c3 = CriterionRecord(id=12, name="Security", weight=1)
        reqs = [_req(1, criteria=[c1, c2]), _req(2, category_id=2, criteria=[c3])]
        scores = [
            ScoreRecord(id=1, vendor_id=1, criterion_id=10, value=3),
            ScoreRecord(id=2, vendor_id=1, criterion_id=11, value=5),
            ScoreRecord(id=3, vendor_id=1, criterion_id=12, value=4),
        ]
        matrix = build_matrix(_snapshot(reqs, [ACME], scores=scores))
        totals = matrix.vendor_totals[1]
        assert totals.total_weight == pytest.approx(4.0)
        assert totals.weighted_score == pytest.approx(16.0)

        summary = calculate_summary(matrix, Settings())
        acme = summary.vendor_summaries[1]
        assert acme.weighted_score == pytest.approx(4.0)
        assert acme.average_score == pytest.approx(4.0)
        assert acme.rag_status is RagStatus.GREEN
        assert acme.progress == pytest.approx(100.0)

    def test_unweighted_criterion_counts_as_one(self):
        assert _req(1, criteria=[CriterionRecord(id=1, name="x", weight=None),
                                 CriterionRecord(id=2, name="y", weight=3)]).average_criterion_weight == 2.0
        assert _req(2).average_criterion_weight == 1.0

    def test_rank_by_weighted_then_average_then_column(self):
        c1 = CriterionRecord(id=10, name="Workflow")
        vendors = [ACME, BOLT, VendorRecord(id=3, name="Cobalt")]
        scores = [
            ScoreRecord(id=1, vendor_id=1, criterion_id=10, value=3),
            ScoreRecord(id=2, vendor_id=2, criterion_id=10, value=4),
            ScoreRecord(id=3, vendor_id=3, criterion_id=10, value=3),
        ]
        summary = calculate_summary(build_matrix(_snapshot([_req(1, criteria=[c1])], vendors, scores=scores)))
        assert [vs.vendor.id for vs in summary.ranking()] == [2, 1, 3]
        assert summary.vendor_summaries[2].rank == 1

    def test_progress_and_overall(self):
        c1 = CriterionRecord(id=10, name="Workflow")
        reqs = [_req(1, criteria=[c1]), _req(2)]
        consensus = [ConsensusRecord(id=1, vendor_id=1, criterion_id=10, value=2.5)]
        summary = calculate_summary(build_matrix(_snapshot(reqs, [ACME, BOLT], consensus=consensus)))
        assert summary.total_requirements == 2
        assert summary.total_cells == 4
        assert summary.scored_cells == 1
        assert summary.overall_progress == pytest.approx(25.0)
        assert summary.vendor_summaries[1].progress == pytest.approx(50.0)
        assert summary.vendor_summaries[1].rag_status is RagStatus.RED
        assert summary.category_counts == {1: 2}

    def test_vendor_without_scores_is_not_rated(self):
        summary = calculate_summary(build_matrix(_snapshot([_req(1)], [ACME])))
        acme = summary.vendor_summaries[1]
        assert acme.average_score == 0.0
        assert acme.weighted_score == 0.0
        assert acme.rag_status is RagStatus.NONE

    def test_zero_requirements(self):
        summary = calculate_summary(build_matrix(_snapshot([], [ACME, BOLT])))
        assert summary.total_requirements == 0
        assert summary.overall_progress == 0.0
        assert all(vs.progress == 0.0 for vs in summary.vendor_summaries.values())

    def test_zero_vendors(self):
        matrix = build_matrix(_snapshot([_req(1), _req(2)], []))
        summary = calculate_summary(matrix)
        assert matrix.total_requirements == 2
        assert all(row.cells == [] for row in matrix.requirement_rows)
        assert summary.vendor_count == 0
        assert summary.total_cells == 0
        assert summary.overall_progress == 0.0
        assert summary.vendor_summaries == {}
