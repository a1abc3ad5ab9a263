"""Coverage analyzer: which requirement × vendor cells have scores and evidence."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from evaltrace.config import Settings, get_settings
from evaltrace.matrix import Matrix
from evaltrace.records import RequirementRecord, VendorRecord
from evaltrace.utils import percent


@dataclass
class OverallCoverage:
    total_cells: int = 0
    scored_cells: int = 0
    evidence_cells: int = 0
    complete_cells: int = 0

    @property
    def unscored_cells(self) -> int:
        return self.total_cells - self.scored_cells

    @property
    def scored_percent(self) -> float:
        return percent(self.scored_cells, self.total_cells)

    @property
    def evidence_percent(self) -> float:
        return percent(self.evidence_cells, self.total_cells)

    @property
    def complete_percent(self) -> float:
        return percent(self.complete_cells, self.total_cells)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_cells": self.total_cells, "scored_cells": self.scored_cells,
            "unscored_cells": self.unscored_cells, "evidence_cells": self.evidence_cells,
            "complete_cells": self.complete_cells, "scored_percent": self.scored_percent,
            "evidence_percent": self.evidence_percent, "complete_percent": self.complete_percent,
        }


@dataclass
class VendorCoverage:
    vendor: VendorRecord
    total: int = 0
    scored: int = 0
    has_evidence: int = 0
    missing: list[RequirementRecord] = field(default_factory=list)

    @property
    def missing_count(self) -> int:
        return len(self.missing)

    @property
    def missing_percent(self) -> float:
        return percent(self.missing_count, self.total)

    def as_dict(self, display_limit: int | None = None) -> dict[str, Any]:
        shown = self.missing if display_limit is None else self.missing[:display_limit]
        return {
            "vendor_id": self.vendor.id, "vendor_name": self.vendor.name,
            "total": self.total, "scored": self.scored, "has_evidence": self.has_evidence,
            "missing_count": self.missing_count, "missing_percent": self.missing_percent,
            "missing": [{"id": r.id, "reference_code": r.reference_code, "title": r.title} for r in shown],
        }


@dataclass
class CategoryCoverage:
    category_id: int | None
    name: str
    total: int = 0  # requirements in the category
    scored: int = 0  # scored cells
    has_evidence: int = 0  # evidenced cells

    def as_dict(self) -> dict[str, Any]:
        return {
            "category_id": self.category_id, "name": self.name, "total": self.total,
            "scored": self.scored, "has_evidence": self.has_evidence,
        }


@dataclass(frozen=True)
class CoverageGap:
    requirement: RequirementRecord
    vendor: VendorRecord
    gap_type: str = "no_score"

    def as_dict(self) -> dict[str, Any]:
        return {
            "requirement_id": self.requirement.id,
            "reference_code": self.requirement.reference_code,
            "requirement_title": self.requirement.title,
            "vendor_id": self.vendor.id,
            "vendor_name": self.vendor.name,
            "gap_type": self.gap_type,
        }


@dataclass
class CoverageReport:
    overall: OverallCoverage
    by_vendor: dict[int, VendorCoverage]
    by_category: dict[int | None, CategoryCoverage]
    gaps: list[CoverageGap]
    gap_display_limit: int = 5
    gap_list_limit: int = 50

    def as_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.as_dict(),
            "by_vendor": [vc.as_dict(self.gap_display_limit) for vc in self.by_vendor.values()],
            "by_category": [cc.as_dict() for cc in self.by_category.values()],
            "gaps": [g.as_dict() for g in self.gaps[:self.gap_list_limit]],
            "gap_count": len(self.gaps),
        }


def analyze_coverage(matrix: Matrix, settings: Settings | None = None) -> CoverageReport:
    """Re-walk the built matrix; an empty matrix yields all-zero coverage."""
    settings = settings or get_settings()
    requirement_rows = matrix.requirement_rows
    overall = OverallCoverage(total_cells=len(requirement_rows) * len(matrix.vendors))
    by_vendor = {
        v.id: VendorCoverage(vendor=v, total=len(requirement_rows)) for v in matrix.vendors
    }
    by_category: dict[int | None, CategoryCoverage] = {}
    gaps: list[CoverageGap] = []

    for row in requirement_rows:
        req = row.requirement
        if req is None:
            continue
        cat = by_category.get(row.category.id)
        if cat is None:
            cat = by_category[row.category.id] = CategoryCoverage(row.category.id, row.category.name)
        cat.total += 1

        for vendor, cell in zip(matrix.vendors, row.cells):
            vc = by_vendor[vendor.id]
            if cell.is_scored:
                overall.scored_cells += 1
                vc.scored += 1
                cat.scored += 1
            else:
                vc.missing.append(req)
                gaps.append(CoverageGap(requirement=req, vendor=vendor))
            if cell.evidence_count > 0:
                overall.evidence_cells += 1
                vc.has_evidence += 1
                cat.has_evidence += 1
                if cell.is_scored:
                    overall.complete_cells += 1

    return CoverageReport(
        overall=overall,
        by_vendor=by_vendor,
        by_category=by_category,
        gaps=gaps,
        gap_display_limit=settings.gap_display_limit,
        gap_list_limit=settings.gap_list_limit,
    )
