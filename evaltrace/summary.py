"""Summary calculator: per-vendor rollups, ranking and overall progress."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from evaltrace.cells import RAG_LABELS, RagStatus, classify_rag
from evaltrace.config import Settings, get_settings
from evaltrace.matrix import Matrix
from evaltrace.records import VendorRecord
from evaltrace.utils import percent


@dataclass
class VendorSummary:
    vendor: VendorRecord
    average_score: float
    weighted_score: float
    progress: float
    rag_status: RagStatus
    scored_count: int
    rank: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "vendor_id": self.vendor.id,
            "vendor_name": self.vendor.name,
            "average_score": self.average_score,
            "weighted_score": self.weighted_score,
            "progress": self.progress,
            "rag_status": self.rag_status.value,
            "rag_label": RAG_LABELS[self.rag_status],
            "scored_count": self.scored_count,
            "rank": self.rank,
        }


@dataclass
class MatrixSummary:
    total_requirements: int
    vendor_count: int
    total_cells: int
    scored_cells: int
    overall_progress: float
    category_counts: dict[int | None, int] = field(default_factory=dict)
    vendor_summaries: dict[int, VendorSummary] = field(default_factory=dict)

    def ranking(self) -> list[VendorSummary]:
        return sorted(self.vendor_summaries.values(), key=lambda vs: vs.rank)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_requirements": self.total_requirements,
            "vendor_count": self.vendor_count,
            "total_cells": self.total_cells,
            "scored_cells": self.scored_cells,
            "overall_progress": self.overall_progress,
            "category_counts": [
                {"category_id": cid, "count": n} for cid, n in self.category_counts.items()
            ],
            "vendors": [vs.as_dict() for vs in self.vendor_summaries.values()],
        }


def calculate_summary(matrix: Matrix, settings: Settings | None = None) -> MatrixSummary:
    settings = settings or get_settings()
    requirement_rows = matrix.requirement_rows
    total_requirements = len(requirement_rows)

    category_counts: dict[int | None, int] = {}
    scored_cells = 0
    for row in requirement_rows:
        category_counts[row.category.id] = category_counts.get(row.category.id, 0) + 1
        scored_cells += sum(1 for cell in row.cells if cell.is_scored)

    summaries: dict[int, VendorSummary] = {}
    for vendor in matrix.vendors:
        totals = matrix.vendor_totals[vendor.id]
        average = totals.total_score / totals.scored_count if totals.scored_count > 0 else 0.0
        weighted = totals.weighted_score / totals.total_weight if totals.total_weight > 0 else 0.0
        summaries[vendor.id] = VendorSummary(
            vendor=vendor,
            average_score=average,
            weighted_score=weighted,
            progress=percent(totals.scored_count, total_requirements),
            # No resolved cell at all means "not rated", not a red rating of 0
            rag_status=classify_rag(weighted if totals.scored_count else None, settings),
            scored_count=totals.scored_count,
        )

    # Rank by weighted score, then plain average; column order keeps ties stable
    order = {v.id: i for i, v in enumerate(matrix.vendors)}
    ranked = sorted(
        summaries.values(),
        key=lambda vs: (-vs.weighted_score, -vs.average_score, order[vs.vendor.id]),
    )
    for position, vs in enumerate(ranked, start=1):
        vs.rank = position

    total_cells = total_requirements * len(matrix.vendors)
    return MatrixSummary(
        total_requirements=total_requirements,
        vendor_count=len(matrix.vendors),
        total_cells=total_cells,
        scored_cells=scored_cells,
        overall_progress=percent(scored_cells, total_cells),
        category_counts=category_counts,
        vendor_summaries=summaries,
    )
