"""Matrix builder: category-grouped requirement rows × vendor columns."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from evaltrace.cells import CellEvaluator, MatrixCell
from evaltrace.config import Settings, get_settings
from evaltrace.records import (
    UNCATEGORIZED, CategoryRecord, MatrixSnapshot, RequirementRecord, VendorRecord, priority_rank,
)

log = logging.getLogger(__name__)


class RowType(StrEnum):
    CATEGORY_HEADER = "category_header"
    REQUIREMENT = "requirement"


@dataclass
class MatrixRow:
    row_type: RowType
    category: CategoryRecord
    requirement: RequirementRecord | None = None
    cells: list[MatrixCell] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.row_type.value,
            "category": {"id": self.category.id, "name": self.category.name, "weight": self.category.weight},
            "cells": [c.as_dict() for c in self.cells],
        }
        if self.requirement is not None:
            req = self.requirement
            out["requirement"] = {
                "id": req.id, "reference_code": req.reference_code, "title": req.title,
                "priority": req.priority, "category_id": req.category_id,
                "criterion_ids": list(req.criterion_ids),
            }
        return out


@dataclass
class VendorTotals:
    total_score: float = 0.0
    weighted_score: float = 0.0
    scored_count: int = 0
    total_weight: float = 0.0

    def add(self, value: float, weight: float) -> None:
        self.total_score += value
        self.weighted_score += value * weight
        self.scored_count += 1
        self.total_weight += weight

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_score": self.total_score, "weighted_score": self.weighted_score,
            "scored_count": self.scored_count, "total_weight": self.total_weight,
        }


@dataclass
class Matrix:
    project_id: int
    rows: list[MatrixRow]
    vendors: list[VendorRecord]
    categories: list[CategoryRecord]
    vendor_totals: dict[int, VendorTotals]

    @property
    def requirement_rows(self) -> list[MatrixRow]:
        return [r for r in self.rows if r.row_type is RowType.REQUIREMENT]

    @property
    def total_requirements(self) -> int:
        return len(self.requirement_rows)

    def cells_for_vendor(self, vendor_id: int) -> list[MatrixCell]:
        idx = next((i for i, v in enumerate(self.vendors) if v.id == vendor_id), None)
        if idx is None:
            return []
        return [row.cells[idx] for row in self.requirement_rows]

    def as_dict(self) -> dict[str, Any]:
        return {
            "rows": [r.as_dict() for r in self.rows],
            "vendor_totals": {v.id: self.vendor_totals[v.id].as_dict() for v in self.vendors},
        }


def order_vendors(vendors: list[VendorRecord]) -> list[VendorRecord]:
    """Fixed column order: name ascending (case-insensitive), id as tiebreak."""
    return sorted(vendors, key=lambda v: (v.name.casefold(), v.id))


def order_requirements(requirements: list[RequirementRecord]) -> list[RequirementRecord]:
    """MoSCoW priority descending; ``sorted`` is stable so load order breaks ties."""
    return sorted(requirements, key=lambda r: -priority_rank(r.priority))


def group_by_category(
    requirements: list[RequirementRecord], categories: list[CategoryRecord],
) -> list[tuple[CategoryRecord, list[RequirementRecord]]]:
    """Pair each category (persisted order) with its requirements; leftovers go to Uncategorized last.

    A requirement pointing at a category that was not loaded (deleted, other
    project) is treated as uncategorized so that every loaded requirement
    gets a row.
    """
    known = {c.id for c in categories}
    buckets: dict[int | None, list[RequirementRecord]] = {}
    for req in requirements:
        key = req.category_id if req.category_id in known else None
        buckets.setdefault(key, []).append(req)

    groups = [(cat, buckets[cat.id]) for cat in categories if buckets.get(cat.id)]
    if buckets.get(None):
        groups.append((UNCATEGORIZED, buckets[None]))
    return groups


def build_matrix(snapshot: MatrixSnapshot, settings: Settings | None = None) -> Matrix:
    settings = settings or get_settings()
    vendors = order_vendors(snapshot.vendors)
    evaluator = CellEvaluator(snapshot.score_index(), snapshot.evidence_index(), settings)
    totals = {v.id: VendorTotals() for v in vendors}
    rows: list[MatrixRow] = []

    for category, requirements in group_by_category(snapshot.requirements, snapshot.categories):
        rows.append(MatrixRow(RowType.CATEGORY_HEADER, category))
        for req in order_requirements(requirements):
            row = MatrixRow(RowType.REQUIREMENT, category, requirement=req)
            weight = req.average_criterion_weight
            for vendor in vendors:
                cell = evaluator.evaluate(req, vendor)
                row.cells.append(cell)
                if cell.value is not None:
                    totals[vendor.id].add(cell.value, weight)
            rows.append(row)

    log.debug(
        "Built matrix for project %s: %d rows, %d vendors",
        snapshot.project_id, len(rows), len(vendors),
    )
    return Matrix(
        project_id=snapshot.project_id,
        rows=rows,
        vendors=vendors,
        categories=list(snapshot.categories),
        vendor_totals=totals,
    )
