"""Data loader: the upstream read contract and its SQLAlchemy implementation.

The six matrix reads are independent of each other, so ``load_snapshot``
issues them together and waits for all of them. A single failed read fails
the whole load with :class:`DataFetchError`; no partial snapshot is ever
returned.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from evaltrace.config import Settings, get_settings
from evaltrace.errors import DataFetchError
from evaltrace.models import (
    Category, ConsensusScore, Criterion, Evidence, EvidenceLink, Requirement,
    RequirementCriterion, Score, Vendor,
)
from evaltrace.records import (
    CategoryRecord, ConsensusRecord, CriterionRecord, EvidenceLinkRecord, EvidenceRecord,
    MatrixSnapshot, RequirementRecord, ScoreRecord, StakeholderAreaRecord, VendorRecord,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatrixFilters:
    category_id: int | None = None
    priority: str | None = None
    vendor_ids: tuple[int, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict[str, Any]:
        return {
            "category_id": self.category_id, "priority": self.priority,
            "vendor_ids": list(self.vendor_ids),
        }


class MatrixDataSource(ABC):
    """Read contract owned by the persistence layer."""

    @abstractmethod
    async def get_requirements(self, project_id: int, filters: MatrixFilters) -> list[RequirementRecord]: ...

    @abstractmethod
    async def get_eligible_vendors(self, project_id: int, filters: MatrixFilters) -> list[VendorRecord]: ...

    @abstractmethod
    async def get_categories(self, project_id: int) -> list[CategoryRecord]: ...

    @abstractmethod
    async def get_scores(self, project_id: int) -> list[ScoreRecord]: ...

    @abstractmethod
    async def get_consensus_scores(self, project_id: int) -> list[ConsensusRecord]: ...

    @abstractmethod
    async def get_evidence_links(self, project_id: int) -> list[EvidenceRecord]: ...

    # Drilldown reads

    @abstractmethod
    async def get_requirement(self, requirement_id: int) -> RequirementRecord | None: ...

    @abstractmethod
    async def get_vendor(self, vendor_id: int) -> VendorRecord | None: ...

    @abstractmethod
    async def get_scores_for(
        self, vendor_id: int, criterion_ids: tuple[int, ...],
    ) -> tuple[list[ScoreRecord], list[ConsensusRecord]]: ...

    @abstractmethod
    async def get_evidence_for(self, vendor_id: int, requirement_id: int) -> list[EvidenceRecord]: ...


# ---------------------------------------------------------------------------
# ORM -> record conversion
# ---------------------------------------------------------------------------


def _criterion_record(c: Criterion) -> CriterionRecord:
    return CriterionRecord(
        id=c.id, name=c.name, weight=c.weight, category_id=c.category_id,
        description=c.description or "",
    )


def _requirement_record(r: Requirement) -> RequirementRecord:
    area = r.stakeholder_area
    return RequirementRecord(
        id=r.id,
        reference_code=r.reference_code,
        title=r.title,
        priority=r.priority or "",
        category_id=r.category_id,
        stakeholder_area=StakeholderAreaRecord(id=area.id, name=area.name) if area else None,
        criteria=tuple(_criterion_record(link.criterion) for link in r.criterion_links if link.criterion),
        description=r.description or "",
        status=r.status or "",
        source_type=r.source_type or "manual",
        source_ref=r.source_ref,
        source_name=r.source_name or "",
        source_date=r.source_date or "",
    )


def _vendor_record(v: Vendor) -> VendorRecord:
    return VendorRecord(
        id=v.id, name=v.name, status=v.status or "", website=v.website or "",
        description=v.description or "",
    )


def _score_record(s: Score) -> ScoreRecord:
    return ScoreRecord(
        id=s.id, vendor_id=s.vendor_id, criterion_id=s.criterion_id, value=float(s.score_value),
        evaluator_id=s.evaluator_id,
        evaluator_name=s.evaluator.full_name if s.evaluator else "",
        rationale=s.rationale or "", status=s.status or "",
    )


def _consensus_record(c: ConsensusScore) -> ConsensusRecord:
    return ConsensusRecord(
        id=c.id, vendor_id=c.vendor_id, criterion_id=c.criterion_id,
        value=float(c.score_value), rationale=c.rationale or "",
    )


def _evidence_record(e: Evidence, links: list[EvidenceLink] | None = None) -> EvidenceRecord:
    return EvidenceRecord(
        id=e.id, vendor_id=e.vendor_id, title=e.title, type=e.type or "",
        content=e.content or "", confidence_level=e.confidence_level or "",
        links=tuple(
            EvidenceLinkRecord(requirement_id=l.requirement_id, criterion_id=l.criterion_id)
            for l in (e.links if links is None else links)
        ),
    )


_REQUIREMENT_LOAD = (
    selectinload(Requirement.criterion_links).selectinload(RequirementCriterion.criterion),
    selectinload(Requirement.stakeholder_area),
)


class SqlDataSource(MatrixDataSource):
    """``MatrixDataSource`` over a SQLAlchemy session."""

    def __init__(self, session: Session, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    async def get_requirements(self, project_id: int, filters: MatrixFilters) -> list[RequirementRecord]:
        query = (
            select(Requirement)
            .options(*_REQUIREMENT_LOAD)
            .where(Requirement.evaluation_project_id == project_id, Requirement.is_deleted.is_(False))
        )
        if filters.category_id is not None:
            query = query.where(Requirement.category_id == filters.category_id)
        if filters.priority:
            query = query.where(Requirement.priority == filters.priority)
        rows = self.session.execute(query.order_by(Requirement.id)).scalars().all()
        return [_requirement_record(r) for r in rows]

    async def get_eligible_vendors(self, project_id: int, filters: MatrixFilters) -> list[VendorRecord]:
        query = select(Vendor).where(
            Vendor.evaluation_project_id == project_id,
            Vendor.is_deleted.is_(False),
            Vendor.status.in_(self.settings.evaluatable_statuses),
        )
        if filters.vendor_ids:
            query = query.where(Vendor.id.in_(filters.vendor_ids))
        rows = self.session.execute(query.order_by(Vendor.name, Vendor.id)).scalars().all()
        return [_vendor_record(v) for v in rows]

    async def get_categories(self, project_id: int) -> list[CategoryRecord]:
        rows = self.session.execute(
            select(Category)
            .options(selectinload(Category.criteria))
            .where(Category.evaluation_project_id == project_id, Category.is_deleted.is_(False))
            .order_by(Category.sort_order, Category.id)
        ).scalars().all()
        return [
            CategoryRecord(
                id=c.id, name=c.name, weight=float(c.weight or 0.0), sort_order=c.sort_order,
                description=c.description or "",
                criteria=tuple(_criterion_record(cr) for cr in c.criteria),
            )
            for c in rows
        ]

    async def get_scores(self, project_id: int) -> list[ScoreRecord]:
        query = (
            select(Score)
            .options(selectinload(Score.evaluator))
            .where(Score.evaluation_project_id == project_id)
        )
        if self.settings.submitted_scores_only:
            query = query.where(Score.status == "submitted")
        rows = self.session.execute(query.order_by(Score.id)).scalars().all()
        return [_score_record(s) for s in rows]

    async def get_consensus_scores(self, project_id: int) -> list[ConsensusRecord]:
        rows = self.session.execute(
            select(ConsensusScore)
            .where(ConsensusScore.evaluation_project_id == project_id)
            .order_by(ConsensusScore.id)
        ).scalars().all()
        return [_consensus_record(c) for c in rows]

    async def get_evidence_links(self, project_id: int) -> list[EvidenceRecord]:
        rows = self.session.execute(
            select(Evidence)
            .options(selectinload(Evidence.links))
            .where(Evidence.evaluation_project_id == project_id, Evidence.is_deleted.is_(False))
            .order_by(Evidence.id)
        ).scalars().all()
        return [_evidence_record(e) for e in rows]

    async def get_requirement(self, requirement_id: int) -> RequirementRecord | None:
        row = self.session.execute(
            select(Requirement)
            .options(*_REQUIREMENT_LOAD)
            .where(Requirement.id == requirement_id, Requirement.is_deleted.is_(False))
        ).scalars().first()
        return _requirement_record(row) if row else None

    async def get_vendor(self, vendor_id: int) -> VendorRecord | None:
        row = self.session.execute(
            select(Vendor).where(Vendor.id == vendor_id, Vendor.is_deleted.is_(False))
        ).scalars().first()
        return _vendor_record(row) if row else None

    async def get_scores_for(
        self, vendor_id: int, criterion_ids: tuple[int, ...],
    ) -> tuple[list[ScoreRecord], list[ConsensusRecord]]:
        if not criterion_ids:
            return [], []
        query = (
            select(Score)
            .options(selectinload(Score.evaluator))
            .where(Score.vendor_id == vendor_id, Score.criterion_id.in_(criterion_ids))
        )
        # same eligibility as get_scores so the chain matches its cell
        if self.settings.submitted_scores_only:
            query = query.where(Score.status == "submitted")
        scores = self.session.execute(query.order_by(Score.id)).scalars().all()
        consensus = self.session.execute(
            select(ConsensusScore)
            .where(ConsensusScore.vendor_id == vendor_id, ConsensusScore.criterion_id.in_(criterion_ids))
            .order_by(ConsensusScore.id)
        ).scalars().all()
        return [_score_record(s) for s in scores], [_consensus_record(c) for c in consensus]

    async def get_evidence_for(self, vendor_id: int, requirement_id: int) -> list[EvidenceRecord]:
        rows = self.session.execute(
            select(Evidence)
            .join(EvidenceLink, EvidenceLink.evidence_id == Evidence.id)
            .options(selectinload(Evidence.links))
            .where(
                Evidence.vendor_id == vendor_id,
                Evidence.is_deleted.is_(False),
                EvidenceLink.requirement_id == requirement_id,
            )
            .order_by(Evidence.id)
        ).scalars().unique().all()
        return [_evidence_record(e) for e in rows]


# ---------------------------------------------------------------------------
# Snapshot loading
# ---------------------------------------------------------------------------


async def guarded_read(project_id: int | None, source: str, call: Awaitable[Any]) -> Any:
    try:
        return await call
    except DataFetchError:
        raise
    except Exception as exc:
        log.error("Loading %s failed for project %s: %s", source, project_id, exc)
        raise DataFetchError(project_id, source, exc) from exc


async def load_snapshot(
    source: MatrixDataSource, project_id: int, filters: MatrixFilters | None = None,
) -> MatrixSnapshot:
    """Run all upstream reads together; fail the whole load if any one fails."""
    filters = filters or MatrixFilters()
    results = await asyncio.gather(
        guarded_read(project_id, "requirements", source.get_requirements(project_id, filters)),
        guarded_read(project_id, "vendors", source.get_eligible_vendors(project_id, filters)),
        guarded_read(project_id, "categories", source.get_categories(project_id)),
        guarded_read(project_id, "scores", source.get_scores(project_id)),
        guarded_read(project_id, "consensus_scores", source.get_consensus_scores(project_id)),
        guarded_read(project_id, "evidence", source.get_evidence_links(project_id)),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    requirements, vendors, categories, scores, consensus, evidence = results
    return MatrixSnapshot(
        project_id=project_id,
        requirements=list(requirements),
        vendors=list(vendors),
        categories=list(categories),
        scores=list(scores),
        consensus=list(consensus),
        evidence=list(evidence),
    )
