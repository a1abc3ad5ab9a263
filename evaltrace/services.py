"""Shared business logic for the evaltrace API and MCP server."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import case, delete, select
from sqlalchemy.orm import Session

from evaltrace.config import Settings, get_settings
from evaltrace.coverage import CoverageReport, analyze_coverage
from evaltrace.drilldown import Drilldown, build_drilldown
from evaltrace.errors import EntityNotFound, InvariantViolation
from evaltrace.export import SheetData, to_csv, to_sheet_data, to_xlsx
from evaltrace.insights import PRIORITY_ORDER, GeneratedInsight, generate_insights
from evaltrace.loader import MatrixDataSource, MatrixFilters, SqlDataSource, guarded_read, load_snapshot
from evaltrace.matrix import Matrix, build_matrix
from evaltrace.models import Insight, MatrixExport, MatrixViewPreference
from evaltrace.records import CategoryRecord, RequirementRecord, VendorRecord
from evaltrace.summary import MatrixSummary, calculate_summary
from evaltrace.utils import json_parse

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

INSIGHT_FIELDS = (
    "id", "insight_type", "title", "description", "vendor_id", "category_id",
    "requirement_id", "priority", "generated_by", "is_dismissed", "dismissed_by",
)

EXPORT_FIELDS = (
    "id", "export_format", "export_type", "file_name", "file_size", "exported_by",
    "total_requirements", "total_vendors", "coverage_percentage",
)

PREFERENCE_FIELDS = (
    "sort_by", "sort_direction", "filter_priority", "filter_rag_status",
    "show_evidence_count", "compact_mode", "highlight_variance", "variance_threshold",
)

PREFERENCE_JSON_FIELDS = ("collapsed_categories", "selected_vendors")

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def insight_out(row: Insight) -> dict[str, Any]:
    out = {f: getattr(row, f) for f in INSIGHT_FIELDS}
    out["evaluation_project_id"] = row.evaluation_project_id
    out["supporting_data"] = json_parse(row.supporting_data_json, {})
    out["dismissed_at"] = _iso(row.dismissed_at)
    out["generated_at"] = _iso(row.generated_at)
    return out


def export_out(row: MatrixExport) -> dict[str, Any]:
    out = {f: getattr(row, f) for f in EXPORT_FIELDS}
    out["evaluation_project_id"] = row.evaluation_project_id
    out["filters_applied"] = json_parse(row.filters_applied_json, {})
    out["exported_at"] = _iso(row.exported_at)
    return out


def preference_out(row: MatrixViewPreference) -> dict[str, Any]:
    out = {f: getattr(row, f) for f in PREFERENCE_FIELDS}
    out["evaluation_project_id"] = row.evaluation_project_id
    out["user_id"] = row.user_id
    out["collapsed_categories"] = json_parse(row.collapsed_categories_json, [])
    out["selected_vendors"] = json_parse(row.selected_vendors_json, [])
    out["updated_at"] = _iso(row.updated_at)
    return out


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class MatrixResult:
    """A built matrix together with its summary."""
    matrix: Matrix
    summary: MatrixSummary

    @property
    def rows(self):
        return self.matrix.rows

    @property
    def vendor_totals(self):
        return self.matrix.vendor_totals

    @property
    def vendors(self) -> list[VendorRecord]:
        return self.matrix.vendors

    @property
    def categories(self) -> list[CategoryRecord]:
        return self.matrix.categories

    @property
    def requirements(self) -> list[RequirementRecord]:
        return [row.requirement for row in self.matrix.requirement_rows]

    def as_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.matrix.project_id,
            "vendors": [{"id": v.id, "name": v.name, "status": v.status} for v in self.vendors],
            "categories": [
                {"id": c.id, "name": c.name, "weight": c.weight, "sort_order": c.sort_order}
                for c in self.categories
            ],
            **self.matrix.as_dict(),
            "summary": self.summary.as_dict(),
        }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TraceabilityService:
    """Builds matrices for one data source and stores what the engine produces.

    ``session`` backs the insight, export history and view preference
    tables. Without one the read-only operations still work; stores are
    skipped with a warning and the listing operations raise.
    """

    def __init__(
        self,
        data_source: MatrixDataSource,
        session: Session | None = None,
        settings: Settings | None = None,
    ):
        self.data_source = data_source
        self.session = session
        self.settings = settings or get_settings()

    @classmethod
    def for_session(cls, session: Session, settings: Settings | None = None) -> TraceabilityService:
        settings = settings or get_settings()
        return cls(SqlDataSource(session, settings), session=session, settings=settings)

    def _require_session(self) -> Session:
        if self.session is None:
            raise RuntimeError("this operation needs a database session")
        return self.session

    # -- matrix ---------------------------------------------------------------

    async def build_matrix(self, project_id: int, filters: MatrixFilters | None = None) -> MatrixResult:
        snapshot = await load_snapshot(self.data_source, project_id, filters)
        matrix = build_matrix(snapshot, self.settings)
        return MatrixResult(matrix=matrix, summary=calculate_summary(matrix, self.settings))

    async def get_coverage(self, project_id: int, filters: MatrixFilters | None = None) -> CoverageReport:
        result = await self.build_matrix(project_id, filters)
        return analyze_coverage(result.matrix, self.settings)

    async def get_drilldown(self, requirement_id: int, vendor_id: int) -> Drilldown:
        source = self.data_source
        requirement, vendor = await asyncio.gather(
            guarded_read(None, "requirement", source.get_requirement(requirement_id)),
            guarded_read(None, "vendor", source.get_vendor(vendor_id)),
        )
        if requirement is None:
            raise EntityNotFound("Requirement", requirement_id)
        if vendor is None:
            raise EntityNotFound("Vendor", vendor_id)

        (scores, consensus), evidence = await asyncio.gather(
            guarded_read(None, "scores", source.get_scores_for(vendor_id, requirement.criterion_ids)),
            guarded_read(None, "evidence", source.get_evidence_for(vendor_id, requirement_id)),
        )
        return build_drilldown(requirement, vendor, scores, consensus, evidence, self.settings)

    # -- insights -------------------------------------------------------------

    async def generate_insights(self, project_id: int) -> list[GeneratedInsight]:
        """Run the rule set and store the result; a failed store still returns the insights."""
        result = await self.build_matrix(project_id)
        coverage = analyze_coverage(result.matrix, self.settings)
        insights = generate_insights(result.matrix, result.summary, coverage, settings=self.settings)
        self._save_insights(project_id, insights)
        return insights

    def _save_insights(self, project_id: int, insights: list[GeneratedInsight]) -> None:
        if self.session is None:
            log.warning("No session; %d insights for project %s not persisted", len(insights), project_id)
            return
        session = self.session
        try:
            # A fresh run replaces the previous system findings; dismissed ones stay on record
            session.execute(delete(Insight).where(
                Insight.evaluation_project_id == project_id,
                Insight.generated_by == "system",
                Insight.is_dismissed.is_(False),
            ))
            for item in insights:
                session.add(Insight(
                    evaluation_project_id=project_id,
                    insight_type=item.insight_type.value,
                    title=item.title,
                    description=item.description,
                    supporting_data_json=json.dumps(item.supporting_data),
                    vendor_id=item.vendor_id,
                    category_id=item.category_id,
                    requirement_id=item.requirement_id,
                    priority=item.priority.value,
                    generated_by=item.generated_by,
                ))
            session.commit()
        except Exception as exc:
            session.rollback()
            log.warning("Saving insights failed for project %s: %s", project_id, exc)

    def list_insights(
        self,
        project_id: int,
        include_dismissed: bool = False,
        insight_type: str | None = None,
        priority: str | None = None,
        vendor_id: int | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        session = self._require_session()
        query = select(Insight).where(Insight.evaluation_project_id == project_id)
        if not include_dismissed:
            query = query.where(Insight.is_dismissed.is_(False))
        if insight_type:
            query = query.where(Insight.insight_type == insight_type)
        if priority:
            query = query.where(Insight.priority == priority)
        if vendor_id is not None:
            query = query.where(Insight.vendor_id == vendor_id)
        rank = case(PRIORITY_ORDER, value=Insight.priority, else_=0)
        query = query.order_by(rank.desc(), Insight.generated_at.desc(), Insight.id.desc())
        if limit:
            query = query.limit(limit)
        return [insight_out(row) for row in session.execute(query).scalars().all()]

    def dismiss_insight(self, insight_id: int, user_id: int | None) -> dict[str, Any]:
        session = self._require_session()
        row = session.execute(select(Insight).where(Insight.id == insight_id)).scalars().first()
        if row is None:
            raise EntityNotFound("Insight", insight_id)
        row.is_dismissed = True
        row.dismissed_by = user_id
        row.dismissed_at = datetime.now(timezone.utc)
        session.commit()
        return insight_out(row)

    # -- export ---------------------------------------------------------------

    async def export_to_sheet_data(
        self, project_id: int, filters: MatrixFilters | None = None, exported_by: int | None = None,
    ) -> SheetData:
        result = await self.build_matrix(project_id, filters)
        sheet = to_sheet_data(result.matrix, result.summary)
        self._record_export(project_id, "sheet", filters, result, "", 0, exported_by)
        return sheet

    async def export_to_csv(
        self, project_id: int, filters: MatrixFilters | None = None, exported_by: int | None = None,
    ) -> str:
        result = await self.build_matrix(project_id, filters)
        text = to_csv(to_sheet_data(result.matrix, result.summary))
        self._record_export(
            project_id, "csv", filters, result,
            export_file_name(project_id, "csv"), len(text.encode("utf-8")), exported_by,
        )
        return text

    async def export_to_xlsx(
        self, project_id: int, filters: MatrixFilters | None = None, exported_by: int | None = None,
    ) -> bytes:
        result = await self.build_matrix(project_id, filters)
        data = to_xlsx(to_sheet_data(result.matrix, result.summary))
        self._record_export(
            project_id, "xlsx", filters, result,
            export_file_name(project_id, "xlsx"), len(data), exported_by,
        )
        return data

    def _record_export(
        self,
        project_id: int,
        export_format: str,
        filters: MatrixFilters | None,
        result: MatrixResult,
        file_name: str,
        file_size: int,
        exported_by: int | None,
    ) -> None:
        if self.session is None:
            log.warning("No session; %s export of project %s not recorded", export_format, project_id)
            return
        session = self.session
        try:
            session.add(MatrixExport(
                evaluation_project_id=project_id,
                export_format=export_format,
                export_type="full_matrix",
                filters_applied_json=json.dumps((filters or MatrixFilters()).as_dict()),
                file_name=file_name,
                file_size=file_size,
                exported_by=exported_by,
                total_requirements=result.summary.total_requirements,
                total_vendors=result.summary.vendor_count,
                coverage_percentage=result.summary.overall_progress,
            ))
            session.commit()
        except Exception as exc:
            session.rollback()
            log.warning("Recording %s export failed for project %s: %s", export_format, project_id, exc)

    def get_export_history(self, project_id: int, limit: int = 20) -> list[dict[str, Any]]:
        session = self._require_session()
        rows = session.execute(
            select(MatrixExport)
            .where(MatrixExport.evaluation_project_id == project_id)
            .order_by(MatrixExport.exported_at.desc(), MatrixExport.id.desc())
            .limit(limit)
        ).scalars().all()
        return [export_out(r) for r in rows]

    # -- view preferences -----------------------------------------------------

    def _preference_row(self, project_id: int, user_id: int) -> MatrixViewPreference | None:
        return self._require_session().execute(
            select(MatrixViewPreference).where(
                MatrixViewPreference.evaluation_project_id == project_id,
                MatrixViewPreference.user_id == user_id,
            )
        ).scalars().first()

    def get_view_preferences(self, project_id: int, user_id: int) -> dict[str, Any] | None:
        row = self._preference_row(project_id, user_id)
        return preference_out(row) if row else None

    def save_view_preferences(self, project_id: int, user_id: int, preferences: dict[str, Any]) -> dict[str, Any]:
        """Upsert one user's matrix view settings; None values leave the stored value alone."""
        session = self._require_session()
        row = self._preference_row(project_id, user_id)
        if row is None:
            row = MatrixViewPreference(evaluation_project_id=project_id, user_id=user_id)
            session.add(row)
        apply_updates(row, preferences, PREFERENCE_FIELDS)
        for key in PREFERENCE_JSON_FIELDS:
            if preferences.get(key) is not None:
                setattr(row, f"{key}_json", json.dumps(list(preferences[key])))
        row.updated_at = datetime.now(timezone.utc)
        session.commit()
        session.refresh(row)
        return preference_out(row)

    # -- comparison and validation --------------------------------------------

    async def get_vendor_comparison(self, project_id: int) -> dict[str, Any]:
        """Per-category vendor averages shaped for radar and bar charts."""
        result = await self.build_matrix(project_id)
        matrix, vendors = result.matrix, result.vendors

        category_scores = []
        radar = []
        for category in matrix.categories:
            rows = [r for r in matrix.requirement_rows if r.category.id == category.id]
            per_vendor = []
            for idx, vendor in enumerate(vendors):
                values = [row.cells[idx].value for row in rows if row.cells[idx].value is not None]
                total = sum(values)
                per_vendor.append({
                    "vendor_id": vendor.id, "vendor": vendor.name, "total": total,
                    "count": len(values), "average": total / len(values) if values else 0.0,
                })
            category_scores.append({
                "category_id": category.id, "category": category.name, "vendors": per_vendor,
            })
            radar.append({"category": category.name, **{pv["vendor"]: pv["average"] for pv in per_vendor}})

        bar = sorted(
            (
                {
                    "vendor": v.name, "vendor_id": v.id,
                    "score": result.summary.vendor_summaries[v.id].weighted_score,
                    "rag_status": result.summary.vendor_summaries[v.id].rag_status.value,
                }
                for v in vendors
            ),
            key=lambda item: -item["score"],
        )
        return {
            "category_scores": category_scores,
            "radar_data": radar,
            "bar_data": bar,
            "summary": result.summary.as_dict(),
        }

    async def validate_category_weights(self, project_id: int) -> list[InvariantViolation]:
        """Setup warnings for category weights; an unconfigured project has none."""
        categories = await guarded_read(project_id, "categories", self.data_source.get_categories(project_id))
        if not categories:
            return []

        expected = self.settings.category_weight_total
        violations: list[InvariantViolation] = []
        for cat in categories:
            if not 0 <= cat.weight <= expected:
                violations.append(InvariantViolation(
                    code="category_weight_out_of_range",
                    message=f"Category {cat.name!r} has weight {cat.weight:g}, outside 0-{expected:g}",
                    project_id=project_id,
                    entity_id=cat.id,
                    details={"weight": cat.weight},
                ))

        total = sum(cat.weight for cat in categories)
        if abs(total - expected) > 1e-6:
            violations.append(InvariantViolation(
                code="category_weights_total",
                message=f"Category weights sum to {total:g}, expected {expected:g}",
                project_id=project_id,
                details={
                    "total": total,
                    "expected": expected,
                    "categories": [{"id": c.id, "name": c.name, "weight": c.weight} for c in categories],
                },
            ))
        for v in violations:
            log.warning("Project %s setup: %s", project_id, v.message)
        return violations


def export_file_name(project_id: int, extension: str, now: datetime | None = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"traceability-matrix-{project_id}-{stamp}.{extension}"
