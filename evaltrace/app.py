from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from evaltrace.db import init_db, session_generator
from evaltrace.errors import DataFetchError, EntityNotFound
from evaltrace.loader import MatrixFilters
from evaltrace.schemas import (
    DismissRequest,
    ExportRecordOut,
    GeneratedInsightOut,
    InsightOut,
    SheetDataOut,
    ValidationOut,
    ViewPreferencesOut,
    ViewPreferencesUpdate,
)
from evaltrace.services import TraceabilityService, export_file_name

log = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Evaltrace",
    version="0.1.0",
    description=(
        "Traceability matrix and insight API for vendor-selection evaluations. "
        "Aggregates requirements, evaluator scores, consensus and evidence into a "
        "RAG-rated requirement x vendor matrix. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Matrix", "description": "Build the traceability matrix, coverage and comparison views."},
        {"name": "Drilldown", "description": "Evidentiary chain behind one matrix cell."},
        {"name": "Insights", "description": "Rule-based findings: generate, list, dismiss."},
        {"name": "Export", "description": "CSV, XLSX and sheet-data exports plus export history."},
        {"name": "Preferences", "description": "Per-user matrix view settings."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def traceability(session: Session = Depends(db_session)) -> TraceabilityService:
    return TraceabilityService.for_session(session)


def matrix_filters(
    category_id: int | None = Query(None, description="Only requirements in this category"),
    priority: str | None = Query(None, description="Only requirements with this MoSCoW priority, e.g. must_have"),
    vendor_ids: str | None = Query(None, description="Comma-separated vendor ids"),
) -> MatrixFilters:
    ids: tuple[int, ...] = ()
    if vendor_ids:
        try:
            ids = tuple(int(v) for v in vendor_ids.split(",") if v.strip())
        except ValueError as exc:
            raise HTTPException(400, "vendor_ids must be comma-separated integers") from exc
    return MatrixFilters(category_id=category_id, priority=priority or None, vendor_ids=ids)


@app.exception_handler(EntityNotFound)
async def entity_not_found(request: Request, exc: EntityNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc), "entity": exc.entity, "id": exc.entity_id})


@app.exception_handler(DataFetchError)
async def data_fetch_failed(request: Request, exc: DataFetchError):
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "project_id": exc.project_id, "source": exc.source},
    )


# ---------------------------------------------------------------------------
# Routes: Matrix
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/matrix", tags=["Matrix"],
         summary="Build the traceability matrix with vendor totals and summary")
async def get_matrix(
    project_id: int,
    filters: MatrixFilters = Depends(matrix_filters),
    service: TraceabilityService = Depends(traceability),
):
    result = await service.build_matrix(project_id, filters)
    return result.as_dict()


@app.get("/api/projects/{project_id}/coverage", tags=["Matrix"],
         summary="Scored and evidenced cell coverage by vendor and category")
async def get_coverage(
    project_id: int,
    filters: MatrixFilters = Depends(matrix_filters),
    service: TraceabilityService = Depends(traceability),
):
    report = await service.get_coverage(project_id, filters)
    return report.as_dict()


@app.get("/api/projects/{project_id}/comparison", tags=["Matrix"],
         summary="Per-category vendor averages shaped for radar and bar charts")
async def get_comparison(project_id: int, service: TraceabilityService = Depends(traceability)):
    return await service.get_vendor_comparison(project_id)


@app.get("/api/projects/{project_id}/validation", response_model=ValidationOut, tags=["Matrix"],
         summary="Check category weight setup (warnings only)")
async def get_validation(project_id: int, service: TraceabilityService = Depends(traceability)):
    warnings = await service.validate_category_weights(project_id)
    return {"project_id": project_id, "valid": not warnings, "warnings": [w.as_dict() for w in warnings]}


# ---------------------------------------------------------------------------
# Routes: Drilldown
# ---------------------------------------------------------------------------


@app.get("/api/drilldown", tags=["Drilldown"],
         summary="Sources, requirement, evidence and scores behind one cell")
async def get_drilldown(
    requirement_id: int = Query(...),
    vendor_id: int = Query(...),
    service: TraceabilityService = Depends(traceability),
):
    drilldown = await service.get_drilldown(requirement_id, vendor_id)
    return drilldown.as_dict()


# ---------------------------------------------------------------------------
# Routes: Insights
# ---------------------------------------------------------------------------


@app.post("/api/projects/{project_id}/insights/generate", response_model=list[GeneratedInsightOut],
          tags=["Insights"], summary="Run the insight rules and store the findings")
async def generate_insights(project_id: int, service: TraceabilityService = Depends(traceability)):
    insights = await service.generate_insights(project_id)
    return [i.as_dict() for i in insights]


@app.get("/api/projects/{project_id}/insights", response_model=list[InsightOut],
         tags=["Insights"], summary="List stored insights, highest priority first")
async def list_insights(
    project_id: int,
    include_dismissed: bool = Query(False),
    insight_type: str | None = Query(None, description="progress_update, coverage_gap, category_leader, consensus_needed, risk_area"),
    priority: str | None = Query(None, description="low, medium, high, critical"),
    vendor_id: int | None = Query(None),
    limit: int | None = Query(None, ge=1, le=500),
    service: TraceabilityService = Depends(traceability),
):
    return service.list_insights(
        project_id, include_dismissed=include_dismissed, insight_type=insight_type,
        priority=priority, vendor_id=vendor_id, limit=limit,
    )


@app.post("/api/insights/{insight_id}/dismiss", response_model=InsightOut,
          tags=["Insights"], summary="Dismiss an insight")
async def dismiss_insight(
    insight_id: int,
    body: DismissRequest | None = None,
    service: TraceabilityService = Depends(traceability),
):
    return service.dismiss_insight(insight_id, (body or DismissRequest()).user_id)


# ---------------------------------------------------------------------------
# Routes: Export
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/export.csv", tags=["Export"], summary="Download the matrix as CSV")
async def export_csv(
    project_id: int,
    exported_by: int | None = Query(None),
    filters: MatrixFilters = Depends(matrix_filters),
    service: TraceabilityService = Depends(traceability),
):
    text = await service.export_to_csv(project_id, filters, exported_by=exported_by)
    name = export_file_name(project_id, "csv")
    return Response(
        content=text, media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{name}"'},
    )


@app.get("/api/projects/{project_id}/export.xlsx", tags=["Export"],
         summary="Download the matrix and vendor summary as an XLSX workbook")
async def export_xlsx(
    project_id: int,
    exported_by: int | None = Query(None),
    filters: MatrixFilters = Depends(matrix_filters),
    service: TraceabilityService = Depends(traceability),
):
    data = await service.export_to_xlsx(project_id, filters, exported_by=exported_by)
    name = export_file_name(project_id, "xlsx")
    return Response(
        content=data, media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{name}"'},
    )


@app.get("/api/projects/{project_id}/export/sheet", response_model=SheetDataOut, tags=["Export"],
         summary="Matrix export as JSON sheet data (headers, rows, summary rows)")
async def export_sheet(
    project_id: int,
    exported_by: int | None = Query(None),
    filters: MatrixFilters = Depends(matrix_filters),
    service: TraceabilityService = Depends(traceability),
):
    sheet = await service.export_to_sheet_data(project_id, filters, exported_by=exported_by)
    return sheet.as_dict()


@app.get("/api/projects/{project_id}/exports", response_model=list[ExportRecordOut], tags=["Export"],
         summary="Recent exports, newest first")
async def export_history(
    project_id: int,
    limit: int = Query(20, ge=1, le=200),
    service: TraceabilityService = Depends(traceability),
):
    return service.get_export_history(project_id, limit=limit)


# ---------------------------------------------------------------------------
# Routes: Preferences
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/preferences/{user_id}", response_model=ViewPreferencesOut,
         tags=["Preferences"], summary="Get a user's matrix view preferences")
async def get_preferences(project_id: int, user_id: int, service: TraceabilityService = Depends(traceability)):
    prefs = service.get_view_preferences(project_id, user_id)
    if prefs is None:
        raise HTTPException(404, "Preferences not found")
    return prefs


@app.put("/api/projects/{project_id}/preferences/{user_id}", response_model=ViewPreferencesOut,
         tags=["Preferences"], summary="Create or update a user's matrix view preferences (null fields ignored)")
async def save_preferences(
    project_id: int,
    user_id: int,
    body: ViewPreferencesUpdate,
    service: TraceabilityService = Depends(traceability),
):
    return service.save_view_preferences(project_id, user_id, body.model_dump())


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("evaltrace.app:app", host="127.0.0.1", port=8002, reload=True)


if __name__ == "__main__":
    main()
