from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from evaltrace.db import init_db, session_scope
from evaltrace.errors import DataFetchError, EntityNotFound
from evaltrace.loader import MatrixFilters
from evaltrace.services import TraceabilityService

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def evaltrace_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Evaltrace",
    instructions=(
        "Evaltrace shows how vendors in a vendor-selection evaluation stack up against "
        "the requirements. Start with get_matrix_summary(project_id) for the ranking, "
        "then get_coverage_report(project_id) to see what is still unscored, "
        "generate_insights(project_id) for findings, and get_drilldown(requirement_id, "
        "vendor_id) to see the evidence and scores behind one cell."
    ),
    lifespan=evaltrace_lifespan,
    json_response=True,
)


def _error(exc: Exception) -> dict:
    return {"error": str(exc)}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("evaltrace://overview")
def evaltrace_overview() -> str:
    """Overview of the traceability matrix: data model, RAG scale and insight types."""
    return json.dumps({
        "system": "Evaltrace: traceability matrix and insight engine for vendor evaluations",
        "data_model": {
            "requirement": "A stakeholder need with a MoSCoW priority, grouped by category and linked to criteria.",
            "criterion": "A scoring dimension; evaluators score vendors per criterion (0-5).",
            "consensus_score": "An agreed score for a vendor on a criterion. Overrides individual scores.",
            "evidence": "Demo notes, document excerpts and references linked to a vendor and requirement.",
            "cell": "One requirement x vendor intersection: resolved score, RAG rating, evidence count.",
        },
        "rag": {
            "green": "Strong Fit (score >= 4)",
            "amber": "Moderate Fit (3 <= score < 4)",
            "red": "Weak Fit (score < 3)",
            "none": "Not Scored",
        },
        "insight_types": [
            "progress_update", "coverage_gap", "category_leader", "consensus_needed", "risk_area",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_matrix_summary(
    project_id: int, category_id: int | None = None, priority: str | None = None,
) -> dict:
    """Vendor ranking for an evaluation project: average, weighted score, RAG and progress.

    Args:
        project_id: Evaluation project id.
        category_id: Only count requirements in this category.
        priority: Only count requirements with this priority (must_have, should_have, could_have, wont_have).
    """
    with session_scope() as session:
        service = TraceabilityService.for_session(session)
        try:
            result = await service.build_matrix(
                project_id, MatrixFilters(category_id=category_id, priority=priority),
            )
        except DataFetchError as exc:
            return _error(exc)
        summary = result.summary
        return {
            "project_id": project_id,
            **summary.as_dict(),
            "ranking": [vs.as_dict() for vs in summary.ranking()],
        }


@mcp.tool()
async def get_coverage_report(project_id: int) -> dict:
    """Which requirement x vendor cells are scored and evidenced, per vendor and category."""
    with session_scope() as session:
        service = TraceabilityService.for_session(session)
        try:
            report = await service.get_coverage(project_id)
        except DataFetchError as exc:
            return _error(exc)
        return {"project_id": project_id, **report.as_dict()}


@mcp.tool()
async def generate_insights(project_id: int) -> dict:
    """Run the rule-based insight checks for a project and store the findings."""
    with session_scope() as session:
        service = TraceabilityService.for_session(session)
        try:
            insights = await service.generate_insights(project_id)
        except DataFetchError as exc:
            return _error(exc)
        return {
            "project_id": project_id,
            "count": len(insights),
            "insights": [i.as_dict() for i in insights],
        }


@mcp.tool()
async def get_drilldown(requirement_id: int, vendor_id: int) -> dict:
    """Sources, requirement, evidence and scores behind one requirement x vendor cell."""
    with session_scope() as session:
        service = TraceabilityService.for_session(session)
        try:
            drilldown = await service.get_drilldown(requirement_id, vendor_id)
        except (EntityNotFound, DataFetchError) as exc:
            return _error(exc)
        return drilldown.as_dict()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the evaltrace MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
