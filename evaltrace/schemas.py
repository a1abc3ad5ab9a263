"""Pydantic request/response schemas for the evaltrace API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, field_validator

SORT_DIRECTIONS = ("asc", "desc")
RAG_FILTERS = ("green", "amber", "red", "none")


class InsightOut(BaseModel):
    id: int
    evaluation_project_id: int
    insight_type: str
    title: str
    description: str
    supporting_data: dict[str, Any] = {}
    vendor_id: int | None = None
    category_id: int | None = None
    requirement_id: int | None = None
    priority: str
    generated_by: str
    is_dismissed: bool = False
    dismissed_by: int | None = None
    dismissed_at: str | None = None
    generated_at: str | None = None


class GeneratedInsightOut(BaseModel):
    insight_type: str
    title: str
    description: str
    priority: str
    supporting_data: dict[str, Any] = {}
    vendor_id: int | None = None
    category_id: int | None = None
    requirement_id: int | None = None
    generated_by: str = "system"


class DismissRequest(BaseModel):
    user_id: int | None = None


class ExportRecordOut(BaseModel):
    id: int
    evaluation_project_id: int
    export_format: str
    export_type: str
    filters_applied: dict[str, Any] = {}
    file_name: str = ""
    file_size: int = 0
    exported_by: int | None = None
    total_requirements: int = 0
    total_vendors: int = 0
    coverage_percentage: float = 0.0
    exported_at: str | None = None


class SheetDataOut(BaseModel):
    headers: list[str]
    rows: list[list[Any]]
    summary_rows: list[list[Any]]
    metadata: dict[str, Any] = {}


class ViewPreferencesOut(BaseModel):
    evaluation_project_id: int
    user_id: int
    collapsed_categories: list[int] = []
    selected_vendors: list[int] = []
    sort_by: str = "category"
    sort_direction: str = "asc"
    filter_priority: str | None = None
    filter_rag_status: str | None = None
    show_evidence_count: bool = True
    compact_mode: bool = False
    highlight_variance: bool = True
    variance_threshold: float = 1.0
    updated_at: str | None = None


class ViewPreferencesUpdate(BaseModel):
    collapsed_categories: list[int] | None = None
    selected_vendors: list[int] | None = None
    sort_by: str | None = None
    sort_direction: str | None = None
    filter_priority: str | None = None
    filter_rag_status: str | None = None
    show_evidence_count: bool | None = None
    compact_mode: bool | None = None
    highlight_variance: bool | None = None
    variance_threshold: float | None = None

    @field_validator("sort_direction")
    @classmethod
    def direction_must_be_known(cls, v: str | None) -> str | None:
        if v is not None and v not in SORT_DIRECTIONS:
            raise ValueError("sort_direction must be asc or desc")
        return v

    @field_validator("filter_rag_status")
    @classmethod
    def rag_filter_must_be_known(cls, v: str | None) -> str | None:
        if v is not None and v not in RAG_FILTERS:
            raise ValueError(f"filter_rag_status must be one of {', '.join(RAG_FILTERS)}")
        return v

    @field_validator("variance_threshold")
    @classmethod
    def threshold_non_negative(cls, v: float | None) -> float | None:
        if v is not None and v < 0:
            raise ValueError("variance_threshold must not be negative")
        return v


class InvariantViolationOut(BaseModel):
    code: str
    message: str
    project_id: int | None = None
    entity_id: int | None = None
    details: dict[str, Any] = {}


class ValidationOut(BaseModel):
    project_id: int
    valid: bool
    warnings: list[InvariantViolationOut]
