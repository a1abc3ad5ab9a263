from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class EvaluationProject(Base):
    __tablename__ = "evaluation_projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class StakeholderArea(Base):
    __tablename__ = "stakeholder_areas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class Category(Base):
    __tablename__ = "evaluation_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    weight: Mapped[float] = mapped_column(Float, default=0.0)  # 0-100, project total should be 100
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)

    criteria: Mapped[list[Criterion]] = relationship(
        "Criterion", back_populates="category", order_by="Criterion.sort_order",
    )


class Criterion(Base):
    __tablename__ = "evaluation_criteria"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    category_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("evaluation_categories.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    category: Mapped[Category | None] = relationship("Category", back_populates="criteria")


class Requirement(Base):
    __tablename__ = "requirements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    reference_code: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    priority: Mapped[str] = mapped_column(String(30), default="")  # must_have | should_have | could_have | wont_have
    status: Mapped[str] = mapped_column(String(30), default="draft")
    category_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("evaluation_categories.id"), nullable=True)
    stakeholder_area_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("stakeholder_areas.id"), nullable=True)
    source_type: Mapped[str] = mapped_column(String(30), default="manual")  # manual | workshop | survey | document
    source_ref: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source_name: Mapped[str] = mapped_column(String(300), default="")
    source_date: Mapped[str] = mapped_column(String(30), default="")
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)

    category: Mapped[Category | None] = relationship("Category")
    stakeholder_area: Mapped[StakeholderArea | None] = relationship("StakeholderArea")
    criterion_links: Mapped[list[RequirementCriterion]] = relationship(
        "RequirementCriterion", back_populates="requirement",
        cascade="all, delete-orphan", order_by="RequirementCriterion.id",
    )


class RequirementCriterion(Base):
    __tablename__ = "requirement_criteria"
    __table_args__ = (UniqueConstraint("requirement_id", "criterion_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    requirement_id: Mapped[int] = mapped_column(Integer, ForeignKey("requirements.id"), nullable=False)
    criterion_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_criteria.id"), nullable=False)

    requirement: Mapped[Requirement] = relationship("Requirement", back_populates="criterion_links")
    criterion: Mapped[Criterion] = relationship("Criterion")


class Vendor(Base):
    __tablename__ = "vendors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="identified")
    website: Mapped[str] = mapped_column(String(500), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)


class Evaluator(Base):
    __tablename__ = "evaluators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(300), default="")


class Score(Base):
    __tablename__ = "scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    vendor_id: Mapped[int] = mapped_column(Integer, ForeignKey("vendors.id"), nullable=False)
    criterion_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_criteria.id"), nullable=False)
    evaluator_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("evaluators.id"), nullable=True)
    score_value: Mapped[float] = mapped_column(Float, nullable=False)
    rationale: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="submitted")  # draft | submitted
    scored_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    evaluator: Mapped[Evaluator | None] = relationship("Evaluator")


class ConsensusScore(Base):
    __tablename__ = "consensus_scores"
    __table_args__ = (UniqueConstraint("vendor_id", "criterion_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    vendor_id: Mapped[int] = mapped_column(Integer, ForeignKey("vendors.id"), nullable=False)
    criterion_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_criteria.id"), nullable=False)
    score_value: Mapped[float] = mapped_column(Float, nullable=False)
    rationale: Mapped[str] = mapped_column(Text, default="")
    agreed_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Evidence(Base):
    __tablename__ = "evidence"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    vendor_id: Mapped[int] = mapped_column(Integer, ForeignKey("vendors.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    type: Mapped[str] = mapped_column(String(50), default="")  # demo_note | document_excerpt | reference_check ...
    content: Mapped[str] = mapped_column(Text, default="")
    confidence_level: Mapped[str] = mapped_column(String(20), default="")
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)

    links: Mapped[list[EvidenceLink]] = relationship(
        "EvidenceLink", back_populates="evidence", cascade="all, delete-orphan", order_by="EvidenceLink.id",
    )


class EvidenceLink(Base):
    __tablename__ = "evidence_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evidence_id: Mapped[int] = mapped_column(Integer, ForeignKey("evidence.id"), nullable=False)
    requirement_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("requirements.id"), nullable=True)
    criterion_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("evaluation_criteria.id"), nullable=True)

    evidence: Mapped[Evidence] = relationship("Evidence", back_populates="links")


class Insight(Base):
    __tablename__ = "traceability_insights"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    insight_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    supporting_data_json: Mapped[str] = mapped_column(Text, default="{}")
    vendor_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("vendors.id"), nullable=True)
    category_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("evaluation_categories.id"), nullable=True)
    requirement_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("requirements.id"), nullable=True)
    priority: Mapped[str] = mapped_column(String(20), default="medium")  # low | medium | high | critical
    generated_by: Mapped[str] = mapped_column(String(20), default="system")  # system | ai | manual
    is_dismissed: Mapped[bool] = mapped_column(Boolean, default=False)
    dismissed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    generated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class MatrixExport(Base):
    __tablename__ = "traceability_exports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    export_format: Mapped[str] = mapped_column(String(20), nullable=False)  # csv | xlsx
    export_type: Mapped[str] = mapped_column(String(50), default="full_matrix")
    filters_applied_json: Mapped[str] = mapped_column(Text, default="{}")
    file_name: Mapped[str] = mapped_column(String(255), default="")
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    exported_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_requirements: Mapped[int] = mapped_column(Integer, default=0)
    total_vendors: Mapped[int] = mapped_column(Integer, default=0)
    coverage_percentage: Mapped[float] = mapped_column(Float, default=0.0)
    exported_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class MatrixViewPreference(Base):
    __tablename__ = "matrix_view_preferences"
    __table_args__ = (UniqueConstraint("evaluation_project_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    evaluation_project_id: Mapped[int] = mapped_column(Integer, ForeignKey("evaluation_projects.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    collapsed_categories_json: Mapped[str] = mapped_column(Text, default="[]")
    selected_vendors_json: Mapped[str] = mapped_column(Text, default="[]")
    sort_by: Mapped[str] = mapped_column(String(50), default="category")
    sort_direction: Mapped[str] = mapped_column(String(10), default="asc")
    filter_priority: Mapped[str | None] = mapped_column(String(20), nullable=True)
    filter_rag_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    show_evidence_count: Mapped[bool] = mapped_column(Boolean, default=True)
    compact_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    highlight_variance: Mapped[bool] = mapped_column(Boolean, default=True)
    variance_threshold: Mapped[float] = mapped_column(Float, default=1.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
