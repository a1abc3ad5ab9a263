"""Shared fixtures: in-memory SQLite database seeded with one evaluation project.

Seeded project (ids in the returned namespace):

* categories Functional (weight 60) and Technical (weight 30), plus a deleted one
* R1 must_have/Functional linked to Workflow (w2) + Reporting (w4)
* R2 should_have/Technical linked to Security (w1)
* R3 could_have, no category, no criteria; R4 deleted
* vendors Acme (under_evaluation), Bolt (short_list); Cobalt (identified) and
  Dyno (deleted) are not evaluatable
* Acme: 3 on Workflow, 5 on Reporting, 4 on Security
* Bolt: 2 and 5 on Workflow (two evaluators), a draft 4 on Security and a
  consensus 2 on Security
* evidence: Acme/R1, Bolt/R2, and a deleted Acme/R2 item
"""
from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from evaltrace.config import Settings
from evaltrace.models import (
    Base, Category, ConsensusScore, Criterion, EvaluationProject, Evaluator, Evidence, EvidenceLink,
    Requirement, RequirementCriterion, Score, StakeholderArea, Vendor,
)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def settings() -> Settings:
    return Settings()


def seed_project(session: Session) -> SimpleNamespace:
    project = EvaluationProject(name="CRM Replacement")
    other = EvaluationProject(name="Other evaluation")
    session.add_all([project, other])
    session.flush()
    pid = project.id

    functional = Category(evaluation_project_id=pid, name="Functional", weight=60, sort_order=1)
    technical = Category(evaluation_project_id=pid, name="Technical", weight=30, sort_order=2)
    legacy = Category(evaluation_project_id=pid, name="Legacy", weight=10, sort_order=3, is_deleted=True)
    session.add_all([functional, technical, legacy])
    session.flush()

    workflow = Criterion(evaluation_project_id=pid, category_id=functional.id, name="Workflow", weight=2, sort_order=1)
    reporting = Criterion(evaluation_project_id=pid, category_id=functional.id, name="Reporting", weight=4, sort_order=2)
    security = Criterion(evaluation_project_id=pid, category_id=technical.id, name="Security", weight=1, sort_order=1)
    sales = StakeholderArea(evaluation_project_id=pid, name="Sales")
    session.add_all([workflow, reporting, security, sales])
    session.flush()

    r1 = Requirement(
        evaluation_project_id=pid, reference_code="REQ-001", title="Workflow automation",
        priority="must_have", category_id=functional.id, stakeholder_area_id=sales.id,
        source_type="workshop", source_ref=7, source_name="Kickoff workshop", source_date="2025-01-10",
    )
    r2 = Requirement(
        evaluation_project_id=pid, reference_code="REQ-002", title="SSO support",
        priority="should_have", category_id=technical.id,
    )
    r3 = Requirement(
        evaluation_project_id=pid, reference_code="REQ-003", title="Legacy import", priority="could_have",
    )
    r4 = Requirement(
        evaluation_project_id=pid, reference_code="REQ-004", title="Retired need",
        priority="must_have", category_id=functional.id, is_deleted=True,
    )
    session.add_all([r1, r2, r3, r4])
    session.flush()
    session.add_all([
        RequirementCriterion(requirement_id=r1.id, criterion_id=workflow.id),
        RequirementCriterion(requirement_id=r1.id, criterion_id=reporting.id),
        RequirementCriterion(requirement_id=r2.id, criterion_id=security.id),
        RequirementCriterion(requirement_id=r4.id, criterion_id=workflow.id),
    ])

    acme = Vendor(evaluation_project_id=pid, name="Acme", status="under_evaluation")
    bolt = Vendor(evaluation_project_id=pid, name="Bolt", status="short_list")
    cobalt = Vendor(evaluation_project_id=pid, name="Cobalt", status="identified")
    dyno = Vendor(evaluation_project_id=pid, name="Dyno", status="selected", is_deleted=True)
    outsider = Vendor(evaluation_project_id=other.id, name="Outsider", status="under_evaluation")
    alice = Evaluator(full_name="Alice Evans", email="alice@example.com")
    bob = Evaluator(full_name="Bob Brown", email="bob@example.com")
    session.add_all([acme, bolt, cobalt, dyno, outsider, alice, bob])
    session.flush()

    def score(vendor, criterion, evaluator, value, status="submitted"):
        return Score(
            evaluation_project_id=pid, vendor_id=vendor.id, criterion_id=criterion.id,
            evaluator_id=evaluator.id, score_value=value, status=status,
        )

    session.add_all([
        score(acme, workflow, alice, 3),
        score(acme, reporting, alice, 5),
        score(acme, security, alice, 4),
        score(bolt, workflow, alice, 2),
        score(bolt, workflow, bob, 5),
        score(bolt, security, bob, 4, status="draft"),
        ConsensusScore(evaluation_project_id=pid, vendor_id=bolt.id, criterion_id=security.id,
                       score_value=2, rationale="Agreed after SSO reference call"),
    ])

    demo = Evidence(evaluation_project_id=pid, vendor_id=acme.id, title="Workflow demo",
                    type="demo_note", confidence_level="high")
    reference = Evidence(evaluation_project_id=pid, vendor_id=bolt.id, title="SSO reference",
                         type="reference_check", confidence_level="medium")
    stale = Evidence(evaluation_project_id=pid, vendor_id=acme.id, title="Old SSO notes",
                     type="demo_note", is_deleted=True)
    session.add_all([demo, reference, stale])
    session.flush()
    session.add_all([
        EvidenceLink(evidence_id=demo.id, requirement_id=r1.id, criterion_id=workflow.id),
        EvidenceLink(evidence_id=reference.id, requirement_id=r2.id),
        EvidenceLink(evidence_id=stale.id, requirement_id=r2.id),
    ])
    session.commit()

    return SimpleNamespace(
        project_id=pid, other_project_id=other.id,
        functional_id=functional.id, technical_id=technical.id,
        workflow_id=workflow.id, reporting_id=reporting.id, security_id=security.id,
        r1=r1.id, r2=r2.id, r3=r3.id, r4=r4.id,
        acme=acme.id, bolt=bolt.id, cobalt=cobalt.id, dyno=dyno.id,
        alice=alice.id, bob=bob.id, demo=demo.id, reference=reference.id,
    )


@pytest.fixture()
def seeded(session) -> SimpleNamespace:
    return seed_project(session)
