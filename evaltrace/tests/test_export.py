from __future__ import annotations

import csv
import io

from openpyxl import load_workbook

from evaltrace.config import Settings
from evaltrace.export import MAIN_SHEET, SUMMARY_SHEET, format_score, to_csv, to_sheet_data, to_xlsx
from evaltrace.matrix import build_matrix
from evaltrace.records import (
    CategoryRecord, CriterionRecord, EvidenceLinkRecord, EvidenceRecord, MatrixSnapshot, RequirementRecord,
    ScoreRecord, VendorRecord,
)
from evaltrace.summary import calculate_summary


def _sheet(title="Workflow automation", vendor_name="Acme"):
    c1 = CriterionRecord(id=10, name="Workflow")
    reqs = [
        RequirementRecord(id=1, reference_code="REQ-001", title=title, priority="must_have",
                          category_id=1, criteria=(c1,)),
        RequirementRecord(id=2, reference_code="REQ-002", title="Audit log", category_id=None),
    ]
    snap = MatrixSnapshot(
        project_id=3,
        requirements=reqs,
        vendors=[VendorRecord(id=1, name=vendor_name)],
        categories=[CategoryRecord(id=1, name="Functional", weight=100)],
        scores=[ScoreRecord(id=1, vendor_id=1, criterion_id=10, value=3.25)],
        consensus=[],
        evidence=[EvidenceRecord(id=1, vendor_id=1, title="Demo", links=(EvidenceLinkRecord(requirement_id=1),))],
    )
    matrix = build_matrix(snap, Settings())
    return to_sheet_data(matrix, calculate_summary(matrix, Settings()))


def test_format_score():
    assert format_score(None) == ""
    assert format_score(4) == "4.0"
    assert format_score(3.25) == "3.2"
    assert format_score(3.96) == "4.0"


def test_sheet_layout():
    sheet = _sheet()
    assert sheet.headers == [
        "Category", "Reference", "Requirement", "Priority", "Acme Score", "Acme RAG", "Acme Evidence",
    ]
    assert sheet.rows == [
        ["Functional", "REQ-001", "Workflow automation", "must_have", "3.2", "Moderate Fit", 1],
        ["Uncategorized", "REQ-002", "Audit log", "", "", "Not Scored", 0],
    ]
    assert sheet.summary_rows[0] == ["Vendor Summary"]
    assert sheet.summary_rows[1] == [
        "Vendor", "Average Score", "Weighted Score", "Progress %", "Overall Rating", "Rank",
    ]
    assert sheet.summary_rows[2] == ["Acme", "3.25", "3.25", "50.0%", "Moderate Fit", 1]
    assert sheet.metadata["project_id"] == 3


def test_csv_quotes_delimiters_and_quotes():
    text = to_csv(_sheet(title='Acme, "Inc"'))
    line = text.splitlines()[1]
    assert '"Acme, ""Inc"""' in line
    assert line.startswith('Functional,REQ-001,"Acme, ""Inc""",must_have,')

    parsed = list(csv.reader(io.StringIO(text)))
    assert parsed[1][2] == 'Acme, "Inc"'
    assert len(parsed) == 3


def test_csv_header_with_vendor_name_needing_quotes():
    text = to_csv(_sheet(vendor_name='Bolt "North", Ltd'))
    header = next(csv.reader(io.StringIO(text)))
    assert header[4] == 'Bolt "North", Ltd Score'


def test_csv_newline_in_field_round_trips():
    text = to_csv(_sheet(title="Line one\nLine two"))
    parsed = list(csv.reader(io.StringIO(text)))
    assert parsed[1][2] == "Line one\nLine two"


def test_csv_rows_end_with_bare_newline():
    text = to_csv(_sheet())
    assert "\r" not in text
    assert text.endswith("\n")
    assert text.count("\n") == 3


def test_xlsx_workbook():
    workbook = load_workbook(io.BytesIO(to_xlsx(_sheet())))
    assert workbook.sheetnames == [MAIN_SHEET, SUMMARY_SHEET]

    main = workbook[MAIN_SHEET]
    assert main["A1"].value == "Category"
    assert main["A1"].font.bold
    assert main.freeze_panes == "A2"
    assert main["C2"].value == "Workflow automation"
    assert main["G2"].value == 1

    summary = workbook[SUMMARY_SHEET]
    assert summary["A1"].value == "Vendor Summary"
    assert summary["A3"].value == "Acme"
    assert summary["F3"].value == 1
