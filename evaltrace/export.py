"""Export formatter: flattens a built matrix into sheet rows, CSV text and XLSX."""
from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from evaltrace.cells import RAG_LABELS
from evaltrace.matrix import Matrix
from evaltrace.summary import MatrixSummary

MAIN_SHEET = "Traceability Matrix"
SUMMARY_SHEET = "Summary"
BASE_HEADERS = ["Category", "Reference", "Requirement", "Priority"]
SUMMARY_HEADERS = ["Vendor", "Average Score", "Weighted Score", "Progress %", "Overall Rating", "Rank"]


@dataclass
class SheetData:
    headers: list[str]
    rows: list[list[Any]]
    summary_rows: list[list[Any]]
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "headers": self.headers, "rows": self.rows,
            "summary_rows": self.summary_rows, "metadata": self.metadata,
        }


def format_score(value: float | None) -> str:
    return "" if value is None else f"{value:.1f}"


def to_sheet_data(matrix: Matrix, summary: MatrixSummary) -> SheetData:
    """One row per requirement; a (score, RAG, evidence) column triple per vendor."""
    headers = list(BASE_HEADERS)
    for vendor in matrix.vendors:
        headers.extend([f"{vendor.name} Score", f"{vendor.name} RAG", f"{vendor.name} Evidence"])

    rows: list[list[Any]] = []
    for row in matrix.requirement_rows:
        req = row.requirement
        data: list[Any] = [row.category.name, req.reference_code, req.title, req.priority or ""]
        for cell in row.cells:
            data.extend([format_score(cell.value), RAG_LABELS[cell.rag_status], cell.evidence_count])
        rows.append(data)

    summary_rows: list[list[Any]] = [["Vendor Summary"], list(SUMMARY_HEADERS)]
    for vendor in matrix.vendors:
        vs = summary.vendor_summaries[vendor.id]
        summary_rows.append([
            vendor.name,
            f"{vs.average_score:.2f}",
            f"{vs.weighted_score:.2f}",
            f"{vs.progress:.1f}%",
            RAG_LABELS[vs.rag_status],
            vs.rank,
        ])

    return SheetData(
        headers=headers,
        rows=rows,
        summary_rows=summary_rows,
        metadata={
            "project_id": matrix.project_id,
            "total_requirements": summary.total_requirements,
            "vendor_count": summary.vendor_count,
            "overall_progress": summary.overall_progress,
        },
    )


def to_csv(sheet: SheetData) -> str:
    """Serialize the main sheet with standard CSV quoting (fields with ``,`` ``"`` or newlines are wrapped)."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(sheet.headers)
    writer.writerows(sheet.rows)
    return buf.getvalue()


def _style_sheet(worksheet, header_row: int = 1) -> None:
    worksheet.freeze_panes = worksheet.cell(row=header_row + 1, column=1).coordinate
    header_fill = PatternFill(fill_type="solid", fgColor="1F4E78")
    header_font = Font(color="FFFFFF", bold=True)
    for cell in worksheet[header_row]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

    for col_cells in worksheet.columns:
        values = [str(cell.value) if cell.value is not None else "" for cell in col_cells]
        width = min(60, max(12, max(len(value) for value in values) + 2))
        worksheet.column_dimensions[col_cells[0].column_letter].width = width


def to_xlsx(sheet: SheetData) -> bytes:
    workbook = Workbook()
    main = workbook.active
    main.title = MAIN_SHEET
    main.append(sheet.headers)
    for row in sheet.rows:
        main.append(row)
    _style_sheet(main)

    summary = workbook.create_sheet(SUMMARY_SHEET)
    for row in sheet.summary_rows:
        summary.append(row)
    _style_sheet(summary, header_row=2)

    buf = io.BytesIO()
    workbook.save(buf)
    return buf.getvalue()
