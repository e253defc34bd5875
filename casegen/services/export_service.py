import io
from typing import List, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Font

from casegen.models.schemas import TestCaseRecord
from casegen.services.result_parser import parse_test_cases

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# (header, record attribute, column width)
COLUMNS: List[Tuple[str, str, int]] = [
    ("Test Case", "id", 15),
    ("Title", "title", 40),
    ("Priority", "priority", 12),
    ("Preconditions", "preconditions", 40),
    ("Steps", "steps", 60),
    ("Expected Results", "expected_result", 60),
]


def _cell_text(value: str) -> str:
    # Control characters (vertical tab, ANSI escapes) are not allowed in xlsx cells
    return ILLEGAL_CHARACTERS_RE.sub("", value or "")


def build_workbook_from_records(records: Sequence[TestCaseRecord]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Test Cases"

    ws.append([header for header, _, _ in COLUMNS])
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for col_index, (_, _, width) in enumerate(COLUMNS, start=1):
        ws.column_dimensions[ws.cell(row=1, column=col_index).column_letter].width = width

    for record in records:
        ws.append([_cell_text(getattr(record, attr)) for _, attr, _ in COLUMNS])

    for row in ws.iter_rows():
        for cell in row:
            cell.alignment = Alignment(wrap_text=True, vertical="top")

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def build_workbook(markdown: str) -> bytes:
    """Parse generated markdown and lay it out as a one-sheet xlsx file."""
    return build_workbook_from_records(parse_test_cases(markdown))


def xlsx_filename(issue_key: str, generation_id: int) -> str:
    return f"{issue_key}_testcases_{generation_id}.xlsx"
