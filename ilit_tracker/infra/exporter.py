"""Workbook outputs: policy export and the blank import template."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from os import PathLike
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from ilit_tracker.infra.logging_ext import log_step

__all__ = [
    "EXPORT_HEADERS",
    "TEMPLATE_HEADERS",
    "export_policies_xlsx",
    "write_import_template",
]

logger = logging.getLogger(__name__)

# Display headers; all but ID and the timestamps resolve back through the import aliases.
EXPORT_HEADERS: Mapping[str, str] = {
    "id": "ID",
    "ilit_name": "ILIT Name",
    "insured_name": "Insured Name",
    "trustees": "Trustees",
    "insurance_company": "Insurance Company",
    "policy_number": "Policy Number",
    "frequency": "Frequency",
    "premium_due_date": "Premium Due Date",
    "premium_amount": "Premium Amount",
    "gift_date": "Gift Date",
    "crummey_letter_send_date": "Crummey Letter Send Date",
    "crummey_letter_sent_date": "Crummey Letter Sent Date",
    "crummey_sent": "Crummey Sent",
    "status": "Status",
    "status_overridden": "Status Overridden",
    "gift_date_source": "Gift Date Source",
    "send_date_source": "Send Date Source",
    "notes": "Notes",
    "created_at": "Created At",
    "updated_at": "Updated At",
}

TEMPLATE_HEADERS: Sequence[str] = (
    "ilitName",
    "insuredName",
    "trustees",
    "insuranceCompany",
    "policyNumber",
    "frequency",
    "premiumDueDate",
    "premiumAmount",
)

_TEMPLATE_EXAMPLES: Sequence[Sequence[object]] = (
    ("Smith Family ILIT", "John Smith", "Jane Smith; Robert Smith", "MetLife", "UL-2024-001", "Annual", "03/15/2026", 2500),
    ("Johnson Estate ILIT", "Mary Johnson", "David Johnson", "Northwestern Mutual", "WL-2023-042", "Monthly", "02/28/2026", 450),
)

_INSTRUCTIONS: Sequence[str] = (
    "ILIT POLICY TEMPLATE - INSTRUCTIONS",
    "",
    "REQUIRED FIELDS:",
    "ilitName - name of the ILIT / trust",
    "",
    "OPTIONAL FIELDS:",
    "insuredName, trustees (separate names with ';'), insuranceCompany, policyNumber,",
    "frequency (Annual, Monthly, Quarterly...), premiumDueDate (MM/DD/YYYY), premiumAmount",
    "",
    "CALCULATED FIELDS:",
    "giftDate - one day before the premium due date",
    "crummeyLetterSendDate - reminder lead time (default 30 days) before the premium due date",
    "",
    "Delete the example rows before importing. Column names are matched flexibly.",
)

_HEADER_FONT = Font(bold=True, color="FFFFFFFF")
_HEADER_FILL = PatternFill(fill_type="solid", fgColor="FF366092")


@contextlib.contextmanager
def _temporary_file_path(*, suffix: str = "", directory: Path | None = None) -> Iterator[Path]:
    fd, name = tempfile.mkstemp(suffix=suffix, dir=directory)
    os.close(fd)
    path = Path(name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)


def _style_header(worksheet: Any, column_count: int, *, widths: Sequence[int] | None = None) -> None:
    for index in range(1, column_count + 1):
        cell = worksheet.cell(row=1, column=index)
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        width = widths[index - 1] if widths and index <= len(widths) else 18
        worksheet.column_dimensions[get_column_letter(index)].width = width
    worksheet.freeze_panes = "A2"


def _prepare_export_frame(frame: pd.DataFrame) -> pd.DataFrame:
    ordered = [column for column in EXPORT_HEADERS if column in frame.columns]
    prepared = frame.loc[:, ordered].copy()
    return prepared.rename(columns=dict(EXPORT_HEADERS))


def export_policies_xlsx(
    frame: pd.DataFrame,
    filepath: Path | str | PathLike[str],
    *,
    sheet_name: str = "Policies",
) -> Path:
    """Write ``frame`` (as produced by ``SQLitePolicyStore.load_frame``) atomically.

    The workbook is written to a temporary file next to the target and then
    moved into place, so a failed export never leaves a truncated file.

    Returns:
        Path: the written workbook.
    """

    target = Path(filepath)
    target.parent.mkdir(parents=True, exist_ok=True)
    prepared = _prepare_export_frame(frame)
    with log_step(logger, f"export {len(prepared)} policies"):
        with _temporary_file_path(suffix=".xlsx", directory=target.parent) as tmp_path:
            with pd.ExcelWriter(tmp_path, engine="openpyxl") as writer:
                prepared.to_excel(writer, sheet_name=sheet_name, index=False)
                worksheet = writer.sheets[sheet_name]
                _style_header(worksheet, prepared.shape[1])
                for offset, column in enumerate(prepared.columns, start=1):
                    letter = get_column_letter(offset)
                    if column in {"Premium Due Date", "Gift Date", "Crummey Letter Send Date", "Crummey Letter Sent Date"}:
                        for cell in worksheet[letter][1:]:
                            cell.number_format = "mm/dd/yyyy"
                    elif column == "Premium Amount":
                        for cell in worksheet[letter][1:]:
                            cell.number_format = "#,##0.00"
            os.replace(tmp_path, target)
    return target


def write_import_template(filepath: Path | str | PathLike[str]) -> Path:
    """Write the blank import template with two example rows and instructions."""

    target = Path(filepath)
    target.parent.mkdir(parents=True, exist_ok=True)
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = "ILIT Template"
    worksheet.append(list(TEMPLATE_HEADERS))
    for row in _TEMPLATE_EXAMPLES:
        worksheet.append(list(row))
    _style_header(worksheet, len(TEMPLATE_HEADERS), widths=(20, 20, 25, 20, 15, 15, 15, 15))
    for row_index in range(2, len(_TEMPLATE_EXAMPLES) + 2):
        worksheet.cell(row=row_index, column=8).number_format = "#,##0.00"

    instructions = workbook.create_sheet("Instructions")
    instructions.column_dimensions["A"].width = 80
    for line in _INSTRUCTIONS:
        instructions.append([line])
        if line.endswith(":") or line.isupper():
            instructions.cell(row=instructions.max_row, column=1).font = Font(bold=True, size=11)

    with _temporary_file_path(suffix=".xlsx", directory=target.parent) as tmp_path:
        workbook.save(tmp_path)
        os.replace(tmp_path, target)
    logger.info("Import template written to %s", target)
    return target
