"""Run summary workbook (``results_summary.xlsx``)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .allure_helpers import attach_file

logger = logging.getLogger(__name__)

SUMMARY_FILENAME = "results_summary.xlsx"
HEADERS = ["Scenario", "Name", "Severity", "Owner", "Started", "Duration (s)", "Result", "Error", "Artifacts"]
WIDTHS = [10, 36, 12, 16, 20, 12, 12, 60, 48]
RESULT_FILLS = {
    "PASS": "C6EFCE",
    "FAIL": "FFC7CE",
    "CANCELLED": "FFEB9C",
}


def write_results_summary(
    output_dir: Path,
    rows: Sequence[Mapping[str, Any]],
    sheet_name: str = "Scenarios",
) -> Optional[Path]:
    """
    Merge ``rows`` into ``<output_dir>/results_summary.xlsx``.

    Rows from earlier runs are kept unless a new row has the same scenario id,
    in which case the new result replaces the old one.
    """

    try:
        from openpyxl import Workbook, load_workbook
        from openpyxl.styles import Alignment, Font, PatternFill
    except Exception as exc:
        logger.warning("Excel export skipped (openpyxl not available): %s", exc)
        return None

    out_path = output_dir / SUMMARY_FILENAME
    output_dir.mkdir(parents=True, exist_ok=True)
    if out_path.exists():
        try:
            wb = load_workbook(out_path)
        except Exception as exc:
            logger.warning("Existing summary unreadable, starting a new one: %s", exc)
            wb = None
    else:
        wb = None

    if wb is None:
        wb = Workbook()
        ws = wb.active
        ws.title = sheet_name
        _initialize_sheet(ws, Font, Alignment)
    elif sheet_name in wb.sheetnames:
        ws = wb[sheet_name]
    else:
        ws = wb.create_sheet(title=sheet_name)
        _initialize_sheet(ws, Font, Alignment)

    new_ids = {row.get("scenario_id") for row in rows}
    if ws.max_row > 1:
        kept: List[List[Any]] = []
        for existing in ws.iter_rows(min_row=2, values_only=True):
            if not existing or existing[0] in new_ids:
                continue
            kept.append(list(existing))
        ws.delete_rows(2, ws.max_row - 1)
        for values in kept:
            ws.append(values)
            _style_result(ws, ws.max_row, PatternFill, Alignment)

    for row in rows:
        ws.append(_row_values(row))
        last_row = ws.max_row
        ws.cell(row=last_row, column=6).number_format = "0.00"
        _style_result(ws, last_row, PatternFill, Alignment)

    try:
        wb.save(out_path)
    except Exception as exc:
        logger.warning("Failed to save Excel results: %s", exc)
        return None
    logger.info("Excel results saved: %s", out_path)
    attach_file(
        SUMMARY_FILENAME,
        out_path,
        attachment_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )
    return out_path


def _row_values(row: Mapping[str, Any]) -> List[Any]:
    duration = row.get("duration")
    return [
        row.get("scenario_id"),
        row.get("name", ""),
        row.get("severity", ""),
        row.get("owner", ""),
        row.get("started", ""),
        round(float(duration), 2) if duration is not None else None,
        row.get("result", "FAIL"),
        row.get("error") or "",
        row.get("artifacts", ""),
    ]


def _style_result(ws, row_index: int, PatternFill, Alignment) -> None:
    cell = ws.cell(row=row_index, column=7)
    cell.alignment = Alignment(horizontal="center")
    color = RESULT_FILLS.get(str(cell.value), RESULT_FILLS["FAIL"])
    cell.fill = PatternFill(start_color=color, end_color=color, fill_type="solid")


def _initialize_sheet(ws, Font, Alignment) -> None:
    ws.append(HEADERS)
    bold = Font(bold=True)
    for col_idx in range(1, len(HEADERS) + 1):
        cell = ws.cell(row=1, column=col_idx)
        cell.font = bold
        cell.alignment = Alignment(horizontal="center")
    ws.freeze_panes = "A2"
    for idx, width in enumerate(WIDTHS, start=1):
        ws.column_dimensions[chr(ord("A") + idx - 1)].width = width


def read_results_summary(path: Path, sheet_name: str = "Scenarios") -> List[Dict[str, Any]]:
    """Load the summary back as dictionaries keyed by header."""

    from openpyxl import load_workbook

    wb = load_workbook(path, read_only=True)
    ws = wb[sheet_name]
    rows = list(ws.iter_rows(values_only=True))
    wb.close()
    if not rows:
        return []
    header = [str(h) for h in rows[0]]
    return [dict(zip(header, values)) for values in rows[1:]]
