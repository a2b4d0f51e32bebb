"""Bounded workbook summary sent to the model instead of the full workbook."""

from __future__ import annotations

from typing import Any

from sheetops.contracts.workbook import Cell
from sheetops.engine.model import SheetModel

PREVIEW_ROWS = 60
PREVIEW_COLS = 20
HEADER_COLS = 50
LABEL_ROWS = 500


def cell_text(cell: Cell | None) -> Any:
    """What a reader sees in a cell: its formula if any, else its value."""
    if cell is None:
        return ""
    if cell.formula:
        return cell.formula
    return cell.value if cell.value is not None else ""


def summarize_workbook(model: SheetModel) -> dict[str, Any]:
    """Row/column counts, a preview window, first-row headers and column-A labels."""
    sheets: list[dict[str, Any]] = []
    for sheet in model.wb.sheets.values():
        rows = sheet.rows
        row_count = len(rows)
        col_count = max((len(r) for r in rows), default=0)

        def at(r: int, c: int) -> Cell | None:
            return rows[r][c] if c < len(rows[r]) else None

        preview = [
            [cell_text(at(r, c)) for c in range(min(col_count, PREVIEW_COLS))]
            for r in range(min(row_count, PREVIEW_ROWS))
        ]
        header = (
            [cell_text(at(0, c)) for c in range(min(col_count, HEADER_COLS))]
            if row_count else []
        )
        labels = [
            {"row": r, "text": str(cell_text(at(r, 0))).strip()}
            for r in range(min(row_count, LABEL_ROWS))
        ]
        sheets.append({
            "name": sheet.name,
            "rows": row_count,
            "cols": col_count,
            "header_a1": header,
            "labels_a": labels,
            "preview_a1": preview,
        })
    return {"sheets": sheets}
