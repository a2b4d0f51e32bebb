"""openpyxl-based XLSX import/export for SheetModel workbooks."""

from __future__ import annotations

import io
import logging
import re
import zipfile
from datetime import date, datetime, time
from pathlib import Path
from typing import Any

from openpyxl import Workbook as XlsxWorkbook
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from sheetops.contracts.common import SheetOpsError
from sheetops.contracts.workbook import CellFormat, LoadCell, LoadSheet, WorkbookLoad
from sheetops.engine.model import SheetModel
from sheetops.io.fileops import atomic_write

logger = logging.getLogger(__name__)

MAX_SHEET_TITLE = 31

NUMBER_FORMATS: dict[str, str] = {
    "percent": "0.00%",
    "currency": '"$"#,##0.00',
    "number": "#,##0.00",
    "text": "@",
}

_INVALID_TITLE_CHARS = re.compile(r"[\\/*?:\[\]]")


class WorkbookIOError(SheetOpsError):
    code = "ERR_IO"


class CorruptWorkbookError(SheetOpsError):
    code = "ERR_CORRUPT_WORKBOOK"


def _format_from_number_format(number_format: str | None) -> CellFormat | None:
    if not number_format or number_format == "General":
        return None
    if number_format == "@":
        return "text"
    if "%" in number_format:
        return "percent"
    if "$" in number_format or "\u20ac" in number_format or "\u00a3" in number_format:
        return "currency"
    if "0" in number_format or "#" in number_format:
        return "number"
    return None


def _cell_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if value is None or isinstance(value, (int, float, str)):
        return value
    return str(value)


def read_xlsx(path: str | Path) -> WorkbookLoad:
    """Read every worksheet of an ``.xlsx`` file into a load payload.

    Formula cells are carried as formulas, everything else (including text
    that merely starts with ``=``) as values. Trailing empty cells of each row are dropped.
    """
    path = Path(path)
    if not path.exists():
        raise WorkbookIOError(f"Workbook not found: {path}", details={"path": str(path)})
    try:
        wb = load_workbook(path, data_only=False)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise CorruptWorkbookError(f"Cannot read workbook {path}: {e}", details={"path": str(path)}) from e

    sheets: list[LoadSheet] = []
    try:
        for ws in wb.worksheets:
            rows: list[list[LoadCell | None]] = []
            for row in ws.iter_rows():
                cells: list[LoadCell | None] = []
                for cell in row:
                    value = cell.value
                    if value is None:
                        cells.append(None)
                        continue
                    fmt = _format_from_number_format(cell.number_format)
                    if cell.data_type == "f" and isinstance(value, str):
                        cells.append(LoadCell(formula=value, format=fmt))
                    else:
                        cells.append(LoadCell(value=_cell_value(value), format=fmt))
                while cells and cells[-1] is None:
                    cells.pop()
                rows.append(cells)
            while rows and not rows[-1]:
                rows.pop()
            sheets.append(LoadSheet(name=ws.title, rows=rows))
    finally:
        wb.close()
    logger.debug("read %d sheet(s) from %s", len(sheets), path)
    return WorkbookLoad(sheets=sheets)


def _sheet_title(name: str, used: set[str]) -> str:
    title = _INVALID_TITLE_CHARS.sub("_", name)[:MAX_SHEET_TITLE] or "Sheet"
    base, n = title, 1
    while title.casefold() in used:
        suffix = f"_{n}"
        title = base[: MAX_SHEET_TITLE - len(suffix)] + suffix
        n += 1
    used.add(title.casefold())
    if title != name:
        logger.warning("sheet %r exported as %r", name, title)
    return title


def write_xlsx(model: SheetModel, path: str | Path) -> list[str]:
    """Export ``model`` to ``path``; return the sheet titles written.

    Formula cells are written as formulas, others as values; cell formats
    become number formats.
    """
    xlsx = XlsxWorkbook()
    xlsx.remove(xlsx.active)
    used: set[str] = set()
    titles: list[str] = []
    for sheet in model.wb.sheets.values():
        ws = xlsx.create_sheet(title=_sheet_title(sheet.name, used))
        titles.append(ws.title)
        for r, row in enumerate(sheet.rows, start=1):
            for c, cell in enumerate(row, start=1):
                content = cell.formula if cell.formula else cell.value
                if content is None and cell.format is None:
                    continue
                target = ws.cell(row=r, column=c, value=content)
                if not cell.formula and isinstance(content, str) and content.startswith("="):
                    target.data_type = "s"
                if cell.format:
                    target.number_format = NUMBER_FORMATS[cell.format]
    if not titles:
        xlsx.create_sheet(title="Sheet1")

    buf = io.BytesIO()
    xlsx.save(buf)
    try:
        atomic_write(path, buf.getvalue())
    except OSError as e:
        raise WorkbookIOError(f"Cannot write workbook {path}: {e}", details={"path": str(path)}) from e
    return titles
