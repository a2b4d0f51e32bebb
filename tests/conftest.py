"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from openpyxl import Workbook
from support import rng

from sheetops.engine.model import SheetModel


@pytest.fixture()
def model() -> SheetModel:
    return SheetModel()


@pytest.fixture()
def income_model() -> SheetModel:
    """A P&L with revenue and cost of sales for two periods."""
    m = SheetModel()
    m.create_sheet("P&L")
    m.set_values(rng("P&L", 0, 0, 2, 2), [
        ["Line item", "FY2024", "FY2023"],
        ["Revenue", 1000, 800],
        ["Cost of sales", 600, 500],
    ])
    m.evaluate_all()
    m.checkpoint("base")
    return m


@pytest.fixture()
def simple_xlsx(tmp_path: Path) -> Path:
    """A workbook with values, a formula and a percent-formatted cell."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Data"
    ws.append(["Item", "Amount"])
    ws.append(["Widgets", 120])
    ws.append(["Gadgets", 80])
    ws["B4"] = "=SUM(B2:B3)"
    ws["C2"] = 0.25
    ws["C2"].number_format = "0.00%"
    wb.create_sheet("Notes")["A1"] = "hello"
    path = tmp_path / "simple.xlsx"
    wb.save(str(path))
    wb.close()
    return path
