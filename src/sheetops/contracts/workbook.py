"""Workbook state models: cells, sheets, ranges, events, checkpoints, projections."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

CellValue = Optional[Union[int, float, str]]
CellFormat = Literal["percent", "currency", "number", "text"]


class Provenance(BaseModel):
    """Links a cell to the source document it was derived from."""

    model_config = ConfigDict(populate_by_name=True)

    doc_id: str = Field(alias="docId")
    snippet: str | None = None
    rationale: str | None = None


class Cell(BaseModel):
    """A single cell. ``value`` and ``formula`` are mutually exclusive."""

    value: CellValue = None
    formula: str | None = None
    format: CellFormat | None = None
    provenance: list[Provenance] | None = None


class Sheet(BaseModel):
    """A named grid of cells, ``rows[r][c]``. Rows may be ragged."""

    name: str
    rows: list[list[Cell]] = Field(default_factory=list)


class RangeRef(BaseModel):
    """Inclusive zero-based rectangle ``(r1, c1)-(r2, c2)`` on one sheet."""

    sheet: str
    r1: int = Field(ge=0)
    c1: int = Field(ge=0)
    r2: int = Field(ge=0)
    c2: int = Field(ge=0)

    @property
    def height(self) -> int:
        return self.r2 - self.r1 + 1

    @property
    def width(self) -> int:
        return self.c2 - self.c1 + 1


class InverseOp(BaseModel):
    """The operation that undoes an event."""

    op: str
    args: dict[str, Any] = Field(default_factory=dict)


class SheetEvent(BaseModel):
    """One applied operation plus its computed inverse."""

    id: str
    ts: datetime
    op: str
    args: dict[str, Any]
    inverse: InverseOp
    summary: str


class Checkpoint(BaseModel):
    """A named index into the event log (not a content snapshot)."""

    id: str
    at_event: int
    ts: datetime


# ---------------------------------------------------------------------------
# External JSON projection
# ---------------------------------------------------------------------------
class CellView(BaseModel):
    value: CellValue = None
    formula: str | None = None
    format: CellFormat | None = None


class SheetView(BaseModel):
    name: str
    rows: list[list[CellView]] = Field(default_factory=list)


class EventView(BaseModel):
    """Summarized event: the raw arguments are not exposed."""

    id: str
    ts: datetime
    op: str
    summary: str


class WorkbookView(BaseModel):
    """Read-only representation of the whole workbook."""

    id: str
    sheets: list[SheetView] = Field(default_factory=list)
    checkpoints: list[Checkpoint] = Field(default_factory=list)
    events: list[EventView] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Load payload
# ---------------------------------------------------------------------------
class LoadCell(BaseModel):
    value: CellValue = None
    formula: str | None = None
    format: CellFormat | None = None


class LoadSheet(BaseModel):
    name: str
    rows: list[Optional[list[Optional[LoadCell]]]] = Field(default_factory=list)


class WorkbookLoad(BaseModel):
    """External structure accepted by ``SheetModel.load``."""

    sheets: list[LoadSheet]


class Workbook(BaseModel):
    """All sheets plus the event log and checkpoints of one SheetModel."""

    id: str
    sheets: dict[str, Sheet] = Field(default_factory=dict)
    events: list[SheetEvent] = Field(default_factory=list)
    checkpoints: list[Checkpoint] = Field(default_factory=list)
