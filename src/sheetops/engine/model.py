"""SheetModel: the single mutation entry point for an in-memory workbook.

Every operation captures what it needs to be undone before touching any
cell, then appends exactly one event carrying its inverse. Range operations
snapshot the addressed rectangle and record ``setCells`` with that pre-image
as their inverse; sheet operations record the structural counterpart.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sheetops.contracts.common import CheckpointNotFoundError, SheetExistsError, SheetNotFoundError
from sheetops.contracts.plans import (
    INTERNAL_OPERATIONS,
    PUBLIC_OPERATIONS,
    CreateSheetOp,
    DeleteSheetOp,
    FormatRangeArgs,
    FormatRangeOp,
    LinkProvenanceArgs,
    LinkProvenanceOp,
    NoopOp,
    Operation,
    RestoreSheetArgs,
    RestoreSheetOp,
    SetCellsArgs,
    SetCellsOp,
    SetFormulasArgs,
    SetFormulasOp,
    SetValuesArgs,
    SetValuesOp,
    SheetNameArgs,
    decode_operation,
)
from sheetops.contracts.workbook import (
    Cell,
    CellFormat,
    CellValue,
    CellView,
    Checkpoint,
    EventView,
    InverseOp,
    LoadCell,
    Provenance,
    RangeRef,
    Sheet,
    SheetEvent,
    SheetView,
    Workbook,
    WorkbookLoad,
    WorkbookView,
)
from sheetops.engine.formula import FormulaEvaluator
from sheetops.engine.refs import a1_to_rc, range_to_a1

logger = logging.getLogger(__name__)

DEFAULT_SHEET = "Sheet1"


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _loaded_cell(cell: LoadCell | None) -> Cell:
    if cell is None:
        return Cell()
    if cell.formula:
        return Cell(formula=cell.formula, format=cell.format)
    return Cell(value=cell.value, format=cell.format)


class SheetModel:
    """Owns one workbook: sheets, event log, checkpoints and evaluated values."""

    def __init__(self) -> None:
        self.wb = Workbook(id=_new_id())
        self._computed: dict[tuple[str, int, int], CellValue] = {}
        self.create_sheet(DEFAULT_SHEET)
        self.checkpoint("init")

    # ------------------------------------------------------------------
    # Read / resize primitives
    # ------------------------------------------------------------------
    @property
    def sheet_names(self) -> list[str]:
        return list(self.wb.sheets)

    def get_sheet(self, name: str) -> Sheet:
        sheet = self.wb.sheets.get(name)
        if sheet is None:
            raise SheetNotFoundError(f"Sheet not found: {name}")
        return sheet

    def get_cell(self, sheet: str, row: int, col: int) -> Cell:
        """Return the stored cell, or an empty cell outside the grown area."""
        rows = self.get_sheet(sheet).rows
        if row < len(rows) and col < len(rows[row]):
            return rows[row][col]
        return Cell()

    def ensure_size(self, sheet: str, rows: int, cols: int) -> None:
        """Grow ``sheet`` to at least ``rows`` x ``cols``. Never shrinks."""
        grid = self.get_sheet(sheet).rows
        while len(grid) < rows:
            grid.append([])
        for row in grid:
            while len(row) < cols:
                row.append(Cell())

    def _snapshot(self, rng: RangeRef) -> list[list[Cell]]:
        self.ensure_size(rng.sheet, rng.r2 + 1, rng.c2 + 1)
        grid = self.get_sheet(rng.sheet).rows
        return [
            [grid[r][c].model_copy(deep=True) for c in range(rng.c1, rng.c2 + 1)]
            for r in range(rng.r1, rng.r2 + 1)
        ]

    # ------------------------------------------------------------------
    # Events / checkpoints
    # ------------------------------------------------------------------
    def _append_event(
        self,
        op: str,
        args: Any,
        inverse_op: str,
        inverse_args: dict[str, Any],
        summary: str,
        *,
        replay: bool,
    ) -> SheetEvent:
        # A replayed inverse is recorded with a noop inverse: undoing it only
        # discards the record.
        inverse = InverseOp(op="noop") if replay else InverseOp(op=inverse_op, args=inverse_args)
        event = SheetEvent(
            id=_new_id(), ts=_now(), op=op, args=_dump(args),
            inverse=inverse, summary=summary,
        )
        self.wb.events.append(event)
        logger.debug("event %s: %s", event.op, event.summary)
        return event

    def checkpoint(self, id: str | None = None) -> Checkpoint:
        cp = Checkpoint(id=id or _new_id(), at_event=len(self.wb.events), ts=_now())
        self.wb.checkpoints.append(cp)
        return cp

    def undo(self) -> SheetEvent | None:
        """Pop the latest event and apply its inverse. Does not recompute."""
        if not self.wb.events:
            return None
        event = self.wb.events.pop()
        try:
            self.dispatch(event.inverse.op, event.inverse.args, internal=True)
        except Exception:
            self.wb.events.append(event)
            raise
        return event

    def rollback(self, checkpoint_id: str) -> int:
        """Undo until the event log is back at the checkpoint.

        Returns the number of operations reverted; replay records discarded
        on the way are not counted.
        """
        matches = [cp for cp in self.wb.checkpoints if cp.id == checkpoint_id]
        if not matches:
            raise CheckpointNotFoundError(f"Checkpoint not found: {checkpoint_id}")
        target = matches[-1].at_event
        count = 0
        while len(self.wb.events) > target:
            event = self.undo()
            if event.inverse.op != "noop":
                count += 1
        return count

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def dispatch(self, op: str, args: Any = None, internal: bool = False) -> SheetEvent | None:
        """Decode ``args`` for ``op`` and apply it.

        Outside internal mode only the documented operations are accepted.
        Internal mode (inverse replay) also accepts ``restoreSheet``,
        ``setCells`` and ``noop`` and ignores unknown names.
        """
        if internal and op not in PUBLIC_OPERATIONS | INTERNAL_OPERATIONS:
            return None
        return self.apply(decode_operation(op, args, internal=internal), replay=internal)

    def apply(self, operation: Operation, *, replay: bool = False) -> SheetEvent | None:
        """Apply an already-decoded operation."""
        args = operation.args
        if isinstance(operation, CreateSheetOp):
            return self._create_sheet(args, replay)
        if isinstance(operation, DeleteSheetOp):
            return self._delete_sheet(args, replay)
        if isinstance(operation, RestoreSheetOp):
            return self._restore_sheet(args, replay)
        if isinstance(operation, SetValuesOp):
            return self._set_values(args, replay)
        if isinstance(operation, SetFormulasOp):
            return self._set_formulas(args, replay)
        if isinstance(operation, FormatRangeOp):
            return self._format_range(args, replay)
        if isinstance(operation, LinkProvenanceOp):
            return self._link_provenance(args, replay)
        if isinstance(operation, SetCellsOp):
            return self._set_cells(args, replay)
        if isinstance(operation, NoopOp):
            return None
        raise TypeError(f"Unhandled operation type: {type(operation).__name__}")

    # ------------------------------------------------------------------
    # Operations (typed entry points)
    # ------------------------------------------------------------------
    def create_sheet(self, name: str) -> SheetEvent | None:
        return self.apply(CreateSheetOp(op="createSheet", args=SheetNameArgs(name=name)))

    def delete_sheet(self, name: str) -> SheetEvent | None:
        return self.apply(DeleteSheetOp(op="deleteSheet", args=SheetNameArgs(name=name)))

    def set_values(
        self,
        rng: RangeRef,
        values: list[list[CellValue]],
        provenance: list[Provenance] | None = None,
    ) -> SheetEvent | None:
        return self.apply(SetValuesOp(
            op="setValues",
            args=SetValuesArgs(range=rng, values=values, provenance=provenance),
        ))

    def set_formulas(self, rng: RangeRef, formulas: list[list[str | None]]) -> SheetEvent | None:
        return self.apply(SetFormulasOp(
            op="setFormulas", args=SetFormulasArgs(range=rng, formulas=formulas),
        ))

    def format_range(self, rng: RangeRef, format: CellFormat | None) -> SheetEvent | None:
        return self.apply(FormatRangeOp(
            op="formatRange", args=FormatRangeArgs(range=rng, format=format),
        ))

    def link_provenance(self, rng: RangeRef, provenance: list[Provenance]) -> SheetEvent | None:
        return self.apply(LinkProvenanceOp(
            op="linkProvenance", args=LinkProvenanceArgs(range=rng, provenance=provenance),
        ))

    # ------------------------------------------------------------------
    # Operation implementations
    # ------------------------------------------------------------------
    def _create_sheet(self, args: SheetNameArgs, replay: bool) -> SheetEvent:
        if args.name in self.wb.sheets:
            raise SheetExistsError(f"Sheet exists: {args.name}")
        self.wb.sheets[args.name] = Sheet(name=args.name)
        return self._append_event(
            "createSheet", args, "deleteSheet", {"name": args.name},
            f"create {args.name}", replay=replay,
        )

    def _delete_sheet(self, args: SheetNameArgs, replay: bool) -> SheetEvent:
        sheet = self.get_sheet(args.name)
        del self.wb.sheets[args.name]
        return self._append_event(
            "deleteSheet", args, "restoreSheet", {"sheet": _dump(sheet)},
            f"delete {args.name}", replay=replay,
        )

    def _restore_sheet(self, args: RestoreSheetArgs, replay: bool) -> SheetEvent:
        sheet = args.sheet.model_copy(deep=True)
        self.wb.sheets[sheet.name] = sheet
        return self._append_event(
            "restoreSheet", args, "deleteSheet", {"name": sheet.name},
            f"restore {sheet.name}", replay=replay,
        )

    def _set_values(self, args: SetValuesArgs, replay: bool) -> SheetEvent:
        rng = args.range
        summary = f"setValues {range_to_a1(rng)}"
        before = self._snapshot(rng)
        grid = self.get_sheet(rng.sheet).rows
        for r, row_values in enumerate(args.values[: rng.height]):
            for c, value in enumerate(row_values[: rng.width]):
                cell = grid[rng.r1 + r][rng.c1 + c]
                cell.value = value
                cell.formula = None
                if args.provenance:
                    cell.provenance = (cell.provenance or []) + [
                        p.model_copy() for p in args.provenance
                    ]
        return self._append_event(
            "setValues", args, "setCells", self._cells_args(rng, before),
            summary, replay=replay,
        )

    def _set_formulas(self, args: SetFormulasArgs, replay: bool) -> SheetEvent:
        rng = args.range
        summary = f"setFormulas {range_to_a1(rng)}"
        before = self._snapshot(rng)
        grid = self.get_sheet(rng.sheet).rows
        for r, row_formulas in enumerate(args.formulas[: rng.height]):
            for c, formula in enumerate(row_formulas[: rng.width]):
                cell = grid[rng.r1 + r][rng.c1 + c]
                cell.value = None
                cell.formula = formula or None
        return self._append_event(
            "setFormulas", args, "setCells", self._cells_args(rng, before),
            summary, replay=replay,
        )

    def _format_range(self, args: FormatRangeArgs, replay: bool) -> SheetEvent:
        rng = args.range
        summary = f"formatRange {range_to_a1(rng)} {args.format or 'clear'}"
        before = self._snapshot(rng)
        grid = self.get_sheet(rng.sheet).rows
        for r in range(rng.r1, rng.r2 + 1):
            for c in range(rng.c1, rng.c2 + 1):
                grid[r][c].format = args.format
        return self._append_event(
            "formatRange", args, "setCells", self._cells_args(rng, before),
            summary, replay=replay,
        )

    def _link_provenance(self, args: LinkProvenanceArgs, replay: bool) -> SheetEvent:
        rng = args.range
        summary = f"linkProvenance {range_to_a1(rng)}"
        before = self._snapshot(rng)
        grid = self.get_sheet(rng.sheet).rows
        for r in range(rng.r1, rng.r2 + 1):
            for c in range(rng.c1, rng.c2 + 1):
                cell = grid[r][c]
                cell.provenance = (cell.provenance or []) + [p.model_copy() for p in args.provenance]
        return self._append_event(
            "linkProvenance", args, "setCells", self._cells_args(rng, before),
            summary, replay=replay,
        )

    def _set_cells(self, args: SetCellsArgs, replay: bool) -> SheetEvent:
        rng = args.range
        self.ensure_size(rng.sheet, rng.r2 + 1, rng.c2 + 1)
        grid = self.get_sheet(rng.sheet).rows
        for r, row_cells in enumerate(args.cells[: rng.height]):
            for c, cell in enumerate(row_cells[: rng.width]):
                grid[rng.r1 + r][rng.c1 + c] = cell.model_copy(deep=True)
        return self._append_event(
            "setCells", args, "noop", {}, "setCells", replay=replay,
        )

    @staticmethod
    def _cells_args(rng: RangeRef, cells: list[list[Cell]]) -> dict[str, Any]:
        return {"range": _dump(rng), "cells": [[_dump(c) for c in row] for row in cells]}

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate_all(self) -> None:
        """Recompute every existing cell and publish the results."""
        evaluator = FormulaEvaluator(self.wb.sheets)
        computed: dict[tuple[str, int, int], CellValue] = {}
        for name, sheet in self.wb.sheets.items():
            for r, row in enumerate(sheet.rows):
                for c in range(len(row)):
                    computed[(name, r, c)] = evaluator.evaluate(name, r, c)
        self._computed = computed

    def evaluate_cell(self, sheet: str, row: int, col: int) -> CellValue:
        """Evaluate one cell on demand without publishing the result."""
        self.get_sheet(sheet)
        return FormulaEvaluator(self.wb.sheets).evaluate(sheet, row, col)

    def display_value(self, sheet: str, row: int, col: int) -> CellValue:
        """The value shown for a cell: last published result for formulas."""
        cell = self.get_cell(sheet, row, col)
        if cell.formula:
            return self._computed.get((sheet, row, col))
        return cell.value

    # ------------------------------------------------------------------
    # External representations
    # ------------------------------------------------------------------
    def to_view(self) -> WorkbookView:
        sheets = [
            SheetView(
                name=sheet.name,
                rows=[
                    [
                        CellView(
                            value=self.display_value(sheet.name, r, c),
                            formula=cell.formula,
                            format=cell.format,
                        )
                        for c, cell in enumerate(row)
                    ]
                    for r, row in enumerate(sheet.rows)
                ],
            )
            for sheet in self.wb.sheets.values()
        ]
        return WorkbookView(
            id=self.wb.id,
            sheets=sheets,
            checkpoints=list(self.wb.checkpoints),
            events=[EventView(id=e.id, ts=e.ts, op=e.op, summary=e.summary) for e in self.wb.events],
        )

    def to_json(self) -> dict[str, Any]:
        return self.to_view().model_dump(mode="json")

    def to_state(self) -> dict[str, Any]:
        """Full session state, including event inverses and checkpoints."""
        return _dump(self.wb)

    def restore_state(self, data: Workbook | dict[str, Any]) -> None:
        """Replace the whole session with a :meth:`to_state` dump and recompute."""
        self.wb = data if isinstance(data, Workbook) else Workbook.model_validate(data)
        self.evaluate_all()

    def get_provenance(self, sheet: str, a1: str) -> list[Provenance]:
        row, col = a1_to_rc(a1)
        return list(self.get_cell(sheet, row, col).provenance or [])

    def load(self, data: WorkbookLoad | dict[str, Any]) -> None:
        """Replace every sheet and discard all history (hard reset, not a merge)."""
        payload = data if isinstance(data, WorkbookLoad) else WorkbookLoad.model_validate(data)
        self.wb.sheets.clear()
        for loaded in payload.sheets:
            rows = [
                [_loaded_cell(cell) for cell in (row or [])]
                for row in loaded.rows
            ]
            self.wb.sheets[loaded.name] = Sheet(name=loaded.name, rows=rows)
        if not self.wb.sheets:
            self.create_sheet(DEFAULT_SHEET)
        self.wb.events = []
        self.wb.checkpoints = []
        self.checkpoint("import")
        self.evaluate_all()
