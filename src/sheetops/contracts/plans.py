"""Operation vocabulary and plan models.

Every workbook mutation is one variant of the ``Operation`` tagged union,
discriminated by ``op``. Untrusted input (plan files, model output, stdio
requests) is decoded with :func:`decode_operation` before it reaches the
state engine.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, ValidationError

from sheetops.contracts.common import OperationArgsError, UnknownOperationError
from sheetops.contracts.workbook import (
    Cell,
    CellFormat,
    CellValue,
    Provenance,
    RangeRef,
    Sheet,
)

# Operations callers may dispatch directly or put in a plan.
PUBLIC_OPERATIONS: frozenset[str] = frozenset({
    "createSheet", "deleteSheet",
    "setValues", "setFormulas",
    "formatRange", "linkProvenance",
})

# Operations that only appear as recorded inverses.
INTERNAL_OPERATIONS: frozenset[str] = frozenset({"restoreSheet", "setCells", "noop"})

MAX_PLAN_STEPS = 30


# ---------------------------------------------------------------------------
# Argument shapes
# ---------------------------------------------------------------------------
class SheetNameArgs(BaseModel):
    name: str = Field(min_length=1)


class RestoreSheetArgs(BaseModel):
    sheet: Sheet


class SetValuesArgs(BaseModel):
    range: RangeRef
    values: list[list[CellValue]]
    provenance: list[Provenance] | None = None


class SetFormulasArgs(BaseModel):
    range: RangeRef
    formulas: list[list[str | None]]


class FormatRangeArgs(BaseModel):
    range: RangeRef
    format: CellFormat | None = None


class LinkProvenanceArgs(BaseModel):
    range: RangeRef
    provenance: list[Provenance] = Field(
        default_factory=list,
        validation_alias=AliasChoices("prov", "provenance"),
    )


class SetCellsArgs(BaseModel):
    range: RangeRef
    cells: list[list[Cell]]


class NoopArgs(BaseModel):
    pass


# ---------------------------------------------------------------------------
# Tagged variants
# ---------------------------------------------------------------------------
class CreateSheetOp(BaseModel):
    op: Literal["createSheet"]
    args: SheetNameArgs


class DeleteSheetOp(BaseModel):
    op: Literal["deleteSheet"]
    args: SheetNameArgs


class RestoreSheetOp(BaseModel):
    op: Literal["restoreSheet"]
    args: RestoreSheetArgs


class SetValuesOp(BaseModel):
    op: Literal["setValues"]
    args: SetValuesArgs


class SetFormulasOp(BaseModel):
    op: Literal["setFormulas"]
    args: SetFormulasArgs


class FormatRangeOp(BaseModel):
    op: Literal["formatRange"]
    args: FormatRangeArgs


class LinkProvenanceOp(BaseModel):
    op: Literal["linkProvenance"]
    args: LinkProvenanceArgs


class SetCellsOp(BaseModel):
    op: Literal["setCells"]
    args: SetCellsArgs


class NoopOp(BaseModel):
    op: Literal["noop"]
    args: NoopArgs = Field(default_factory=NoopArgs)


Operation = Annotated[
    Union[
        CreateSheetOp, DeleteSheetOp, RestoreSheetOp,
        SetValuesOp, SetFormulasOp, FormatRangeOp,
        LinkProvenanceOp, SetCellsOp, NoopOp,
    ],
    Field(discriminator="op"),
]

_OPERATION_ADAPTER: TypeAdapter[Operation] = TypeAdapter(Operation)


def decode_operation(op: str, args: Any, *, internal: bool = False) -> Operation:
    """Validate an untrusted ``(op, args)`` pair into a typed operation.

    Raises UnknownOperationError for names outside the vocabulary visible at
    this level, and OperationArgsError when ``args`` does not fit the shape.
    """
    allowed = PUBLIC_OPERATIONS | INTERNAL_OPERATIONS if internal else PUBLIC_OPERATIONS
    if op not in allowed:
        raise UnknownOperationError(f"Unknown op {op}")
    if args is None:
        args = {}
    try:
        return _OPERATION_ADAPTER.validate_python({"op": op, "args": args})
    except ValidationError as e:
        issues = [
            {"loc": ".".join(str(p) for p in err["loc"][1:]), "msg": err["msg"]}
            for err in e.errors()
        ]
        summary = "; ".join(f"{i['loc']}: {i['msg']}" for i in issues)
        raise OperationArgsError(
            f"Invalid arguments for {op}: {summary}",
            details={"issues": issues},
        ) from e


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------
class PlanStep(BaseModel):
    """One proposed operation, annotated with ``ok``/``explain`` once executed."""

    op: str
    args: dict[str, Any] = Field(default_factory=dict)
    ok: bool | None = None
    explain: str | None = None


class Plan(BaseModel):
    """An ordered list of operations proposed for one goal."""

    steps: list[PlanStep] = Field(default_factory=list)
    summary: str | None = None


class PlanExecution(BaseModel):
    """Outcome of running a plan: the steps that were attempted, in order."""

    steps: list[PlanStep] = Field(default_factory=list)
    total: int = 0
    applied: int = 0
    checkpoint: str = ""

    @property
    def failed(self) -> PlanStep | None:
        for step in self.steps:
            if step.ok is False:
                return step
        return None
