"""Pydantic models for workbook state, operations, plans and responses."""

from sheetops.contracts.common import (
    BackendError,
    CheckpointNotFoundError,
    ErrorDetail,
    Metrics,
    OperationArgsError,
    PlanParseError,
    RecalcInfo,
    ResponseEnvelope,
    SheetExistsError,
    SheetNotFoundError,
    SheetOpsError,
    StatementsParseError,
    Target,
    UnknownOperationError,
    WarningDetail,
)
from sheetops.contracts.plans import (
    MAX_PLAN_STEPS,
    Operation,
    Plan,
    PlanExecution,
    PlanStep,
    decode_operation,
)
from sheetops.contracts.statements import ParsedStatements, Statement, StatementLine
from sheetops.contracts.workbook import (
    Cell,
    Checkpoint,
    Provenance,
    RangeRef,
    Sheet,
    SheetEvent,
    Workbook,
    WorkbookLoad,
    WorkbookView,
)

__all__ = [
    "BackendError",
    "Cell",
    "Checkpoint",
    "CheckpointNotFoundError",
    "ErrorDetail",
    "MAX_PLAN_STEPS",
    "Metrics",
    "Operation",
    "OperationArgsError",
    "ParsedStatements",
    "Plan",
    "PlanExecution",
    "PlanParseError",
    "PlanStep",
    "Provenance",
    "RangeRef",
    "RecalcInfo",
    "ResponseEnvelope",
    "Sheet",
    "SheetEvent",
    "SheetExistsError",
    "SheetNotFoundError",
    "SheetOpsError",
    "StatementsParseError",
    "Statement",
    "StatementLine",
    "Target",
    "UnknownOperationError",
    "WarningDetail",
    "Workbook",
    "WorkbookLoad",
    "WorkbookView",
    "decode_operation",
]
