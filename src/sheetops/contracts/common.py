"""Common Pydantic models: response envelope, errors, metrics, exceptions."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SheetOpsError(Exception):
    """Base class for errors surfaced to the immediate caller of an operation."""

    code = "ERR_INTERNAL"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details


class SheetNotFoundError(SheetOpsError):
    """Raised when an operation addresses a sheet that does not exist."""

    code = "ERR_SHEET_NOT_FOUND"


class SheetExistsError(SheetOpsError):
    """Raised when creating a sheet whose name is already taken."""

    code = "ERR_SHEET_EXISTS"


class UnknownOperationError(SheetOpsError):
    """Raised when dispatching an operation name outside the vocabulary."""

    code = "ERR_UNKNOWN_OPERATION"


class OperationArgsError(SheetOpsError):
    """Raised when operation arguments do not match the operation's shape."""

    code = "ERR_INVALID_ARGUMENT"


class CheckpointNotFoundError(SheetOpsError):
    """Raised when rolling back to a checkpoint id that was never taken."""

    code = "ERR_CHECKPOINT_NOT_FOUND"


class PlanParseError(SheetOpsError):
    """Raised when model output cannot be turned into a plan."""

    code = "ERR_PLAN_INVALID"


class BackendError(SheetOpsError):
    """Raised when a model backend is unreachable or answers with an error."""

    code = "ERR_BACKEND_UNAVAILABLE"


class StatementsParseError(SheetOpsError):
    """Raised when model output does not describe the three financial statements."""

    code = "ERR_STATEMENTS_INVALID"


class Target(BaseModel):
    """Identifies the target workbook/sheet/cell for a command."""

    file: str | None = None
    sheet: str | None = None
    ref: str | None = None


class WarningDetail(BaseModel):
    """Structured warning."""

    code: str
    message: str
    path: str | None = None


class ErrorDetail(BaseModel):
    """Structured error."""

    code: str
    message: str
    details: dict[str, Any] | None = None


class Metrics(BaseModel):
    """Execution metrics."""

    duration_ms: int = 0


class RecalcInfo(BaseModel):
    """Whether evaluated values were refreshed before responding."""

    performed: bool = False


class ResponseEnvelope(BaseModel):
    """Standard response envelope returned by every command."""

    ok: bool = True
    command: str = ""
    target: Target = Field(default_factory=Target)
    result: Any = None
    warnings: list[WarningDetail] = Field(default_factory=list)
    errors: list[ErrorDetail] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)
    recalc: RecalcInfo = Field(default_factory=RecalcInfo)
