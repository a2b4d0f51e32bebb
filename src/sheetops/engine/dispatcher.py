"""Response envelope helpers, JSON output and exit-code mapping."""

from __future__ import annotations

import sys
from typing import Any

import orjson

from sheetops.contracts.common import (
    ErrorDetail,
    Metrics,
    RecalcInfo,
    ResponseEnvelope,
    SheetOpsError,
    Target,
)

# Exit code mapping
EXIT_CODES = {
    "success": 0,
    "validation": 10,
    "io": 50,
    "backend": 60,
    "unsupported": 70,
    "internal": 90,
}

VALIDATION_CODE_MARKERS = (
    "INVALID",
    "SHEET_NOT_FOUND",
    "SHEET_EXISTS",
    "CHECKPOINT_NOT_FOUND",
)

IO_CODE_MARKERS = ("WORKBOOK_NOT_FOUND", "ERR_IO", "CORRUPT", "LOCK_HELD")


def success_envelope(
    command: str,
    result: Any,
    *,
    target: Target | None = None,
    warnings: list | None = None,
    duration_ms: int = 0,
    recalc: bool = False,
) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=True,
        command=command,
        target=target or Target(),
        result=result,
        warnings=warnings or [],
        metrics=Metrics(duration_ms=duration_ms),
        recalc=RecalcInfo(performed=recalc),
    )


def error_envelope(
    command: str,
    code: str,
    message: str,
    *,
    target: Target | None = None,
    details: dict | None = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=False,
        command=command,
        target=target or Target(),
        errors=[ErrorDetail(code=code, message=message, details=details)],
        metrics=Metrics(duration_ms=duration_ms),
    )


def envelope_for_exception(
    command: str, exc: Exception, *, target: Target | None = None, duration_ms: int = 0
) -> ResponseEnvelope:
    """Wrap an exception in an error envelope, keeping SheetOpsError codes."""
    if isinstance(exc, SheetOpsError):
        return error_envelope(
            command, exc.code, str(exc),
            target=target, details=exc.details, duration_ms=duration_ms,
        )
    if isinstance(exc, ValueError):
        return error_envelope(command, "ERR_INVALID_ARGUMENT", str(exc), target=target, duration_ms=duration_ms)
    return error_envelope(command, "ERR_INTERNAL", str(exc), target=target, duration_ms=duration_ms)


def output_json(envelope: ResponseEnvelope) -> str:
    """Serialize envelope to JSON string using orjson."""
    data = envelope.model_dump(mode="json")
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode()


def print_response(envelope: ResponseEnvelope) -> None:
    """Print response as JSON to stdout."""
    sys.stdout.write(output_json(envelope) + "\n")


def exit_code_for(envelope: ResponseEnvelope) -> int:
    """Determine exit code from envelope errors."""
    if envelope.ok:
        return 0
    if not envelope.errors:
        return EXIT_CODES["internal"]
    code = envelope.errors[0].code.upper()
    if "BACKEND" in code:
        return EXIT_CODES["backend"]
    if "UNSUPPORTED" in code or "UNKNOWN_OPERATION" in code:
        return EXIT_CODES["unsupported"]
    if any(marker in code for marker in IO_CODE_MARKERS):
        return EXIT_CODES["io"]
    if any(marker in code for marker in VALIDATION_CODE_MARKERS):
        return EXIT_CODES["validation"]
    return EXIT_CODES["internal"]
