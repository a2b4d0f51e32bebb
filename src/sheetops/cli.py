"""Typer CLI application: workbook inspection, plans, undo, agent and ingestion."""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import nullcontext
from pathlib import Path
from typing import Annotated, Any, Optional

import orjson
import typer
import yaml
from pydantic import ValidationError

import sheetops
from sheetops.adapters.openpyxl_io import read_xlsx, write_xlsx
from sheetops.contracts.common import (
    ErrorDetail,
    PlanParseError,
    SheetOpsError,
    Target,
)
from sheetops.contracts.plans import MAX_PLAN_STEPS, Plan
from sheetops.engine.dispatcher import (
    envelope_for_exception,
    error_envelope,
    exit_code_for,
    print_response,
    success_envelope,
)
from sheetops.engine.executor import execute_plan
from sheetops.engine.model import SheetModel
from sheetops.io.fileops import SessionLock, read_json, read_text_safe, write_json
from sheetops.observe.events import EventEmitter, Timer

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

_MAIN_HELP = """\
Reversible in-memory workbook operations, driven directly or by an LLM agent.

**Recommended workflow:**  show -> apply / agent -> show -> undo

1. `sheetops show -f model.xlsx`  - projection of sheets, checkpoints and events
2. `sheetops apply -f model.xlsx --plan plan.yaml --out session.json`
3. `sheetops agent -f session.json --goal "add gross margin %" --out session.json`
4. `sheetops undo -f session.json --to agent --out session.json`
5. `sheetops ingest --doc 10k.txt --out statements.xlsx`

**Every command** returns a JSON `ResponseEnvelope`:
`{"ok": bool, "command": "...", "result": {...}, "errors": [...], "warnings": [...], "metrics": {"duration_ms": N}}`

**Workbook files:** `.xlsx`, a `.json` load payload or projection, or a
`.json` session written by `--out` (keeps the undo history).

**Exit codes:** 0=success, 10=validation, 50=io, 60=backend, 70=unsupported, 90=internal
"""

app = typer.Typer(
    name="sheetops",
    help=_MAIN_HELP,
    no_args_is_help=True,
    rich_markup_mode="markdown",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(sheetops.__version__)
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    version: Annotated[
        bool, typer.Option("--version", "-V", help="Print version and exit.", is_eager=True)
    ] = False,
    log_level: Annotated[
        str, typer.Option("--log-level", help="Python logging level for diagnostics on stderr.")
    ] = "WARNING",
) -> None:
    if version:
        _version_callback(True)
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        stream=sys.stderr,
    )


# Type aliases for common options
FilePath = Annotated[str, typer.Option("--file", "-f", help="Workbook file (.xlsx, .json payload/projection/session)")]
OptFilePath = Annotated[
    Optional[str],
    typer.Option("--file", "-f", help="Workbook file to start from (default: a new workbook with Sheet1)"),
]
OutPath = Annotated[Optional[str], typer.Option("--out", "-o", help="Write the resulting workbook (.json session or .xlsx)")]
EventsFlag = Annotated[bool, typer.Option("--events", help="Emit NDJSON lifecycle events on stderr")]
LockTimeout = Annotated[
    float,
    typer.Option("--lock-timeout", min=0, help="Seconds to wait when another sheetops process holds --out"),
]
ProviderOpt = Annotated[
    Optional[str],
    typer.Option("--provider", help="Model backend: ollama, gemini or openai (default: AGENT_PROVIDER)"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _emit(envelope, code=None):
    print_response(envelope)
    raise typer.Exit(code if code is not None else exit_code_for(envelope))


def _load_model(file: str | None) -> SheetModel:
    """Build a SheetModel from ``file``, or a fresh one when no file is given.

    Session dumps (``sheets`` is an object) are restored with their history;
    load payloads and projections (``sheets`` is a list) are imported, which
    leaves a single ``import`` checkpoint.
    """
    model = SheetModel()
    if not file:
        return model
    path = Path(file)
    if not path.exists():
        raise _CliIOError("ERR_WORKBOOK_NOT_FOUND", f"File not found: {file}")
    suffix = path.suffix.lower()
    if suffix in (".xlsx", ".xlsm"):
        model.load(read_xlsx(path))
        return model
    if suffix != ".json":
        raise _CliIOError("ERR_UNSUPPORTED_FORMAT", f"Unsupported workbook format: {suffix or file}")
    try:
        data = read_json(path)
    except orjson.JSONDecodeError as e:
        raise _CliIOError("ERR_CORRUPT_WORKBOOK", f"Cannot parse {file}: {e}") from e
    if not isinstance(data, dict) or "sheets" not in data:
        raise _CliIOError("ERR_CORRUPT_WORKBOOK", f"{file} does not contain a workbook")
    try:
        if isinstance(data["sheets"], dict):
            model.restore_state(data)
        else:
            model.load(data)
    except ValidationError as e:
        raise _CliIOError("ERR_CORRUPT_WORKBOOK", f"{file} is not a valid workbook: {e.errors()[0]['msg']}") from e
    return model


class _CliIOError(SheetOpsError):
    """File-level failure with a caller-chosen code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


def _out_lock(out: str | None, timeout: float):
    """Hold the sidecar lock of ``out`` for the whole load-modify-save cycle."""
    return SessionLock(out, timeout=timeout) if out else nullcontext()


def _save_model(model: SheetModel, out: str) -> dict[str, Any]:
    suffix = Path(out).suffix.lower()
    if suffix == ".xlsx":
        sheets = write_xlsx(model, out)
        return {"path": out, "format": "xlsx", "sheets": sheets}
    if suffix == ".json":
        write_json(out, model.to_state())
        return {"path": out, "format": "session"}
    raise _CliIOError("ERR_UNSUPPORTED_FORMAT", f"Unsupported output format: {suffix or out}")


def _load_plan(plan_path: str) -> Plan:
    """Load a plan from JSON or YAML.

    Accepts a bare plan, a bare list of steps, or a response envelope whose
    ``result`` carries a ``plan`` (as written by ``sheetops agent``).
    """
    path = Path(plan_path)
    if not path.exists():
        raise _CliIOError("ERR_IO", f"Plan file not found: {plan_path}")
    text = read_text_safe(path)
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = orjson.loads(text)
    except (yaml.YAMLError, orjson.JSONDecodeError) as e:
        raise PlanParseError(f"Cannot parse plan: {e}") from e

    if isinstance(data, list):
        data = {"steps": data}
    if not isinstance(data, dict):
        raise PlanParseError("Plan file must contain an object or a list of steps.")
    if {"ok", "command", "result"}.issubset(data):
        inner = data.get("result")
        if isinstance(inner, dict) and isinstance(inner.get("plan"), dict):
            data = inner["plan"]
        else:
            raise PlanParseError("Plan file contains a ResponseEnvelope without a 'plan' in its result.")

    try:
        plan = Plan.model_validate(data)
    except ValidationError as e:
        raise PlanParseError(f"Cannot parse plan: {e.errors()[0]['msg']}") from e
    if len(plan.steps) > MAX_PLAN_STEPS:
        raise PlanParseError(f"Plan has {len(plan.steps)} steps; the limit is {MAX_PLAN_STEPS}")
    return plan


def _fail(command: str, exc: Exception, *, file: str | None = None, duration_ms: int = 0) -> None:
    env = envelope_for_exception(command, exc, target=Target(file=file), duration_ms=duration_ms)
    _emit(env)


# ---------------------------------------------------------------------------
# sheetops version
# ---------------------------------------------------------------------------
@app.command()
def version():
    """Print the sheetops version.

    Example: `sheetops version`
    """
    env = success_envelope("version", {"version": sheetops.__version__})
    _emit(env)


# ---------------------------------------------------------------------------
# sheetops show
# ---------------------------------------------------------------------------
@app.command()
def show(
    file: FilePath,
    sheet: Annotated[Optional[str], typer.Option("--sheet", "-s", help="Only include this sheet")] = None,
):
    """Show the workbook projection: evaluated cells, checkpoints and events.

    Example: `sheetops show -f model.xlsx --sheet P&L`
    """
    with Timer() as t:
        try:
            model = _load_model(file)
            model.evaluate_all()
            view = model.to_json()
            if sheet is not None:
                model.get_sheet(sheet)
                view["sheets"] = [s for s in view["sheets"] if s["name"] == sheet]
        except SheetOpsError as e:
            _fail("show", e, file=file)
            return

    env = success_envelope(
        "show", view, target=Target(file=file, sheet=sheet), duration_ms=t.elapsed_ms, recalc=True,
    )
    _emit(env)


# ---------------------------------------------------------------------------
# sheetops apply
# ---------------------------------------------------------------------------
@app.command()
def apply(
    plan_path: Annotated[str, typer.Option("--plan", "-p", help="Plan file (.json or .yaml)")],
    file: OptFilePath = None,
    out: OutPath = None,
    lock_timeout: LockTimeout = 0,
    events: EventsFlag = False,
):
    """Execute a plan step by step; stop at the first failing step.

    Steps applied before a failure stay applied. The workbook is recomputed
    and checkpointed as `agent` either way.

    Example: `sheetops apply -f model.xlsx --plan plan.yaml --out session.json`
    """
    emitter = EventEmitter(enabled=events)
    with Timer() as t:
        try:
            with _out_lock(out, lock_timeout):
                plan = _load_plan(plan_path)
                model = _load_model(file)
                emitter.emit("apply.start", {"steps": len(plan.steps)})
                execution = execute_plan(plan, model)
                emitter.emit("apply.done", {"applied": execution.applied, "total": execution.total})
                saved = _save_model(model, out) if out else None
        except SheetOpsError as e:
            _fail("apply", e, file=file)
            return

    result = {
        "applied": execution.applied,
        "total": execution.total,
        "checkpoint": execution.checkpoint,
        "steps": [s.model_dump(mode="json") for s in execution.steps],
        "saved": saved,
        "workbook": model.to_json(),
    }
    env = success_envelope("apply", result, target=Target(file=file), duration_ms=t.elapsed_ms, recalc=True)
    failed = execution.failed
    if failed is not None:
        env.ok = False
        env.errors = [
            ErrorDetail(
                code="ERR_PLAN_STEP_INVALID",
                message=f"Step {len(execution.steps)} ({failed.op}) failed: {failed.explain}",
                details={"step": len(execution.steps), "op": failed.op},
            )
        ]
    _emit(env)


# ---------------------------------------------------------------------------
# sheetops undo
# ---------------------------------------------------------------------------
@app.command()
def undo(
    file: FilePath,
    steps: Annotated[int, typer.Option("--steps", "-n", min=1, help="Number of events to undo")] = 1,
    to: Annotated[Optional[str], typer.Option("--to", help="Roll back to this checkpoint id instead")] = None,
    out: OutPath = None,
    lock_timeout: LockTimeout = 0,
):
    """Undo the latest events of a saved session, or roll back to a checkpoint.

    History survives only in `.json` sessions written with `--out`; imported
    files start at the `import` checkpoint.

    Example: `sheetops undo -f session.json --to agent --out session.json`
    """
    with Timer() as t:
        try:
            with _out_lock(out, lock_timeout):
                model = _load_model(file)
                if to is not None:
                    undone = model.rollback(to)
                    summaries: list[str] = []
                else:
                    summaries = []
                    # Replay records (noop inverse) are discarded without counting.
                    while len(summaries) < steps:
                        event = model.undo()
                        if event is None:
                            break
                        if event.inverse.op != "noop":
                            summaries.append(event.summary)
                    undone = len(summaries)
                model.evaluate_all()
                saved = _save_model(model, out) if out else None
        except SheetOpsError as e:
            _fail("undo", e, file=file)
            return

    result = {"undone": undone, "events": summaries, "saved": saved, "workbook": model.to_json()}
    env = success_envelope("undo", result, target=Target(file=file), duration_ms=t.elapsed_ms, recalc=True)
    _emit(env)


# ---------------------------------------------------------------------------
# sheetops agent
# ---------------------------------------------------------------------------
@app.command()
def agent(
    goal: Annotated[str, typer.Option("--goal", "-g", help="What the agent should do, in plain language")],
    file: OptFilePath = None,
    sheet_hint: Annotated[Optional[str], typer.Option("--sheet-hint", help="Preferred sheet")] = None,
    insert_row: Annotated[Optional[int], typer.Option("--insert-row", min=0, help="0-based row for new rows")] = None,
    provider: ProviderOpt = None,
    out: OutPath = None,
    lock_timeout: LockTimeout = 0,
    events: EventsFlag = False,
):
    """Ask a model for a plan that achieves GOAL and execute it.

    With `--events`, every stream event (status, context, token, plan, error,
    done) is written to stderr as NDJSON.

    Example: `sheetops agent -f model.xlsx --goal "add gross margin %" --sheet-hint P&L`
    """
    from sheetops.agent.backends.factory import get_backend
    from sheetops.agent.orchestrator import AgentHints, AgentOrchestrator

    emitter = EventEmitter(enabled=events)
    with Timer() as t:
        try:
            with _out_lock(out, lock_timeout):
                model = _load_model(file)
                backend = get_backend(provider)
                orchestrator = AgentOrchestrator(model, backend)
                hints = AgentHints(sheet_hint=sheet_hint, insert_row=insert_row)
                result = asyncio.run(
                    orchestrator.run(goal, hints, on_event=lambda ev: emitter.emit(f"agent.{ev.type}", ev.data))
                )
                saved = _save_model(model, out) if out else None
        except SheetOpsError as e:
            _fail("agent", e, file=file)
            return

    payload = result.model_dump(mode="json")
    payload["saved"] = saved
    env = success_envelope("agent", payload, target=Target(file=file, sheet=sheet_hint), duration_ms=t.elapsed_ms, recalc=True)
    failed = next((s for s in result.plan.steps if s.ok is False), None)
    if failed is not None:
        env.ok = False
        env.errors = [
            ErrorDetail(
                code="ERR_PLAN_STEP_INVALID",
                message=f"Step {len(result.plan.steps)} ({failed.op}) failed: {failed.explain}",
                details={"step": len(result.plan.steps), "op": failed.op},
            )
        ]
    _emit(env)


# ---------------------------------------------------------------------------
# sheetops ingest
# ---------------------------------------------------------------------------
@app.command()
def ingest(
    doc: Annotated[str, typer.Option("--doc", "-d", help="Plain-text annual report to parse")],
    file: OptFilePath = None,
    source: Annotated[Optional[str], typer.Option("--source", help="Source label (default: the document file name)")] = None,
    provider: ProviderOpt = None,
    out: OutPath = None,
    lock_timeout: LockTimeout = 0,
    events: EventsFlag = False,
):
    """Extract income, balance sheet and cash flow statements into sheets.

    Replaces the `P&L`, `Balance Sheet` and `Cash Flow` sheets.

    Example: `sheetops ingest --doc 10k.txt --out statements.xlsx`
    """
    from sheetops.agent.backends.factory import get_backend
    from sheetops.ingest.statements import parse_statements, populate_statements

    emitter = EventEmitter(enabled=events)
    with Timer() as t:
        try:
            with _out_lock(out, lock_timeout):
                doc_path = Path(doc)
                if not doc_path.exists():
                    raise _CliIOError("ERR_IO", f"Document not found: {doc}")
                text = read_text_safe(doc_path)
                model = _load_model(file)
                backend = get_backend(provider)
                emitter.emit("ingest.parse", {"chars": len(text), "backend": backend.name})
                parsed = asyncio.run(parse_statements(text, source or doc_path.name, backend))
                written = populate_statements(model, parsed)
                emitter.emit("ingest.populated", {"sheets": written})
                saved = _save_model(model, out) if out else None
        except SheetOpsError as e:
            _fail("ingest", e, file=file)
            return

    result = {
        "sheets": written,
        "meta": parsed.meta.model_dump(mode="json", by_alias=True) if parsed.meta else None,
        "saved": saved,
        "workbook": model.to_json(),
    }
    env = success_envelope("ingest", result, target=Target(file=file), duration_ms=t.elapsed_ms, recalc=True)
    _emit(env)


# ---------------------------------------------------------------------------
# sheetops serve --stdio
# ---------------------------------------------------------------------------
@app.command("serve")
def serve_cmd(
    file: OptFilePath = None,
    stdio: Annotated[bool, typer.Option("--stdio", help="Use stdin/stdout for JSON request/response")] = True,
):
    """Serve one in-memory workbook over stdin/stdout.

    Each line is a JSON object: `{"id": "1", "command": "sheet.op", "args": {"op": "createSheet", "args": {"name": "P&L"}}}`

    Commands: workbook.get, workbook.load, sheet.op, undo, checkpoint,
    rollback, provenance.get, agent.run.

    Example: `sheetops serve --stdio -f model.xlsx`
    """
    from sheetops.server.stdio import StdioServer

    if not stdio:
        env = error_envelope("serve", "ERR_UNSUPPORTED_TRANSPORT", "Only --stdio is supported")
        _emit(env)
    try:
        model = _load_model(file)
    except SheetOpsError as e:
        _fail("serve", e, file=file)
        return
    server = StdioServer(model)
    server.run()


# ---------------------------------------------------------------------------
# Entrypoint (for `python -m sheetops`)
# ---------------------------------------------------------------------------
def main() -> None:
    try:
        app()
    except SystemExit:
        raise
    except Exception as exc:
        # Any unhandled exception still produces a JSON error envelope.
        env = error_envelope(
            "unknown",
            "ERR_INTERNAL",
            str(exc),
        )
        print_response(env)
        raise SystemExit(90) from exc


if __name__ == "__main__":
    main()
