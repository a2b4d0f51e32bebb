"""Tests for CLI commands via Typer test runner."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from openpyxl import load_workbook
from support import FakeBackend, plan_chunks
from typer.testing import CliRunner

import sheetops
from sheetops.cli import app
from sheetops.contracts.common import BackendError

runner = CliRunner()

GROSS_PROFIT_YAML = """\
summary: gross profit
steps:
  - op: createSheet
    args: {name: "P&L"}
  - op: setValues
    args:
      range: {sheet: "P&L", r1: 0, c1: 0, r2: 1, c2: 1}
      values: [[Revenue, 1000], [Cost of sales, 600]]
  - op: setFormulas
    args:
      range: {sheet: "P&L", r1: 2, c1: 1, r2: 2, c2: 1}
      formulas: [["=B1-B2"]]
"""


def _invoke(*args: str, **kwargs):
    result = runner.invoke(app, list(args), **kwargs)
    return result, json.loads(result.stdout)


def _sheet(data: dict, name: str) -> dict:
    return next(s for s in data["result"]["workbook"]["sheets"] if s["name"] == name)


@pytest.fixture()
def plan_yaml(tmp_path: Path) -> Path:
    path = tmp_path / "plan.yaml"
    path.write_text(GROSS_PROFIT_YAML)
    return path


@pytest.fixture()
def session(tmp_path: Path, plan_yaml: Path) -> Path:
    """A session file holding the gross profit plan's history."""
    out = tmp_path / "session.json"
    result = runner.invoke(app, ["apply", "--plan", str(plan_yaml), "--out", str(out)])
    assert result.exit_code == 0
    return out


@pytest.fixture()
def fake_backend(monkeypatch):
    """Route every backend lookup to the last FakeBackend in the returned list."""
    backends: list[FakeBackend] = []
    providers: list = []

    def get_backend(provider=None, settings=None):
        providers.append(provider)
        return backends[-1]

    monkeypatch.setattr("sheetops.agent.backends.factory.get_backend", get_backend)
    return backends, providers


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------
def test_version():
    result, data = _invoke("version")
    assert result.exit_code == 0
    assert data["ok"] is True
    assert data["result"]["version"] == sheetops.__version__


def test_version_flag():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == sheetops.__version__


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------
def test_show_xlsx(simple_xlsx: Path):
    result, data = _invoke("show", "--file", str(simple_xlsx))
    assert result.exit_code == 0
    assert data["command"] == "show"
    assert data["recalc"]["performed"] is True
    assert [s["name"] for s in data["result"]["sheets"]] == ["Data", "Notes"]
    total = data["result"]["sheets"][0]["rows"][3][1]
    assert total == {"value": 200, "formula": "=SUM(B2:B3)", "format": None}
    assert [cp["id"] for cp in data["result"]["checkpoints"]] == ["import"]


def test_show_one_sheet(simple_xlsx: Path):
    result, data = _invoke("show", "-f", str(simple_xlsx), "--sheet", "Notes")
    assert result.exit_code == 0
    assert [s["name"] for s in data["result"]["sheets"]] == ["Notes"]
    assert data["target"]["sheet"] == "Notes"


def test_show_missing_sheet(simple_xlsx: Path):
    result, data = _invoke("show", "-f", str(simple_xlsx), "--sheet", "Nope")
    assert result.exit_code == 10
    assert data["errors"][0]["code"] == "ERR_SHEET_NOT_FOUND"


def test_show_load_payload(tmp_path: Path):
    path = tmp_path / "payload.json"
    path.write_text(json.dumps({"sheets": [{"name": "S", "rows": [[{"value": 3}, {"formula": "=A1*2"}]]}]}))
    result, data = _invoke("show", "-f", str(path))
    assert result.exit_code == 0
    assert data["result"]["sheets"][0]["rows"][0][1]["value"] == 6


def test_show_not_found(tmp_path: Path):
    result, data = _invoke("show", "-f", str(tmp_path / "nope.xlsx"))
    assert result.exit_code == 50
    assert data["ok"] is False
    assert data["errors"][0]["code"] == "ERR_WORKBOOK_NOT_FOUND"


def test_show_unsupported_format(tmp_path: Path):
    path = tmp_path / "data.csv"
    path.write_text("a,b\n")
    result, data = _invoke("show", "-f", str(path))
    assert result.exit_code == 70
    assert data["errors"][0]["code"] == "ERR_UNSUPPORTED_FORMAT"


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"sheets": "nope"}'])
def test_show_corrupt_json(tmp_path: Path, content: str):
    path = tmp_path / "broken.json"
    path.write_text(content)
    result, data = _invoke("show", "-f", str(path))
    assert result.exit_code == 50
    assert data["errors"][0]["code"] == "ERR_CORRUPT_WORKBOOK"


# ---------------------------------------------------------------------------
# apply
# ---------------------------------------------------------------------------
def test_apply_yaml_plan(plan_yaml: Path):
    result, data = _invoke("apply", "--plan", str(plan_yaml))
    assert result.exit_code == 0
    assert data["result"]["applied"] == data["result"]["total"] == 3
    assert data["result"]["checkpoint"] == "agent"
    assert data["result"]["saved"] is None
    assert _sheet(data, "P&L")["rows"][2][1]["value"] == 400


def test_apply_json_step_list(simple_xlsx: Path, tmp_path: Path):
    plan = tmp_path / "plan.json"
    plan.write_text(json.dumps([
        {"op": "formatRange", "args": {"range": {"sheet": "Data", "r1": 1, "c1": 1, "r2": 3, "c2": 1}, "format": "currency"}},
    ]))
    result, data = _invoke("apply", "-f", str(simple_xlsx), "--plan", str(plan))
    assert result.exit_code == 0
    assert _sheet(data, "Data")["rows"][3][1]["format"] == "currency"


def test_apply_agent_envelope(tmp_path: Path):
    envelope = {
        "ok": True,
        "command": "agent",
        "result": {"plan": {"steps": [{"op": "createSheet", "args": {"name": "Ratios"}}]}},
    }
    plan = tmp_path / "agent.json"
    plan.write_text(json.dumps(envelope))
    result, data = _invoke("apply", "--plan", str(plan))
    assert result.exit_code == 0
    assert [s["name"] for s in data["result"]["workbook"]["sheets"]] == ["Sheet1", "Ratios"]


def test_apply_failing_step(tmp_path: Path):
    plan = tmp_path / "plan.json"
    plan.write_text(json.dumps({"steps": [
        {"op": "createSheet", "args": {"name": "A"}},
        {"op": "deleteSheet", "args": {"name": "Missing"}},
        {"op": "createSheet", "args": {"name": "B"}},
    ]}))
    result, data = _invoke("apply", "--plan", str(plan))
    assert result.exit_code == 10
    assert data["ok"] is False
    assert data["errors"][0]["code"] == "ERR_PLAN_STEP_INVALID"
    assert data["errors"][0]["details"] == {"step": 2, "op": "deleteSheet"}
    assert data["result"]["applied"] == 1
    assert [s["name"] for s in data["result"]["workbook"]["sheets"]] == ["Sheet1", "A"]


def test_apply_too_many_steps(tmp_path: Path):
    plan = tmp_path / "plan.json"
    plan.write_text(json.dumps([{"op": "createSheet", "args": {"name": f"S{i}"}} for i in range(31)]))
    result, data = _invoke("apply", "--plan", str(plan))
    assert result.exit_code == 10
    assert data["errors"][0]["code"] == "ERR_PLAN_INVALID"


def test_apply_unparseable_plan(tmp_path: Path):
    plan = tmp_path / "plan.yaml"
    plan.write_text("steps: [unclosed\n")
    result, data = _invoke("apply", "--plan", str(plan))
    assert result.exit_code == 10
    assert data["errors"][0]["code"] == "ERR_PLAN_INVALID"


def test_apply_missing_plan(tmp_path: Path):
    result, data = _invoke("apply", "--plan", str(tmp_path / "nope.yaml"))
    assert result.exit_code == 50
    assert data["errors"][0]["code"] == "ERR_IO"


def test_apply_saves_xlsx(plan_yaml: Path, tmp_path: Path):
    out = tmp_path / "out.xlsx"
    result, data = _invoke("apply", "--plan", str(plan_yaml), "--out", str(out))
    assert result.exit_code == 0
    assert data["result"]["saved"] == {"path": str(out), "format": "xlsx", "sheets": ["Sheet1", "P&L"]}
    wb = load_workbook(out)
    assert wb["P&L"]["B3"].value == "=B1-B2"
    wb.close()


def test_apply_unsupported_output(plan_yaml: Path, tmp_path: Path):
    result, data = _invoke("apply", "--plan", str(plan_yaml), "--out", str(tmp_path / "out.ods"))
    assert result.exit_code == 70
    assert data["errors"][0]["code"] == "ERR_UNSUPPORTED_FORMAT"


# ---------------------------------------------------------------------------
# undo
# ---------------------------------------------------------------------------
def test_session_keeps_history(session: Path):
    result, data = _invoke("show", "-f", str(session))
    assert result.exit_code == 0
    assert [cp["id"] for cp in data["result"]["checkpoints"]] == ["init", "agent"]
    assert [e["op"] for e in data["result"]["events"]] == [
        "createSheet", "createSheet", "setValues", "setFormulas",
    ]


def test_undo_steps(session: Path, tmp_path: Path):
    out = tmp_path / "after.json"
    result, data = _invoke("undo", "-f", str(session), "--steps", "2", "--out", str(out))
    assert result.exit_code == 0
    assert data["result"]["undone"] == 2
    assert data["result"]["events"] == ["setFormulas P&L!B3", "setValues P&L!A1:B2"]
    rows = _sheet(data, "P&L")["rows"]
    assert all(cell["value"] is None for row in rows for cell in row)

    result, data = _invoke("undo", "-f", str(out))
    assert data["result"]["events"] == ["create P&L"]
    assert [s["name"] for s in data["result"]["workbook"]["sheets"]] == ["Sheet1"]


def test_undo_to_checkpoint(session: Path):
    result, data = _invoke("undo", "-f", str(session), "--to", "init")
    assert result.exit_code == 0
    assert data["result"]["undone"] == 3
    assert [s["name"] for s in data["result"]["workbook"]["sheets"]] == ["Sheet1"]


def test_undo_unknown_checkpoint(session: Path):
    result, data = _invoke("undo", "-f", str(session), "--to", "nope")
    assert result.exit_code == 10
    assert data["errors"][0]["code"] == "ERR_CHECKPOINT_NOT_FOUND"


def test_undo_imported_workbook_has_no_history(simple_xlsx: Path):
    result, data = _invoke("undo", "-f", str(simple_xlsx))
    assert result.exit_code == 0
    assert data["result"]["undone"] == 0


# ---------------------------------------------------------------------------
# agent
# ---------------------------------------------------------------------------
def test_agent(fake_backend, simple_xlsx: Path):
    backends, providers = fake_backend
    plan = {"summary": "share", "steps": [
        {"op": "setFormulas", "args": {"range": {"sheet": "Data", "r1": 1, "c1": 3, "r2": 1, "c2": 3}, "formulas": [["=B2/B4"]]}},
        {"op": "formatRange", "args": {"range": {"sheet": "Data", "r1": 1, "c1": 3, "r2": 1, "c2": 3}, "format": "percent"}},
    ]}
    backends.append(FakeBackend(plan_chunks(plan)))

    result, data = _invoke(
        "agent", "-f", str(simple_xlsx), "--goal", "widget share", "--sheet-hint", "Data", "--provider", "gemini",
    )
    assert result.exit_code == 0
    assert data["result"]["applied"] == 2
    assert data["result"]["plan"]["summary"] == "share"
    assert _sheet(data, "Data")["rows"][1][3] == {"value": 0.6, "formula": "=B2/B4", "format": "percent"}
    assert data["target"]["sheet"] == "Data"
    assert providers == ["gemini"]

    user = json.loads(backends[-1].calls[0][1]["content"])
    assert user["goal"] == "widget share"
    assert user["hints"] == {"sheet_hint": "Data"}


def test_agent_backend_error(fake_backend):
    backends, _ = fake_backend
    backends.append(FakeBackend(error=BackendError("Could not reach Ollama")))
    result, data = _invoke("agent", "--goal", "anything")
    assert result.exit_code == 60
    assert data["errors"][0]["code"] == "ERR_BACKEND_UNAVAILABLE"


def test_agent_invalid_plan(fake_backend):
    backends, _ = fake_backend
    backends.append(FakeBackend(["no plan today"]))
    result, data = _invoke("agent", "--goal", "anything")
    assert result.exit_code == 10
    assert data["errors"][0]["code"] == "ERR_PLAN_INVALID"


def test_agent_failed_step(fake_backend):
    backends, _ = fake_backend
    backends.append(FakeBackend(plan_chunks({"steps": [{"op": "deleteSheet", "args": {"name": "Nope"}}]})))
    result, data = _invoke("agent", "--goal", "anything")
    assert result.exit_code == 10
    assert data["errors"][0]["code"] == "ERR_PLAN_STEP_INVALID"
    assert data["result"]["applied"] == 0


# ---------------------------------------------------------------------------
# ingest
# ---------------------------------------------------------------------------
def _statement(lines):
    return {"title": "t", "periods": ["FY2024", "FY2023"], "lines": [{"name": n, "values": v} for n, v in lines]}


def test_ingest(fake_backend, tmp_path: Path):
    backends, _ = fake_backend
    parsed = {
        "income": _statement([("Revenue", [1000, 800])]),
        "balance": _statement([("Total assets", [5000, 4700])]),
        "cashflow": _statement([("Operating cash flow", [300])]),
        "meta": {"company": "Example Corp", "fiscalYearEnd": "Dec 31"},
    }
    backends.append(FakeBackend([json.dumps(parsed)]))
    doc = tmp_path / "10k.txt"
    doc.write_text("Revenue was 1,000")
    out = tmp_path / "statements.xlsx"

    result, data = _invoke("ingest", "--doc", str(doc), "--out", str(out))
    assert result.exit_code == 0
    assert data["result"]["sheets"] == ["P&L", "Balance Sheet", "Cash Flow"]
    assert data["result"]["meta"]["fiscalYearEnd"] == "Dec 31"
    assert json.loads(backends[-1].calls[0][1]["content"])["source"] == "10k.txt"

    wb = load_workbook(out)
    assert wb.sheetnames == ["Sheet1", "P&L", "Balance Sheet", "Cash Flow"]
    assert [c.value for c in wb["Cash Flow"][2]] == ["Operating cash flow", 300, 0]
    wb.close()


def test_ingest_invalid_statements(fake_backend, tmp_path: Path):
    backends, _ = fake_backend
    backends.append(FakeBackend(['{"income": {}}']))
    doc = tmp_path / "10k.txt"
    doc.write_text("text")
    result, data = _invoke("ingest", "--doc", str(doc))
    assert result.exit_code == 10
    assert data["errors"][0]["code"] == "ERR_STATEMENTS_INVALID"


def test_ingest_missing_document(tmp_path: Path):
    result, data = _invoke("ingest", "--doc", str(tmp_path / "nope.txt"))
    assert result.exit_code == 50
    assert data["errors"][0]["code"] == "ERR_IO"


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------
def test_serve_stdio(simple_xlsx: Path):
    requests = "\n".join([
        json.dumps({"id": "1", "command": "workbook.get"}),
        json.dumps({"id": "2", "command": "sheet.op", "args": {"op": "createSheet", "args": {"name": "X"}}}),
    ]) + "\n"
    result = runner.invoke(app, ["serve", "--stdio", "-f", str(simple_xlsx)], input=requests)
    assert result.exit_code == 0
    responses = [json.loads(line) for line in result.stdout.splitlines()]
    assert [r["id"] for r in responses] == ["1", "2"]
    assert [s["name"] for s in responses[0]["result"]["sheets"]] == ["Data", "Notes"]
    assert responses[1]["result"]["event"] == "create X"
