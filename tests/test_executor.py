"""Tests for plan execution."""

from __future__ import annotations

from sheetops.contracts.plans import Plan, PlanStep
from sheetops.engine.executor import AGENT_CHECKPOINT, execute_plan, sanitize_args
from sheetops.engine.model import SheetModel


def _range(sheet: str, r1: int, c1: int, r2: int, c2: int) -> dict:
    return {"sheet": sheet, "r1": r1, "c1": c1, "r2": r2, "c2": c2}


def test_all_steps_applied(income_model: SheetModel):
    plan = Plan(
        summary="gross profit",
        steps=[
            PlanStep(op="setValues", args={"range": _range("P&L", 3, 0, 3, 0), "values": [["Gross profit"]]}),
            PlanStep(op="setFormulas", args={"range": _range("P&L", 3, 1, 3, 2), "formulas": [["=B2-B3", "=C2-C3"]]}),
        ],
    )
    execution = execute_plan(plan, income_model)
    assert execution.applied == execution.total == 2
    assert execution.failed is None
    assert all(step.ok for step in execution.steps)
    assert income_model.display_value("P&L", 3, 1) == 400
    assert income_model.display_value("P&L", 3, 2) == 300


def test_failing_middle_step_stops_execution(model: SheetModel):
    plan = Plan(steps=[
        PlanStep(op="createSheet", args={"name": "A"}),
        PlanStep(op="createSheet", args={"name": "A"}),
        PlanStep(op="createSheet", args={"name": "B"}),
    ])
    execution = execute_plan(plan, model)

    assert "A" in model.sheet_names
    assert "B" not in model.sheet_names
    assert len(execution.steps) == 2
    assert execution.steps[0].ok is True
    failed = execution.failed
    assert failed is execution.steps[1]
    assert failed.explain.startswith("FAILED: ")
    assert "A" in failed.explain
    assert execution.applied == 1
    assert execution.total == 3
    assert model.wb.checkpoints[-1].id == AGENT_CHECKPOINT
    assert model.wb.checkpoints[-1].at_event == len(model.wb.events)


def test_unknown_op_is_a_step_failure(model: SheetModel):
    execution = execute_plan(Plan(steps=[PlanStep(op="mergeCells", args={})]), model)
    assert execution.failed.explain == "FAILED: Unknown op mergeCells"


def test_internal_ops_rejected_in_plans(model: SheetModel):
    execution = execute_plan(Plan(steps=[PlanStep(op="noop")]), model)
    assert execution.applied == 0


def test_empty_plan_still_checkpoints(model: SheetModel):
    execution = execute_plan(Plan(), model)
    assert execution.steps == []
    assert execution.checkpoint == AGENT_CHECKPOINT
    assert model.wb.checkpoints[-1].id == AGENT_CHECKPOINT


def test_results_recomputed_after_failure(model: SheetModel):
    plan = Plan(steps=[
        PlanStep(op="setFormulas", args={"range": _range("Sheet1", 0, 0, 0, 0), "formulas": [["=6*7"]]}),
        PlanStep(op="deleteSheet", args={"name": "Nope"}),
    ])
    execute_plan(plan, model)
    assert model.display_value("Sheet1", 0, 0) == 42


def test_legacy_range_keys(model: SheetModel):
    plan = Plan(steps=[
        PlanStep(op="setValues", args={
            "range": {"sheet": "Sheet1", "r1": 0, "c1": 0, "r3": 1, "c3": 1},
            "values": [[1, 2], [3, 4]],
        }),
    ])
    execution = execute_plan(plan, model)
    assert execution.failed is None
    assert model.get_cell("Sheet1", 1, 1).value == 4


def test_sanitize_args_does_not_mutate_input():
    args = {"range": {"sheet": "S", "r1": 0, "c1": 0, "r3": 2, "c3": 2}}
    clean = sanitize_args(args)
    assert clean["range"]["r2"] == 2
    assert "r3" not in clean["range"]
    assert args["range"]["r3"] == 2


def test_sanitize_args_prefers_existing_keys():
    clean = sanitize_args({"range": {"r2": 1, "r3": 5}})
    assert clean["range"] == {"r2": 1, "r3": 5}


def test_undo_after_plan_reaches_previous_checkpoint(income_model: SheetModel):
    before = income_model.to_json()["sheets"]
    plan = Plan(steps=[
        PlanStep(op="createSheet", args={"name": "Ratios"}),
        PlanStep(op="formatRange", args={"range": _range("P&L", 1, 1, 2, 2), "format": "currency"}),
    ])
    execute_plan(plan, income_model)
    income_model.rollback("base")
    income_model.evaluate_all()
    assert income_model.to_json()["sheets"] == before
