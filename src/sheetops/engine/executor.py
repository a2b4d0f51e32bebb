"""Plan execution: apply plan steps in order, stop at the first failure."""

from __future__ import annotations

import copy
import logging
from typing import Any

from sheetops.contracts.plans import Plan, PlanExecution, PlanStep
from sheetops.engine.model import SheetModel

logger = logging.getLogger(__name__)

AGENT_CHECKPOINT = "agent"

# Older plan shapes used r3/c3 for the far corner of a range.
_LEGACY_RANGE_KEYS = {"r3": "r2", "c3": "c2"}


def sanitize_args(args: dict[str, Any]) -> dict[str, Any]:
    """Deep-copy step arguments and rename legacy range fields."""
    clean = copy.deepcopy(args) if args else {}
    rng = clean.get("range")
    if isinstance(rng, dict):
        for old, new in _LEGACY_RANGE_KEYS.items():
            if old in rng and new not in rng:
                rng[new] = rng.pop(old)
    return clean


def execute_plan(plan: Plan, model: SheetModel) -> PlanExecution:
    """Apply ``plan`` against ``model``.

    Each step is dispatched with a sanitized copy of its arguments. A failing
    step is recorded with an explanation and ends execution; every step
    applied before it stays applied. The workbook is always recomputed and
    checkpointed afterwards, however far the plan got.
    """
    executed: list[PlanStep] = []
    for step in plan.steps:
        try:
            model.dispatch(step.op, sanitize_args(step.args))
        except Exception as e:
            logger.info("plan step %d (%s) failed: %s", len(executed) + 1, step.op, e)
            executed.append(step.model_copy(update={"ok": False, "explain": f"FAILED: {e}"}))
            break
        executed.append(step.model_copy(update={"ok": True}))

    model.evaluate_all()
    cp = model.checkpoint(AGENT_CHECKPOINT)
    return PlanExecution(
        steps=executed,
        total=len(plan.steps),
        applied=sum(1 for s in executed if s.ok),
        checkpoint=cp.id,
    )
