"""Agent pipeline: summarize, ask the model for a plan, execute it.

``AgentOrchestrator.stream`` is an async generator of ``AgentStreamEvent``.
A run emits ``status`` and ``context`` first, then one ``token`` per model
chunk, then ``plan`` and ``done``. An ``error`` event may appear at any point
and is always the last event of the run.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from sheetops.agent.backends.base import Message, ModelBackend
from sheetops.agent.jsonish import parse_plan_text
from sheetops.agent.prompts import PLANNER_SYSTEM_PROMPT
from sheetops.agent.summary import summarize_workbook
from sheetops.contracts.common import BackendError, PlanParseError, SheetOpsError
from sheetops.contracts.plans import MAX_PLAN_STEPS, Plan, PlanExecution
from sheetops.engine.executor import execute_plan
from sheetops.engine.model import SheetModel

logger = logging.getLogger(__name__)

EventType = Literal["status", "context", "token", "plan", "error", "done"]


class AgentStreamEvent(BaseModel):
    type: EventType
    data: Any = None

    @classmethod
    def status(cls, message: str) -> "AgentStreamEvent":
        return cls(type="status", data=message)

    @classmethod
    def error(cls, message: str) -> "AgentStreamEvent":
        return cls(type="error", data=message)


class AgentHints(BaseModel):
    sheet_hint: Optional[str] = None
    insert_row: Optional[int] = Field(default=None, ge=0)


class AgentResult(BaseModel):
    """Payload of the ``done`` event."""

    plan: Plan
    workbook: dict[str, Any]
    applied: int = 0
    total: int = 0


def parse_plan(raw: str) -> Plan:
    """Parse buffered model output into a plan.

    Raises PlanParseError for invalid JSON, a malformed shape or too many steps.
    """
    try:
        data = parse_plan_text(raw)
    except json.JSONDecodeError as e:
        raise PlanParseError(
            f"Model returned invalid JSON: {e}",
            details={"raw": raw},
        ) from e
    try:
        plan = Plan.model_validate(data)
    except ValidationError as e:
        raise PlanParseError(
            f"Model output is not a plan: {e.errors()[0]['msg']}",
            details={"raw": raw},
        ) from e
    if len(plan.steps) > MAX_PLAN_STEPS:
        raise PlanParseError(
            f"Plan has {len(plan.steps)} steps; the limit is {MAX_PLAN_STEPS}",
            details={"steps": len(plan.steps)},
        )
    return plan


class AgentOrchestrator:
    """Turns a natural-language goal into an executed plan on ``model``."""

    def __init__(
        self,
        model: SheetModel,
        backend: ModelBackend,
        *,
        system_prompt: str = PLANNER_SYSTEM_PROMPT,
    ) -> None:
        self.model = model
        self.backend = backend
        self.system_prompt = system_prompt
        self.last_error: SheetOpsError | None = None

    def build_messages(
        self, goal: str, hints: AgentHints, context: dict[str, Any]
    ) -> list[Message]:
        user = {
            "goal": goal,
            "hints": hints.model_dump(exclude_none=True),
            "context": context,
        }
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": json.dumps(user)},
        ]

    def _fail(self, error: SheetOpsError) -> AgentStreamEvent:
        self.last_error = error
        logger.info("agent run failed: %s", error)
        return AgentStreamEvent.error(str(error))

    async def stream(
        self, goal: str, hints: AgentHints | None = None
    ) -> AsyncIterator[AgentStreamEvent]:
        self.last_error = None
        hints = hints or AgentHints()

        yield AgentStreamEvent.status("Summarizing workbook")
        context = summarize_workbook(self.model)
        yield AgentStreamEvent(type="context", data=context)

        messages = self.build_messages(goal, hints, context)
        yield AgentStreamEvent.status(f"Contacting {self.backend.name} model")

        chunks: list[str] = []
        try:
            async for token in self.backend.stream_chat(messages):
                chunks.append(token)
                yield AgentStreamEvent(type="token", data=token)
        except SheetOpsError as e:
            yield self._fail(e)
            return
        except Exception as e:
            logger.exception("backend stream raised")
            yield self._fail(BackendError(f"{self.backend.name} stream failed: {e}"))
            return

        yield AgentStreamEvent.status("Parsing plan")
        try:
            plan = parse_plan("".join(chunks))
        except PlanParseError as e:
            yield self._fail(e)
            return
        yield AgentStreamEvent(type="plan", data=plan.model_dump(mode="json"))

        execution: PlanExecution = execute_plan(plan, self.model)
        failed = execution.failed
        if failed is not None:
            yield AgentStreamEvent.status(
                f"Executed {execution.applied} of {execution.total} steps; "
                f"stopped at {failed.op}: {failed.explain}"
            )
        else:
            yield AgentStreamEvent.status(f"Executed {execution.applied} of {execution.total} steps")

        result = AgentResult(
            plan=Plan(steps=execution.steps, summary=plan.summary),
            workbook=self.model.to_json(),
            applied=execution.applied,
            total=execution.total,
        )
        yield AgentStreamEvent(type="done", data=result.model_dump(mode="json"))

    async def run(
        self,
        goal: str,
        hints: AgentHints | None = None,
        on_event: Callable[[AgentStreamEvent], None] | None = None,
    ) -> AgentResult:
        """Drain :meth:`stream`; return the ``done`` payload or raise the run's error."""
        done: AgentStreamEvent | None = None
        async for event in self.stream(goal, hints):
            if on_event is not None:
                on_event(event)
            if event.type == "error":
                raise self.last_error or BackendError(str(event.data))
            if event.type == "done":
                done = event
        if done is None:
            raise BackendError("Agent stream ended without a result")
        return AgentResult.model_validate(done.data)
