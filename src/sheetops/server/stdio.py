"""stdio server mode: JSON line-delimited protocol over stdin/stdout."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import IO, Any, Callable

from pydantic import ValidationError

from sheetops.agent.backends.base import ModelBackend
from sheetops.agent.backends.factory import get_backend
from sheetops.agent.orchestrator import AgentHints, AgentOrchestrator, AgentStreamEvent
from sheetops.contracts.common import OperationArgsError, SheetOpsError
from sheetops.engine.model import SheetModel

logger = logging.getLogger(__name__)

COMMANDS = (
    "workbook.get",
    "workbook.load",
    "sheet.op",
    "undo",
    "checkpoint",
    "rollback",
    "provenance.get",
    "agent.run",
)


class StdioServer:
    """Serves one in-memory workbook over a JSON-RPC-like line protocol.

    Requests are ``{"id", "command", "args"}``; every request gets exactly one
    response line ``{"id", "ok", "result"}`` or ``{"id", "ok": false, "error",
    "code"}``. ``agent.run`` additionally writes one ``{"id", "event"}`` line
    per stream event before its response.
    """

    def __init__(
        self,
        model: SheetModel | None = None,
        *,
        backend_factory: Callable[[str | None], ModelBackend] | None = None,
        out: IO[str] | None = None,
    ) -> None:
        self.model = model or SheetModel()
        self._backend_factory = backend_factory or get_backend
        self._out = out

    def _write(self, payload: dict[str, Any]) -> None:
        out = self._out or sys.stdout
        out.write(json.dumps(payload, default=str) + "\n")
        out.flush()

    def _workbook(self) -> dict[str, Any]:
        return self.model.to_json()

    def handle_request(self, request: dict[str, Any]) -> dict[str, Any]:
        req_id = request.get("id", "")
        command = request.get("command", "")
        args = request.get("args") or {}

        try:
            if not isinstance(args, dict):
                raise OperationArgsError("'args' must be a JSON object")

            if command == "workbook.get":
                return {"id": req_id, "ok": True, "result": self._workbook()}

            elif command == "workbook.load":
                self.model.load(args.get("workbook", args))
                return {"id": req_id, "ok": True, "result": self._workbook()}

            elif command == "sheet.op":
                op = args.get("op")
                if not op:
                    raise OperationArgsError("Missing 'op' in args")
                event = self.model.dispatch(op, args.get("args"))
                self.model.evaluate_all()
                return {
                    "id": req_id,
                    "ok": True,
                    "result": {
                        "event": event.summary if event else None,
                        "workbook": self._workbook(),
                    },
                }

            elif command == "undo":
                event = self.model.undo()
                self.model.evaluate_all()
                return {
                    "id": req_id,
                    "ok": True,
                    "result": {
                        "undone": event.summary if event else None,
                        "workbook": self._workbook(),
                    },
                }

            elif command == "checkpoint":
                cp = self.model.checkpoint(args.get("id"))
                return {"id": req_id, "ok": True, "result": cp.model_dump(mode="json")}

            elif command == "rollback":
                checkpoint_id = args.get("id")
                if not checkpoint_id:
                    raise OperationArgsError("Missing 'id' in args")
                undone = self.model.rollback(checkpoint_id)
                self.model.evaluate_all()
                return {
                    "id": req_id,
                    "ok": True,
                    "result": {"undone": undone, "workbook": self._workbook()},
                }

            elif command == "provenance.get":
                sheet = args.get("sheet")
                cell = args.get("cell")
                if not sheet or not cell:
                    raise OperationArgsError("'sheet' and 'cell' are required")
                prov = self.model.get_provenance(sheet, cell)
                return {
                    "id": req_id,
                    "ok": True,
                    "result": [p.model_dump(mode="json", by_alias=True) for p in prov],
                }

            elif command == "agent.run":
                return self._agent_run(req_id, args)

            else:
                return {"id": req_id, "ok": False, "error": f"Unknown command: {command}. Known: {', '.join(COMMANDS)}", "code": "ERR_UNKNOWN_COMMAND"}

        except SheetOpsError as e:
            return {"id": req_id, "ok": False, "error": str(e), "code": e.code}
        except ValueError as e:
            return {"id": req_id, "ok": False, "error": str(e), "code": "ERR_INVALID_ARGUMENT"}
        except Exception as e:
            logger.exception("request %s (%s) failed", req_id, command)
            return {"id": req_id, "ok": False, "error": str(e), "code": "ERR_INTERNAL"}

    def _agent_run(self, req_id: Any, args: dict[str, Any]) -> dict[str, Any]:
        goal = args.get("goal")
        if not goal:
            raise OperationArgsError("Missing 'goal' in args")
        try:
            hints = AgentHints.model_validate(args.get("hints") or {})
        except ValidationError as e:
            raise OperationArgsError(f"Invalid hints: {e.errors()[0]['msg']}") from e
        backend = self._backend_factory(args.get("provider"))
        orchestrator = AgentOrchestrator(self.model, backend)

        def forward(event: AgentStreamEvent) -> None:
            self._write({"id": req_id, "event": event.model_dump(mode="json")})

        result = asyncio.run(orchestrator.run(goal, hints, on_event=forward))
        return {"id": req_id, "ok": True, "result": result.model_dump(mode="json")}

    def run(self, stdin: IO[str] | None = None) -> None:
        """Main server loop: read JSON lines from stdin, write responses to stdout."""
        for line in stdin or sys.stdin:
            line = line.strip()
            if not line:
                continue
            try:
                request = json.loads(line)
            except json.JSONDecodeError as e:
                self._write({"ok": False, "error": f"Invalid JSON: {e}", "code": "ERR_INVALID_JSON"})
                continue
            if not isinstance(request, dict):
                self._write({"ok": False, "error": "Request must be a JSON object", "code": "ERR_INVALID_JSON"})
                continue

            self._write(self.handle_request(request))
