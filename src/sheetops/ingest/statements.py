"""Financial statement ingestion: document text -> structured statements -> sheets."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from sheetops.agent.backends.base import ModelBackend
from sheetops.agent.prompts import STATEMENTS_SYSTEM_PROMPT
from sheetops.contracts.common import StatementsParseError
from sheetops.contracts.statements import ParsedStatements, Statement
from sheetops.contracts.workbook import CellValue, RangeRef
from sheetops.engine.model import SheetModel

logger = logging.getLogger(__name__)

MAX_DOCUMENT_CHARS = 220_000

# Sheet name for each statement, in creation order.
STATEMENT_SHEETS: dict[str, str] = {
    "income": "P&L",
    "balance": "Balance Sheet",
    "cashflow": "Cash Flow",
}


async def parse_statements(text: str, source: str, backend: ModelBackend) -> ParsedStatements:
    """Ask ``backend`` to extract the three statements from ``text``.

    The document is truncated to ``MAX_DOCUMENT_CHARS``. Every line's values
    are padded with zeros or truncated to its statement's period count.
    """
    if len(text) > MAX_DOCUMENT_CHARS:
        logger.info("document truncated from %d to %d characters", len(text), MAX_DOCUMENT_CHARS)
    messages = [
        {"role": "system", "content": STATEMENTS_SYSTEM_PROMPT},
        {"role": "user", "content": json.dumps({"source": source, "text": text[:MAX_DOCUMENT_CHARS]})},
    ]
    raw = await backend.complete_json(messages)
    try:
        parsed = ParsedStatements.model_validate(raw)
    except ValidationError as e:
        issues = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise StatementsParseError(
            f"Model output is not a set of statements: {issues[0]['loc']}: {issues[0]['msg']}",
            details={"issues": issues},
        ) from e
    return parsed.model_copy(update={
        "income": parsed.income.normalized(),
        "balance": parsed.balance.normalized(),
        "cashflow": parsed.cashflow.normalized(),
    })


def _number(value: float) -> CellValue:
    return int(value) if float(value).is_integer() else value


def _rows(statement: Statement) -> list[list[Any]]:
    n = len(statement.periods)
    rows: list[list[Any]] = [["Line item", *statement.periods]]
    for line in statement.lines:
        values = [_number(v) for v in line.values[:n]]
        values += [0] * (n - len(values))
        rows.append([line.name, *values])
    return rows


def populate_statements(model: SheetModel, parsed: ParsedStatements) -> list[str]:
    """Replace the statement sheets with the parsed data; return their names.

    Each sheet gets a header row ``["Line item", *periods]`` and one row per
    line item. Every change goes through the regular operations, so the
    whole import can be undone.
    """
    written: list[str] = []
    for key, sheet_name in STATEMENT_SHEETS.items():
        statement: Statement = getattr(parsed, key)
        if sheet_name in model.sheet_names:
            model.delete_sheet(sheet_name)
        model.create_sheet(sheet_name)
        rows = _rows(statement)
        width = len(rows[0])
        for r, row in enumerate(rows):
            rng = RangeRef(sheet=sheet_name, r1=r, c1=0, r2=r, c2=width - 1)
            model.set_values(rng, [row])
        written.append(sheet_name)
    model.evaluate_all()
    return written
