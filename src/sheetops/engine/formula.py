"""Formula evaluation: cell references, SUM over ranges and basic arithmetic.

Formulas are tokenized and parsed by a small recursive-descent parser; nothing
is ever executed as code. Supported grammar::

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/") unary)*
    unary   := ("+" | "-") unary | primary
    primary := NUMBER | ref [":" ref] | NAME "(" [expr ("," expr)*] ")" | "(" expr ")"
    ref     := [sheet "!"] COLUMN ROW

Evaluation errors are returned as values, never raised: ``#REF!`` for a
reference cycle or a missing sheet, ``#ERROR!`` for anything that does not
parse or evaluate.
"""

from __future__ import annotations

import math
import re
from functools import lru_cache
from typing import Any, Mapping

from sheetops.contracts.workbook import Cell, CellValue, Sheet
from sheetops.engine.refs import a1_to_rc

REF_ERROR = "#REF!"
EVAL_ERROR = "#ERROR!"

_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<ref>
        (?:(?:'(?P<qsheet>(?:[^']|'')+)'|(?P<sheet>[A-Za-z_][A-Za-z0-9_.]*))!)?
        (?P<cell>\$?[A-Za-z]+\$?[0-9]+)
        (?![A-Za-z0-9_(])
      )
    | (?P<number>(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?)
    | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<op>[-+*/(),:])
    """,
    re.VERBOSE,
)


class _FormulaError(Exception):
    """The formula cannot be parsed or evaluated."""


class _ReferenceError(Exception):
    """A reference cannot be resolved."""


class _CircularReference(_ReferenceError):
    """A reference leads back to a cell already being evaluated."""


# ---------------------------------------------------------------------------
# Tokenizer / parser
# ---------------------------------------------------------------------------
def _tokenize(text: str) -> list[tuple[str, Any]]:
    tokens: list[tuple[str, Any]] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m:
            raise _FormulaError(f"Unexpected character {text[pos]!r} at {pos}")
        pos = m.end()
        kind = m.lastgroup
        if kind == "ws":
            continue
        if m.group("ref") is not None:
            sheet = m.group("qsheet")
            if sheet is not None:
                sheet = sheet.replace("''", "'")
            else:
                sheet = m.group("sheet")
            try:
                row, col = a1_to_rc(m.group("cell"))
            except ValueError as e:
                raise _FormulaError(str(e)) from e
            tokens.append(("ref", (sheet, row, col)))
        elif m.group("number") is not None:
            raw = m.group("number")
            value: int | float = float(raw) if any(ch in raw for ch in ".eE") else int(raw)
            tokens.append(("number", value))
        elif m.group("name") is not None:
            tokens.append(("name", m.group("name").upper()))
        else:
            tokens.append(("op", m.group("op")))
    return tokens


class _Parser:
    def __init__(self, tokens: list[tuple[str, Any]]) -> None:
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> tuple[str, Any] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> tuple[str, Any]:
        tok = self.peek()
        if tok is None:
            raise _FormulaError("Unexpected end of formula")
        self.pos += 1
        return tok

    def accept_op(self, *ops: str) -> str | None:
        tok = self.peek()
        if tok is not None and tok[0] == "op" and tok[1] in ops:
            self.pos += 1
            return tok[1]
        return None

    def expect_op(self, op: str) -> None:
        if self.accept_op(op) is None:
            raise _FormulaError(f"Expected {op!r}")

    def parse(self) -> tuple:
        node = self.expr()
        if self.peek() is not None:
            raise _FormulaError(f"Unexpected token {self.peek()[1]!r}")
        return node

    def expr(self) -> tuple:
        node = self.term()
        while (op := self.accept_op("+", "-")) is not None:
            node = ("bin", op, node, self.term())
        return node

    def term(self) -> tuple:
        node = self.unary()
        while (op := self.accept_op("*", "/")) is not None:
            node = ("bin", op, node, self.unary())
        return node

    def unary(self) -> tuple:
        op = self.accept_op("+", "-")
        if op == "-":
            return ("neg", self.unary())
        if op == "+":
            return self.unary()
        return self.primary()

    def primary(self) -> tuple:
        kind, value = self.take()
        if kind == "number":
            return ("num", value)
        if kind == "ref":
            sheet, row, col = value
            if self.accept_op(":") is not None:
                kind2, value2 = self.take()
                if kind2 != "ref":
                    raise _FormulaError("Expected cell reference after ':'")
                _, row2, col2 = value2
                return ("range", sheet, min(row, row2), min(col, col2), max(row, row2), max(col, col2))
            return ("ref", sheet, row, col)
        if kind == "name":
            self.expect_op("(")
            args: list[tuple] = []
            if self.accept_op(")") is None:
                args.append(self.expr())
                while self.accept_op(",") is not None:
                    args.append(self.expr())
                self.expect_op(")")
            return ("call", value, tuple(args))
        if kind == "op" and value == "(":
            node = self.expr()
            self.expect_op(")")
            return node
        raise _FormulaError(f"Unexpected token {value!r}")


@lru_cache(maxsize=4096)
def parse_formula(text: str) -> tuple:
    """Parse formula text (without the leading ``=``) into an expression tree."""
    return _Parser(_tokenize(text)).parse()


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------
def to_number(value: Any) -> int | float:
    """Coerce a cell value to a number; anything non-numeric becomes 0."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0
    text = str(value).strip()
    if not text or "_" in text:
        return 0
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return 0
    return number if math.isfinite(number) else 0


def _tidy(number: int | float) -> CellValue:
    if isinstance(number, float):
        if not math.isfinite(number):
            return EVAL_ERROR
        if number.is_integer():
            return int(number)
    return number


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------
class FormulaEvaluator:
    """Resolves displayed cell values over a mapping of sheets.

    One instance corresponds to one evaluation pass. Results of cells whose
    evaluation never ran into a cycle are memoized for the rest of the pass;
    the workbook is never mutated.
    """

    def __init__(self, sheets: Mapping[str, Sheet]) -> None:
        self._sheets = sheets
        self._memo: dict[tuple[str, int, int], CellValue] = {}
        self._cycles_seen = 0

    def evaluate(self, sheet: str, row: int, col: int) -> CellValue:
        """Evaluate one cell as a top-level call (fresh cycle-detection set).

        A reference chain too deep to follow even after dependencies were
        evaluated first (a very long cycle) yields ``#ERROR!`` for this cell
        only; nothing computed on the way is memoized.
        """
        try:
            self._prime(sheet, row, col)
            return self._evaluate(sheet, row, col, frozenset())
        except RecursionError:
            return EVAL_ERROR

    def _prime(self, sheet: str, row: int, col: int) -> None:
        """Evaluate the formula cells that ``(sheet, row, col)`` depends on, deepest first.

        Walks the dependency graph with an explicit stack, so that by the time
        the recursive evaluation runs, every acyclic dependency is already
        memoized and long reference chains never nest Python frames.
        """
        root = (sheet, row, col)
        on_path = {root}
        done: set[tuple[str, int, int]] = set()
        stack = [(root, iter(self._dependencies(*root)))]
        while stack:
            key, deps = stack[-1]
            for dep in deps:
                if dep in on_path or dep in done or dep in self._memo:
                    continue
                on_path.add(dep)
                stack.append((dep, iter(self._dependencies(*dep))))
                break
            else:
                stack.pop()
                on_path.discard(key)
                done.add(key)
                if key != root:
                    self._evaluate(*key, frozenset())

    def _dependencies(self, sheet: str, row: int, col: int) -> list[tuple[str, int, int]]:
        """Formula cells referenced by the formula in ``(sheet, row, col)``."""
        cell = self._cell(sheet, row, col)
        if cell is None or not cell.formula:
            return []
        text = cell.formula.strip()
        if not text.startswith("="):
            return []
        try:
            nodes = [parse_formula(text[1:])]
        except _FormulaError:
            return []
        deps: list[tuple[str, int, int]] = []
        while nodes:
            node = nodes.pop()
            kind = node[0]
            if kind == "neg":
                nodes.append(node[1])
            elif kind == "bin":
                nodes.extend(node[2:])
            elif kind == "call":
                nodes.extend(node[2])
            elif kind in ("ref", "range"):
                target = node[1] if node[1] is not None else sheet
                if target not in self._sheets:
                    continue
                r1, c1 = node[2], node[3]
                r2, c2 = (node[4], node[5]) if kind == "range" else (r1, c1)
                rows = self._sheets[target].rows
                for r in range(r1, min(r2 + 1, len(rows))):
                    for c in range(c1, min(c2 + 1, len(rows[r]))):
                        if rows[r][c].formula:
                            deps.append((target, r, c))
        return deps

    def _cell(self, sheet: str, row: int, col: int) -> Cell | None:
        rows = self._sheets[sheet].rows
        if row >= len(rows) or col >= len(rows[row]):
            return None
        return rows[row][col]

    def _evaluate(
        self, sheet: str, row: int, col: int, seen: frozenset[tuple[str, int, int]]
    ) -> CellValue:
        key = (sheet, row, col)
        if key in seen:
            self._cycles_seen += 1
            return REF_ERROR
        if key in self._memo:
            return self._memo[key]

        cell = self._cell(sheet, row, col)
        if cell is None:
            return None
        if not cell.formula:
            return cell.value
        text = cell.formula.strip()
        if not text.startswith("="):
            return cell.value

        cycles_before = self._cycles_seen
        try:
            node = parse_formula(text[1:])
            result = _tidy(self._scalar(node, sheet, seen | {key}))
        except _ReferenceError:
            result = REF_ERROR
        except (_FormulaError, ArithmeticError):
            result = EVAL_ERROR

        if self._cycles_seen == cycles_before:
            self._memo[key] = result
        return result

    def _resolve_sheet(self, qualifier: str | None, current: str) -> str:
        name = qualifier if qualifier is not None else current
        if name not in self._sheets:
            raise _ReferenceError(f"Sheet not found: {name}")
        return name

    def _scalar(self, node: tuple, sheet: str, seen: frozenset) -> int | float:
        kind = node[0]
        if kind == "num":
            return node[1]
        if kind == "ref":
            target = self._resolve_sheet(node[1], sheet)
            value = self._evaluate(target, node[2], node[3], seen)
            if value == REF_ERROR:
                raise _CircularReference(f"Circular reference via {target}!{node[2]},{node[3]}")
            return to_number(value)
        if kind == "neg":
            return -self._scalar(node[1], sheet, seen)
        if kind == "bin":
            left = self._scalar(node[2], sheet, seen)
            right = self._scalar(node[3], sheet, seen)
            op = node[1]
            if op == "+":
                return left + right
            if op == "-":
                return left - right
            if op == "*":
                return left * right
            if right == 0:
                raise _FormulaError("Division by zero")
            return left / right
        if kind == "call":
            if node[1] != "SUM":
                raise _FormulaError(f"Unsupported function {node[1]}")
            return self._sum(node[2], sheet, seen)
        raise _FormulaError("A range is only valid inside SUM()")

    def _sum(self, args: tuple, sheet: str, seen: frozenset) -> int | float:
        total: int | float = 0
        for arg in args:
            if arg[0] == "range":
                target = self._resolve_sheet(arg[1], sheet)
                for r in range(arg[2], arg[4] + 1):
                    for c in range(arg[3], arg[5] + 1):
                        total += to_number(self._evaluate(target, r, c, seen))
                continue
            try:
                total += self._scalar(arg, sheet, seen)
            except _CircularReference:
                continue
        return total
