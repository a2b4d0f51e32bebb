"""A1-style reference helpers. Rows and columns are zero-based internally."""

from __future__ import annotations

import re

from sheetops.contracts.workbook import RangeRef

_CELL_RE = re.compile(r"^\$?([A-Za-z]+)\$?([0-9]+)$")


def column_index(letters: str) -> int:
    """Zero-based index of a column label: ``A`` is 0, ``AA`` is 26. Unbounded."""
    index = 0
    for ch in letters.upper():
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index - 1


def column_label(col: int) -> str:
    """Column label for a zero-based index; the inverse of :func:`column_index`."""
    n = col + 1
    letters = ""
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def a1_to_rc(ref: str) -> tuple[int, int]:
    """Parse ``B7`` into ``(6, 1)``."""
    m = _CELL_RE.match(ref.strip())
    if not m:
        raise ValueError(f"Bad A1 ref: {ref}")
    row = int(m.group(2))
    if row < 1:
        raise ValueError(f"Bad A1 ref: {ref}")
    return row - 1, column_index(m.group(1))


def rc_to_a1(row: int, col: int) -> str:
    """Format ``(6, 1)`` as ``B7``."""
    if row < 0 or col < 0:
        raise ValueError(f"Negative cell coordinates: ({row}, {col})")
    return f"{column_label(col)}{row + 1}"


def parse_range(sheet: str, ref: str) -> RangeRef:
    """Parse ``A1`` or ``A1:B2`` on ``sheet`` into a normalized RangeRef."""
    parts = ref.split(":")
    if len(parts) > 2:
        raise ValueError(f"Bad A1 range: {ref}")
    r1, c1 = a1_to_rc(parts[0])
    r2, c2 = a1_to_rc(parts[-1])
    return RangeRef(
        sheet=sheet,
        r1=min(r1, r2), c1=min(c1, c2),
        r2=max(r1, r2), c2=max(c1, c2),
    )


def range_to_a1(rng: RangeRef) -> str:
    """Format a RangeRef as ``Sheet!A1:B2`` (or ``Sheet!A1`` for one cell)."""
    start = rc_to_a1(rng.r1, rng.c1)
    if rng.r1 == rng.r2 and rng.c1 == rng.c2:
        return f"{rng.sheet}!{start}"
    return f"{rng.sheet}!{start}:{rc_to_a1(rng.r2, rng.c2)}"
