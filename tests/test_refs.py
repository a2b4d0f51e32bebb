"""Tests for A1 reference helpers."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from sheetops.engine.refs import a1_to_rc, column_index, column_label, parse_range, range_to_a1, rc_to_a1


def test_rc_to_a1_known_values():
    assert rc_to_a1(0, 0) == "A1"
    assert rc_to_a1(0, 25) == "Z1"
    assert rc_to_a1(0, 26) == "AA1"
    assert rc_to_a1(6, 1) == "B7"
    assert rc_to_a1(0, 701) == "ZZ1"
    assert rc_to_a1(0, 702) == "AAA1"
    assert rc_to_a1(0, 18277) == "ZZZ1"
    assert rc_to_a1(0, 18278) == "AAAA1"


def test_a1_to_rc_known_values():
    assert a1_to_rc("A1") == (0, 0)
    assert a1_to_rc("AA1") == (0, 26)
    assert a1_to_rc("b7") == (6, 1)
    assert a1_to_rc("$C$3") == (2, 2)
    assert a1_to_rc("AAAA1") == (0, 18278)
    assert a1_to_rc("xfd1048576") == (1_048_575, 16_383)


@pytest.mark.parametrize("bad", ["", "A", "1", "A0", "A-1", "1A", "A1:B2", "Sheet!A1"])
def test_a1_to_rc_rejects_malformed(bad: str):
    with pytest.raises(ValueError):
        a1_to_rc(bad)


def test_rc_to_a1_rejects_negative():
    with pytest.raises(ValueError):
        rc_to_a1(-1, 0)


@given(
    row=st.integers(min_value=0, max_value=10**9),
    col=st.integers(min_value=0, max_value=10**12),
)
def test_a1_to_rc_inverts_rc_to_a1(row: int, col: int):
    assert a1_to_rc(rc_to_a1(row, col)) == (row, col)


def test_parse_range_normalizes_corners():
    rng = parse_range("P&L", "C5:A2")
    assert (rng.r1, rng.c1, rng.r2, rng.c2) == (1, 0, 4, 2)
    assert rng.height == 4
    assert rng.width == 3


def test_range_to_a1():
    assert range_to_a1(parse_range("S", "B2:C3")) == "S!B2:C3"
    assert range_to_a1(parse_range("S", "B2")) == "S!B2"


def test_range_to_a1_past_three_letter_columns():
    assert range_to_a1(parse_range("S", "ZZZ1:AAAB2")) == "S!ZZZ1:AAAB2"


@given(col=st.integers(min_value=0, max_value=10**12))
def test_column_label_round_trips(col: int):
    label = column_label(col)
    assert label.isalpha() and label.isupper()
    assert column_index(label) == col
