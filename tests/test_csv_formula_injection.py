"""
tests/test_csv_formula_injection.py -- Regression tests for CSV formula injection (CWE-1236).

Spreadsheet applications interpret cells that start with =, +, -, or @ as
formulas. Cluster display names come from AMS and are user-controlled, so a
name like =HYPERLINK(...) must not reach a CSV export unchanged.

Mitigation: Tab-prefix sanitization. Cells starting with a dangerous character
are prefixed with \t, which spreadsheets treat as text.
"""

import csv
import io
from datetime import datetime

from core.formatter import to_csv

_HEADERS = ["id", "display_name", "last_seen"]


def _get_name_cell(display_name) -> str:
    """Render one row and return its display_name cell."""
    output = to_csv([{"id": "u1", "display_name": display_name, "last_seen": None}], _HEADERS)
    rows = list(csv.reader(io.StringIO(output)))
    assert len(rows) == 2, f"Expected header + 1 data row, got {len(rows)} rows"
    return rows[1][1]


def test_formula_prefix_equals_sanitized():
    cell = _get_name_cell("=CMD|'/C calc'")
    assert not cell.startswith("="), f"CSV injection: cell starts with '=' -- got: {cell!r}"


def test_formula_prefix_plus_sanitized():
    cell = _get_name_cell("+1+1")
    assert not cell.startswith("+"), f"CSV injection: cell starts with '+' -- got: {cell!r}"


def test_formula_prefix_minus_sanitized():
    cell = _get_name_cell("-1+1")
    assert not cell.startswith("-"), f"CSV injection: cell starts with '-' -- got: {cell!r}"


def test_formula_prefix_at_sanitized():
    cell = _get_name_cell("@SUM(A1)")
    assert not cell.startswith("@"), f"CSV injection: cell starts with '@' -- got: {cell!r}"


def test_safe_text_unchanged():
    assert _get_name_cell("prod-east-1") == "prod-east-1"


def test_none_is_empty_cell():
    assert _get_name_cell(None) == ""


def test_datetime_rendered_iso():
    output = to_csv([{"id": "u1", "last_seen": datetime(2024, 5, 1, 8, 30)}], _HEADERS)
    rows = list(csv.reader(io.StringIO(output)))
    assert rows[1] == ["u1", "", "2024-05-01T08:30:00"]
