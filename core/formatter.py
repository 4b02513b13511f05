"""
core/formatter.py -- CSV rendering for list responses.

List endpoints accept ?data_format=csv, in which case the "data" section of
the response is a CSV document instead of a JSON array. Rendering lives here
so every endpoint produces the same dialect and the same cell sanitization.
"""

import csv
import io
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime

# Spreadsheet applications evaluate cells starting with these as formulas
# (CWE-1236). Cluster display names come from an external inventory, so they
# are untrusted text.
_FORMULA_PREFIXES = ("=", "+", "-", "@")


def _sanitize_csv_cell(value: str) -> str:
    """Prefix formula-looking cells with a tab so spreadsheets treat them as text."""
    if value and value.startswith(_FORMULA_PREFIXES):
        return "\t" + value
    return value


def _csv_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    return _sanitize_csv_cell(str(value))


def to_csv(rows: Iterable[Mapping], headers: Sequence[str]) -> str:
    """Render rows as CSV with a header line. Missing keys become empty cells."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_csv_value(row.get(h)) for h in headers])
    return buf.getvalue()
