"""
vulndb/listing.py -- Query-parameter driven filtering, sorting and pagination.

List endpoints declare which filters they accept (allowed_filters) and how to
apply them (filter_args). Request values are validated here and translated
into WHERE / ORDER BY / LIMIT / OFFSET clauses on a SQLAlchemy Select.

    filters = get_requested_filters(request.query_params.multi_items())
    result = list_query(engine, stmt, allowed, filters, filter_args)

Input problems raise InputError (the route turns it into a 400). Database
problems propagate as SQLAlchemyError (the route turns those into a 500).
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.sql import Select

# ---------------------------------------------------------------------------
# Query parameter names
# ---------------------------------------------------------------------------

SEARCH_QUERY = "search"
SORT_QUERY = "sort"
LIMIT_QUERY = "limit"
OFFSET_QUERY = "offset"
DATA_FORMAT_QUERY = "data_format"

# Key in filter_args holding the SortArgs of an endpoint.
SORT_FILTER_ARGS = "sort_args"

_KNOWN_FILTERS = (SEARCH_QUERY, SORT_QUERY, LIMIT_QUERY, OFFSET_QUERY, DATA_FORMAT_QUERY)
# Pagination is part of every list endpoint; it never needs to be allowed explicitly.
_ALWAYS_ALLOWED = (LIMIT_QUERY, OFFSET_QUERY)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
# Largest OFFSET the database driver can bind.
MAX_OFFSET = 2**63 - 1
DATA_FORMATS = ("json", "csv")


class InputError(ValueError):
    """A request filter value that cannot be applied."""


@dataclass(frozen=True)
class SortItem:
    column: str
    desc: bool = False

    def __str__(self) -> str:
        return f"-{self.column}" if self.desc else self.column


@dataclass
class SortArgs:
    """Sort keys an endpoint exposes, mapped to column expressions."""

    sortable_columns: dict[str, Any]
    default_sortable: list[SortItem] = field(default_factory=list)
    # Appended ascending when missing from the requested sort so that rows
    # with equal sort values keep a stable order across pages.
    tie_breaker: Optional[str] = "id"


@dataclass
class ListResult:
    used_filters: dict[str, Any]
    total_items: int
    rows: list
    # Filtered but unordered and unpaginated -- for facet queries.
    statement: Select


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------


def get_requested_filters(query_items: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Collect raw filter values from query string (key, value) pairs.

    Unrecognized parameters are ignored. Repeated sort parameters are joined
    with commas so ?sort=a&sort=-b equals ?sort=a,-b; for every other filter
    the last value wins.
    """
    filters: dict[str, str] = {}
    for key, value in query_items:
        if key not in _KNOWN_FILTERS:
            continue
        if key == SORT_QUERY and key in filters:
            filters[key] = f"{filters[key]},{value}"
        else:
            filters[key] = value
    return filters


def _parse_int(name: str, raw: Optional[str], default: int, minimum: int, maximum: Optional[int] = None) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InputError(f"{name} must be an integer, got {raw[:50]!r}") from None
    if value < minimum:
        raise InputError(f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise InputError(f"{name} must be <= {maximum}")
    return value


def parse_sort(raw: str, sort_args: SortArgs) -> list[SortItem]:
    """Parse "col,-col2" into SortItems, validating against the sortable columns."""
    items: list[SortItem] = []
    seen: set[str] = set()
    for part in raw.split(","):
        part = part.strip()
        desc = part.startswith("-")
        column = part[1:] if desc else part
        if not column:
            raise InputError("sort contains an empty column name")
        if column not in sort_args.sortable_columns:
            allowed = ", ".join(sorted(sort_args.sortable_columns))
            raise InputError(f"cannot sort by {column[:50]!r}, sortable columns: {allowed}")
        if column in seen:
            raise InputError(f"sort column {column!r} given more than once")
        seen.add(column)
        items.append(SortItem(column=column, desc=desc))
    return items


def parse_data_format(raw: Optional[str]) -> str:
    if raw is None or raw == "":
        return DATA_FORMATS[0]
    value = raw.lower()
    if value not in DATA_FORMATS:
        raise InputError(f"data_format must be one of: {', '.join(DATA_FORMATS)}")
    return value


# ---------------------------------------------------------------------------
# Query building and execution
# ---------------------------------------------------------------------------


def _order_by(sort_items: list[SortItem], sort_args: SortArgs) -> list:
    clauses = []
    for item in sort_items:
        column = sort_args.sortable_columns[item.column]
        clauses.append(column.desc() if item.desc else column.asc())
    tie_breaker = sort_args.tie_breaker
    if tie_breaker and tie_breaker in sort_args.sortable_columns:
        if all(item.column != tie_breaker for item in sort_items):
            clauses.append(sort_args.sortable_columns[tie_breaker].asc())
    return clauses


def list_query(
    engine: Engine,
    stmt: Select,
    allowed_filters: Iterable[str],
    filters: dict[str, str],
    filter_args: dict[str, Any],
) -> ListResult:
    """Apply request filters to stmt, then return one page plus the total count.

    used_filters holds the parsed value of every filter that shaped the
    result, defaults included (limit, offset, sort, data_format), so the
    response meta can echo exactly what was applied.
    """
    allowed = set(allowed_filters) | set(_ALWAYS_ALLOWED)
    for name in filters:
        if name not in allowed:
            raise InputError(f"filter {name!r} is not supported by this endpoint")

    used: dict[str, Any] = {
        LIMIT_QUERY: _parse_int(LIMIT_QUERY, filters.get(LIMIT_QUERY), DEFAULT_LIMIT, 0, MAX_LIMIT),
        OFFSET_QUERY: _parse_int(OFFSET_QUERY, filters.get(OFFSET_QUERY), 0, 0, MAX_OFFSET),
    }

    if DATA_FORMAT_QUERY in allowed:
        used[DATA_FORMAT_QUERY] = parse_data_format(filters.get(DATA_FORMAT_QUERY))

    search = filters.get(SEARCH_QUERY, "").strip()
    if search:
        search_fn: Callable[[Select, str], Select] = filter_args[SEARCH_QUERY]
        stmt = search_fn(stmt, search)
        used[SEARCH_QUERY] = search

    sort_args: SortArgs = filter_args[SORT_FILTER_ARGS]
    if filters.get(SORT_QUERY):
        sort_items = parse_sort(filters[SORT_QUERY], sort_args)
    else:
        sort_items = list(sort_args.default_sortable)
    used[SORT_QUERY] = sort_items

    count_stmt = select(func.count()).select_from(stmt.subquery())
    page_stmt = stmt.order_by(*_order_by(sort_items, sort_args)).limit(used[LIMIT_QUERY]).offset(used[OFFSET_QUERY])
    with engine.connect() as conn:
        total_items = conn.execute(count_stmt).scalar_one()
        rows = conn.execute(page_stmt).fetchall()

    return ListResult(used_filters=used, total_items=total_items, rows=rows, statement=stmt)


def fetch_facets(engine: Engine, stmt: Select, columns: Iterable[str]) -> dict[str, set]:
    """Return the distinct values of the named columns of stmt's result set."""
    columns = list(columns)
    sub = stmt.subquery()
    facet_stmt = select(*(sub.c[name] for name in columns)).distinct()
    facets: dict[str, set] = {name: set() for name in columns}
    with engine.connect() as conn:
        for row in conn.execute(facet_stmt):
            for name, value in zip(columns, row):
                facets[name].add(value)
    return facets
