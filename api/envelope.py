"""
api/envelope.py -- The {"data": ..., "meta": ...} envelope of list responses.

build_meta() echoes the filters that shaped the result (see
vulndb.listing.list_query) plus any facet sets the endpoint collected.
build_data_meta_response() renders the data section as JSON rows or, for
data_format=csv, as a CSV document.
"""

from collections.abc import Sequence
from typing import Any, Optional

from pydantic import BaseModel

from core.formatter import to_csv
from vulndb.listing import DATA_FORMAT_QUERY, LIMIT_QUERY, OFFSET_QUERY, SEARCH_QUERY, SORT_QUERY


def build_meta(
    used_filters: dict[str, Any],
    total_items: int,
    facets: Optional[dict[str, set[str]]] = None,
) -> dict[str, Any]:
    """Return the meta section. Facet sets are emitted as sorted lists."""
    meta: dict[str, Any] = {
        "limit": used_filters[LIMIT_QUERY],
        "offset": used_filters[OFFSET_QUERY],
        "total_items": total_items,
        "sort": ",".join(str(item) for item in used_filters.get(SORT_QUERY, [])),
        "search": used_filters.get(SEARCH_QUERY),
        "data_format": used_filters.get(DATA_FORMAT_QUERY, "json"),
    }
    for name, values in (facets or {}).items():
        meta[name] = sorted(values)
    return meta


def build_data_meta_response(
    rows: Sequence[BaseModel],
    meta: Any,
    used_filters: dict[str, Any],
    csv_headers: Sequence[str],
) -> dict[str, Any]:
    if used_filters.get(DATA_FORMAT_QUERY) == "csv":
        data: Any = to_csv((row.model_dump() for row in rows), csv_headers)
    else:
        data = list(rows)
    return {"data": data, "meta": meta}
