"""Unit tests for vulndb/listing.py and api/envelope.py.

Covers:
- get_requested_filters(): known names only, repeated sort joined, last value wins
- parse_sort(): descending prefix, unknown / empty / duplicate columns
- list_query(): defaults, limits, disallowed filters, search, total count
- fetch_facets(): distinct values over the filtered statement
- build_meta() / build_data_meta_response(): envelope shape, CSV rendering
"""

import csv
import io

import pytest

from api.envelope import build_data_meta_response, build_meta
from api.models import ExposedClusterRow
from dataset import CLUSTER_1, CLUSTER_2, CLUSTER_3, LOG4SHELL
from vulndb.listing import (
    DATA_FORMAT_QUERY,
    LIMIT_QUERY,
    OFFSET_QUERY,
    SEARCH_QUERY,
    SORT_FILTER_ARGS,
    SORT_QUERY,
    InputError,
    SortArgs,
    SortItem,
    fetch_facets,
    get_requested_filters,
    list_query,
    parse_sort,
)
from vulndb.store import EXPOSED_CLUSTERS_SORTABLE, exposed_clusters_search

_SORT_ARGS = SortArgs(sortable_columns=EXPOSED_CLUSTERS_SORTABLE, default_sortable=[SortItem("id")])
_FILTER_ARGS = {SORT_FILTER_ARGS: _SORT_ARGS, SEARCH_QUERY: exposed_clusters_search}
_ALLOWED = (SEARCH_QUERY, SORT_QUERY, DATA_FORMAT_QUERY)


@pytest.fixture
def exposed_stmt(store):
    account_id = store.get_account_id("org-1")
    return store.build_exposed_clusters_query(LOG4SHELL, account_id, None)


# ---------------------------------------------------------------------------
# get_requested_filters
# ---------------------------------------------------------------------------


class TestGetRequestedFilters:
    def test_unknown_params_ignored(self):
        filters = get_requested_filters([("limit", "5"), ("utm_source", "mail")])
        assert filters == {"limit": "5"}

    def test_repeated_sort_joined_in_order(self):
        filters = get_requested_filters([("sort", "status"), ("sort", "-id")])
        assert filters["sort"] == "status,-id"

    def test_last_value_wins_for_other_filters(self):
        filters = get_requested_filters([("offset", "1"), ("offset", "7")])
        assert filters["offset"] == "7"


# ---------------------------------------------------------------------------
# parse_sort
# ---------------------------------------------------------------------------


class TestParseSort:
    def test_ascending_and_descending(self):
        items = parse_sort("status,-last_seen", _SORT_ARGS)
        assert items == [SortItem("status"), SortItem("last_seen", desc=True)]
        assert [str(i) for i in items] == ["status", "-last_seen"]

    def test_whitespace_tolerated(self):
        assert parse_sort(" version , -id ", _SORT_ARGS) == [SortItem("version"), SortItem("id", desc=True)]

    @pytest.mark.parametrize("raw", ["nope", "status,", "-", "status,-status"])
    def test_invalid_sort_raises(self, raw):
        with pytest.raises(InputError):
            parse_sort(raw, _SORT_ARGS)


# ---------------------------------------------------------------------------
# list_query
# ---------------------------------------------------------------------------


class TestListQuery:
    def test_defaults(self, store, exposed_stmt):
        result = list_query(store.engine, exposed_stmt, _ALLOWED, {}, _FILTER_ARGS)
        assert result.used_filters == {
            LIMIT_QUERY: 20,
            OFFSET_QUERY: 0,
            DATA_FORMAT_QUERY: "json",
            SORT_QUERY: [SortItem("id")],
        }
        assert result.total_items == 3
        assert [r.uuid for r in result.rows] == [CLUSTER_1, CLUSTER_2, CLUSTER_3]

    def test_limit_zero_returns_count_only(self, store, exposed_stmt):
        result = list_query(store.engine, exposed_stmt, _ALLOWED, {"limit": "0"}, _FILTER_ARGS)
        assert result.rows == []
        assert result.total_items == 3

    @pytest.mark.parametrize(
        "filters",
        [
            {"limit": "-1"},
            {"limit": "101"},
            {"limit": "ten"},
            {"offset": "-5"},
            {"offset": str(2**63)},
            {"data_format": "xml"},
        ],
    )
    def test_invalid_values_raise(self, store, exposed_stmt, filters):
        with pytest.raises(InputError):
            list_query(store.engine, exposed_stmt, _ALLOWED, filters, _FILTER_ARGS)

    def test_disallowed_filter_raises(self, store, exposed_stmt):
        with pytest.raises(InputError, match="search"):
            list_query(store.engine, exposed_stmt, (SORT_QUERY,), {"search": "x"}, _FILTER_ARGS)

    def test_pagination_always_allowed(self, store, exposed_stmt):
        result = list_query(store.engine, exposed_stmt, (), {"limit": "1", "offset": "2"}, _FILTER_ARGS)
        assert [r.uuid for r in result.rows] == [CLUSTER_3]
        assert DATA_FORMAT_QUERY not in result.used_filters

    def test_blank_search_is_not_applied(self, store, exposed_stmt):
        result = list_query(store.engine, exposed_stmt, _ALLOWED, {"search": "  "}, _FILTER_ARGS)
        assert SEARCH_QUERY not in result.used_filters
        assert result.total_items == 3

    def test_search_is_case_insensitive(self, store, exposed_stmt):
        cluster_id = store.create_cluster("abcdef00-0000-0000-0000-000000000009", store.get_account_id("org-1"))
        store.link_cluster_image(cluster_id, 1)  # first seeded image carries LOG4SHELL
        result = list_query(store.engine, exposed_stmt, _ALLOWED, {"search": "ABCDEF"}, _FILTER_ARGS)
        assert [r.uuid for r in result.rows] == ["abcdef00-0000-0000-0000-000000000009"]

    def test_facets_over_filtered_statement(self, store, exposed_stmt):
        result = list_query(store.engine, exposed_stmt, _ALLOWED, {"search": "00001", "limit": "0"}, _FILTER_ARGS)
        facets = fetch_facets(store.engine, result.statement, ["status", "provider"])
        assert facets == {"status": {"Ready"}, "provider": {"aws"}}


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def _row(uuid: str, display_name: str) -> ExposedClusterRow:
    return ExposedClusterRow(
        id=uuid,
        display_name=display_name,
        status="Ready",
        type="OCP",
        version="4.12.1",
        provider="aws",
        region="eu-west-1",
    )


class TestEnvelope:
    def test_build_meta(self):
        used = {
            LIMIT_QUERY: 10,
            OFFSET_QUERY: 20,
            SORT_QUERY: [SortItem("status", desc=True), SortItem("id")],
            SEARCH_QUERY: "prod",
            DATA_FORMAT_QUERY: "json",
        }
        meta = build_meta(used, 42, {"cluster_statuses": {"Ready", "Archived"}})
        assert meta == {
            "limit": 10,
            "offset": 20,
            "total_items": 42,
            "sort": "-status,id",
            "search": "prod",
            "data_format": "json",
            "cluster_statuses": ["Archived", "Ready"],
        }

    def test_json_data_is_row_list(self):
        rows = [_row(CLUSTER_1, "a")]
        resp = build_data_meta_response(rows, {"total_items": 1}, {DATA_FORMAT_QUERY: "json"}, ["id"])
        assert resp == {"data": rows, "meta": {"total_items": 1}}

    def test_csv_data_is_document(self):
        rows = [_row(CLUSTER_1, "prod"), _row(CLUSTER_2, "=HYPERLINK(\"x\")")]
        headers = list(ExposedClusterRow.model_fields)
        resp = build_data_meta_response(rows, {}, {DATA_FORMAT_QUERY: "csv"}, headers)
        parsed = list(csv.reader(io.StringIO(resp["data"])))
        assert parsed[0] == headers
        assert parsed[1][:3] == [CLUSTER_1, "prod", "Ready"]
        assert parsed[1][-1] == ""
        assert parsed[2][1].startswith("\t=")
