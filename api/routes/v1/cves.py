"""
api/routes/v1/cves.py -- CVE route handlers for the ClusterVuln REST API.

Routes:
  GET /cves/{cve_name}/exposed_clusters -- clusters running images affected by a CVE

Request flow of the exposed-clusters listing:
  1. 404 unless the CVE exists.
  2. With AMS enabled, fetch the organization's live clusters. The search
     filter moves from the database to AMS, which matches both uuid and
     display name. The facet sets come from every AMS cluster.
  3. Query the database for exposed clusters of the caller's account,
     restricted to AMS clusters when AMS is enabled, then filter, sort and
     paginate (vulndb.listing).
  4. Overlay AMS metadata on the page of rows; without AMS the facets are
     the distinct database values over the whole filtered result.

Rate limits are applied via slowapi. @router.get must be the outermost
decorator so FastAPI registers the rate-limited wrapper.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from ams.client import AMSClient, AMSError
from api.envelope import build_data_meta_response, build_meta
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, ExposedClusterRow, ExposedClustersMeta, ExposedClustersResponse
from auth.dependencies import get_current_identity
from auth.models import Identity
from core.config import get_settings
from core.models import ClusterInfo, ExposedCluster, empty_to_na
from vulndb.listing import (
    DATA_FORMAT_QUERY,
    SEARCH_QUERY,
    SORT_FILTER_ARGS,
    SORT_QUERY,
    InputError,
    SortArgs,
    SortItem,
    fetch_facets,
    get_requested_filters,
    list_query,
)
from vulndb.store import EXPOSED_CLUSTERS_SORTABLE, VulnStore, exposed_clusters_search

logger = logging.getLogger("clustervuln.api")

router = APIRouter()

_EXPOSED_CLUSTERS_ALLOWED_FILTERS = (SEARCH_QUERY, SORT_QUERY, DATA_FORMAT_QUERY)

_EXPOSED_CLUSTERS_FILTER_ARGS: dict[str, Any] = {
    SORT_FILTER_ARGS: SortArgs(
        sortable_columns=EXPOSED_CLUSTERS_SORTABLE,
        default_sortable=[SortItem(column="id")],
    ),
    SEARCH_QUERY: exposed_clusters_search,
}

# Response meta facet name -> exposed-clusters column.
_FACET_COLUMNS = {
    "cluster_statuses": "status",
    "cluster_versions": "version",
    "cluster_providers": "provider",
}

_CSV_HEADERS = list(ExposedClusterRow.model_fields)

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    code: {"model": ErrorResponse, "description": description}
    for code, description in (
        (400, "Invalid filter value"),
        (401, "Missing or invalid identity"),
        (404, "CVE not found"),
        (500, "Database error"),
        (502, "AMS error"),
    )
}


def _internal_error() -> HTTPException:
    return HTTPException(
        status_code=500,
        detail=ErrorDetail(code="internal_error", message="Internal server error").model_dump(),
    )


def _merge_cluster(row, info: Optional[ClusterInfo]) -> ExposedCluster:
    """Build the response DTO from a database row, preferring live AMS values."""
    cluster = ExposedCluster(
        uuid=row.uuid,
        display_name=row.display_name,
        status=empty_to_na(row.status),
        version=empty_to_na(row.version),
        provider=empty_to_na(row.provider),
        last_seen=row.last_seen,
    )
    if info is not None:
        cluster.display_name = info.display_name
        cluster.status = empty_to_na(info.status)
        cluster.type = empty_to_na(info.type)
        cluster.version = empty_to_na(info.version)
        cluster.provider = empty_to_na(info.provider)
        cluster.region = empty_to_na(info.region)
    return cluster


@router.get(
    "/cves/{cve_name}/exposed_clusters",
    response_model=ExposedClustersResponse,
    responses=_ERROR_RESPONSES,
)
@limiter.limit(lambda: get_settings().exposed_clusters_rate_limit)
def get_exposed_clusters(
    request: Request,
    cve_name: str,
    identity: Identity = Depends(get_current_identity),
) -> dict[str, Any]:
    """List the caller's clusters exposed to a CVE.

    Query params:
        sort        -- column(s) to sort by, "-" prefix for descending; repeatable
                       or comma separated (id, display_name, status, version,
                       provider, uuid, last_seen)
        search      -- substring of the cluster uuid (and display name with AMS)
        limit       -- page size, 0-100 (default 20)
        offset      -- rows to skip (default 0)
        data_format -- json | csv
    """
    store: VulnStore = request.app.state.store
    ams: Optional[AMSClient] = request.app.state.ams
    filters = get_requested_filters(request.query_params.multi_items())

    try:
        cve = store.get_cve_details(cve_name)
    except SQLAlchemyError:
        logger.exception("Database error looking up %s", cve_name[:50])
        raise _internal_error() from None
    if cve is None:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(code="cve_not_found", message=f"{cve_name[:50]} not found").model_dump(),
        )

    cluster_ids: Optional[list[str]] = None
    cluster_info: dict[str, ClusterInfo] = {}
    ams_search = ""
    facets: dict[str, set[str]] = {name: set() for name in _FACET_COLUMNS}

    if ams is not None:
        # AMS searches uuid and display name; searching uuid in the DB as well
        # would drop clusters that only match by display name.
        ams_search = filters.pop(SEARCH_QUERY, "").strip()
        try:
            cluster_info = ams.get_clusters_for_organization(identity.org_id, search=ams_search)
        except AMSError as e:
            logger.error("Error returned from AMS client: %s", e)
            raise HTTPException(
                status_code=502,
                detail=ErrorDetail(code="ams_error", message="Error returned from AMS API").model_dump(),
            ) from None
        cluster_ids = list(cluster_info)
        for info in cluster_info.values():
            facets["cluster_statuses"].add(empty_to_na(info.status))
            facets["cluster_versions"].add(empty_to_na(info.version))
            facets["cluster_providers"].add(empty_to_na(info.provider))

    stmt = store.build_exposed_clusters_query(cve_name, identity.account_id, cluster_ids)
    try:
        result = list_query(
            store.engine,
            stmt,
            _EXPOSED_CLUSTERS_ALLOWED_FILTERS,
            filters,
            _EXPOSED_CLUSTERS_FILTER_ARGS,
        )
        if ams is None:
            db_facets = fetch_facets(store.engine, result.statement, _FACET_COLUMNS.values())
            for name, column in _FACET_COLUMNS.items():
                facets[name] = {empty_to_na(v) for v in db_facets[column]}
    except InputError as e:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(code="invalid_filter", message=str(e)).model_dump(),
        ) from None
    except SQLAlchemyError:
        logger.exception("Database error listing exposed clusters for %s", cve_name[:50])
        raise _internal_error() from None

    if ams_search:
        result.used_filters[SEARCH_QUERY] = ams_search

    rows = [ExposedClusterRow.from_domain(_merge_cluster(row, cluster_info.get(row.uuid))) for row in result.rows]
    meta = ExposedClustersMeta(**build_meta(result.used_filters, result.total_items, facets))
    return build_data_meta_response(rows, meta, result.used_filters, _CSV_HEADERS)
