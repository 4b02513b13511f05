"""
API request and response models for ClusterVuln REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from core.models import ExposedCluster

# ---------------------------------------------------------------------------
# Exposed clusters
# ---------------------------------------------------------------------------


class ExposedClusterRow(BaseModel):
    """One cluster in GET /cves/{cve_name}/exposed_clusters.

    id is the cluster uuid, not the internal database id.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    status: str
    type: str
    version: str
    provider: str
    region: str
    last_seen: Optional[datetime] = None

    @classmethod
    def from_domain(cls, cluster: ExposedCluster) -> "ExposedClusterRow":
        return cls(
            id=cluster.uuid,
            display_name=cluster.display_name,
            status=cluster.status,
            type=cluster.type,
            version=cluster.version,
            provider=cluster.provider,
            region=cluster.region,
            last_seen=cluster.last_seen,
        )


class ExposedClustersMeta(BaseModel):
    """Pagination, applied filters and facet sets for the exposed-clusters list.

    The cluster_* facets span every cluster matching the request, not only
    the returned page, so a UI can build its filter dropdowns from them.
    """

    model_config = ConfigDict(frozen=True)

    limit: int
    offset: int
    total_items: int
    sort: str
    search: Optional[str] = None
    data_format: str = "json"
    cluster_statuses: list[str] = Field(default_factory=list)
    cluster_versions: list[str] = Field(default_factory=list)
    cluster_providers: list[str] = Field(default_factory=list)


class ExposedClustersResponse(BaseModel):
    """Response body; data is a CSV document when data_format=csv."""

    model_config = ConfigDict(frozen=True)

    data: Union[list[ExposedClusterRow], str]
    meta: ExposedClustersMeta


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
