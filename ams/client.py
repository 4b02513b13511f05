"""
ams/client.py -- Client for the account management service (AMS) inventory API.

AMS knows which clusters an organization currently has and their live
metadata (display name, lifecycle status, OpenShift version, cloud provider,
region). The exposed-clusters endpoint uses it to hide clusters that no longer
exist and to show up-to-date names and versions instead of the last values the
database recorded.

Authentication is the OAuth2 client-credentials grant. The access token is
cached on the client and refreshed shortly before it expires.

Every failure (transport error, non-2xx status, unparseable body) surfaces as
AMSError so the route can answer 502 without knowing about requests.
"""

import logging
import time
from typing import Any, Optional

import requests

from core.models import ClusterInfo

logger = logging.getLogger("clustervuln.ams")

ORGANIZATIONS_PATH = "/api/accounts_mgmt/v1/organizations"
SUBSCRIPTIONS_PATH = "/api/accounts_mgmt/v1/subscriptions"

# Refresh the token this many seconds before AMS would reject it.
_TOKEN_EXPIRY_MARGIN = 30


class AMSError(Exception):
    """Raised when AMS cannot be reached or returns an unusable response."""


def _quote(value: str) -> str:
    """Escape a value for use inside a single-quoted AMS search literal."""
    return value.replace("\\", "\\\\").replace("'", "''")


def _subscription_search(
    ams_org_id: str,
    statuses: Optional[list[str]] = None,
    search: str = "",
) -> str:
    clauses = [f"organization_id = '{_quote(ams_org_id)}'", "cluster_id != ''"]
    if statuses:
        quoted = ", ".join(f"'{_quote(s)}'" for s in statuses)
        clauses.append(f"status in ({quoted})")
    if search:
        term = _quote(search)
        clauses.append(f"(display_name ilike '%{term}%' or external_cluster_id ilike '%{term}%')")
    return " and ".join(clauses)


def _cluster_from_subscription(item: Any) -> Optional[ClusterInfo]:
    """Map one subscription to ClusterInfo; None when it has no cluster uuid.

    Raises AMSError when the subscription is not shaped the way AMS documents it.
    """
    if not isinstance(item, dict):
        raise AMSError(f"subscription is not an object: {type(item).__name__}")
    uuid = item.get("external_cluster_id")
    if not uuid:
        return None
    try:
        metrics = item.get("metrics") or [{}]
        plan = item.get("plan") or {}
        return ClusterInfo(
            uuid=str(uuid),
            display_name=item.get("display_name") or str(uuid),
            status=item.get("status") or "",
            type=plan.get("id") or "",
            version=(metrics[0] or {}).get("openshift_version") or "",
            provider=item.get("cloud_provider_id") or "",
            region=item.get("region_id") or "",
        )
    except (AttributeError, TypeError, KeyError, IndexError) as e:
        raise AMSError(f"malformed subscription {str(uuid)[:50]}: {e}") from e


class AMSClient:
    def __init__(
        self,
        api_url: str,
        token_url: str,
        client_id: str,
        client_secret: str,
        timeout: int = 10,
        page_size: int = 100,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.page_size = page_size
        self._session = requests.Session()
        # AMS and SSO are known endpoints; a long redirect chain means something is wrong.
        self._session.max_redirects = 3
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        try:
            resp = self._session.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
            token = payload["access_token"]
            expires_in = int(payload.get("expires_in", 300))
        except requests.RequestException as e:
            raise AMSError(f"token request failed: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise AMSError(f"malformed token response: {e}") from e
        self._token = token
        self._token_expires_at = time.monotonic() + max(expires_in - _TOKEN_EXPIRY_MARGIN, 0)
        logger.debug("AMS access token refreshed (expires in %ds)", expires_in)
        return token

    def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        try:
            resp = self._session.get(f"{self.api_url}{path}", params=params, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as e:
            raise AMSError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise AMSError(f"GET {path} returned invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise AMSError(f"GET {path} returned unexpected payload type {type(payload).__name__}")
        return payload

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def get_internal_org_id(self, org_id: str) -> Optional[str]:
        """Translate an external organization id into the AMS organization id."""
        payload = self._get(
            ORGANIZATIONS_PATH,
            {"search": f"external_id = '{_quote(org_id)}'", "page": 1, "size": 1},
        )
        items = payload.get("items") or []
        if not items:
            return None
        if not isinstance(items, list) or not isinstance(items[0], dict):
            raise AMSError("organization lookup returned malformed items")
        ams_org_id = items[0].get("id")
        if not isinstance(ams_org_id, str) or not ams_org_id:
            raise AMSError("organization lookup returned an item without an id")
        return ams_org_id

    def get_clusters_for_organization(
        self,
        org_id: str,
        statuses: Optional[list[str]] = None,
        versions: Optional[list[str]] = None,
        search: str = "",
    ) -> dict[str, ClusterInfo]:
        """Return every cluster AMS knows for org_id, keyed by cluster uuid.

        statuses is applied by AMS; versions is applied to the returned
        clusters because AMS cannot search on subscription metrics. search
        matches display name or uuid, case-insensitively.
        """
        ams_org_id = self.get_internal_org_id(org_id)
        if ams_org_id is None:
            logger.warning("Organization %s not found in AMS -- no clusters to report", org_id)
            return {}

        query = _subscription_search(ams_org_id, statuses, search)
        clusters: dict[str, ClusterInfo] = {}
        page = 1
        while True:
            payload = self._get(
                SUBSCRIPTIONS_PATH,
                {"search": query, "fetchMetrics": "true", "page": page, "size": self.page_size},
            )
            items = payload.get("items") or []
            if not isinstance(items, list):
                raise AMSError(f"GET {SUBSCRIPTIONS_PATH} returned malformed items")
            for item in items:
                info = _cluster_from_subscription(item)
                if info is None:
                    continue
                if versions and info.version not in versions:
                    continue
                clusters[info.uuid] = info
            total = payload.get("total")
            if len(items) < self.page_size or (isinstance(total, int) and page * self.page_size >= total):
                break
            page += 1

        logger.info("AMS returned %d clusters for organization %s", len(clusters), org_id)
        return clusters

    def close(self) -> None:
        self._session.close()
