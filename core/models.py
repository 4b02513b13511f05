"""
core/models.py -- Domain dataclasses for cluster exposure reporting.

Pure data containers. The API layer owns the HTTP contract (api/models.py);
these types are what the store, the AMS client and the route handlers pass
between each other.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

NOT_AVAILABLE = "N/A"


def empty_to_na(value: Optional[str]) -> str:
    """Return "N/A" for missing inventory values, the value otherwise."""
    return value if value else NOT_AVAILABLE


@dataclass
class ClusterInfo:
    """Live cluster metadata as reported by AMS."""

    uuid: str
    display_name: str = ""
    status: str = ""
    type: str = ""
    version: str = ""
    provider: str = ""
    region: str = ""


@dataclass
class CveDetails:
    name: str
    description: str = ""
    severity: str = ""
    cvss2_score: Optional[float] = None
    cvss3_score: Optional[float] = None
    public_date: Optional[datetime] = None
    redhat_url: Optional[str] = None


@dataclass
class ExposedCluster:
    """One cluster exposed to a CVE.

    Built from a database row and, when AMS is enabled, overlaid with the
    live inventory fields. display_name falls back to the uuid.
    """

    uuid: str
    display_name: str
    status: str = NOT_AVAILABLE
    type: str = NOT_AVAILABLE
    version: str = NOT_AVAILABLE
    provider: str = NOT_AVAILABLE
    region: str = NOT_AVAILABLE
    last_seen: Optional[datetime] = None
