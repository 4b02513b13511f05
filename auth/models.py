"""
auth/models.py -- Domain dataclass for the authenticated caller.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in core/models.py -- dataclasses own domain shape; dependencies and routes do
the work.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Identity:
    """The organization a request acts for.

    org_id comes from the x-rh-identity header. account_id is the internal
    account row for that organization, or None when the organization has no
    data in this service yet (every account-scoped query then matches nothing).
    """

    org_id: str
    account_number: str | None = None
    account_id: int | None = None
