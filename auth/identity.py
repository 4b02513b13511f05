"""
auth/identity.py -- Decoding of the x-rh-identity request header.

The API gateway in front of the service authenticates the caller and forwards
who they are as base64-encoded JSON:

    {"identity": {"org_id": "12345", "account_number": "67890", ...}}

This module only decodes and validates the shape. Trust in the header comes
from the gateway; the service is never exposed without it.
"""

from __future__ import annotations

import base64
import binascii
import json

from auth.models import Identity

IDENTITY_HEADER = "x-rh-identity"

# Generous upper bound; real identities are well under 2 KB.
_MAX_HEADER_LEN = 8192


def encode_identity(org_id: str, account_number: str | None = None) -> str:
    """Build a header value. Used by tests and local tooling."""
    identity: dict = {"org_id": org_id}
    if account_number is not None:
        identity["account_number"] = account_number
    return base64.b64encode(json.dumps({"identity": identity}).encode()).decode()


def decode_identity(header: str | None) -> Identity | None:
    """Return the Identity carried by header, or None if it is missing or malformed."""
    if not header or len(header) > _MAX_HEADER_LEN:
        return None
    try:
        payload = json.loads(base64.b64decode(header, validate=True))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    identity = payload.get("identity")
    if not isinstance(identity, dict):
        return None
    org_id = identity.get("org_id")
    if not isinstance(org_id, str) or not org_id:
        return None
    account_number = identity.get("account_number")
    return Identity(
        org_id=org_id,
        account_number=account_number if isinstance(account_number, str) else None,
    )
