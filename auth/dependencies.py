"""
auth/dependencies.py -- FastAPI Depends() helpers for request identity.

get_current_identity() decodes the x-rh-identity header and resolves the
caller's organization to the internal account id through the store on
app.state. Missing or malformed identity is HTTP 401.

Layer rule: no imports from api/ or ams/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.identity import IDENTITY_HEADER, decode_identity
from auth.models import Identity


def try_get_current_identity(request: Request) -> Identity | None:
    """Return the caller's Identity with account_id resolved, or None.

    Never raises for bad headers -- callers that need a hard 401 should use
    get_current_identity(). Database errors from the account lookup do
    propagate.
    """
    identity = decode_identity(request.headers.get(IDENTITY_HEADER))
    if identity is None:
        return None
    identity.account_id = request.app.state.store.get_account_id(identity.org_id)
    return identity


def get_current_identity(request: Request) -> Identity:
    """Require an identity. Raises HTTP 401 if the request carries none.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_current_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Missing or invalid identity header."},
        )
    return identity
