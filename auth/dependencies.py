"""
auth/dependencies.py -- FastAPI Depends() adapters over auth/guards.py.

Two token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "access_token" cookie -- set by the OAuth callback redirect.

Both converge on an immutable Identity built from the verified claims. No
database lookup happens here; routes that need the full record call
CredentialAuthenticator.profile().

try_get_current_identity() is the soft variant (returns None on failure).
get_current_identity() raises Unauthenticated; require_role() and
require_any_role() build dependencies that also raise InsufficientPermissions.
The api/main.py exception handler turns both into the JSON error envelope.

Layer rule: may import fastapi (this module is part of the DI system); no
imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth import guards
from auth.models import ACCESS, Identity


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get("access_token")


def try_get_current_identity(request: Request) -> Identity | None:
    """Return the Identity for a valid access token, or None. Never raises."""
    token = _bearer_token(request)
    if not token:
        return None
    claims = request.app.state.tokens.verify(token, ACCESS)
    if claims is None:
        return None
    return Identity.from_claims(claims)


def get_current_identity(request: Request) -> Identity:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    return guards.require_auth(try_get_current_identity(request))


def require_role(role: str) -> Callable[[Request], Identity]:
    """Build a dependency that admits `role` or anything above it in the hierarchy.

        @router.get("/users")
        def route(identity: Identity = Depends(require_role("admin"))): ...
    """

    def dependency(request: Request) -> Identity:
        return guards.require_role(try_get_current_identity(request), role)

    return dependency


def require_any_role(*roles: str) -> Callable[[Request], Identity]:
    def dependency(request: Request) -> Identity:
        return guards.require_any_role(try_get_current_identity(request), roles)

    return dependency
