"""
auth/guards.py -- Role-hierarchy authorization checks.

Pure functions over an immutable Identity. Nothing here knows about HTTP;
auth/dependencies.py adapts these into FastAPI dependencies.

Hierarchy:
  admin  -> admin, editor, viewer, user
  editor -> editor, viewer
  viewer -> viewer
  user   -> user

A role outside the table subsumes only itself.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.errors import InsufficientPermissions, Unauthenticated
from auth.models import Identity

ROLE_HIERARCHY: dict[str, frozenset[str]] = {
    "admin": frozenset({"admin", "editor", "viewer", "user"}),
    "editor": frozenset({"editor", "viewer"}),
    "viewer": frozenset({"viewer"}),
    "user": frozenset({"user"}),
}


def effective_roles(roles: Iterable[str]) -> frozenset[str]:
    """Expand a role list to every role it subsumes."""
    granted: set[str] = set()
    for role in roles:
        role = role.lower()
        granted |= ROLE_HIERARCHY.get(role, frozenset({role}))
    return frozenset(granted)


def has_role(identity: Identity | Iterable[str] | None, required: str) -> bool:
    if identity is None:
        return False
    roles = identity.roles if isinstance(identity, Identity) else identity
    return required.lower() in effective_roles(roles)


def require_auth(identity: Identity | None) -> Identity:
    if identity is None:
        raise Unauthenticated()
    return identity


def require_role(identity: Identity | None, role: str) -> Identity:
    identity = require_auth(identity)
    if not has_role(identity, role):
        raise InsufficientPermissions()
    return identity


def require_any_role(identity: Identity | None, roles: Iterable[str]) -> Identity:
    identity = require_auth(identity)
    if not any(has_role(identity, r) for r in roles):
        raise InsufficientPermissions()
    return identity
