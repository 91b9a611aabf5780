"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; stores, services, and routes do the work.

AuthResult is a closed sum type: every login step returns exactly one of
Authenticated, MFAPending, or Rejected. Callers branch with isinstance()
rather than probing optional fields.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from auth.errors import AuthError

ACCESS = "access"
REFRESH = "refresh"


@dataclass
class User:
    """A local identity record.

    password_hash is None for federated-only users (they have no local
    password and can only sign in through the OIDC provider).

    roles always contains role -- __post_init__ repairs records that were
    built with an empty or inconsistent role list.

    backup_codes holds SHA-256 hex digests only. Plaintext codes are shown to
    the user once at MFA setup and never stored.
    """

    email: str
    username: str
    role: str = "user"
    roles: list[str] = field(default_factory=list)
    id: str | None = None
    password_hash: str | None = None
    is_email_verified: bool = False
    mfa_enabled: bool = False
    mfa_verified: bool = False
    mfa_secret: str | None = None
    backup_codes: list[str] = field(default_factory=list)
    refresh_token: str | None = None
    refresh_token_expires: str | None = None
    oauth_provider: str | None = None
    oauth_subject: str | None = None
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def __post_init__(self) -> None:
        if self.role not in self.roles:
            self.roles = [self.role, *self.roles]

    @property
    def mfa_active(self) -> bool:
        """True when login must stop for a second factor.

        An enrolled-but-unconfirmed secret does not gate login.
        """
        return self.mfa_enabled and self.mfa_verified

    def public_dict(self) -> dict[str, Any]:
        """Profile fields safe to return to a client. No secrets, no hashes."""
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "role": self.role,
            "roles": list(self.roles),
            "is_email_verified": self.is_email_verified,
            "mfa_enabled": self.mfa_enabled,
            "mfa_verified": self.mfa_verified,
            "oauth_provider": self.oauth_provider,
            "last_login": self.last_login,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class TokenClaims:
    """The closed claim set carried by every access and refresh token."""

    sub: str
    token_type: str  # ACCESS or REFRESH
    iss: str
    aud: str
    iat: int
    exp: int
    jti: str
    email: str | None = None
    roles: tuple[str, ...] = ()


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds
    refresh_expires_at: str  # ISO 8601


@dataclass(frozen=True)
class Identity:
    """The resolved identity attached to a request. Immutable by construction."""

    user_id: str
    email: str | None = None
    roles: tuple[str, ...] = ()

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> Identity:
        return cls(user_id=claims.sub, email=claims.email, roles=tuple(claims.roles))

    @classmethod
    def from_user(cls, user: User) -> Identity:
        return cls(user_id=user.id or "", email=user.email, roles=tuple(user.roles))


@dataclass(frozen=True)
class FederatedIdentity:
    """An identity asserted by the external OIDC provider.

    id is the provider's stable subject. roles are lower-cased on the way in
    so comparisons against the local hierarchy are case-insensitive.
    """

    id: str
    email: str
    name: str = ""
    roles: tuple[str, ...] = ("user",)
    email_verified: bool = False
    claims: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass
class OAuthExchangeState:
    """Per-session anti-CSRF / anti-replay values for one authorization request.

    Lives in the signed session cookie between the redirect and the callback
    and is consumed exactly once.
    """

    state: str
    nonce: str
    return_to: str | None = None

    def to_session(self) -> dict[str, Any]:
        return {"state": self.state, "nonce": self.nonce, "return_to": self.return_to}

    @classmethod
    def from_session(cls, data: dict[str, Any] | None) -> OAuthExchangeState | None:
        if not data or not data.get("state") or not data.get("nonce"):
            return None
        return cls(state=data["state"], nonce=data["nonce"], return_to=data.get("return_to"))


@dataclass
class MFASetup:
    """Result of enrolment. backup_codes are plaintext and must be shown once."""

    secret: str
    provisioning_uri: str
    qr_code: str  # data: URL (PNG)
    backup_codes: list[str]
    hashed_backup_codes: list[str]


# ---------------------------------------------------------------------------
# Login outcomes
# ---------------------------------------------------------------------------


@dataclass
class Authenticated:
    user: User
    tokens: TokenPair


@dataclass
class MFAPending:
    user_id: str


@dataclass
class Rejected:
    error: AuthError


AuthResult = Union[Authenticated, MFAPending, Rejected]
