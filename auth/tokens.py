"""
auth/tokens.py -- JWT access / refresh token issuance and verification.

Security design decisions:
  Two signing domains: access tokens are signed with ACCESS_TOKEN_SECRET,
       refresh tokens with REFRESH_TOKEN_SECRET. The secrets are validated to
       differ at startup [S1], so a leaked access key cannot forge refresh
       tokens and vice versa.

  Algorithm pinned: python-jose HS256 on both encode and decode. The decode
       call passes algorithms=[HS256] so "alg: none" and algorithm-confusion
       tokens are rejected by the library.

  Closed claims: every token carries sub, token_type, iss, aud, iat, exp and
       a random jti. The jti guarantees two tokens minted in the same second
       for the same user are still distinct strings -- rotation relies on it.

  Expiry against the injected clock: python-jose's own exp check reads the
       wall clock, so it is disabled and exp is compared against self._now()
       instead. Tests drive expiry with a fake clock.

verify() never raises -- None means unauthenticated. decode() raises
TokenExpired / TokenInvalid for callers (the refresh rotator) that must
report which one happened.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import ACCESS, REFRESH, TokenClaims, TokenPair, User
from core.config import Settings

logger = logging.getLogger("authcore.auth.tokens")

_ALGORITHM = "HS256"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issue and verify signed access and refresh tokens.

    Usage:
        tokens = TokenService(settings)
        pair = tokens.issue_pair(user)
        claims = tokens.verify(pair.access_token, "access")
    """

    def __init__(self, settings: Settings, clock: Clock = utc_now) -> None:
        self._access_secret = settings.access_token_secret
        self._refresh_secret = settings.refresh_token_secret
        self.access_ttl = settings.access_token_expire_seconds
        self.refresh_ttl = settings.refresh_token_expire_seconds
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self._now = clock

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _base_claims(self, subject: str, token_type: str, ttl: int) -> dict:
        now = int(self._now().timestamp())
        return {
            "sub": subject,
            "token_type": token_type,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
        }

    def issue_access_token(self, user: User) -> str:
        """Sign {sub, email, roles, token_type="access"} with the access secret."""
        payload = self._base_claims(user.id, ACCESS, self.access_ttl)
        payload["email"] = user.email
        payload["roles"] = list(user.roles)
        return jwt.encode(payload, self._access_secret, algorithm=_ALGORITHM)

    def issue_refresh_token(self, user_id: str) -> str:
        """Sign {sub, token_type="refresh"} with the separate refresh secret."""
        payload = self._base_claims(user_id, REFRESH, self.refresh_ttl)
        return jwt.encode(payload, self._refresh_secret, algorithm=_ALGORITHM)

    def now(self) -> datetime:
        return self._now()

    def refresh_expiry(self) -> datetime:
        """The wall-clock expiry to persist next to a freshly issued refresh token."""
        return self._now() + timedelta(seconds=self.refresh_ttl)

    def issue_pair(self, user: User) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(user),
            refresh_token=self.issue_refresh_token(user.id),
            expires_in=self.access_ttl,
            refresh_expires_at=self.refresh_expiry().isoformat(),
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def decode(self, token: str, expected_type: str) -> TokenClaims:
        """Verify a token of the expected type and return its claims.

        Raises:
            TokenExpired: signature valid but exp has passed.
            TokenInvalid: anything else -- bad signature, malformed input,
                wrong token_type, wrong iss/aud, missing claims.
        """
        if expected_type not in (ACCESS, REFRESH):
            raise ValueError(f"Unknown token type: {expected_type!r}")
        if not token or not isinstance(token, str):
            raise TokenInvalid()

        secret = self._access_secret if expected_type == ACCESS else self._refresh_secret
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": False, "require_exp": True, "require_sub": True},
            )
        except JWTError as exc:
            raise TokenInvalid() from exc

        if payload.get("token_type") != expected_type:
            raise TokenInvalid()
        try:
            claims = TokenClaims(
                sub=str(payload["sub"]),
                token_type=payload["token_type"],
                iss=payload["iss"],
                aud=payload["aud"],
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
                jti=str(payload["jti"]),
                email=payload.get("email"),
                roles=tuple(payload.get("roles") or ()),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid() from exc

        if claims.exp <= int(self._now().timestamp()):
            raise TokenExpired()
        return claims

    def verify(self, token: str, expected_type: str = ACCESS) -> TokenClaims | None:
        """Soft variant of decode(). Returns None on any failure, never raises."""
        try:
            return self.decode(token, expected_type)
        except (TokenInvalid, TokenExpired):
            return None
