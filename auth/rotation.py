"""
auth/rotation.py -- Single-use refresh token rotation.

Every successful refresh replaces the stored refresh token with a freshly
minted one, so the presented token is spent. The replacement is a
compare-and-swap in the store (UserStore.swap_refresh_token): when two
requests race with the same token, exactly one UPDATE matches and the other
observes TokenMismatch. The new pair is only returned after the swap commits.

Check order on refresh():
  1. signature / type / expiry of the JWT           -> TokenInvalid / TokenExpired
  2. the user still exists                          -> UserNotFound
  3. the token equals the stored one (constant time) -> TokenMismatch
  4. the stored expiry has not passed               -> TokenExpired
  5. compare-and-swap persisted                     -> TokenMismatch on loss

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime

from auth.errors import TokenExpired, TokenMismatch, UserNotFound
from auth.models import REFRESH, TokenPair
from auth.store import UserStore
from auth.tokens import TokenService

logger = logging.getLogger("authcore.auth.rotation")


class RefreshRotator:
    def __init__(self, store: UserStore, tokens: TokenService) -> None:
        self.store = store
        self.tokens = tokens

    def refresh(self, presented: str) -> TokenPair:
        """Exchange a valid refresh token for a new access/refresh pair.

        Raises TokenInvalid, TokenExpired, TokenMismatch or UserNotFound.
        """
        claims = self.tokens.decode(presented, REFRESH)

        user = self.store.get_by_id(claims.sub)
        if user is None:
            raise UserNotFound()

        stored = user.refresh_token or ""
        if not stored or not hmac.compare_digest(stored.encode(), presented.encode()):
            logger.warning("Refresh token mismatch for user %s", user.id)
            raise TokenMismatch()

        if user.refresh_token_expires:
            expires = datetime.fromisoformat(user.refresh_token_expires)
            if expires <= self.tokens.now():
                raise TokenExpired()

        pair = self.tokens.issue_pair(user)
        swapped = self.store.swap_refresh_token(user.id, presented, pair.refresh_token, pair.refresh_expires_at)
        if not swapped:
            logger.warning("Concurrent refresh lost the race for user %s", user.id)
            raise TokenMismatch()
        return pair
