"""
auth/credentials.py -- Local email/password identities.

CredentialAuthenticator owns registration, password checks, session issuance
and revocation. It does not decide whether MFA is due; LoginFlow composes it
with MFAEnrollment for that.

Security notes:
  [C1] authenticate() raises the same InvalidCredentials for an unknown
       email, a wrong password and a passwordless (federated-only) account,
       and always spends one bcrypt verification so the three cases take
       the same time.

  Emails are normalised (strip + lower-case) on every entry point, so
  "Alice@Example.com" and "alice@example.com" are one account.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.errors import InvalidCredentials, Unauthenticated
from auth.models import TokenPair, User
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import TokenService

logger = logging.getLogger("authcore.auth.credentials")


def normalise_email(email: str) -> str:
    return email.strip().lower()


class CredentialAuthenticator:
    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        default_role: str = "user",
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.default_role = default_role

    def register(self, email: str, username: str, password: str, role: str | None = None) -> User:
        """Create a local account. Raises EmailAlreadyExists / UsernameAlreadyExists."""
        user = self.store.create_user(
            User(
                email=normalise_email(email),
                username=username.strip(),
                password_hash=self.hasher.hash(password),
                role=(role or self.default_role).lower(),
            )
        )
        logger.info("Registered user %s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> User:
        """Return the user whose password matches, or raise InvalidCredentials."""
        user = self.store.get_by_email(normalise_email(email))
        if user is None or not user.password_hash:
            self.hasher.check_missing(password)
            raise InvalidCredentials()
        if not self.hasher.verify(password, user.password_hash):
            logger.info("Failed password check for user %s", user.id)
            raise InvalidCredentials()
        return user

    def issue_session(self, user: User) -> TokenPair:
        """Mint a token pair, persist its refresh half and stamp last_login."""
        pair = self.tokens.issue_pair(user)
        self.store.set_refresh_token(user.id, pair.refresh_token, pair.refresh_expires_at)
        self.store.update_last_login(user.id)
        return pair

    def login(self, email: str, password: str) -> tuple[User, TokenPair]:
        user = self.authenticate(email, password)
        return user, self.issue_session(user)

    def revoke(self, user_id: str) -> None:
        """Forget the stored refresh token. Outstanding access tokens live until exp."""
        self.store.clear_refresh_token(user_id)

    def profile(self, user_id: str) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise Unauthenticated()
        return user
