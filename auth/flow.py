"""
auth/flow.py -- The login state machine.

    Unauthenticated
      -> CredentialsValidated
           -> (MFA enabled and verified) MFAPending -> MFAResolved -> Authenticated
           -> Authenticated

LoginFlow composes CredentialAuthenticator, MFAEnrollment and the store into
the steps an HTTP shell exposes. login() returns an AuthResult instead of
raising, so the route can branch on MFAPending without exception plumbing.
The MFA and enrolment steps raise typed AuthErrors.

verify_login_mfa() evaluates exactly one second factor. Supplying both a TOTP
code and a backup code, or neither, is rejected outright; a backup-code
success is never followed by a second TOTP check.

federated_login() is the alternate entry point: an identity already proven by
the OIDC provider is mapped onto a local record and gets a session directly.
The provider is responsible for its own second factor.
"""

from __future__ import annotations

import logging
import secrets

from auth.credentials import CredentialAuthenticator, normalise_email
from auth.errors import (
    AuthError,
    EmailAlreadyExists,
    InvalidBackupCode,
    InvalidMFAToken,
    MFAAlreadyEnabled,
    MFANotEnrolled,
    NoBackupCodesLeft,
    ProviderError,
)
from auth.mfa import MFAEnrollment
from auth.models import (
    Authenticated,
    AuthResult,
    FederatedIdentity,
    MFAPending,
    MFASetup,
    Rejected,
    User,
)
from auth.store import UserStore

logger = logging.getLogger("authcore.auth.flow")


class LoginFlow:
    def __init__(self, credentials: CredentialAuthenticator, mfa: MFAEnrollment, store: UserStore) -> None:
        self.credentials = credentials
        self.mfa = mfa
        self.store = store

    # ------------------------------------------------------------------
    # Password login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> AuthResult:
        try:
            user = self.credentials.authenticate(email, password)
        except AuthError as exc:
            return Rejected(exc)

        if user.mfa_active:
            logger.info("Second factor required for user %s", user.id)
            return MFAPending(user_id=user.id)

        return Authenticated(user=user, tokens=self.credentials.issue_session(user))

    def verify_login_mfa(
        self,
        user_id: str,
        token: str | None = None,
        backup_code: str | None = None,
    ) -> Authenticated:
        """Resolve MFAPending with exactly one of a TOTP code or a backup code.

        Raises InvalidMFAToken, InvalidBackupCode, NoBackupCodesLeft or
        MFANotEnrolled.
        """
        if bool(token) == bool(backup_code):
            raise InvalidMFAToken()

        user = self.store.get_by_id(user_id)
        if user is None:
            # Same answer as a wrong code: user_id values are not an oracle.
            raise InvalidMFAToken()
        if not user.mfa_active:
            raise MFANotEnrolled()

        if token:
            if not self.mfa.verify_token(user.mfa_secret, token):
                logger.warning("Invalid TOTP code at login for user %s", user.id)
                raise InvalidMFAToken()
        else:
            self._consume_backup_code(user, backup_code)

        return Authenticated(user=user, tokens=self.credentials.issue_session(user))

    def _consume_backup_code(self, user: User, code: str) -> None:
        if not user.backup_codes:
            raise NoBackupCodesLeft()
        matched = self.mfa.match_backup_code(code, user.backup_codes)
        if matched is None or not self.store.consume_backup_code(user.id, user.backup_codes, matched):
            logger.warning("Invalid backup code at login for user %s", user.id)
            raise InvalidBackupCode()
        logger.info("Backup code used by user %s (%d left)", user.id, len(user.backup_codes) - 1)

    # ------------------------------------------------------------------
    # Enrolment
    # ------------------------------------------------------------------

    def setup_mfa(self, user_id: str) -> MFASetup:
        """Start (or restart) enrolment. Raises MFAAlreadyEnabled once confirmed."""
        user = self.credentials.profile(user_id)
        if user.mfa_active:
            raise MFAAlreadyEnabled()

        setup = self.mfa.generate_secret(user.email)
        if not self.store.begin_mfa_enrollment(user.id, setup.secret, setup.hashed_backup_codes):
            raise MFAAlreadyEnabled()
        logger.info("MFA enrolment started for user %s", user.id)
        return setup

    def confirm_mfa(self, user_id: str, token: str) -> None:
        """Verify the first code from the authenticator and switch MFA on."""
        user = self.credentials.profile(user_id)
        if not user.mfa_enabled or not user.mfa_secret:
            raise MFANotEnrolled()
        if user.mfa_verified:
            raise MFAAlreadyEnabled()
        if not self.mfa.verify_token(user.mfa_secret, token):
            logger.warning("Invalid TOTP code during enrolment for user %s", user.id)
            raise InvalidMFAToken()
        if not self.store.mark_mfa_verified(user.id, user.mfa_secret):
            # setup_mfa ran again in between and replaced the secret
            raise InvalidMFAToken()
        logger.info("MFA enabled for user %s", user.id)

    # ------------------------------------------------------------------
    # Federation
    # ------------------------------------------------------------------

    def federated_login(self, provider: str, identity: FederatedIdentity) -> Authenticated:
        """Map a provider identity to a local user and issue a session.

        Lookup order: existing link, then matching email (linked on the
        spot), then a new passwordless account.
        """
        user = self.store.get_by_oauth(provider, identity.id)
        if user is None:
            user = self.store.get_by_email(normalise_email(identity.email))
            if user is not None:
                if not identity.email_verified:
                    # [H1] an unverified address may belong to someone else
                    logger.warning("Refusing to link unverified %s email to user %s", provider, user.id)
                    raise ProviderError("The identity provider has not verified this email address.")
                if user.oauth_subject is None:
                    self.store.link_oauth(user.id, provider, identity.id)
                    user = self.store.get_by_id(user.id)
                    logger.info("Linked %s identity to user %s", provider, user.id)
                else:
                    # email already bound to a different subject
                    raise EmailAlreadyExists("This email is linked to another external account.")
            else:
                user = self._provision(provider, identity)

        return Authenticated(user=user, tokens=self.credentials.issue_session(user))

    def _provision(self, provider: str, identity: FederatedIdentity) -> User:
        roles = list(identity.roles)
        email = normalise_email(identity.email)
        base = email.split("@", 1)[0] or "user"
        username = base if self.store.get_by_username(base) is None else f"{base}-{secrets.token_hex(3)}"
        user = self.store.create_user(
            User(
                email=email,
                username=username,
                role=roles[0],
                roles=roles,
                is_email_verified=identity.email_verified,
                oauth_provider=provider,
                oauth_subject=identity.id,
            )
        )
        logger.info("Provisioned user %s from %s", user.id, provider)
        return user
