"""
auth/errors.py -- Typed, expected authentication outcomes.

Every class here is an *expected* failure: the HTTP shell translates it into
a response with a stable machine-readable code and it is never logged as an
unexpected error. Anything that is not an AuthError (store unavailable,
programming defects) falls through to the generic 500 handler in api/main.py.

Security note: messages for InvalidCredentials, StateMismatch and
InvalidMFAToken are fixed strings. They never say which check failed, so an
attacker cannot tell "unknown email" from "wrong password" [C1].

Layer rule: stdlib only.
"""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class. Subclasses override code, status_code and message."""

    code = "auth_error"
    status_code = 400
    message = "Authentication failed."

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.extra = extra


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid email or password."


class EmailAlreadyExists(AuthError):
    code = "email_already_exists"
    status_code = 409
    message = "A user with that email already exists."


class UsernameAlreadyExists(AuthError):
    code = "username_already_exists"
    status_code = 409
    message = "A user with that username already exists."


class PasswordTooLong(AuthError):
    code = "password_too_long"
    status_code = 422
    message = "Password must be at most 72 bytes."


class Unauthenticated(AuthError):
    code = "unauthenticated"
    status_code = 401
    message = "Authentication required."


class InsufficientPermissions(AuthError):
    code = "insufficient_permissions"
    status_code = 403
    message = "Insufficient permissions."


class TokenInvalid(AuthError):
    code = "token_invalid"
    status_code = 401
    message = "Invalid token."


class TokenExpired(AuthError):
    code = "token_expired"
    status_code = 401
    message = "Token has expired."


class TokenMismatch(AuthError):
    code = "token_mismatch"
    status_code = 401
    message = "Refresh token is no longer valid."


class UserNotFound(AuthError):
    code = "user_not_found"
    status_code = 401
    message = "User not found."


class MFARequired(AuthError):
    """Raised by the login route when credentials passed but a second factor is due.

    Carries user_id in extra so the client can call /mfa/verify-login.
    """

    code = "mfa_required"
    status_code = 401
    message = "Multi-factor authentication required."


class MFAAlreadyEnabled(AuthError):
    code = "mfa_already_enabled"
    status_code = 409
    message = "MFA is already enabled for this account."


class MFANotEnrolled(AuthError):
    code = "mfa_not_enrolled"
    status_code = 400
    message = "MFA is not set up for this account."


class InvalidMFAToken(AuthError):
    code = "invalid_mfa_token"
    status_code = 401
    message = "Invalid MFA code."


class InvalidBackupCode(AuthError):
    code = "invalid_backup_code"
    status_code = 401
    message = "Invalid backup code."


class NoBackupCodesLeft(AuthError):
    code = "no_backup_codes_left"
    status_code = 401
    message = "No backup codes remain for this account."


class StateMismatch(AuthError):
    code = "state_mismatch"
    status_code = 400
    message = "Invalid authorization state."


class ProviderError(AuthError):
    code = "provider_error"
    status_code = 502
    message = "The identity provider rejected the request."


class ProviderUnavailable(AuthError):
    code = "provider_unavailable"
    status_code = 503
    message = "The identity provider is unavailable."
