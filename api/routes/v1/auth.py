"""
api/routes/v1/auth.py -- Credential authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/register   -- create a local account; 201
  POST /api/v1/auth/login      -- password login; token pair + refresh cookie
  POST /api/v1/auth/refresh    -- rotate the refresh token (body or cookie)
  POST /api/v1/auth/logout     -- revoke the stored refresh token (requires auth)
  GET  /api/v1/auth/me         -- current user profile (requires auth)
  GET  /api/v1/auth/users      -- list all users (admin only)

Security:
  [H2] POST /login and POST /refresh are rate-limited per client address.
  [C1] LoginFlow.login() provides timing equalization -- use it, never inline
       get_by_email() + verify().
  [M5] Cache-Control: no-store on every response that carries tokens.
  MFARequired is returned as a 401 envelope carrying user_id, which the
  client passes to POST /api/v1/mfa/verify-login.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, refresh_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from auth import guards
from auth.credentials import CredentialAuthenticator
from auth.dependencies import get_current_identity, require_role, try_get_current_identity
from auth.errors import MFARequired, TokenInvalid
from auth.flow import LoginFlow
from auth.models import Authenticated, Identity, MFAPending, TokenPair, User
from core.config import Settings

logger = logging.getLogger("authcore.api.auth")

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
_REFRESH_COOKIE_PATH = "/api/v1/auth"

# Auth policy:
# - POST /api/v1/auth/register: public; a non-default role requires admin
# - POST /api/v1/auth/login:    public, rate-limited
# - POST /api/v1/auth/refresh:  public (the refresh token is the credential), rate-limited
# - POST /api/v1/auth/logout:   requires auth (get_current_identity)
# - GET  /api/v1/auth/me:       requires auth (get_current_identity)
# - GET  /api/v1/auth/users:    requires admin (require_role("admin"))
router = APIRouter()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookies(response, pair: TokenPair, settings: Settings) -> None:
    """Write both tokens as httpOnly cookies.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite: "lax" for the access cookie so the post-OAuth redirect carries
        it; "strict" for the refresh cookie, which is only ever sent to
        /api/v1/auth by our own client.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches each token's expiry so cookie and token expire together.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=pair.access_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.access_token_expire_seconds,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=pair.refresh_token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_seconds,
        path=_REFRESH_COOKIE_PATH,
    )


def clear_session_cookies(response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE, path=_REFRESH_COOKIE_PATH)


def session_response(user: User, pair: TokenPair, settings: Settings, status_code: int = 200) -> JSONResponse:
    """JSON body with the user and tokens, plus cookies and no-store [M5]."""
    resp = JSONResponse(
        status_code=status_code,
        content=LoginResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=pair.expires_in,
            user=UserResponse.from_user(user),
        ).model_dump(),
    )
    set_session_cookies(resp, pair, settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create a local account with the default role unless one is given.

    Only an authenticated admin may pick a role other than DEFAULT_ROLE:
    anonymous callers get 401, other users 403.

    Duplicate email -> 409 email_already_exists; duplicate username -> 409
    username_already_exists. Both come from the store's UNIQUE constraints,
    so two concurrent registrations cannot both succeed.
    """
    credentials: CredentialAuthenticator = request.app.state.credentials
    role = body.role.lower() if body.role else None
    if role and role != credentials.default_role:
        guards.require_role(try_get_current_identity(request), "admin")
    user = credentials.register(body.email, body.username, body.password, role=role)
    return UserResponse.from_user(user)


@limiter.limit(login_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Returns the same invalid_credentials error for an unknown email and a
    wrong password. When the account has MFA switched on, no tokens are
    issued; the 401 mfa_required envelope carries user_id instead.
    """
    flow: LoginFlow = request.app.state.flow
    result = flow.login(body.email, body.password)

    if isinstance(result, Authenticated):
        return session_response(result.user, result.tokens, request.app.state.settings)
    if isinstance(result, MFAPending):
        raise MFARequired(user_id=result.user_id)
    raise result.error


@limiter.limit(refresh_limit)
@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is spent.

    The token is read from the JSON body first, then from the refresh_token
    cookie. A token that was already rotated, or lost a concurrent race,
    fails with token_mismatch.
    """
    presented = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not presented:
        raise TokenInvalid()

    pair = request.app.state.rotator.refresh(presented)
    resp = JSONResponse(content=TokenResponse.from_pair(pair).model_dump())
    set_session_cookies(resp, pair, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Revoke the stored refresh token and clear both cookies.

    Access tokens already issued stay valid until they expire.
    """
    credentials: CredentialAuthenticator = request.app.state.credentials
    credentials.revoke(identity.user_id)
    logger.info("User %s logged out", identity.user_id)
    resp = JSONResponse(content={"message": "Logged out."})
    clear_session_cookies(resp)
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request, identity: Identity = Depends(get_current_identity)) -> UserResponse:
    """Return the profile of the currently authenticated user."""
    credentials: CredentialAuthenticator = request.app.state.credentials
    return UserResponse.from_user(credentials.profile(identity.user_id))


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(request: Request, identity: Identity = Depends(require_role("admin"))) -> list[UserResponse]:
    """Return all user profiles. Admin only."""
    return [UserResponse.from_user(u) for u in request.app.state.user_store.list_users()]
