"""
api/routes/v1/oauth.py -- OIDC federation endpoints.

Routes:
  GET /api/v1/auth/oauth/login?return_to=/path  -- 302 to the provider
  GET /api/v1/auth/oauth/callback               -- 302 back to return_to with session cookies

The (state, nonce, return_to) triple lives in the signed Starlette session
cookie between the two requests. The callback pops it before doing anything
else, so a captured callback URL cannot be replayed whether the first attempt
succeeded or failed.

Security:
  [C2] return_to is validated as a relative path at both ends. Anything else
       falls back to "/" (open-redirect prevention).
  [M5] Cache-Control: no-store on the callback redirect, which carries tokens.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.routes.v1.auth import set_session_cookies
from auth.errors import ProviderUnavailable
from auth.flow import LoginFlow
from auth.models import OAuthExchangeState
from auth.oauth import OAuthFederationClient

logger = logging.getLogger("authcore.api.oauth")

_SESSION_KEY = "oauth_exchange"

router = APIRouter()


def _safe_return_to(target: Optional[str]) -> str:
    """Accept only server-local relative paths [C2].

    Rejects absolute URLs and protocol-relative URLs ("//evil.example").
    """
    if target and target.startswith("/") and not target.startswith("//") and "\\" not in target:
        return target
    return "/"


def _oauth_client(request: Request) -> OAuthFederationClient:
    client = getattr(request.app.state, "oauth", None)
    if client is None:
        raise ProviderUnavailable("OAuth login is not configured.")
    return client


@router.get("/auth/oauth/login")
async def oauth_login(request: Request, return_to: Optional[str] = None) -> RedirectResponse:
    """Redirect the browser to the provider's authorization page.

    A fresh state and nonce are minted on every call and replace whatever an
    earlier, abandoned attempt left in the session.
    """
    client = _oauth_client(request)
    url, exchange = await client.get_authorization_url(return_to=_safe_return_to(return_to))
    request.session[_SESSION_KEY] = exchange.to_session()
    return RedirectResponse(url, status_code=302)


@router.get("/auth/oauth/callback", name="oauth_callback")
async def oauth_callback(request: Request) -> RedirectResponse:
    """Complete the authorization-code flow and sign the user in.

    Flow:
      1. Pop the exchange state from the session (single use).
      2. validate_callback() checks state before any network call, then
         exchanges the code and validates the ID token nonce.
      3. LoginFlow.federated_login() maps the identity to a local account.
      4. Set session cookies and redirect to the stored return_to.
    """
    exchange = OAuthExchangeState.from_session(request.session.pop(_SESSION_KEY, None))
    client = _oauth_client(request)

    _token_set, identity = await client.validate_callback(
        request.query_params,
        exchange.state if exchange else None,
        exchange.nonce if exchange else None,
    )

    flow: LoginFlow = request.app.state.flow
    result = await run_in_threadpool(flow.federated_login, client.provider, identity)
    logger.info("Federated login for user %s via %s", result.user.id, client.provider)

    resp = RedirectResponse(_safe_return_to(exchange.return_to), status_code=302)
    set_session_cookies(resp, result.tokens, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
