"""
auth/oauth.py -- OpenID Connect federation with a single external provider.

Flow:
  1. get_authorization_url() mints a fresh state and nonce, returns the
     provider URL plus the OAuthExchangeState the caller must bind to the
     requester's session (the route stores it in the signed Starlette
     session cookie).
  2. The provider redirects back with ?state=...&code=...
  3. validate_callback() compares state against the session value FIRST,
     then exchanges the code, validates the ID token (signature, iss, aud,
     nonce), fetches userinfo and maps the claims to a FederatedIdentity.

Security notes:
  State is compared with hmac.compare_digest before any network call. A
  forged callback never reaches the token endpoint, regardless of whether
  its code is valid.

  The nonce inside the ID token must equal the one bound to the session.
  A mismatch is reported as StateMismatch: both values are the same
  anti-replay binding.

  Provider failures are never swallowed. Transport errors and OAuth error
  responses from the token, userinfo and revocation endpoints surface as
  ProviderError; an unreachable discovery document is ProviderUnavailable.

Libraries:
  authlib's AsyncOAuth2Client (an httpx.AsyncClient) builds the authorization
  URL and speaks the token / refresh / revoke grants. python-jose validates the
  ID token, the same library TokenService signs our own JWTs with.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import Callable, Mapping
from typing import Any

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from jose import JWTError, jwt

from auth.errors import ProviderError, ProviderUnavailable, StateMismatch
from auth.models import FederatedIdentity, OAuthExchangeState
from core.config import Settings

logger = logging.getLogger("authcore.auth.oauth")

_HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")

ClientFactory = Callable[..., AsyncOAuth2Client]


def _same(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def _is_true(value: Any) -> bool:
    """Some providers send boolean claims as strings: only True or "true" count."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


class OAuthFederationClient:
    """Authorization-code client for one OIDC provider.

    Usage:
        client = OAuthFederationClient(settings)
        url, exchange = await client.get_authorization_url(return_to="/")
        ...
        token_set, identity = await client.validate_callback(
            request.query_params, exchange.state, exchange.nonce
        )

    metadata may be passed to skip discovery (tests, static configuration).
    client_factory builds the authlib client; tests replace it with a mock.
    """

    def __init__(
        self,
        settings: Settings,
        metadata: Mapping[str, Any] | None = None,
        client_factory: ClientFactory = AsyncOAuth2Client,
    ) -> None:
        self.provider = settings.oauth_provider_name
        self.issuer = settings.oauth_issuer_url.rstrip("/")
        self.client_id = settings.oauth_client_id
        self.client_secret = settings.oauth_client_secret
        self.redirect_uri = settings.oauth_redirect_uri
        self.scope = settings.oauth_scope
        self.roles_claim = settings.oauth_roles_claim
        self.default_roles = tuple(r.lower() for r in settings.oauth_default_roles) or ("user",)
        self.timeout = settings.http_timeout_seconds
        self._metadata: dict[str, Any] | None = dict(metadata) if metadata is not None else None
        self._jwks: dict[str, Any] | None = None
        self._client_factory = client_factory

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover(self) -> dict[str, Any]:
        """Fetch and cache the provider's openid-configuration document."""
        if self._metadata is not None:
            return self._metadata

        url = f"{self.issuer}/.well-known/openid-configuration"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as http:
                resp = await http.get(url)
                resp.raise_for_status()
                metadata = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("OIDC discovery failed for %s: %s", url, exc)
            raise ProviderUnavailable() from exc

        if "authorization_endpoint" not in metadata or "token_endpoint" not in metadata:
            logger.warning("OIDC discovery document at %s is incomplete", url)
            raise ProviderUnavailable()
        self._metadata = metadata
        logger.info("Discovered OIDC provider %s", metadata.get("issuer", self.issuer))
        return metadata

    def _client(self, token: dict | None = None) -> AsyncOAuth2Client:
        return self._client_factory(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=self.scope,
            redirect_uri=self.redirect_uri,
            token=token,
            timeout=self.timeout,
        )

    # ------------------------------------------------------------------
    # Authorization request
    # ------------------------------------------------------------------

    async def get_authorization_url(self, return_to: str | None = None) -> tuple[str, OAuthExchangeState]:
        metadata = await self.discover()
        exchange = OAuthExchangeState(
            state=secrets.token_urlsafe(32),
            nonce=secrets.token_urlsafe(32),
            return_to=return_to,
        )
        client = self._client()
        try:
            url, _ = client.create_authorization_url(
                metadata["authorization_endpoint"],
                state=exchange.state,
                nonce=exchange.nonce,
                response_mode="query",
            )
        finally:
            await client.aclose()
        return url, exchange

    # ------------------------------------------------------------------
    # Callback
    # ------------------------------------------------------------------

    async def validate_callback(
        self,
        params: Mapping[str, str],
        expected_state: str | None,
        expected_nonce: str | None,
    ) -> tuple[dict[str, Any], FederatedIdentity]:
        """Verify the callback and return (token_set, identity).

        Raises:
            StateMismatch: state missing or different, or ID-token nonce mismatch.
            ProviderError: provider returned an error, no code, a bad or
                missing ID token, or userinfo for a different subject.
            ProviderUnavailable: discovery failed.
        """
        if not _same(params.get("state"), expected_state):
            logger.warning("OAuth callback rejected: state mismatch")
            raise StateMismatch()

        if params.get("error"):
            logger.warning("OAuth provider returned error=%s", params.get("error"))
            raise ProviderError(params.get("error_description") or "The identity provider denied the request.")
        code = params.get("code")
        if not code:
            raise ProviderError("Authorization code missing from callback.")

        metadata = await self.discover()
        client = self._client()
        try:
            try:
                token_set = dict(await client.fetch_token(metadata["token_endpoint"], code=code))
            except (OAuthError, httpx.HTTPError, ValueError) as exc:
                logger.warning("OAuth code exchange failed: %s", exc)
                raise ProviderError() from exc

            id_claims: dict[str, Any] = {}
            if token_set.get("id_token"):
                id_claims = await self._validate_id_token(client, token_set, expected_nonce)
            elif "openid" in self.scope.split():
                logger.warning("OAuth token response carried no ID token")
                raise ProviderError("Provider returned no ID token.")

            userinfo = await self._fetch_userinfo(client, metadata)
        finally:
            await client.aclose()

        if id_claims and userinfo and str(userinfo.get("sub")) != str(id_claims.get("sub")):
            logger.warning("OAuth callback rejected: userinfo subject differs from ID token")
            raise ProviderError("Userinfo subject does not match the ID token.")
        # the signed ID token stays authoritative for the subject
        claims = {**userinfo, **id_claims} if id_claims else userinfo
        return token_set, self.map_identity(claims)

    async def _validate_id_token(
        self, client: AsyncOAuth2Client, token_set: dict[str, Any], expected_nonce: str | None
    ) -> dict[str, Any]:
        id_token = token_set["id_token"]
        try:
            alg = jwt.get_unverified_header(id_token).get("alg", "")
        except JWTError as exc:
            raise ProviderError("Malformed ID token.") from exc

        if alg in _HMAC_ALGORITHMS:
            key: Any = self.client_secret
        elif alg and alg.lower() != "none":
            key = await self._fetch_jwks(client)
        else:
            raise ProviderError("Unsigned ID token.")

        try:
            claims = jwt.decode(
                id_token,
                key,
                algorithms=[alg],
                audience=self.client_id,
                issuer=(self._metadata or {}).get("issuer", self.issuer),
                access_token=token_set.get("access_token"),
            )
        except JWTError as exc:
            logger.warning("ID token rejected: %s", exc)
            raise ProviderError("Invalid ID token.") from exc

        if not _same(claims.get("nonce"), expected_nonce):
            logger.warning("OAuth callback rejected: nonce mismatch")
            raise StateMismatch()
        return claims

    async def _fetch_jwks(self, client: AsyncOAuth2Client) -> dict[str, Any]:
        if self._jwks is None:
            jwks_uri = (self._metadata or {}).get("jwks_uri")
            if not jwks_uri:
                raise ProviderError("Provider publishes no signing keys.")
            try:
                resp = await client.get(jwks_uri, withhold_token=True)
                resp.raise_for_status()
                self._jwks = resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                raise ProviderError() from exc
        return self._jwks

    async def _fetch_userinfo(self, client: AsyncOAuth2Client, metadata: Mapping[str, Any]) -> dict[str, Any]:
        endpoint = metadata.get("userinfo_endpoint")
        if not endpoint:
            return {}
        try:
            resp = await client.get(endpoint)
            resp.raise_for_status()
            return resp.json()
        except (OAuthError, httpx.HTTPError, ValueError) as exc:
            logger.warning("OIDC userinfo request failed: %s", exc)
            raise ProviderError() from exc

    def map_identity(self, claims: Mapping[str, Any]) -> FederatedIdentity:
        """Turn provider claims into a FederatedIdentity.

        Roles come from the configured claim, lower-cased. A provider that
        sends none gets the default role list.
        """
        subject = claims.get("sub")
        email = claims.get("email")
        if not subject or not email:
            raise ProviderError("Provider did not return a subject and email.")

        raw_roles = claims.get(self.roles_claim) or []
        if isinstance(raw_roles, str):
            raw_roles = raw_roles.split()
        roles = tuple(dict.fromkeys(str(r).lower() for r in raw_roles if r)) or self.default_roles

        return FederatedIdentity(
            id=str(subject),
            email=str(email).strip().lower(),
            name=claims.get("name") or claims.get("preferred_username") or "",
            roles=roles,
            email_verified=_is_true(claims.get("email_verified")),
            claims=dict(claims),
        )

    # ------------------------------------------------------------------
    # Pass-through grants
    # ------------------------------------------------------------------

    async def get_user_info(self, access_token: str) -> dict[str, Any]:
        metadata = await self.discover()
        client = self._client(token={"access_token": access_token, "token_type": "Bearer"})
        try:
            return await self._fetch_userinfo(client, metadata)
        finally:
            await client.aclose()

    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        metadata = await self.discover()
        client = self._client()
        try:
            return dict(await client.refresh_token(metadata["token_endpoint"], refresh_token=refresh_token))
        except (OAuthError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Provider token refresh failed: %s", exc)
            raise ProviderError() from exc
        finally:
            await client.aclose()

    async def revoke_token(self, token: str, token_type_hint: str = "access_token") -> None:
        metadata = await self.discover()
        endpoint = metadata.get("revocation_endpoint")
        if not endpoint:
            raise ProviderError("Provider does not support token revocation.")
        client = self._client()
        try:
            resp = await client.revoke_token(endpoint, token=token, token_type_hint=token_type_hint)
            resp.raise_for_status()
        except (OAuthError, httpx.HTTPError) as exc:
            logger.warning("Provider token revocation failed: %s", exc)
            raise ProviderError() from exc
        finally:
            await client.aclose()
