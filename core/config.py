"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthCore happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Services
      never call get_settings() themselves -- the FastAPI lifespan and the CLI
      read it once and pass the instance into each constructor.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation of the three signing
      secrets once every field is resolved.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright. HMAC-SHA256 JWT
       signing relies on key entropy -- a short key weakens it.

  [M7] In production mode (DEBUG not set or false), a missing secret is a
       hard startup failure. Dev mode generates one with a warning.

  [S1] ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ. A leaked
       access-signing key must not be able to mint refresh tokens.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authcore.config")

_SECRET_FIELDS = ("access_token_secret", "refresh_token_secret", "session_secret")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with debug=True, or with the three
    secrets passed explicitly).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = "sqlite:///authcore.db"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    session_secret: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 3600
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    jwt_issuer: str = "authcore"
    jwt_audience: str = "authcore-client"
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    default_role: str = "user"

    # ------------------------------------------------------------------
    # MFA
    # ------------------------------------------------------------------

    mfa_issuer_name: str = "AuthCore"
    mfa_backup_code_count: int = 5
    mfa_totp_window: int = 1

    # ------------------------------------------------------------------
    # OAuth / OIDC federation (optional -- disabled unless configured)
    # ------------------------------------------------------------------

    oauth_enabled: bool = False
    oauth_provider_name: str = "oidc"
    oauth_issuer_url: str = ""
    oauth_client_id: str = ""
    oauth_client_secret: str = ""
    oauth_redirect_uri: str = "http://localhost:8000/api/v1/auth/oauth/callback"
    oauth_scope: str = "openid profile email"
    oauth_roles_claim: str = "roles"
    oauth_default_roles: list[str] = ["user"]
    http_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    mfa_rate_limit: str = "5/minute"
    refresh_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6][M7][S1].

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if any secret is missing.
        """
        for name in _SECRET_FIELDS:
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file "
                        "(python main.py generate-secrets prints fresh values). "
                        "To run in development mode, set DEBUG=true."
                    )
                setattr(self, name, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name.upper())
            elif len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")

        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must be different.")
        return self

    @property
    def oauth_configured(self) -> bool:
        return bool(self.oauth_enabled and self.oauth_issuer_url and self.oauth_client_id)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
