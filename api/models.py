"""
API request and response models for the AuthCore REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import TokenPair, User
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    bcrypt refuses input past 72 bytes, so the password cap is counted in
    UTF-8 bytes: 40 accented characters already exceed it.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    username: str = Field(min_length=3, max_length=64, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(min_length=8, max_length=72)
    role: Optional[str] = Field(default=None, max_length=30)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=72)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh.

    refresh_token may be omitted when the refresh_token cookie is present.
    """

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class MFAVerifyRequest(BaseModel):
    """Request body for POST /api/v1/mfa/verify."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class MFALoginRequest(BaseModel):
    """Request body for POST /api/v1/mfa/verify-login.

    Exactly one of token or backup_code is evaluated. The route rejects a
    body with both or neither as invalid_mfa_token rather than a 422, so the
    response does not hint at which field was expected.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(min_length=1, max_length=64)
    token: Optional[str] = Field(default=None, max_length=16)
    backup_code: Optional[str] = Field(default=None, max_length=32)

    @model_validator(mode="after")
    def blank_to_none(self) -> "MFALoginRequest":
        self.token = self.token or None
        self.backup_code = self.backup_code or None
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """A user profile. Never contains hashes, secrets or tokens."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    username: str
    role: str
    roles: list[str]
    is_email_verified: bool
    mfa_enabled: bool
    mfa_verified: bool
    oauth_provider: Optional[str] = None
    last_login: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(**user.public_dict())


class TokenResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token, expires_in=pair.expires_in)


class LoginResponse(TokenResponse):
    """Response for POST /api/v1/auth/login and POST /api/v1/mfa/verify-login."""

    user: UserResponse


class MFASetupResponse(BaseModel):
    """Response for POST /api/v1/mfa/setup.

    backup_codes are plaintext and shown exactly once.
    """

    model_config = ConfigDict(frozen=True)

    secret: str
    provisioning_uri: str
    qr_code: str
    backup_codes: list[str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    user_id: Optional[str] = None  # mfa_required only


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
