"""
api/routes/v1/mfa.py -- TOTP enrolment and second-factor login.

Routes:
  POST /api/v1/mfa/setup         -- start enrolment; returns secret, QR code, backup codes (requires auth)
  POST /api/v1/mfa/verify        -- confirm enrolment with a first TOTP code (requires auth)
  POST /api/v1/mfa/verify-login  -- finish a login that returned mfa_required

Security:
  [H2] verify and verify-login are rate-limited per client address; a 6-digit
       code space is small enough to brute-force without it.
  [M5] Cache-Control: no-store on setup (plaintext backup codes) and on
       verify-login (tokens).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, mfa_limit
from api.models import LoginResponse, MessageResponse, MFALoginRequest, MFASetupResponse, MFAVerifyRequest
from api.routes.v1.auth import session_response
from auth.dependencies import get_current_identity
from auth.flow import LoginFlow
from auth.models import Identity

router = APIRouter()


@router.post("/mfa/setup", response_model=MFASetupResponse)
def mfa_setup(request: Request, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Generate a TOTP secret and backup codes for the current user.

    MFA does not gate login until POST /mfa/verify succeeds. Calling setup
    again before that replaces the pending secret; after it, 409.
    """
    flow: LoginFlow = request.app.state.flow
    setup = flow.setup_mfa(identity.user_id)
    resp = JSONResponse(
        content=MFASetupResponse(
            secret=setup.secret,
            provisioning_uri=setup.provisioning_uri,
            qr_code=setup.qr_code,
            backup_codes=setup.backup_codes,
        ).model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(mfa_limit)  # [H2]
@router.post("/mfa/verify", response_model=MessageResponse)
def mfa_verify(
    request: Request,
    body: MFAVerifyRequest,
    identity: Identity = Depends(get_current_identity),
) -> MessageResponse:
    """Confirm enrolment with the first code from the authenticator app."""
    flow: LoginFlow = request.app.state.flow
    flow.confirm_mfa(identity.user_id, body.token)
    return MessageResponse(message="MFA enabled.")


@limiter.limit(mfa_limit)  # [H2]
@router.post("/mfa/verify-login", response_model=LoginResponse)
def mfa_verify_login(request: Request, body: MFALoginRequest) -> JSONResponse:
    """Resolve an mfa_required login with a TOTP code or a backup code.

    Exactly one of token / backup_code must be present. A used backup code is
    gone: presenting it again fails with invalid_backup_code.
    """
    flow: LoginFlow = request.app.state.flow
    result = flow.verify_login_mfa(body.user_id, token=body.token, backup_code=body.backup_code)
    return session_response(result.user, result.tokens, request.app.state.settings)
