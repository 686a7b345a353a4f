"""
api/routes/v1/auth.py -- Credential and session REST endpoints.

Routes:
  POST /api/v1/auth/register             -- create account; 201 {id}
  POST /api/v1/auth/login                -- password login; session or pre-auth token
  POST /api/v1/auth/totp/login-verify    -- pre-auth token + TOTP code -> session token
  POST /api/v1/auth/verify-email         -- consume email verification token
  POST /api/v1/auth/resend-verification  -- fresh verification token (requires auth)
  POST /api/v1/auth/forgot-password      -- request reset token; always 202
  POST /api/v1/auth/reset-password       -- consume reset token, set new password
  PUT  /api/v1/auth/change-password      -- change password (requires auth)
  POST /api/v1/auth/totp/setup           -- begin TOTP enrollment (requires auth)
  POST /api/v1/auth/totp/verify          -- confirm TOTP enrollment (requires auth)
  POST /api/v1/auth/totp/disable         -- disable TOTP (requires auth)
  GET  /api/v1/auth/me                   -- current identity (requires auth)
  POST /api/v1/auth/logout               -- revoke every session of the account (requires auth)

Handlers are thin: parse the body with the auth/validation.py models, call
one AuthService method, map the result to a response model. AuthError
subclasses propagate to the handlers in api/main.py.

Security:
  Login, TOTP login-verify and forgot-password are rate-limited per IP
  (LOGIN_RATE_LIMIT, default 10/minute).
  Cache-Control: no-store on every response that carries a token or secret.
  Authenticated routes may answer with X-New-Token when the session token is
  within SESSION_RENEW_SECONDS of expiry (see auth/dependencies.py).
  Forgot-password returns the same 202 body whether or not the email exists.
"""

# No postponed annotations here: FastAPI reads the endpoint signatures through
# slowapi's wrappers, whose globals are slowapi's own.
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.limiter import limiter, sensitive_limit
from api.models import LoginResponse, MeResponse, MessageResponse, RegisterResponse, TokenResponse, TotpSetupResponse
from auth.dependencies import bearer_token, get_auth_service, get_current_credential
from auth.models import Credential
from auth.service import AuthService, identity_of
from auth.validation import (
    ChangePasswordInput,
    ForgotPasswordInput,
    LoginInput,
    RegisterInput,
    ResetPasswordInput,
    TotpCodeInput,
    VerifyEmailInput,
)

# Auth policy:
# - register, login, totp/login-verify, verify-email, forgot-password, reset-password: public
#   (totp/login-verify requires a pre-auth bearer token, checked by the service)
# - everything else: full session token (get_current_credential / bearer_token)
router = APIRouter()


def _no_store(model: BaseModel, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=model.model_dump(exclude_none=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(body: RegisterInput, service: AuthService = Depends(get_auth_service)) -> RegisterResponse:
    """Create an unverified account. The verification token is delivered out-of-band."""
    return RegisterResponse(id=service.register(body))


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(sensitive_limit)  # below @router: the registered endpoint is the limit-checking wrapper
def login(request: Request, body: LoginInput, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Authenticate with email and password.

    With two-factor enabled the response carries a short-lived pre_auth_token
    instead of an access_token.
    """
    result = service.login(body)
    if result.requires_two_factor:
        payload = LoginResponse(
            requires_two_factor=True,
            pre_auth_token=result.token.token,
            expires_in=result.token.expires_in,
        )
    else:
        payload = LoginResponse(
            requires_two_factor=False,
            access_token=result.token.token,
            expires_in=result.token.expires_in,
        )
    return _no_store(payload)


@router.post("/auth/totp/login-verify", response_model=TokenResponse)
@limiter.limit(sensitive_limit)
def totp_login_verify(
    request: Request,
    body: TotpCodeInput,
    token: str = Depends(bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Second login step: pre-auth bearer token plus a 6-digit code."""
    signed = service.verify_totp_login(token, body)
    return _no_store(TokenResponse(access_token=signed.token, expires_in=signed.expires_in))


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(body: VerifyEmailInput, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    service.verify_email(body)
    return MessageResponse(message="Email verified successfully.")


@router.post("/auth/forgot-password", response_model=MessageResponse, status_code=202)
@limiter.limit(sensitive_limit)
def forgot_password(
    request: Request, body: ForgotPasswordInput, service: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    """Always 202 with the same body, so the response never reveals whether the email exists."""
    service.forgot_password(body)
    return MessageResponse(message="If an account exists for that email, a password reset link has been sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(body: ResetPasswordInput, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    service.reset_password(body)
    return MessageResponse(message="Password has been reset. Please log in with your new password.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(user: Credential = Depends(get_current_credential)) -> MeResponse:
    """Return identity information for the holder of a full session token."""
    identity = identity_of(user)
    return MeResponse(
        id=identity.id,
        email=identity.email,
        role=identity.role,
        verified=identity.verified,
        two_factor_enabled=identity.two_factor_enabled,
    )


@router.post("/auth/logout", response_model=MessageResponse)
def logout(token: str = Depends(bearer_token), service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Sign out everywhere: this token and every other session of the account stop working."""
    service.logout(token)
    return MessageResponse(message="Logged out successfully.")


@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(
    user: Credential = Depends(get_current_credential), service: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    service.resend_verification(user.id)
    return MessageResponse(message="Verification email sent.")


@router.put("/auth/change-password", response_model=TokenResponse)
def change_password(
    request: Request,
    body: ChangePasswordInput,
    user: Credential = Depends(get_current_credential),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Change the password. Earlier session tokens are revoked; the response carries a new one."""
    signed = service.change_password(user.id, body)
    # A renewal minted before the change is already revoked.
    request.state.renewed_token = None
    return _no_store(TokenResponse(access_token=signed.token, expires_in=signed.expires_in))


@router.post("/auth/totp/setup", response_model=TotpSetupResponse)
def totp_setup(
    user: Credential = Depends(get_current_credential), service: AuthService = Depends(get_auth_service)
) -> JSONResponse:
    """Begin enrollment. The secret is returned here once and never again."""
    enrollment = service.setup_totp(user.id)
    return _no_store(TotpSetupResponse(secret=enrollment.secret, provisioning_uri=enrollment.provisioning_uri))


@router.post("/auth/totp/verify", response_model=MessageResponse)
def totp_verify(
    body: TotpCodeInput,
    user: Credential = Depends(get_current_credential),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.confirm_totp(user.id, body)
    return MessageResponse(message="Two-factor authentication enabled.")


@router.post("/auth/totp/disable", response_model=MessageResponse)
def totp_disable(
    user: Credential = Depends(get_current_credential), service: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    service.disable_totp(user.id)
    return MessageResponse(message="Two-factor authentication disabled.")
