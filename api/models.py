"""
API response models for CredGuard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
Request bodies reuse the input models in auth/validation.py so REST callers
and direct callers share one rule set; only responses are declared here.
Route handlers map AuthService results onto these models.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
Raw verification and reset tokens never appear in any response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    fields is present only for validation failures: {fieldName: message}.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class RegisterResponse(BaseModel):
    """Response for POST /auth/register. The verification token goes out by email only."""

    model_config = ConfigDict(frozen=True)

    id: str
    message: str = "Registration successful. Please check your email to verify your account."


class TokenResponse(BaseModel):
    """A full session token."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int


class LoginResponse(BaseModel):
    """Response for POST /auth/login.

    Exactly one of access_token / pre_auth_token is set. When
    requires_two_factor is true the client must post a TOTP code with the
    pre_auth_token to /auth/totp/login-verify.
    """

    model_config = ConfigDict(frozen=True)

    requires_two_factor: bool
    access_token: Optional[str] = None
    pre_auth_token: Optional[str] = None
    token_type: str = "bearer"  # noqa: S105 # nosec B105
    expires_in: int


class TotpSetupResponse(BaseModel):
    """Shown once at enrollment. The client renders provisioning_uri as a QR code."""

    model_config = ConfigDict(frozen=True)

    secret: str
    provisioning_uri: str


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: str
    verified: bool
    two_factor_enabled: bool
