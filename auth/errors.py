"""
auth/errors.py -- Error taxonomy for the credential subsystem.

Every expected authentication failure is an AuthError subclass carrying a
stable machine-readable `code` and a fixed human message. Messages are
constants: no error ever interpolates a password, a raw reset/verification
token, or a TOTP secret.

The REST binding (api/main.py) maps `code` to an HTTP status; auth/ itself
stays transport-agnostic.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for expected, caller-recoverable auth failures."""

    code = "auth_error"
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class ValidationFailed(AuthError):
    """Inbound payload failed schema checks. `fields` maps field name -> message."""

    code = "validation_failed"
    message = "Request validation failed."

    def __init__(self, fields: dict[str, str]) -> None:
        super().__init__()
        self.fields = dict(fields)


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid email or password."


class AccountLocked(AuthError):
    """Too many failed attempts. Carries the wait time, never the attempt count."""

    code = "account_locked"
    message = "Account is temporarily locked due to too many failed login attempts."

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__()
        self.retry_after_seconds = max(int(retry_after_seconds), 1)


class AccountDisabled(AuthError):
    code = "account_disabled"
    message = "This account has been deactivated."


class InvalidOrExpiredToken(AuthError):
    """Shared by verification and reset tokens: wrong and expired look the same."""

    code = "invalid_or_expired_token"
    message = "Invalid or expired token."


class InvalidTotpCode(AuthError):
    code = "invalid_totp_code"
    message = "Invalid authentication code."


class TokenError(AuthError):
    """Session or pre-authentication bearer token failed verification."""

    code = "token_invalid"
    message = "Invalid session token."


class TokenExpired(TokenError):
    code = "token_expired"
    message = "Session token has expired."


class TokenInvalid(TokenError):
    code = "token_invalid"
    message = "Invalid session token."


class TokenMalformed(TokenInvalid):
    message = "Session token is malformed."


class TokenSignatureInvalid(TokenInvalid):
    message = "Session token signature is invalid."


class EmailAlreadyExists(AuthError):
    code = "email_already_exists"
    message = "An account with this email already exists."


class Forbidden(AuthError):
    code = "forbidden"
    message = "Operation not permitted."


class ServiceUnavailable(AuthError):
    """Infrastructure fault (store unavailable, unresolved contention). Safe to retry."""

    code = "service_unavailable"
    message = "Service temporarily unavailable. Please retry."
