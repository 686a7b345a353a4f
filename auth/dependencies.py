"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Tokens arrive only as `Authorization: Bearer <token>`. Two token kinds exist
(see auth/tokens.py); these helpers hand the raw token to AuthService, which
decides whether the kind is acceptable for the operation:

  get_current_credential() -- full session token required. Pre-auth tokens,
                              revoked, expired or malformed tokens raise
                              TokenInvalid / TokenExpired. Renews tokens
                              that are about to expire.
  bearer_token()           -- raw token, no verification. Used by the TOTP
                              login step, which accepts only pre-auth tokens.

Failures are raised as AuthError subclasses; api/main.py turns them into the
standard error envelope with a 401.

Layer rule: no imports from core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import TokenInvalid
from auth.models import Credential
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService built in the application lifespan."""
    return request.app.state.auth_service


def try_bearer_token(request: Request) -> str | None:
    """Return the bearer token from the Authorization header, or None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def bearer_token(request: Request) -> str:
    """Require a bearer token. Raises TokenInvalid if the header is missing."""
    token = try_bearer_token(request)
    if token is None:
        raise TokenInvalid("Authentication required.")
    return token


def get_current_credential(request: Request) -> Credential:
    """Require a valid full session token and return its account.

    A token close to expiry is reissued; the new token is parked on
    request.state.renewed_token and api/main.py returns it as X-New-Token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: Credential = Depends(get_current_credential)): ...
    """
    session = get_auth_service(request).authenticate_session(bearer_token(request))
    if session.renewed is not None:
        request.state.renewed_token = session.renewed.token
    return session.credential
