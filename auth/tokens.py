"""
auth/tokens.py -- Signed bearer tokens (JWT, python-jose, HS256).

Security design decisions:
  Claims: sub (account id), email, role, typ, sv, iat, exp. Nothing else --
       no password material and no TOTP secret ever goes into a token.

  Two token kinds share one signing key and are told apart by `typ`:
       "session"  -- full bearer token granting API access.
       "pre_auth" -- short-lived, issued after a correct password when a
                     second factor is still owed. Carries pending_2fa=true.
                     Only the TOTP login step accepts it; every other entry
                     point rejects it as TokenInvalid.

  Verification is stateless. Forced revocation is handled one level up: `sv`
  is the account's session_version at issue time, and the service rejects
  any token whose `sv` no longer matches the stored counter.

  Failures are typed: TokenExpired, TokenMalformed, TokenSignatureInvalid.
  The service maps the last two to TokenInvalid for callers.

Layer rule: no imports from api/ or core/. The signing key and lifetimes are
passed in by whoever constructs SessionTokenIssuer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from auth.errors import TokenExpired, TokenMalformed, TokenSignatureInvalid

_ALGORITHM = "HS256"

SESSION = "session"
PRE_AUTH = "pre_auth"


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: str
    role: str
    kind: str
    session_version: int
    issued_at: datetime
    expires_at: datetime

    @property
    def pending_two_factor(self) -> bool:
        return self.kind == PRE_AUTH


@dataclass(frozen=True)
class SignedToken:
    token: str
    expires_in: int  # seconds


class SessionTokenIssuer:
    """Mint and verify session and pre-authentication JWTs.

    Usage:
        issuer = SessionTokenIssuer(secret_key, session_ttl=7 * 86400)
        signed = issuer.issue("3f2c...", "a@b.com", "user")
        claims = issuer.verify(signed.token)
    """

    def __init__(
        self,
        secret_key: str,
        session_ttl: int = 7 * 24 * 3600,
        remember_ttl: int = 30 * 24 * 3600,
        pre_auth_ttl: int = 300,
    ) -> None:
        self._secret_key = secret_key
        self.session_ttl = session_ttl
        self.remember_ttl = remember_ttl
        self.pre_auth_ttl = pre_auth_ttl

    def issue(
        self,
        user_id: str,
        email: str,
        role: str,
        remember: bool = False,
        now: datetime | None = None,
        session_version: int = 0,
    ) -> SignedToken:
        """Encode a full session token. `remember` selects the long lifetime."""
        ttl = self.remember_ttl if remember else self.session_ttl
        return self._encode(user_id, email, role, SESSION, ttl, {"sv": session_version}, now)

    def issue_pre_auth(
        self, user_id: str, email: str, role: str, now: datetime | None = None, session_version: int = 0
    ) -> SignedToken:
        """Encode a pre-authentication token for the TOTP login step."""
        extra = {"sv": session_version, "pending_2fa": True}
        return self._encode(user_id, email, role, PRE_AUTH, self.pre_auth_ttl, extra, now)

    def verify(self, token: str) -> TokenClaims:
        """Decode and verify a token of either kind.

        Raises TokenMalformed when the token cannot be parsed or lacks the
        required claims, TokenSignatureInvalid when the signature does not
        check out, and TokenExpired once `exp` has passed.
        """
        if not token:
            raise TokenMalformed()
        try:
            jwt.get_unverified_header(token)
        except JWTError as exc:
            raise TokenMalformed() from exc
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTClaimsError as exc:
            raise TokenMalformed() from exc
        except JWTError as exc:
            raise TokenSignatureInvalid() from exc
        return _claims_from_payload(payload)

    def _encode(
        self, user_id: str, email: str, role: str, kind: str, ttl: int, extra: dict, now: datetime | None
    ) -> SignedToken:
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "email": email,
            "role": role,
            "typ": kind,
            "iat": now,
            "exp": now + timedelta(seconds=ttl),
            **extra,
        }
        return SignedToken(token=jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM), expires_in=ttl)


def _claims_from_payload(payload: dict) -> TokenClaims:
    try:
        kind = payload["typ"]
        if kind not in (SESSION, PRE_AUTH):
            raise TokenMalformed()
        return TokenClaims(
            user_id=str(payload["sub"]),
            email=str(payload["email"]),
            role=str(payload["role"]),
            kind=kind,
            session_version=_as_int(payload["sv"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenMalformed() from exc


def _as_int(value) -> int:
    # bool is an int subclass and is not a version.
    if isinstance(value, bool) or not isinstance(value, int):
        raise TokenMalformed()
    return value
