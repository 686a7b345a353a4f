"""
auth/digests.py -- Single-use opaque tokens for email verification and password reset.

secrets.token_hex(32) gives 256 bits of entropy, so brute-forcing a live
token is infeasible. Only SHA-256(raw_token) is persisted; the raw value goes
out-of-band (an email link) exactly once. A leaked credentials table therefore
holds no usable tokens.

The digest is deterministic, which lets the store look a record up by the
digest of a presented token. matches() still re-checks in constant time.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone

TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedToken:
    raw: str  # sent to the user, never stored
    digest: str  # SHA-256 hex, the only persisted form
    created_at: datetime


def digest_token(raw: str) -> str:
    """Return the SHA-256 hex digest of a raw token."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def issue_token() -> IssuedToken:
    """Generate a new random token and its digest."""
    raw = secrets.token_hex(TOKEN_BYTES)
    return IssuedToken(raw=raw, digest=digest_token(raw), created_at=datetime.now(timezone.utc))


def token_matches(raw: str, digest: str | None) -> bool:
    """Return True if `raw` hashes to `digest`. Constant-time comparison."""
    if not raw or not digest:
        return False
    return hmac.compare_digest(digest_token(raw), digest)
