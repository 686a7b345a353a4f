"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these objects; lockout.py and service.py compute new versions of them with
dataclasses.replace() and hand them back to the store to persist.

All timestamps are timezone-aware UTC datetimes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ROLES = ("admin", "manager", "user")


@dataclass
class Credential:
    """Authentication state for one account.

    password_digest is always a bcrypt digest, never the plaintext.

    verification_digest / reset_digest are SHA-256 digests of single-use
    tokens. Each is set and cleared together with its *_expires_at partner.

    two_factor_secret holds the pending secret during enrollment (with
    two_factor_enabled still False) and the active secret once confirmed.

    locked_until is written only by the lockout transitions in auth/lockout.py.

    session_version is copied into every token as the `sv` claim. Bumping it
    (password change or reset, logout) revokes every token issued before.

    version is the optimistic-concurrency token. The store bumps it on every
    write and refuses writes made against a stale copy.
    """

    email: str
    password_digest: str
    first_name: str = ""
    last_name: str = ""
    role: str = "user"
    id: str | None = None
    verified: bool = False
    verification_digest: str | None = None
    verification_expires_at: datetime | None = None
    reset_digest: str | None = None
    reset_expires_at: datetime | None = None
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None
    totp_last_step: int | None = None
    failed_attempts: int = 0
    locked_until: datetime | None = None
    active: bool = True
    session_version: int = 0
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0


@dataclass(frozen=True)
class Identity:
    """Client-safe view of an account returned by getCurrentIdentity."""

    id: str
    email: str
    role: str
    verified: bool
    two_factor_enabled: bool
