"""
auth/totp.py -- RFC 6238 time-based one-time codes (pyotp).

Per-account states (derived from the Credential, not stored separately):
  Disabled           -- no secret, two_factor_enabled False
  PendingEnrollment  -- secret present, two_factor_enabled False
  Enabled            -- secret present, two_factor_enabled True

Codes are 6 digits on a 30 second step. A code is accepted if it matches any
step within +/- valid_window of the current one, which absorbs clock drift.

Replay protection: match_step() returns the counter of the step that matched,
and refuses any step at or before the last one accepted for the account. The
service stores the accepted step in Credential.totp_last_step, so a code
works at most once.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime

import pyotp

from auth.models import Credential

TOTP_DIGITS = 6
TOTP_INTERVAL = 30


@dataclass(frozen=True)
class TotpEnrollment:
    """Returned once from setup. The secret is never shown again."""

    secret: str
    provisioning_uri: str  # otpauth:// URI, rendered as a QR code by the client


def totp_state(record: Credential) -> str:
    if record.two_factor_enabled:
        return "enabled"
    if record.two_factor_secret:
        return "pending"
    return "disabled"


class TotpManager:
    """Secret generation, provisioning URIs and step-aware code checks."""

    def __init__(self, issuer_name: str = "CredGuard", valid_window: int = 1) -> None:
        self.issuer_name = issuer_name
        self.valid_window = valid_window

    def new_secret(self) -> str:
        """160-bit random secret, base32 encoded for authenticator apps."""
        return pyotp.random_base32()

    def enrollment(self, secret: str, email: str) -> TotpEnrollment:
        uri = self._totp(secret).provisioning_uri(name=email, issuer_name=self.issuer_name)
        return TotpEnrollment(secret=secret, provisioning_uri=uri)

    def match_step(self, secret: str, code: str, now: datetime, last_step: int | None = None) -> int | None:
        """Return the time-step counter `code` belongs to, or None.

        Steps at or before `last_step` are skipped so a consumed code cannot
        be presented again inside its tolerance window.
        """
        if not secret or not code:
            return None
        totp = self._totp(secret)
        current = totp.timecode(now)
        for step in range(current - self.valid_window, current + self.valid_window + 1):
            if last_step is not None and step <= last_step:
                continue
            if hmac.compare_digest(totp.generate_otp(step), code):
                return step
        return None

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)
