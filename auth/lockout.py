"""
auth/lockout.py -- Failed-attempt counter and temporary account lock.

States per record: Unlocked / Locked. Locked means locked_until is set and
still in the future; an elapsed locked_until counts as Unlocked.

Every function here is a pure transition: it takes a Credential and returns a
new Credential. Nothing is written. The caller persists the result through
the store's versioned update, which is what makes a read-increment-write
atomic per login attempt (see AuthService._mutate).

Transitions:
  failure while Unlocked     -> failed_attempts += 1; at threshold lock for lock_seconds
  failure after lock elapsed -> failed_attempts = 1, lock cleared
  failure while Locked       -> unchanged (counter never exceeds the threshold)
  success                    -> failed_attempts = 0, lock cleared

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from auth.models import Credential


@dataclass(frozen=True)
class LockoutPolicy:
    threshold: int = 5
    lock_seconds: int = 3600


def is_locked(record: Credential, now: datetime) -> bool:
    return record.locked_until is not None and record.locked_until > now


def retry_after_seconds(record: Credential, now: datetime) -> int:
    """Whole seconds until the lock lifts, rounded up. 0 when not locked."""
    if not is_locked(record, now):
        return 0
    return math.ceil((record.locked_until - now).total_seconds())


def apply_failed_login(record: Credential, policy: LockoutPolicy, now: datetime) -> Credential:
    """Return the record after one more wrong password."""
    if is_locked(record, now):
        return record
    if record.locked_until is not None:
        # Previous lock has elapsed: this failure starts a fresh count.
        attempts = 1
    else:
        attempts = record.failed_attempts + 1
    locked_until = None
    if attempts >= policy.threshold:
        attempts = policy.threshold
        locked_until = now + timedelta(seconds=policy.lock_seconds)
    return replace(record, failed_attempts=attempts, locked_until=locked_until)


def apply_successful_login(record: Credential, now: datetime) -> Credential:
    """Return the record after a correct password (and second factor, if any)."""
    return replace(record, failed_attempts=0, locked_until=None, last_login=now)


def clear_lock(record: Credential) -> Credential:
    """Return the record with the counter and lock reset. Used by password reset/change and operators."""
    return replace(record, failed_attempts=0, locked_until=None)
