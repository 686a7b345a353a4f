"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/routes/v1/auth.py to apply per-route limits with
@limiter.limit(), placed below @router so the limit is checked inside the
endpoint; api/main.py registers it on app.state and maps RateLimitExceeded
to the error envelope.

Using a single shared instance ensures all routes share the same in-memory
counter store. Separate instances per module would each keep their own
counters and the limits would never trigger.

Per-IP throttling here is a coarse outer guard. Per-account protection is the
lockout counter in auth/lockout.py, which holds regardless of source address.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def sensitive_limit() -> str:
    """Limit string for login and forgot-password, read from settings (LOGIN_RATE_LIMIT)."""
    return get_settings().login_rate_limit
