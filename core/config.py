"""
core/config.py -- CredGuard settings, read from the environment via pydantic-settings.

This is the only module that looks at environment variables. The entry points
(api/main.py, main.py) call get_settings() once, build an AuthService from the
values with AuthService.from_settings(), and pass that service around. Code
under auth/ never reads settings by itself, so tests can construct services
with whatever policy they need.

Field names map to upper-case variables (bcrypt_rounds -> BCRYPT_ROUNDS) and
an optional .env file in the working directory is honoured. Lists are given
as JSON: ALLOWED_HOSTS='["auth.example.com"]'.

Signing key policy (checked in _check_signing_key):
  DEBUG=true and no SECRET_KEY  -> a random key is generated and a warning is
                                   logged. Every restart invalidates sessions.
  DEBUG unset and no SECRET_KEY -> startup fails.
  SECRET_KEY under 32 chars     -> startup fails in either mode; HS256 tokens
                                   are only as strong as the key.

Mail: SMTP_HOST switches on real delivery (auth/notifications.SmtpNotifier).
Without it the API starts only under DEBUG=true and mails are logged, not
sent.

Layer rule: core/ may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("credguard.config")

MIN_SECRET_KEY_LENGTH = 32

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'credguard.db'}"


class Settings(BaseSettings):
    """Process-wide configuration. Read once at startup, read-only afterwards.

    Every field has a default except the effective SECRET_KEY, so a bare
    Settings() works in development and tests.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    # "" means not configured; _check_signing_key replaces or rejects it.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # bcrypt cost. 12 is roughly 250ms per check on current hardware; tests use 4.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # Lifetimes in seconds.
    session_ttl_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    remember_ttl_seconds: int = Field(default=30 * 24 * 3600, gt=0)
    pre_auth_ttl_seconds: int = Field(default=5 * 60, gt=0)
    verification_ttl_seconds: int = Field(default=24 * 3600, gt=0)
    reset_ttl_seconds: int = Field(default=3600, gt=0)
    # A session token with less than this left is reissued in X-New-Token; 0 disables.
    session_renew_seconds: int = Field(default=24 * 3600, ge=0)

    lockout_threshold: int = Field(default=5, ge=1)
    lockout_seconds: int = Field(default=3600, ge=1)

    totp_issuer: str = "CredGuard"
    # Accepted drift in 30-second steps on either side of the current one.
    totp_valid_window: int = Field(default=1, ge=0, le=3)

    # slowapi limit string applied per client IP to login, TOTP login and forgot-password.
    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # Outgoing mail. SMTP_HOST unset means no mail server: allowed only with DEBUG=true.
    smtp_host: str = ""
    smtp_port: int = Field(default=587, gt=0, le=65535)
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = True
    mail_from: str = "CredGuard <no-reply@localhost>"
    # Links in mails point here: {app_base_url}/verify-email?token=...
    app_base_url: str = "http://localhost:3000"

    @field_validator("totp_issuer")
    @classmethod
    def issuer_without_colon(cls, value: str) -> str:
        # The otpauth:// label is "issuer:account"; a colon in the issuer breaks parsing in authenticator apps.
        if ":" in value:
            raise ValueError("TOTP_ISSUER must not contain ':'.")
        return value

    @model_validator(mode="after")
    def _check_signing_key(self) -> "Settings":
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("Using an auto-generated SECRET_KEY; sessions will not survive a restart.")
        if len(self.secret_key) < MIN_SECRET_KEY_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {MIN_SECRET_KEY_LENGTH} characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings instance.

    Tests that change environment variables after the first call must run
    get_settings.cache_clear().
    """
    return Settings()
