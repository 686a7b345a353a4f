"""
tests/conftest.py -- Shared test fixtures for CredGuard unit and integration tests.

This module provides:
  - FakeClock: injectable clock for expiry and lockout tests
  - RecordingNotifier: captures raw verification/reset tokens instead of emailing
  - store / service: a fresh AuthService over a temp-file SQLite DB per test
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: temp-file SQLite databases (not shared-memory URIs). Shared-cache
in-memory databases use table-level locks that fail immediately under
concurrent writers, while a WAL file database with a busy timeout behaves
like production. TestClient runs sync route handlers in a thread pool, and
the lockout concurrency test starts its own threads.

Test-only settings must be set before any api/auth/core import:
  DEBUG=true         -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4    -- minimum bcrypt cost keeps the suite fast
  LOGIN_RATE_LIMIT   -- relaxed so the login-heavy tests are not throttled
  ALLOWED_HOSTS      -- TestClient sends Host: testserver
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOGIN_RATE_LIMIT"] = "1000/minute"
os.environ["ALLOWED_HOSTS"] = '["testserver", "localhost"]'

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.lockout import LockoutPolicy
from auth.notifications import Notifier
from auth.passwords import SecretHasher
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import SessionTokenIssuer
from auth.totp import TotpManager

TEST_SECRET_KEY = "test-secret-key-for-credguard-suite-0123456789"
DEFAULT_EMAIL = "a@b.com"
DEFAULT_PASSWORD = "Abcd123!"

# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to.

    Starts at the real current second: python-jose checks `exp` against the
    wall clock, so tokens minted at fake times must not be far in the past.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingNotifier(Notifier):
    """Keeps every raw token handed to it. fail_* flags simulate delivery outages."""

    def __init__(self) -> None:
        self.verifications: list[tuple[str, str, str]] = []
        self.resets: list[tuple[str, str, str]] = []
        self.password_changes: list[tuple[str, str]] = []
        self.fail_verification = False
        self.fail_reset = False

    def send_verification(self, user_id: str, email: str, raw_token: str) -> None:
        if self.fail_verification:
            raise ConnectionError("smtp unavailable")
        self.verifications.append((user_id, email, raw_token))

    def send_password_reset(self, user_id: str, email: str, raw_token: str) -> None:
        if self.fail_reset:
            raise ConnectionError("smtp unavailable")
        self.resets.append((user_id, email, raw_token))

    def send_password_changed(self, user_id: str, email: str) -> None:
        self.password_changes.append((user_id, email))

    @property
    def last_verification_token(self) -> str:
        return self.verifications[-1][2]

    @property
    def last_reset_token(self) -> str:
        return self.resets[-1][2]


def registration(email: str = DEFAULT_EMAIL, password: str = DEFAULT_PASSWORD, **overrides) -> dict:
    """A valid camelCase registration payload."""
    payload = {
        "email": email,
        "password": password,
        "confirmPassword": password,
        "firstName": "Ada",
        "lastName": "Lovelace",
        "termsAccepted": True,
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Unit fixtures -- one fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hasher() -> SecretHasher:
    return SecretHasher(rounds=4)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def issuer() -> SessionTokenIssuer:
    return SessionTokenIssuer(TEST_SECRET_KEY)


@pytest.fixture
def store(tmp_path) -> Generator[CredentialStore, None, None]:
    s = CredentialStore(f"sqlite:///{tmp_path / 'credentials.db'}")
    yield s
    s.close()


@pytest.fixture
def service(store, hasher, issuer, clock, notifier) -> AuthService:
    return AuthService(
        store=store,
        hasher=hasher,
        issuer=issuer,
        totp=TotpManager(issuer_name="CredGuard Test"),
        policy=LockoutPolicy(threshold=5, lock_seconds=3600),
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def account(service: AuthService) -> str:
    """Id of a registered, unverified account with DEFAULT_EMAIL / DEFAULT_PASSWORD."""
    return service.register(registration())


@pytest.fixture
def verified_account(service: AuthService, notifier: RecordingNotifier, account: str) -> str:
    """Id of a registered account whose email has been verified."""
    service.verify_email({"token": notifier.last_verification_token})
    return account


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires a pre-built AuthService into app.state so routes hit an isolated
    test database and a recording notifier instead of the configured ones.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, AuthService, RecordingNotifier], None, None]:
    """Yield (client, service, notifier) for API integration tests.

    One TestClient per test module for speed. Tests that need an account
    register their own with a unique email.
    """
    db_path = tmp_path_factory.mktemp("api") / "credentials.db"
    notifier = RecordingNotifier()
    service = AuthService(
        store=CredentialStore(f"sqlite:///{db_path}"),
        hasher=SecretHasher(rounds=4),
        issuer=SessionTokenIssuer(TEST_SECRET_KEY),
        notifier=notifier,
    )

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service, notifier

    service.close()
