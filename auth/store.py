"""
auth/store.py -- SQLAlchemy Core persistence layer for credential records.

Pattern: Repository + Data Mapper.
CredentialStore is the repository; _row_to_credential / _credential_values are
the mappers. Service code never touches SQL directly.

Concurrency:
  Every update is conditional on the record's `version` column:

      UPDATE credentials SET ..., version = version + 1
      WHERE id = :id AND version = :version

  save() returns None when the row moved on since the caller loaded it. The
  caller (AuthService._mutate) reloads and re-applies its transition, so two
  concurrent failed logins can never collapse into one increment.

Errors:
  A duplicate email on insert becomes EmailAlreadyExists. Any other
  SQLAlchemy failure (locked database, unreachable server, missing schema) is
  logged and surfaced as ServiceUnavailable -- callers may retry with backoff.

Security:
  All queries use bound parameters. No f-strings in SQL.

Storage format: timestamps are ISO 8601 UTC strings, booleans are 0/1
integers (SQLite has no native bool or tz-aware datetime).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import EmailAlreadyExists, ServiceUnavailable
from auth.models import Credential

logger = logging.getLogger("credguard.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_credentials = Table(
    "credentials",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex
    Column("email", String(254), nullable=False, unique=True),
    Column("password_digest", Text, nullable=False),
    Column("first_name", String(50), nullable=False, server_default=""),
    Column("last_name", String(50), nullable=False, server_default=""),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("verification_digest", String(64)),  # SHA-256 hex
    Column("verification_expires_at", String(32)),
    Column("reset_digest", String(64)),  # SHA-256 hex
    Column("reset_expires_at", String(32)),
    Column("two_factor_enabled", Integer, nullable=False, server_default="0"),
    Column("two_factor_secret", String(64)),
    Column("totp_last_step", Integer),
    Column("failed_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("session_version", Integer, nullable=False, server_default="0"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("version", Integer, nullable=False, server_default="0"),
)

Index("ix_credentials_verification_digest", _credentials.c.verification_digest)
Index("ix_credentials_reset_digest", _credentials.c.reset_digest)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block on the single writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Credential records, addressable by id and by unique email.

    Usage:
        store = CredentialStore("sqlite:///credguard.db")
        user_id = store.create(Credential(email="a@b.com", password_digest=hasher.hash("...")))
        record = store.get_by_id(user_id)
        saved = store.save(replace(record, verified=True))   # None on version conflict
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # Wait for the writer lock instead of failing fast under contention.
            connect_args["timeout"] = 30
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        with self._connect() as conn:
            _metadata.create_all(conn)
            conn.commit()

    @contextmanager
    def _connect(self):
        """Yield a connection; translate infrastructure failures to ServiceUnavailable."""
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Credential store unavailable")
            raise ServiceUnavailable() from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: str) -> Credential | None:
        with self._connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.id == user_id)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def get_by_email(self, email: str) -> Credential | None:
        """Look up by normalized (trimmed, lower-cased) email."""
        with self._connect() as conn:
            row = conn.execute(
                _credentials.select().where(_credentials.c.email == email.strip().lower())
            ).fetchone()
        return _row_to_credential(row) if row is not None else None

    def get_by_verification_digest(self, digest: str) -> Credential | None:
        with self._connect() as conn:
            row = conn.execute(
                _credentials.select().where(_credentials.c.verification_digest == digest)
            ).fetchone()
        return _row_to_credential(row) if row is not None else None

    def get_by_reset_digest(self, digest: str) -> Credential | None:
        with self._connect() as conn:
            row = conn.execute(_credentials.select().where(_credentials.c.reset_digest == digest)).fetchone()
        return _row_to_credential(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, record: Credential) -> str:
        """Insert a new record and return its id.

        Raises EmailAlreadyExists if the email is taken, including when a
        concurrent registration wins the race for the UNIQUE index.
        """
        user_id = record.id or uuid.uuid4().hex
        now = _now_iso()
        values = _credential_values(record)
        values.update(id=user_id, email=record.email.strip().lower(), created_at=now, updated_at=now, version=0)
        try:
            with self._connect() as conn:
                conn.execute(_credentials.insert().values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise EmailAlreadyExists() from exc
        return user_id

    def save(self, record: Credential) -> Credential | None:
        """Persist `record` if nobody else wrote it since it was loaded.

        Returns the stored record (version bumped) on success, None on a
        version conflict. The email and created_at columns are never updated.
        """
        if record.id is None:
            raise ValueError("save() requires a persisted record; use create() for new records")
        now = _now_iso()
        values = _credential_values(record)
        values.update(updated_at=now, version=record.version + 1)
        with self._connect() as conn:
            result = conn.execute(
                _credentials.update()
                .where((_credentials.c.id == record.id) & (_credentials.c.version == record.version))
                .values(**values)
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return replace(record, version=record.version + 1, updated_at=_from_iso(now))

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by the health check."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Credential store ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _credential_values(record: Credential) -> dict:
    """Column values for the mutable part of a record."""
    return {
        "password_digest": record.password_digest,
        "first_name": record.first_name,
        "last_name": record.last_name,
        "role": record.role,
        "verified": 1 if record.verified else 0,
        "verification_digest": record.verification_digest,
        "verification_expires_at": _to_iso(record.verification_expires_at),
        "reset_digest": record.reset_digest,
        "reset_expires_at": _to_iso(record.reset_expires_at),
        "two_factor_enabled": 1 if record.two_factor_enabled else 0,
        "two_factor_secret": record.two_factor_secret,
        "totp_last_step": record.totp_last_step,
        "failed_attempts": record.failed_attempts,
        "locked_until": _to_iso(record.locked_until),
        "active": 1 if record.active else 0,
        "session_version": record.session_version,
        "last_login": _to_iso(record.last_login),
    }


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        email=row.email,
        password_digest=row.password_digest,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        verified=bool(row.verified),
        verification_digest=row.verification_digest,
        verification_expires_at=_from_iso(row.verification_expires_at),
        reset_digest=row.reset_digest,
        reset_expires_at=_from_iso(row.reset_expires_at),
        two_factor_enabled=bool(row.two_factor_enabled),
        two_factor_secret=row.two_factor_secret,
        totp_last_step=row.totp_last_step,
        failed_attempts=row.failed_attempts,
        locked_until=_from_iso(row.locked_until),
        active=bool(row.active),
        session_version=row.session_version,
        last_login=_from_iso(row.last_login),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
        version=row.version,
    )
