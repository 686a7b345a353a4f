"""
auth/service.py -- AuthService: use-case sequencing over the credential store.

AuthService is constructed once by the outer assembly (api/main.py, main.py)
with its store, hasher, token issuer, TOTP manager, lockout policy, notifier
and clock, then handed to call sites. Nothing in auth/ holds module-level
state.

Every public method takes raw input (a dict or an input model), runs it
through auth/validation.py, and either returns a result or raises an
AuthError subclass from auth/errors.py.

Write discipline:
  All record changes go through _mutate(user_id, transition). It loads the
  record, applies a pure transition, and saves with the store's versioned
  update. On a version conflict it reloads and re-applies, so a transition
  always sees the latest state. Transitions may raise to abort without
  writing (e.g. the account locked while we were hashing).

  bcrypt work (hash / verify) always happens before _mutate, never inside
  the retry loop.

Revocation: every token carries the account's session_version as `sv`.
Reset, change password and logout bump the counter, which invalidates every
token issued before, whatever its `iat`.

Logging: record ids only. Never emails, passwords, raw tokens or secrets.

Layer rule: no imports from api/ or core/. Settings arrive as an object in
from_settings(); this module never reads the environment.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from auth.digests import digest_token, issue_token, token_matches
from auth.errors import (
    AccountDisabled,
    AccountLocked,
    Forbidden,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidTotpCode,
    ServiceUnavailable,
    TokenInvalid,
)
from auth.lockout import (
    LockoutPolicy,
    apply_failed_login,
    apply_successful_login,
    clear_lock,
    is_locked,
    retry_after_seconds,
)
from auth.models import Credential, Identity
from auth.notifications import LogNotifier, Notifier
from auth.passwords import SecretHasher
from auth.store import CredentialStore
from auth.tokens import PRE_AUTH, SESSION, SessionTokenIssuer, SignedToken, TokenClaims
from auth.totp import TotpEnrollment, TotpManager
from auth.validation import (
    ChangePasswordInput,
    ForgotPasswordInput,
    LoginInput,
    RegisterInput,
    ResetPasswordInput,
    TotpCodeInput,
    VerifyEmailInput,
    validate,
)

logger = logging.getLogger("credguard.auth")

# Upper bound on reload-apply-save rounds for one write. Each lost round means
# another writer succeeded, so this only trips under sustained contention.
_MAX_WRITE_ATTEMPTS = 25


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a correct password.

    requires_two_factor=False: `token` is a full session token.
    requires_two_factor=True:  `token` is a pre-authentication token that only
                               verify_totp_login() accepts.
    """

    requires_two_factor: bool
    token: SignedToken


@dataclass(frozen=True)
class AuthenticatedSession:
    """A resolved session token. `renewed` is set when the token was close to expiry."""

    credential: Credential
    renewed: SignedToken | None = None


class AuthService:
    """Credential and session use cases.

    Usage:
        service = AuthService.from_settings(get_settings())
        user_id = service.register({...})
        result = service.login({"email": "a@b.com", "password": "Abcd123!"})
        identity = service.current_identity(result.token.token)
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: SecretHasher,
        issuer: SessionTokenIssuer,
        totp: TotpManager | None = None,
        policy: LockoutPolicy | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
        verification_ttl: int = 24 * 3600,
        reset_ttl: int = 3600,
        renew_within: int = 24 * 3600,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.issuer = issuer
        self.totp = totp or TotpManager()
        self.policy = policy or LockoutPolicy()
        self.notifier = notifier or LogNotifier()
        self._clock = clock
        self.verification_ttl = verification_ttl
        self.reset_ttl = reset_ttl
        # Session tokens with less than this many seconds left are reissued; 0 turns renewal off.
        self.renew_within = renew_within

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        store: CredentialStore | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "AuthService":
        """Wire a service from a Settings object (see core/config.py)."""
        return cls(
            store=store or CredentialStore(settings.database_url),
            hasher=SecretHasher(rounds=settings.bcrypt_rounds),
            issuer=SessionTokenIssuer(
                settings.secret_key,
                session_ttl=settings.session_ttl_seconds,
                remember_ttl=settings.remember_ttl_seconds,
                pre_auth_ttl=settings.pre_auth_ttl_seconds,
            ),
            totp=TotpManager(issuer_name=settings.totp_issuer, valid_window=settings.totp_valid_window),
            policy=LockoutPolicy(threshold=settings.lockout_threshold, lock_seconds=settings.lockout_seconds),
            notifier=notifier,
            clock=clock,
            verification_ttl=settings.verification_ttl_seconds,
            reset_ttl=settings.reset_ttl_seconds,
            renew_within=settings.session_renew_seconds,
        )

    def close(self) -> None:
        self.store.close()

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    def register(self, payload: Any) -> str:
        """Create an unverified account and send its verification token. Returns the new id."""
        data = validate(RegisterInput, payload)
        now = self._clock()
        issued = issue_token()
        record = Credential(
            email=data.email,
            password_digest=self.hasher.hash(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            verification_digest=issued.digest,
            verification_expires_at=now + timedelta(seconds=self.verification_ttl),
        )
        user_id = self.store.create(record)
        logger.info("Registered user_id=%s", user_id)
        # The account exists either way; a failed send is recoverable via
        # resend_verification().
        try:
            self.notifier.send_verification(user_id, data.email, issued.raw)
        except Exception:
            logger.exception("Verification delivery failed for user_id=%s", user_id)
        return user_id

    def create_admin(self, email: str, password: str, first_name: str = "Admin", last_name: str = "User") -> str:
        """Create a verified admin account. Operator use only (see main.py)."""
        data = validate(
            RegisterInput,
            {
                "email": email,
                "password": password,
                "confirm_password": password,
                "first_name": first_name,
                "last_name": last_name,
                "terms_accepted": True,
            },
        )
        record = Credential(
            email=data.email,
            password_digest=self.hasher.hash(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            role="admin",
            verified=True,
        )
        user_id = self.store.create(record)
        logger.info("Admin account created user_id=%s", user_id)
        return user_id

    def verify_email(self, payload: Any) -> None:
        """Consume a verification token. Wrong and expired tokens fail identically."""
        data = validate(VerifyEmailInput, payload)
        now = self._clock()
        record = self.store.get_by_verification_digest(digest_token(data.token))
        if record is None:
            raise InvalidOrExpiredToken()

        def consume(current: Credential) -> Credential:
            if not _token_live(data.token, current.verification_digest, current.verification_expires_at, now):
                raise InvalidOrExpiredToken()
            return replace(current, verified=True, verification_digest=None, verification_expires_at=None)

        self._mutate(record.id, consume)
        logger.info("Email verified for user_id=%s", record.id)

    def resend_verification(self, user_id: str) -> None:
        """Replace the outstanding verification token with a fresh one."""
        issued = issue_token()
        now = self._clock()

        def reissue(current: Credential) -> Credential:
            if current.verified:
                raise Forbidden("Email address is already verified.")
            return replace(
                current,
                verification_digest=issued.digest,
                verification_expires_at=now + timedelta(seconds=self.verification_ttl),
            )

        saved = self._mutate(user_id, reissue)
        try:
            self.notifier.send_verification(saved.id, saved.email, issued.raw)
        except Exception as exc:
            logger.exception("Verification delivery failed for user_id=%s", saved.id)
            raise ServiceUnavailable() from exc
        logger.info("Verification token reissued for user_id=%s", saved.id)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, payload: Any) -> LoginResult:
        """Check a password and return a session token or a pre-auth token.

        Order: unknown email -> inactive -> locked -> password -> second factor.
        A locked account is refused before the hash check, so the right
        password does not help during the lock window.
        """
        data = validate(LoginInput, payload)
        record = self.store.get_by_email(data.email)
        if record is None:
            self.hasher.burn(data.password)
            logger.info("Login failed: no account for submitted email")
            raise InvalidCredentials()

        now = self._clock()
        if not record.active:
            logger.info("Login refused for deactivated user_id=%s", record.id)
            raise AccountDisabled()
        if is_locked(record, now):
            raise AccountLocked(retry_after_seconds(record, now))

        if not self.hasher.verify(data.password, record.password_digest):
            self._record_failed_login(record.id, now)

        if record.two_factor_enabled:
            logger.info("Password accepted, second factor required for user_id=%s", record.id)
            signed = self.issuer.issue_pre_auth(
                record.id, record.email, record.role, now=now, session_version=record.session_version
            )
            return LoginResult(requires_two_factor=True, token=signed)

        checked_digest = record.password_digest

        def succeed(current: Credential) -> Credential:
            _ensure_can_sign_in(current, now)
            if not hmac.compare_digest(current.password_digest, checked_digest):
                # Password changed between our read and this write.
                raise InvalidCredentials()
            return apply_successful_login(current, now)

        saved = self._mutate(record.id, succeed)
        logger.info("Login succeeded for user_id=%s", saved.id)
        signed = self._issue_session(saved, now, remember=data.remember)
        return LoginResult(requires_two_factor=False, token=signed)

    def verify_totp_login(self, pre_auth_token: str, payload: Any) -> SignedToken:
        """Exchange a pre-auth token and a TOTP code for a full session token.

        A wrong code leaves the pre-auth token usable and does not count as a
        failed password attempt.
        """
        data = validate(TotpCodeInput, payload)
        claims = self.issuer.verify(pre_auth_token)
        if claims.kind != PRE_AUTH:
            raise TokenInvalid()
        now = self._clock()
        record = self.store.get_by_id(claims.user_id)
        if record is None or _revoked(claims, record):
            raise TokenInvalid()

        def accept(current: Credential) -> Credential:
            _ensure_can_sign_in(current, now)
            if _revoked(claims, current):
                raise TokenInvalid()
            if not current.two_factor_enabled:
                raise TokenInvalid()
            step = self.totp.match_step(current.two_factor_secret, data.code, now, current.totp_last_step)
            if step is None:
                raise InvalidTotpCode()
            return replace(apply_successful_login(current, now), totp_last_step=step)

        try:
            saved = self._mutate(record.id, accept)
        except InvalidTotpCode:
            logger.info("TOTP login step failed for user_id=%s", record.id)
            raise
        logger.info("Login succeeded with second factor for user_id=%s", saved.id)
        return self._issue_session(saved, now)

    # ------------------------------------------------------------------
    # Password reset and change
    # ------------------------------------------------------------------

    def forgot_password(self, payload: Any) -> None:
        """Issue a reset token if the email belongs to an active account.

        Returns None in every case so callers cannot tell whether the email
        exists. A delivery failure is logged and the just-issued token is
        withdrawn, but the caller still sees None: reporting it would mark
        the email as a real account.
        """
        data = validate(ForgotPasswordInput, payload)
        record = self.store.get_by_email(data.email)
        if record is None or not record.active:
            logger.info("Password reset requested for unknown or inactive account")
            return

        issued = issue_token()
        now = self._clock()

        def issue(current: Credential) -> Credential:
            return replace(
                current,
                reset_digest=issued.digest,
                reset_expires_at=now + timedelta(seconds=self.reset_ttl),
            )

        saved = self._mutate(record.id, issue)
        try:
            self.notifier.send_password_reset(saved.id, saved.email, issued.raw)
        except Exception:
            logger.exception("Password reset delivery failed for user_id=%s", saved.id)
            self._mutate(saved.id, lambda current: _withdraw_reset(current, issued.digest))
            return
        logger.info("Password reset token issued for user_id=%s", saved.id)

    def reset_password(self, payload: Any) -> None:
        """Consume a reset token and set a new password.

        Also unlocks the account and revokes every session issued before now.
        """
        data = validate(ResetPasswordInput, payload)
        record = self.store.get_by_reset_digest(digest_token(data.token))
        if record is None:
            raise InvalidOrExpiredToken()
        new_digest = self.hasher.hash(data.new_password)
        now = self._clock()

        def reset(current: Credential) -> Credential:
            if not _token_live(data.token, current.reset_digest, current.reset_expires_at, now):
                raise InvalidOrExpiredToken()
            return _with_new_password(current, new_digest)

        saved = self._mutate(record.id, reset)
        logger.info("Password reset completed for user_id=%s", saved.id)
        self._notify_password_changed(saved)

    def change_password(self, user_id: str, payload: Any) -> SignedToken:
        """Replace the password of an authenticated account.

        Earlier session tokens stop working; the returned token is the
        caller's new session.
        """
        data = validate(ChangePasswordInput, payload)
        record = self._load(user_id)
        if not self.hasher.verify(data.current_password, record.password_digest):
            logger.info("Password change refused, wrong current password for user_id=%s", user_id)
            raise InvalidCredentials()
        checked_digest = record.password_digest
        new_digest = self.hasher.hash(data.new_password)
        now = self._clock()

        def change(current: Credential) -> Credential:
            if not hmac.compare_digest(current.password_digest, checked_digest):
                raise InvalidCredentials()
            return _with_new_password(current, new_digest)

        saved = self._mutate(user_id, change)
        logger.info("Password changed for user_id=%s", saved.id)
        self._notify_password_changed(saved)
        return self._issue_session(saved, now)

    # ------------------------------------------------------------------
    # Two-factor enrollment
    # ------------------------------------------------------------------

    def setup_totp(self, user_id: str) -> TotpEnrollment:
        """Store a pending secret and return it with its provisioning URI.

        Calling again before confirmation replaces the pending secret.
        """
        secret = self.totp.new_secret()

        def begin(current: Credential) -> Credential:
            _ensure_verified(current)
            if current.two_factor_enabled:
                raise Forbidden("Two-factor authentication is already enabled.")
            return replace(current, two_factor_secret=secret, totp_last_step=None)

        saved = self._mutate(user_id, begin)
        logger.info("TOTP enrollment started for user_id=%s", saved.id)
        return self.totp.enrollment(secret, saved.email)

    def confirm_totp(self, user_id: str, payload: Any) -> None:
        """Enable two-factor authentication once a code from the pending secret checks out."""
        data = validate(TotpCodeInput, payload)
        now = self._clock()

        def confirm(current: Credential) -> Credential:
            if current.two_factor_enabled:
                raise Forbidden("Two-factor authentication is already enabled.")
            if not current.two_factor_secret:
                raise InvalidTotpCode()
            step = self.totp.match_step(current.two_factor_secret, data.code, now, current.totp_last_step)
            if step is None:
                raise InvalidTotpCode()
            return replace(current, two_factor_enabled=True, totp_last_step=step)

        self._mutate(user_id, confirm)
        logger.info("TOTP enabled for user_id=%s", user_id)

    def disable_totp(self, user_id: str) -> None:
        def disable(current: Credential) -> Credential:
            _ensure_verified(current)
            return replace(current, two_factor_enabled=False, two_factor_secret=None, totp_last_step=None)

        self._mutate(user_id, disable)
        logger.info("TOTP disabled for user_id=%s", user_id)

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    def authenticate(self, token: str) -> Credential:
        """Resolve a full session token to its account.

        Raises TokenExpired / TokenInvalid for bad tokens, pre-auth tokens,
        revoked tokens (session_version moved on), and tokens for unknown
        accounts. Raises AccountDisabled for deactivated accounts.
        """
        return self._resolve_session(token)[1]

    def authenticate_session(self, token: str) -> AuthenticatedSession:
        """authenticate(), plus a fresh session token when this one is about to expire."""
        claims, record = self._resolve_session(token)
        now = self._clock()
        if not self.renew_within or claims.expires_at - now >= timedelta(seconds=self.renew_within):
            return AuthenticatedSession(record)
        logger.info("Session renewed for user_id=%s", record.id)
        return AuthenticatedSession(record, renewed=self._issue_session(record, now))

    def current_identity(self, token: str) -> Identity:
        return identity_of(self.authenticate(token))

    def logout(self, token: str) -> None:
        """Revoke every session of the token's account, this one included."""
        claims, record = self._resolve_session(token)

        def revoke(current: Credential) -> Credential:
            if current.session_version != claims.session_version:
                # A concurrent logout or password change already did it.
                return current
            return _revoke_sessions(current)

        self._mutate(record.id, revoke)
        logger.info("Logged out all sessions for user_id=%s", record.id)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def deactivate_account(self, email: str) -> Credential | None:
        """Soft-delete an account. Returns None if no account has this email."""
        record = self.store.get_by_email(email)
        if record is None:
            return None
        saved = self._mutate(record.id, lambda current: replace(current, active=False))
        logger.warning("Account deactivated user_id=%s", saved.id)
        return saved

    def unlock_account(self, email: str) -> Credential | None:
        """Clear the failed-attempt counter and any lock. Returns None if no account has this email."""
        record = self.store.get_by_email(email)
        if record is None:
            return None
        saved = self._mutate(record.id, clear_lock)
        logger.warning("Account unlocked by operator user_id=%s", saved.id)
        return saved

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, user_id: str) -> Credential:
        record = self.store.get_by_id(user_id)
        if record is None:
            raise TokenInvalid()
        return record

    def _resolve_session(self, token: str) -> tuple[TokenClaims, Credential]:
        claims = self.issuer.verify(token)
        if claims.kind != SESSION:
            raise TokenInvalid()
        record = self.store.get_by_id(claims.user_id)
        if record is None:
            raise TokenInvalid()
        if not record.active:
            raise AccountDisabled()
        if _revoked(claims, record):
            raise TokenInvalid("Session has been revoked.")
        return claims, record

    def _issue_session(self, record: Credential, now: datetime, remember: bool = False) -> SignedToken:
        return self.issuer.issue(
            record.id, record.email, record.role, remember=remember, now=now, session_version=record.session_version
        )

    def _mutate(self, user_id: str, transition: Callable[[Credential], Credential]) -> Credential:
        """Apply `transition` to the latest copy of the record and persist it.

        Retries on version conflicts. A transition that returns the record
        unchanged skips the write.
        """
        for _ in range(_MAX_WRITE_ATTEMPTS):
            current = self._load(user_id)
            updated = transition(current)
            if updated is current:
                return current
            saved = self.store.save(updated)
            if saved is not None:
                return saved
            logger.debug("Version conflict on user_id=%s, retrying", user_id)
        logger.error("Write contention unresolved for user_id=%s after %d attempts", user_id, _MAX_WRITE_ATTEMPTS)
        raise ServiceUnavailable()

    def _record_failed_login(self, user_id: str, now: datetime) -> None:
        """Count one wrong password against the account, then raise.

        Raises AccountLocked if a concurrent attempt locked the account first,
        otherwise InvalidCredentials (including on the attempt that locks).
        """

        def fail(current: Credential) -> Credential:
            if is_locked(current, now):
                raise AccountLocked(retry_after_seconds(current, now))
            return apply_failed_login(current, self.policy, now)

        saved = self._mutate(user_id, fail)
        if is_locked(saved, now):
            logger.warning("Account locked after %d failed attempts user_id=%s", saved.failed_attempts, saved.id)
        else:
            logger.info("Failed login for user_id=%s", saved.id)
        raise InvalidCredentials()

    def _notify_password_changed(self, record: Credential) -> None:
        # The password is already changed; a failed notice must not undo it.
        try:
            self.notifier.send_password_changed(record.id, record.email)
        except Exception:
            logger.exception("Password change notice failed for user_id=%s", record.id)


# ---------------------------------------------------------------------------
# Transition helpers
# ---------------------------------------------------------------------------


def identity_of(record: Credential) -> Identity:
    return Identity(
        id=record.id,
        email=record.email,
        role=record.role,
        verified=record.verified,
        two_factor_enabled=record.two_factor_enabled,
    )


def _token_live(raw: str, digest: str | None, expires_at: datetime | None, now: datetime) -> bool:
    return token_matches(raw, digest) and expires_at is not None and now < expires_at


def _revoked(claims: TokenClaims, record: Credential) -> bool:
    return claims.session_version != record.session_version


def _revoke_sessions(record: Credential) -> Credential:
    return replace(record, session_version=record.session_version + 1)


def _with_new_password(record: Credential, new_digest: str) -> Credential:
    return replace(
        _revoke_sessions(clear_lock(record)),
        password_digest=new_digest,
        reset_digest=None,
        reset_expires_at=None,
    )


def _withdraw_reset(record: Credential, digest: str) -> Credential:
    if record.reset_digest != digest:
        return record
    return replace(record, reset_digest=None, reset_expires_at=None)


def _ensure_can_sign_in(record: Credential, now: datetime) -> None:
    if not record.active:
        raise AccountDisabled()
    if is_locked(record, now):
        raise AccountLocked(retry_after_seconds(record, now))


def _ensure_verified(record: Credential) -> None:
    if not record.verified:
        raise Forbidden("Email verification is required for two-factor authentication.")
