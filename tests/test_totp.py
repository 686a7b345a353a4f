"""Unit tests for the TOTP manager in auth/totp.py.

Covers:
- Secrets are base32 and provisioning URIs carry issuer and account
- Codes from the right secret match within +/-1 step; wrong secret never matches
- Replay protection: steps at or before last_step are refused
- totp_state() derives Disabled / Pending / Enabled from the record
"""

from datetime import datetime, timedelta, timezone

import pyotp
import pytest

from auth.models import Credential
from auth.totp import TotpManager, totp_state

NOW = datetime(2026, 3, 1, 9, 0, 15, tzinfo=timezone.utc)


@pytest.fixture
def manager() -> TotpManager:
    return TotpManager(issuer_name="CredGuard", valid_window=1)


def _code(secret: str, at: datetime) -> str:
    return pyotp.TOTP(secret).at(at)


def test_new_secret_is_base32(manager: TotpManager) -> None:
    secret = manager.new_secret()
    assert len(secret) >= 16
    pyotp.TOTP(secret).now()  # decodes


def test_enrollment_uri(manager: TotpManager) -> None:
    enrollment = manager.enrollment("JBSWY3DPEHPK3PXP", "a@b.com")
    assert enrollment.secret == "JBSWY3DPEHPK3PXP"
    assert enrollment.provisioning_uri.startswith("otpauth://totp/")
    assert "issuer=CredGuard" in enrollment.provisioning_uri
    assert "secret=JBSWY3DPEHPK3PXP" in enrollment.provisioning_uri
    assert "a%40b.com" in enrollment.provisioning_uri


def test_current_code_matches(manager: TotpManager) -> None:
    secret = manager.new_secret()
    step = manager.match_step(secret, _code(secret, NOW), NOW)
    assert step == pyotp.TOTP(secret).timecode(NOW)


@pytest.mark.parametrize("offset", [-30, 30])
def test_adjacent_steps_match(manager: TotpManager, offset: int) -> None:
    secret = manager.new_secret()
    code = _code(secret, NOW + timedelta(seconds=offset))
    assert manager.match_step(secret, code, NOW) is not None


@pytest.mark.parametrize("offset", [-90, 90])
def test_distant_steps_do_not_match(manager: TotpManager, offset: int) -> None:
    secret = manager.new_secret()
    code = _code(secret, NOW + timedelta(seconds=offset))
    # A distant code can coincide with a nearby one by chance; compare against those.
    nearby = {_code(secret, NOW + timedelta(seconds=s)) for s in (-30, 0, 30)}
    if code not in nearby:
        assert manager.match_step(secret, code, NOW) is None


def test_wrong_secret_never_matches(manager: TotpManager) -> None:
    right, wrong = manager.new_secret(), manager.new_secret()
    code = _code(wrong, NOW)
    nearby = {_code(right, NOW + timedelta(seconds=s)) for s in (-30, 0, 30)}
    if code not in nearby:
        assert manager.match_step(right, code, NOW) is None


def test_replay_is_refused(manager: TotpManager) -> None:
    secret = manager.new_secret()
    code = _code(secret, NOW)
    step = manager.match_step(secret, code, NOW)
    assert step is not None
    assert manager.match_step(secret, code, NOW, last_step=step) is None


def test_later_step_accepted_after_earlier_one(manager: TotpManager) -> None:
    secret = manager.new_secret()
    step = manager.match_step(secret, _code(secret, NOW), NOW)
    later = NOW + timedelta(seconds=30)
    code = _code(secret, later)
    assert manager.match_step(secret, code, later, last_step=step) == step + 1


def test_empty_inputs(manager: TotpManager) -> None:
    assert manager.match_step("", "123456", NOW) is None
    assert manager.match_step(manager.new_secret(), "", NOW) is None


def test_zero_window_accepts_only_current_step() -> None:
    strict = TotpManager(valid_window=0)
    secret = strict.new_secret()
    previous = _code(secret, NOW - timedelta(seconds=30))
    if previous != _code(secret, NOW):
        assert strict.match_step(secret, previous, NOW) is None


def test_totp_state() -> None:
    base = Credential(email="a@b.com", password_digest="x")
    assert totp_state(base) == "disabled"
    base.two_factor_secret = "JBSWY3DPEHPK3PXP"
    assert totp_state(base) == "pending"
    base.two_factor_enabled = True
    assert totp_state(base) == "enabled"
