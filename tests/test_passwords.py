"""Unit tests for bcrypt password hashing in auth/passwords.py.

Covers:
- Fresh salt per hash: same password, different digests
- verify() accepts the original and rejects any other password
- Malformed or missing digests verify as False instead of raising
- Digests record their own cost, so a hasher at another cost still verifies
"""

from auth.passwords import SecretHasher


def test_hash_is_salted(hasher: SecretHasher) -> None:
    first = hasher.hash("Abcd123!")
    second = hasher.hash("Abcd123!")
    assert first != second
    assert first.startswith("$2")


def test_hash_never_contains_plaintext(hasher: SecretHasher) -> None:
    assert "Abcd123!" not in hasher.hash("Abcd123!")


def test_verify_roundtrip(hasher: SecretHasher) -> None:
    digest = hasher.hash("Abcd123!")
    assert hasher.verify("Abcd123!", digest) is True


def test_verify_rejects_other_passwords(hasher: SecretHasher) -> None:
    digest = hasher.hash("Abcd123!")
    for other in ("abcd123!", "Abcd123", "Abcd123!!", " Abcd123!", ""):
        assert hasher.verify(other, digest) is False, f"{other!r} must not verify"


def test_verify_malformed_digest_returns_false(hasher: SecretHasher) -> None:
    assert hasher.verify("Abcd123!", "not-a-bcrypt-digest") is False
    assert hasher.verify("Abcd123!", "") is False
    assert hasher.verify("Abcd123!", None) is False


def test_digest_from_other_cost_still_verifies(hasher: SecretHasher) -> None:
    other = SecretHasher(rounds=5)
    digest = other.hash("Abcd123!")
    assert digest.split("$")[2] == "05"
    assert hasher.verify("Abcd123!", digest) is True


def test_burn_returns_nothing_and_does_not_raise(hasher: SecretHasher) -> None:
    assert hasher.burn("anything at all") is None
