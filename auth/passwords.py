"""
auth/passwords.py -- One-way password hashing (bcrypt).

Bcrypt is the right choice for low-entropy secrets because its cost factor
makes brute-force expensive. Every hash embeds a fresh random salt, so hashing
the same password twice yields two different digests.

The work factor is fixed per process (BCRYPT_ROUNDS, default 12). Digests
record their own cost, so lowering or raising the setting never breaks
verification of existing records.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection feeds bcrypt 4.x a >72 byte password, which it rejects.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt

DEFAULT_ROUNDS = 12


class SecretHasher:
    """Hash and verify passwords at a fixed bcrypt cost.

    Usage:
        hasher = SecretHasher(rounds=12)
        digest = hasher.hash("Abcd123!")
        hasher.verify("Abcd123!", digest)   # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization dummy [C1]. Computed once so a login for an
        # unknown email still pays for one bcrypt comparison.
        self._dummy_digest = self.hash("credguard_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt digest of the plaintext password.

        Passwords longer than 72 bytes are truncated by bcrypt. The request
        validator caps password length well below that threshold.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, digest: str | None) -> bool:
        """Return True if the plaintext matches the digest.

        Malformed or missing digests return False instead of raising, so the
        response shape never depends on what is stored.
        """
        if not digest:
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), digest.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def burn(self, plain: str) -> None:
        """Run one verification against the dummy digest and discard the result."""
        self.verify(plain, self._dummy_digest)
