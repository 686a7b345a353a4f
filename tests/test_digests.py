"""Unit tests for single-use token digests in auth/digests.py.

Covers:
- issue() returns 256-bit hex tokens with a SHA-256 digest
- token_matches() accepts only the exact raw token
- Bit-flipped and truncated tokens never match
"""

import hashlib

from auth.digests import TOKEN_BYTES, digest_token, issue_token, token_matches


def test_issue_shape() -> None:
    issued = issue_token()
    assert len(issued.raw) == TOKEN_BYTES * 2
    int(issued.raw, 16)  # hex
    assert issued.digest == hashlib.sha256(issued.raw.encode()).hexdigest()
    assert issued.created_at.tzinfo is not None


def test_issue_is_random() -> None:
    assert len({issue_token().raw for _ in range(20)}) == 20


def test_matches_exact_token() -> None:
    issued = issue_token()
    assert token_matches(issued.raw, issued.digest) is True


def test_digest_is_not_the_raw_token() -> None:
    issued = issue_token()
    assert issued.raw != issued.digest
    assert issued.raw not in issued.digest


def test_bit_flipped_tokens_do_not_match() -> None:
    issued = issue_token()
    for i in range(0, len(issued.raw), 7):
        flipped_char = "0" if issued.raw[i] != "0" else "1"
        variant = issued.raw[:i] + flipped_char + issued.raw[i + 1 :]
        assert token_matches(variant, issued.digest) is False


def test_truncated_and_empty_tokens_do_not_match() -> None:
    issued = issue_token()
    assert token_matches(issued.raw[:-1], issued.digest) is False
    assert token_matches("", issued.digest) is False
    assert token_matches(issued.raw, None) is False


def test_token_from_another_issue_does_not_match() -> None:
    first, second = issue_token(), issue_token()
    assert token_matches(first.raw, second.digest) is False


def test_digest_is_deterministic() -> None:
    assert digest_token("abc") == digest_token("abc")
