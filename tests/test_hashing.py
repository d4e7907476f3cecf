"""Unit tests for auth/hashing.py -- bcrypt password and OTP hashing."""

from __future__ import annotations

from auth.hashing import CredentialHasher


def test_hash_is_not_plaintext_and_verifies(hasher: CredentialHasher) -> None:
    hashed = hasher.hash("P@ssw0rd")
    assert hashed != "P@ssw0rd"
    assert hashed.startswith("$2")
    assert hasher.verify("P@ssw0rd", hashed)


def test_wrong_secret_does_not_verify(hasher: CredentialHasher) -> None:
    hashed = hasher.hash("P@ssw0rd")
    assert not hasher.verify("p@ssw0rd", hashed)
    assert not hasher.verify("", hashed)


def test_same_secret_hashes_differently(hasher: CredentialHasher) -> None:
    """Each hash carries its own salt."""
    assert hasher.hash("a1b2c3d4e5f6") != hasher.hash("a1b2c3d4e5f6")


def test_work_factor_is_encoded_in_hash() -> None:
    hashed = CredentialHasher(rounds=5).hash("secret")
    assert hashed.split("$")[2] == "05"


def test_missing_or_malformed_hash_never_matches(hasher: CredentialHasher) -> None:
    assert not hasher.verify("anything", None)
    assert not hasher.verify("anything", "")
    assert not hasher.verify("anything", "not-a-bcrypt-hash")


def test_verify_dummy_returns_nothing_and_caches_hash(hasher: CredentialHasher) -> None:
    assert hasher.verify_dummy("whatever") is None
    first = hasher._dummy_hash
    hasher.verify_dummy("again")
    assert hasher._dummy_hash is first


def test_long_secret_hashes_and_verifies(hasher: CredentialHasher) -> None:
    secret = "x" * 100
    hashed = hasher.hash(secret)
    assert hasher.verify(secret, hashed)
    hasher.verify_dummy(secret)


def test_multibyte_secret_past_limit(hasher: CredentialHasher) -> None:
    """40 two-byte characters encode to 80 bytes."""
    secret = "é" * 40
    assert hasher.verify(secret, hasher.hash(secret))
    assert not hasher.verify("é" * 30, hasher.hash(secret))
