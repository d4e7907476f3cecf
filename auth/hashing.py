"""
auth/hashing.py -- bcrypt hashing for passwords and password-reset OTPs.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt only reads the first 72 bytes of a secret, and bcrypt 5 raises on
anything longer. Every entry point cuts the UTF-8 encoding to
MAX_SECRET_BYTES first, so hash, verify and verify_dummy see the same input.

Passwords and OTPs are hashed independently with the same work factor. The
plaintext of either is never compared directly and never logged.

Layer rule: no imports from api/, core/ or accounts/.
"""

from __future__ import annotations

import bcrypt

MAX_SECRET_BYTES = 72

# Throwaway value for timing equalization. Hashed lazily per instance because
# checkpw cost comes from the stored hash, which must match self.rounds.
_DUMMY_SECRET = b"accountkit_timing_dummy"


def _encode(secret: str) -> bytes:
    return secret.encode("utf-8")[:MAX_SECRET_BYTES]


class CredentialHasher:
    """Salted, tunable-cost one-way hashing.

    Usage:
        hasher = CredentialHasher(rounds=10)
        stored = hasher.hash("P@ssw0rd")
        hasher.verify("P@ssw0rd", stored)   # True
    """

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        self._dummy_hash: bytes | None = None

    def hash(self, secret: str) -> str:
        """Return a bcrypt hash of the first MAX_SECRET_BYTES of secret."""
        return bcrypt.hashpw(_encode(secret), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, secret: str, hashed: str | None) -> bool:
        """Return True if secret matches hashed. Malformed or missing hashes never match."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(_encode(secret), hashed.encode("utf-8"))
        except ValueError:
            return False

    def verify_dummy(self, secret: str) -> None:
        """Burn one verification at full cost when there is no real hash to check.

        Keeps the response time for an unknown email equal to that of a known
        email with a wrong password.
        """
        if self._dummy_hash is None:
            self._dummy_hash = bcrypt.hashpw(_DUMMY_SECRET, bcrypt.gensalt(rounds=self.rounds))
        bcrypt.checkpw(_encode(secret), self._dummy_hash)
