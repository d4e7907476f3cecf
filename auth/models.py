"""
auth/models.py -- Domain dataclasses for account entities.

Pattern: Data class. Dataclasses own domain shape; stores and the lifecycle
service do the work. User is frozen: callers load a snapshot, build the next
state with dataclasses.replace(), and hand it to UserStore.save().

Layer rule: no imports from api/, core/ or accounts/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class User:
    """A registered account.

    verification_token is present exactly while the account is unverified;
    verify_email() clears it when flipping is_verified. otp_hash and
    otp_expires_at travel together: forgot_password() sets both,
    reset_password() (or an expired-OTP check) clears both.

    Snapshots returned by UserStore.find_by_email_secure() have every
    credential field set to None and must not be saved back.
    """

    id: str
    email: str
    password_hash: str | None = None
    name: str | None = None
    is_verified: bool = False
    verification_token: str | None = None
    last_login: datetime | None = None
    otp_hash: str | None = None
    otp_expires_at: datetime | None = None
    created_at: datetime | None = None
    secure: bool = False  # True = credential fields were stripped on read

    def __post_init__(self) -> None:
        if not self.secure and self.is_verified == bool(self.verification_token):
            raise ValueError("verification_token must be set iff the user is unverified")
        if (self.otp_hash is None) != (self.otp_expires_at is None):
            raise ValueError("otp_hash and otp_expires_at must be set together")

    def public_dict(self) -> dict:
        """Return the fields safe to hand back to an API client."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "isVerified": self.is_verified,
            "lastLogin": self.last_login.isoformat() if self.last_login else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class TokenClaims:
    """Verified payload of an access or refresh JWT."""

    id: str
    email: str
    token_type: str  # "access" | "refresh"
    expires_at: datetime
    jti: str


@dataclass(frozen=True)
class BlacklistEntry:
    """A consumed refresh token.

    token_hash is SHA-256 of the raw token; the raw bearer value is never
    persisted. Entries are safe to purge once expires_at has passed because
    the token itself no longer decodes.
    """

    token_hash: str
    expires_at: datetime
    created_at: datetime | None = None
