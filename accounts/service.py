"""
accounts/service.py -- The credential and session lifecycle state machine.

AccountService orchestrates signup, login, email verification, refresh-token
rotation, logout and the OTP password reset on top of four collaborators:

  UserStore            -- user records (secure / insecure reads, upsert)
  CredentialHasher     -- bcrypt for passwords and OTPs
  TokenIssuer          -- signed access/refresh pairs
  TokenBlacklistStore  -- consumed refresh tokens

and one outbound port, a Notifier, whose sends are fire-and-forget.

Per-user state is keyed by is_verified and OTP presence:

  signup ---> unverified --verify_email--> verified
                  |                           |
                login -> Forbidden          login -> tokens
                                              |
                         forgot_password --> otp pending --reset_password--> verified

Every operation returns an Envelope (or a SessionResult when a refresh
cookie must be delivered) and raises an AccountError subclass on failure.
Store and issuer failures are translated into that taxonomy here; anything
else propagates unchanged for the transport layer to render as a 500.

Records are immutable snapshots: load, build the next state with
dataclasses.replace(), save.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from urllib.parse import quote

from accounts.notify import TEMPLATE_PASSWORD_RESET_OTP, TEMPLATE_VERIFY_EMAIL, Notifier
from auth.models import User
from auth.store import normalize_email
from auth.tokens import REFRESH_COOKIE_NAME
from core.errors import (
    AlreadyExists,
    BadRequest,
    ConflictError,
    Forbidden,
    NotFound,
    TokenExpired,
    TokenInvalid,
    Unauthorized,
)

if TYPE_CHECKING:
    from auth.blacklist import TokenBlacklistStore
    from auth.hashing import CredentialHasher
    from auth.store import UserStore
    from auth.tokens import TokenIssuer
    from core.config import Settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Envelope:
    """The {code, message, data} body every operation hands to the transport."""

    code: int
    message: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "data": self.data}


@dataclass(frozen=True)
class RefreshCookie:
    """Transport-neutral description of the refresh-token cookie."""

    value: str
    max_age: int
    secure: bool
    samesite: str  # "none" when secure, else "strict"
    httponly: bool = True
    name: str = REFRESH_COOKIE_NAME


@dataclass(frozen=True)
class SessionResult:
    envelope: Envelope
    cookie: RefreshCookie


def success(data: dict | None = None, message: str = "Success", code: int = 200) -> Envelope:
    return Envelope(code=code, message=message, data=data if data is not None else {})


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AccountService:
    """Account lifecycle operations.

    Usage:
        service = AccountService(users, blacklist, hasher, issuer, notifier, settings)
        service.signup("a@x.com", "P@ssw0rd")
        result = service.login("a@x.com", "P@ssw0rd")
        result.envelope.data["accessToken"], result.cookie.value
    """

    def __init__(
        self,
        users: UserStore,
        blacklist: TokenBlacklistStore,
        hasher: CredentialHasher,
        issuer: TokenIssuer,
        notifier: Notifier,
        settings: Settings,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.blacklist = blacklist
        self.hasher = hasher
        self.issuer = issuer
        self.notifier = notifier
        self.settings = settings
        self.logger = logger or logging.getLogger("accountkit.accounts")
        self.clock = clock

    # ------------------------------------------------------------------
    # Signup and verification
    # ------------------------------------------------------------------

    def signup(self, email: str, password: str, name: str | None = None) -> Envelope:
        """Create an unverified account and send the verification link.

        Raises:
            AlreadyExists: the email is taken, including by a concurrent signup.
        """
        self.logger.info("[%s] is called", "signup")
        email = normalize_email(email)

        if self.users.find_by_email_secure(email) is not None:
            raise AlreadyExists()

        user = User(
            id=uuid.uuid4().hex,
            email=email,
            password_hash=self.hasher.hash(password),
            name=name,
            is_verified=False,
            verification_token=secrets.token_hex(32),
            created_at=self.clock(),
        )
        try:
            self.users.save(user)
        except ConflictError as exc:
            raise AlreadyExists() from exc

        self._send_verification(user)
        return success(user.public_dict(), "User created successfully")

    def verify_email(self, token: str, email: str) -> Envelope:
        """Flip is_verified when token matches the stored verification token.

        Single use: the token is cleared on success, so a replay fails.

        Raises:
            NotFound:   no account for email.
            BadRequest: token does not match (or was already used).
        """
        self.logger.info("[%s] is called", "verify_email")
        user = self.users.find_by_email_insecure(email)
        if user is None:
            raise NotFound()

        stored = user.verification_token
        if not stored or not secrets.compare_digest(stored.encode("utf-8"), token.encode("utf-8")):
            raise BadRequest("Invalid verification link")

        self.users.save(replace(user, is_verified=True, verification_token=None))
        return success({}, "Email verified successfully")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> SessionResult:
        """Authenticate and open a session.

        The verification check runs before the password check, so an
        unverified account reports Forbidden even for a wrong password and
        unauthenticated callers can learn whether an address is verified.

        Raises:
            NotFound:     no account for email.
            Forbidden:    account not verified (verification email resent).
            Unauthorized: wrong password.
        """
        self.logger.info("[%s] is called", "login")
        user = self.users.find_by_email_insecure(email)
        if user is None:
            self.hasher.verify_dummy(password)
            raise NotFound()

        password_ok = self.hasher.verify(password, user.password_hash)

        if not user.is_verified:
            self._send_verification(user)
            raise Forbidden()

        if not password_ok:
            raise Unauthorized()

        pair = self.issuer.issue(user.id, user.email)
        self.users.save(replace(user, last_login=self.clock()))

        return SessionResult(
            envelope=success({"accessToken": pair.access_token}, "User login successful"),
            cookie=self._refresh_cookie(pair.refresh_token),
        )

    def refresh_access_token(self, user: User, old_refresh_token: str) -> SessionResult:
        """Consume old_refresh_token and hand out a new pair.

        The caller has already authenticated user from this same token
        upstream. The old token is blacklisted before the new pair is issued;
        if the blacklist insert finds the token already consumed (a concurrent
        refresh won), no pair is issued.

        Raises:
            TokenExpired / TokenInvalid: the token does not decode, or it was
                already consumed.
        """
        self.logger.info("[%s] is called", "refresh_access_token")
        claims = self.issuer.decode_refresh(old_refresh_token)

        if not self.blacklist.blacklist(old_refresh_token, claims.expires_at):
            self.logger.warning("Refresh token reuse rejected (user=%s)", user.id)
            raise TokenInvalid("Refresh token already used")

        pair = self.issuer.issue(user.id, user.email)
        return SessionResult(
            envelope=success({"accessToken": pair.access_token}, "Access,Refresh token updated successfully"),
            cookie=self._refresh_cookie(pair.refresh_token),
        )

    def logout(self, refresh_token: str) -> Envelope:
        """Revoke refresh_token.

        A token that no longer decodes (expired or invalid), or that is
        already on the blacklist, cannot be used again anyway. It is reported
        as an already-closed session rather than an error and nothing is
        written.
        """
        self.logger.info("[%s] is called", "logout")
        try:
            claims = self.issuer.decode_refresh(refresh_token)
        except TokenExpired:
            self.logger.warning("Expired token received!")
            return success({}, "User already logged out")
        except TokenInvalid:
            self.logger.warning("Invalid token received!")
            return success({}, "User already logged out")

        if not self.blacklist.blacklist(refresh_token, claims.expires_at):
            self.logger.warning("Revoked token received!")
            return success({}, "User already logged out")
        return success({}, "User logged out successfully")

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> Envelope:
        """Issue a 12-hex-character OTP valid for OTP_EXPIRE_SECONDS.

        Only the bcrypt hash is stored; the plaintext goes out by email.
        Existing sessions are left alone.

        Raises:
            NotFound: no account for email.
        """
        self.logger.info("[%s] is called", "forgot_password")
        user = self.users.find_by_email_insecure(email)
        if user is None:
            raise NotFound()

        otp = secrets.token_hex(6)
        expires_at = self.clock() + timedelta(seconds=self.settings.otp_expire_seconds)
        self.users.save(replace(user, otp_hash=self.hasher.hash(otp), otp_expires_at=expires_at))

        self._notify(
            [user.email],
            TEMPLATE_PASSWORD_RESET_OTP,
            {"otp": otp, "expires_minutes": max(1, self.settings.otp_expire_seconds // 60)},
        )
        return success({}, "OTP sent to your email")

    def reset_password(self, email: str, password: str, otp: str) -> Envelope:
        """Set a new password if otp matches the pending, unexpired OTP.

        Every failed check leaves the record untouched. A wrong OTP can be
        retried within the window; an expired one is replaced by the next
        forgot_password call.

        Raises:
            NotFound:   no account for email.
            BadRequest: "OTP expired" (none pending or past expiry) or
                        "Invalid OTP" (hash mismatch).
        """
        self.logger.info("[%s] is called", "reset_password")
        user = self.users.find_by_email_insecure(email)
        if user is None:
            raise NotFound()

        if user.otp_hash is None or user.otp_expires_at is None:
            raise BadRequest("OTP expired")

        if self.clock() >= user.otp_expires_at:
            raise BadRequest("OTP expired")

        if not self.hasher.verify(otp, user.otp_hash):
            raise BadRequest("Invalid OTP")

        self.users.save(
            replace(
                user,
                password_hash=self.hasher.hash(password),
                otp_hash=None,
                otp_expires_at=None,
            )
        )
        return success({}, "Password reset successfully")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _refresh_cookie(self, refresh_token: str) -> RefreshCookie:
        secure = self.settings.secure_cookies
        return RefreshCookie(
            value=refresh_token,
            max_age=self.settings.refresh_token_expire_seconds,
            secure=secure,
            samesite="none" if secure else "strict",
        )

    def _send_verification(self, user: User) -> None:
        url = (
            f"{self.settings.backend_url.rstrip('/')}/api/user/verify/{user.verification_token}"
            f"?email={quote(user.email)}"
        )
        self._notify([user.email], TEMPLATE_VERIFY_EMAIL, {"verification_url": url})

    def _notify(self, recipients: list[str], template_id: int, params: dict) -> None:
        """Hand a message to the notifier. Delivery problems never fail the caller."""
        try:
            self.notifier.send(recipients, template_id, params)
        except Exception as exc:
            self.logger.warning("Notification dispatch failed (template=%d): %s", template_id, exc)
