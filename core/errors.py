"""
core/errors.py -- Error taxonomy shared by auth/, accounts/ and api/.

Every failure the account lifecycle can report is an AccountError subclass
carrying a stable HTTP-equivalent status and a human-readable message. The
API layer renders any AccountError straight into the {code, message, data}
envelope; anything that is not an AccountError is an internal failure and is
rendered as a generic 500 without leaking details.

Layer rule: core/ is the kernel. No imports from api/, auth/ or accounts/.
"""

from __future__ import annotations


class AccountError(Exception):
    """Base class for every expected account-lifecycle failure."""

    status: int = 400
    default_message: str = "Bad request"

    def __init__(self, message: str | None = None, data: dict | None = None) -> None:
        self.message = message or self.default_message
        self.data = data if data is not None else {}
        super().__init__(self.message)


class AlreadyExists(AccountError):
    status = 400
    default_message = "Account already exists with this email."


class NotFound(AccountError):
    status = 404
    default_message = "User not found"


class Forbidden(AccountError):
    status = 403
    default_message = "Email not verified. Verification link sent to your email."


class Unauthorized(AccountError):
    status = 401
    default_message = "Invalid credentials"


class BadRequest(AccountError):
    status = 400
    default_message = "Bad request"


class TokenInvalid(AccountError):
    """Malformed token, bad signature, missing claims or wrong token type."""

    status = 401
    default_message = "Invalid refresh token"


class TokenExpired(AccountError):
    """Structurally valid token whose exp claim is in the past."""

    status = 401
    default_message = "Refresh token expired"


class ConflictError(AccountError):
    """A store uniqueness constraint fired, usually from a concurrent write."""

    status = 409
    default_message = "Conflicting update"
