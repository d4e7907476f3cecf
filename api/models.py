"""
API request and response models for AccountKit REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain. Delivery
# of the verification email is the real proof of ownership.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
OTP_PATTERN = r"^[0-9a-fA-F]{12}$"
# bcrypt reads at most 72 bytes; longer new passwords would be silently shortened.
MAX_PASSWORD_BYTES = 72


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=320, pattern=EMAIL_PATTERN)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        """Emails are case-normalized before they reach the store."""
        return value.lower()


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


class SignupRequest(_EmailBody):
    """Request body for POST /api/user/signup."""

    password: str = Field(min_length=8, max_length=128)
    name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(_EmailBody):
    """Request body for POST /api/user/login."""

    password: str = Field(min_length=1, max_length=128)


class ForgotPasswordRequest(_EmailBody):
    """Request body for POST /api/user/forgot-password."""


class ResetPasswordRequest(_EmailBody):
    """Request body for POST /api/user/reset-password."""

    password: str = Field(min_length=8, max_length=128)
    otp: str = Field(pattern=OTP_PATTERN)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)

    @field_validator("otp")
    @classmethod
    def lowercase_otp(cls, value: str) -> str:
        return value.lower()


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class EnvelopeResponse(BaseModel):
    """The {code, message, data} envelope every account route returns."""

    model_config = ConfigDict(frozen=True)

    code: int
    message: str
    data: dict = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
