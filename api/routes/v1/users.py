"""
api/routes/v1/users.py -- Account lifecycle REST endpoints.

Routes:
  POST /api/user/signup            -- create unverified account; emails verification link
  POST /api/user/login             -- password login; access token in body, refresh cookie
  GET  /api/user/verify/{token}    -- ?email=...; verify then redirect to the frontend login
  POST /api/user/refresh           -- rotate refresh cookie, return new access token
  POST /api/user/logout            -- blacklist refresh cookie, clear it
  POST /api/user/forgot-password   -- email a password-reset OTP
  POST /api/user/reset-password    -- set a new password with the OTP
  GET  /api/user/me                -- current user (Bearer access token)

Every route answers with the {code, message, data} envelope. Failures are
raised as AccountError and rendered by the handler in api/main.py.

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [M5] Cache-Control: no-store on every response that carries a token.
  The refresh token only ever travels in an httpOnly cookie.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from accounts.service import AccountService, Envelope, RefreshCookie, SessionResult
from api.limiter import limiter
from api.models import EnvelopeResponse, ForgotPasswordRequest, LoginRequest, ResetPasswordRequest, SignupRequest
from auth.dependencies import get_current_user, get_refresh_token, get_refresh_user
from auth.models import User
from auth.tokens import REFRESH_COOKIE_NAME
from core.config import get_settings
from core.errors import BadRequest

# Auth policy:
# - signup, login, verify, logout, forgot-password, reset-password: public
# - refresh: requires a valid, non-blacklisted refresh cookie (get_refresh_user)
# - me:      requires a Bearer access token (get_current_user)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


# ---------------------------------------------------------------------------
# Signup and verification
# ---------------------------------------------------------------------------


@router.post("/user/signup", response_model=EnvelopeResponse)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Register a new account. The response never includes the password or verification token."""
    service: AccountService = request.app.state.account_service
    return _envelope_response(service.signup(body.email, body.password, body.name))


@router.get("/user/verify/{token}")
def verify_email(request: Request, token: str, email: str = "") -> RedirectResponse:
    """Consume the emailed verification link and send the browser to the login page."""
    if not email:
        raise BadRequest("Invalid verification link")
    service: AccountService = request.app.state.account_service
    service.verify_email(token, email)
    return RedirectResponse(request.app.state.settings.frontend_login_url, status_code=302)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/user/login", response_model=EnvelopeResponse)
@limiter.limit(_login_rate_limit)  # [H2] below @router so the registered endpoint is the limited one
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    The access token is returned in data.accessToken for Authorization
    headers; the refresh token is set as an httpOnly cookie.
    """
    service: AccountService = request.app.state.account_service
    return _session_response(service.login(body.email, body.password))


@router.post("/user/refresh", response_model=EnvelopeResponse)
def refresh(
    request: Request,
    user: User = Depends(get_refresh_user),
    old_token: str = Depends(get_refresh_token),
) -> JSONResponse:
    """Rotate the refresh cookie. The presented token is consumed."""
    service: AccountService = request.app.state.account_service
    return _session_response(service.refresh_access_token(user, old_token))


@router.post("/user/logout", response_model=EnvelopeResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the refresh cookie (if any) and clear it."""
    token = request.cookies.get(REFRESH_COOKIE_NAME)
    if not token:
        resp = _envelope_response(Envelope(code=200, message="User already logged out"))
    else:
        service: AccountService = request.app.state.account_service
        resp = _envelope_response(service.logout(token))
    resp.delete_cookie(REFRESH_COOKIE_NAME)
    return resp


@router.get("/user/me", response_model=EnvelopeResponse)
def me(current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return the public profile of the bearer of the access token."""
    return _envelope_response(Envelope(code=200, message="Success", data=current_user.public_dict()))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/user/forgot-password", response_model=EnvelopeResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    service: AccountService = request.app.state.account_service
    return _envelope_response(service.forgot_password(body.email))


@router.post("/user/reset-password", response_model=EnvelopeResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    service: AccountService = request.app.state.account_service
    return _envelope_response(service.reset_password(body.email, body.password, body.otp))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _envelope_response(envelope: Envelope) -> JSONResponse:
    return JSONResponse(status_code=envelope.code, content=envelope.to_dict())


def _session_response(result: SessionResult) -> JSONResponse:
    resp = _envelope_response(result.envelope)
    set_refresh_cookie(resp, result.cookie)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def set_refresh_cookie(response, cookie: RefreshCookie) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite: "strict" in development; "none" (with secure) in production so
        a frontend on another origin still receives it.
    max_age: matches the refresh token lifetime (7 days by default).
    """
    response.set_cookie(
        cookie.name,
        value=cookie.value,
        httponly=cookie.httponly,
        samesite=cookie.samesite,
        secure=cookie.secure,
        max_age=cookie.max_age,
    )
