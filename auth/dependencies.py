"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two credentials converge on a User object:
  1. refreshToken cookie -- the only credential /user/refresh accepts.
     It must decode as a refresh token, must not be blacklisted, and must
     name an existing user.
  2. Authorization: Bearer <access token> -- for ordinary API calls.

Failures raise AccountError subclasses (TokenInvalid / TokenExpired /
Unauthorized); the app-level exception handler renders them in the
{code, message, data} envelope with status 401.

Layer rule: no imports from api/ or accounts/. This module may import from
fastapi because it is part of the dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.blacklist import TokenBlacklistStore
from auth.models import User
from auth.store import UserStore
from auth.tokens import REFRESH_COOKIE_NAME, TokenIssuer
from core.errors import TokenInvalid, Unauthorized


def get_refresh_token(request: Request) -> str:
    """Return the raw refresh token from the cookie. Raises TokenInvalid if absent."""
    token = request.cookies.get(REFRESH_COOKIE_NAME)
    if not token:
        raise TokenInvalid("Refresh token missing")
    return token


def get_refresh_user(request: Request) -> User:
    """Authenticate the request from its refresh-token cookie.

    Use as a FastAPI dependency:
        @router.post("/user/refresh")
        async def route(user: User = Depends(get_refresh_user)): ...

    The blacklist check happens here, before the lifecycle service sees the
    token, so a rotated-out or logged-out token is rejected at the door.
    """
    issuer: TokenIssuer = request.app.state.token_issuer
    blacklist: TokenBlacklistStore = request.app.state.blacklist
    user_store: UserStore = request.app.state.user_store

    token = get_refresh_token(request)
    claims = issuer.decode_refresh(token)
    if blacklist.is_blacklisted(token):
        raise TokenInvalid("Refresh token revoked")

    user = user_store.get_by_id(claims.id)
    if user is None:
        raise TokenInvalid("Refresh token subject no longer exists")
    return user


def get_current_user(request: Request) -> User:
    """Require a valid bearer access token. Raises Unauthorized otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    issuer: TokenIssuer = request.app.state.token_issuer
    user_store: UserStore = request.app.state.user_store

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise Unauthorized("Authentication required.")

    claims = issuer.decode_access(auth_header[7:])
    user = user_store.get_by_id(claims.id)
    if user is None:
        raise Unauthorized("Authentication required.")
    return user
