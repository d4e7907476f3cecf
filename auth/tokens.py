"""
auth/tokens.py -- JWT access/refresh pair issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Both tokens are signed with SECRET_KEY and
       carry id, email, type, iat, exp and a random jti. The type claim keeps
       an access token from being replayed as a refresh token and vice versa.
       The jti makes two pairs minted within the same second distinct, which
       matters because the blacklist is keyed by the token value.

  Lifetimes: access tokens are short-lived (minutes) and never persisted.
       Refresh tokens live for days; their exp claim is what the blacklist
       records so revocation entries can be garbage-collected later.

  Failures: decode_* raise TokenExpired for a well-formed, correctly signed
       token past its exp, and TokenInvalid for everything else. Logout relies
       on that split to treat both as "already logged out".

Layer rule: no imports from api/ or accounts/. Config values are passed to
TokenIssuer at construction.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenClaims, TokenPair
from core.errors import TokenExpired, TokenInvalid

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

REFRESH_COOKIE_NAME = "refreshToken"


class TokenIssuer:
    """Mints and verifies signed access/refresh token pairs.

    Usage:
        issuer = TokenIssuer(secret_key, access_ttl=900, refresh_ttl=604800)
        pair = issuer.issue(user.id, user.email)
        claims = issuer.decode_refresh(pair.refresh_token)
    """

    def __init__(self, secret_key: str, access_ttl: int = 15 * 60, refresh_ttl: int = 7 * 24 * 60 * 60) -> None:
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def issue(self, user_id: str, email: str) -> TokenPair:
        """Return a fresh (access, refresh) pair for the given identity."""
        now = datetime.now(timezone.utc)
        return TokenPair(
            access_token=self._encode(user_id, email, ACCESS, now, self.access_ttl),
            refresh_token=self._encode(user_id, email, REFRESH, now, self.refresh_ttl),
        )

    def decode_access(self, token: str) -> TokenClaims:
        return self._decode(token, ACCESS)

    def decode_refresh(self, token: str) -> TokenClaims:
        """Verify a refresh token and return its claims.

        Raises:
            TokenExpired: signature is valid but exp has passed.
            TokenInvalid: anything else (malformed, tampered, wrong type).
        """
        return self._decode(token, REFRESH)

    # ------------------------------------------------------------------

    def _encode(self, user_id: str, email: str, token_type: str, now: datetime, ttl: int) -> str:
        payload = {
            "id": user_id,
            "email": email,
            "type": token_type,
            "iat": now,
            "exp": now + timedelta(seconds=ttl),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def _decode(self, token: str, expected_type: str) -> TokenClaims:
        label = expected_type.capitalize()
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired(f"{label} token expired") from exc
        except JWTError as exc:
            raise TokenInvalid(f"Invalid {expected_type} token") from exc

        if payload.get("type") != expected_type:
            raise TokenInvalid(f"Invalid {expected_type} token")
        try:
            return TokenClaims(
                id=str(payload["id"]),
                email=str(payload["email"]),
                token_type=payload["type"],
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
                jti=str(payload.get("jti", "")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid(f"Invalid {expected_type} token") from exc
