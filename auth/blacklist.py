"""
auth/blacklist.py -- Revocation records for consumed refresh tokens.

Every refresh token that is rotated out (refresh) or surrendered (logout) is
recorded here together with its original exp, so the request-authentication
layer can reject it until it would have expired anyway. After that point the
token no longer decodes and the row can be purged.

The raw bearer value is never stored. Rows are keyed by SHA-256(token): the
digest is deterministic (O(1) lookup through the primary key) and a leaked
table cannot be replayed as credentials.

Idempotency: blacklist() on an existing key is a no-op that returns False.
The primary key makes the insert the single arbiter when two requests race
to consume the same token -- exactly one of them gets True.

Layer rule: no imports from api/ or accounts/.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone

from sqlalchemy import Column, MetaData, String, Table, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import BlacklistEntry
from auth.store import DEFAULT_DB_URL, from_iso, make_engine, to_iso

_metadata = MetaData()

_blacklist = Table(
    "token_blacklist",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # SHA-256 hex
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
)


def token_digest(token: str) -> str:
    """Return the identifier a raw token is stored under."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenBlacklistStore:
    """Repository for BlacklistEntry rows.

    Usage:
        blacklist = TokenBlacklistStore("sqlite:///accountkit.db")
        blacklist.blacklist(raw_refresh_token, claims.expires_at)
        blacklist.is_blacklisted(raw_refresh_token)   # True
        blacklist.purge_expired()                     # periodic cleanup
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL, timeout: float = 10.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout=timeout)
        _metadata.create_all(self.engine)

    def blacklist(self, token: str, expires_at: datetime) -> bool:
        """Record token as consumed until expires_at.

        Returns True if this call created the entry, False if the token was
        already blacklisted. Never raises for a duplicate.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _blacklist.insert().values(
                        token_hash=token_digest(token),
                        expires_at=to_iso(expires_at),
                        created_at=to_iso(datetime.now(timezone.utc)),
                    )
                )
        except IntegrityError:
            return False
        return True

    def is_blacklisted(self, token: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_blacklist.c.token_hash).where(_blacklist.c.token_hash == token_digest(token))
            ).fetchone()
        return row is not None

    def get(self, token: str) -> BlacklistEntry | None:
        """Return the entry for token, or None if it was never blacklisted."""
        with self.engine.connect() as conn:
            row = conn.execute(_blacklist.select().where(_blacklist.c.token_hash == token_digest(token))).fetchone()
        if row is None:
            return None
        return BlacklistEntry(
            token_hash=row.token_hash,
            expires_at=from_iso(row.expires_at),
            created_at=from_iso(row.created_at),
        )

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_blacklist)).scalar() or 0

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete entries whose token has already expired. Returns rows removed.

        ISO 8601 UTC strings with identical offsets sort lexicographically in
        time order, so the comparison runs in SQL against the index.
        """
        cutoff = to_iso(now or datetime.now(timezone.utc))
        with self.engine.begin() as conn:
            result = conn.execute(_blacklist.delete().where(_blacklist.c.expires_at <= cutoff))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
