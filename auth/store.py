"""
auth/store.py -- SQLAlchemy Core persistence layer for User records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The lifecycle service never touches SQL directly.

Read modes:
  find_by_email_secure()   -- credential columns are never selected; the
                              returned snapshot is flagged secure=True.
  find_by_email_insecure() -- full record, for callers that compare or
                              rewrite credential fields.

Writes are whole-record upserts of an immutable snapshot (read-modify-write).
UNIQUE(email) is enforced by the database, so two concurrent signups for the
same address cannot both land: the loser's INSERT raises IntegrityError,
which save() translates into ConflictError.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are stored as ISO 8601 text (UTC) and parsed back into aware
datetimes by the mapper.

Layer rule: no imports from api/ or accounts/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User
from core.errors import ConflictError

DEFAULT_DB_URL = "sqlite:///accountkit.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("name", String(255)),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("verification_token", String(64)),  # NULL once verified
    Column("last_login", String(32)),
    Column("otp_hash", Text),  # set together with otp_expires_at
    Column("otp_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

# Columns a secure read may return. Credential columns are left out of the
# SELECT entirely rather than blanked after the fact.
_SECURE_COLUMNS = (
    _users.c.id,
    _users.c.email,
    _users.c.name,
    _users.c.is_verified,
    _users.c.last_login,
    _users.c.created_at,
)


# ---------------------------------------------------------------------------
# Engine helpers (shared with auth/blacklist.py)
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout: float = 10.0) -> Engine:
    """Create an engine with the per-dialect settings every store needs.

    SQLite gets check_same_thread=False (stores are shared across the
    request thread pool), a busy timeout so writers never wait forever, and
    WAL mode.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def normalize_email(email: str) -> str:
    return email.strip().lower()


def to_iso(value: datetime | None) -> str | None:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds") if value is not None else None


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities, keyed by (normalized) email.

    Usage:
        store = UserStore("sqlite:///accountkit.db")
        store.save(user)
        user = store.find_by_email_insecure("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL, timeout: float = 10.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout=timeout)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_email_secure(self, email: str) -> User | None:
        """Existence check that never loads password, verification or OTP fields."""
        with self.engine.connect() as conn:
            row = conn.execute(select(*_SECURE_COLUMNS).where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row, secure=True) if row is not None else None

    def find_by_email_insecure(self, email: str) -> User | None:
        """Full record, credential fields included. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, user: User) -> None:
        """Insert or fully overwrite the record with user.id.

        Raises:
            ValueError:    user is a secure snapshot (credentials stripped).
            ConflictError: another record already owns user.email.
        """
        if user.secure or not user.password_hash:
            raise ValueError("Refusing to save a user snapshot without credentials")

        values = {
            "email": normalize_email(user.email),
            "password_hash": user.password_hash,
            "name": user.name,
            "is_verified": 1 if user.is_verified else 0,
            "verification_token": user.verification_token,
            "last_login": to_iso(user.last_login),
            "otp_hash": user.otp_hash,
            "otp_expires_at": to_iso(user.otp_expires_at),
        }
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user.id).values(**values))
                if result.rowcount == 0:
                    created_at = user.created_at or datetime.now(timezone.utc)
                    conn.execute(_users.insert().values(id=user.id, created_at=to_iso(created_at), **values))
        except IntegrityError as exc:
            raise ConflictError("A user with that email already exists.") from exc

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, secure: bool = False) -> User:
    if secure:
        return User(
            id=row.id,
            email=row.email,
            name=row.name,
            is_verified=bool(row.is_verified),
            last_login=from_iso(row.last_login),
            created_at=from_iso(row.created_at),
            secure=True,
        )
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        is_verified=bool(row.is_verified),
        verification_token=row.verification_token or None,
        last_login=from_iso(row.last_login),
        otp_hash=row.otp_hash,
        otp_expires_at=from_iso(row.otp_expires_at),
        created_at=from_iso(row.created_at),
    )
