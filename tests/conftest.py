"""
tests/conftest.py -- Shared test fixtures for AccountKit.

This module provides:
  - RecordingNotifier / FailingNotifier: in-process Notifier doubles
  - FakeClock: controllable "now" for OTP expiry tests
  - settings, user_store, blacklist, notifier, clock, service: unit fixtures
    backed by private in-memory SQLite databases
  - api_client: TestClient wired to isolated stores through a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

DEBUG and BCRYPT_ROUNDS must be set before any api/ import so get_settings()
auto-generates SECRET_KEY and hashing stays fast.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any api/ or core/ import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from accounts.service import AccountService
from api.limiter import limiter
from api.main import app, build_state
from auth.blacklist import TokenBlacklistStore
from auth.hashing import CredentialHasher
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Synchronous notifier that remembers every send."""

    def __init__(self) -> None:
        self.sent: list[tuple[list[str], int, dict]] = []

    def send(self, recipients: list[str], template_id: int, params: dict) -> None:
        self.sent.append((list(recipients), template_id, dict(params)))

    def last(self, template_id: int) -> dict:
        """Params of the most recent send with template_id."""
        for _recipients, tid, params in reversed(self.sent):
            if tid == template_id:
                return params
        raise AssertionError(f"No email sent with template {template_id}")

    def count(self, template_id: int) -> int:
        return sum(1 for _r, tid, _p in self.sent if tid == template_id)


class FailingNotifier:
    """Notifier whose transport is down."""

    def __init__(self) -> None:
        self.attempts = 0

    def send(self, recipients: list[str], template_id: int, params: dict) -> None:
        self.attempts += 1
        raise ConnectionError("SMTP relay unreachable")


@dataclass
class FakeClock:
    now: datetime = field(default_factory=lambda: datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(debug=True, secret_key="s" * 48, bcrypt_rounds=4, backend_url="http://api.test")


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def blacklist() -> Generator[TokenBlacklistStore, None, None]:
    store = TokenBlacklistStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def hasher() -> CredentialHasher:
    return CredentialHasher(rounds=4)


@pytest.fixture
def issuer(settings: Settings) -> TokenIssuer:
    return TokenIssuer(
        settings.secret_key,
        access_ttl=settings.access_token_expire_seconds,
        refresh_ttl=settings.refresh_token_expire_seconds,
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(
    user_store: UserStore,
    blacklist: TokenBlacklistStore,
    hasher: CredentialHasher,
    issuer: TokenIssuer,
    notifier: RecordingNotifier,
    settings: Settings,
    clock: FakeClock,
) -> AccountService:
    return AccountService(user_store, blacklist, hasher, issuer, notifier, settings, clock=clock)


@pytest.fixture
def verified_user(service: AccountService, user_store: UserStore) -> tuple[str, str]:
    """Sign up and verify a@x.com. Returns (email, password)."""
    email, password = "a@x.com", "P@ssw0rd"
    service.signup(email, password)
    token = user_store.find_by_email_insecure(email).verification_token
    service.verify_email(token, email)
    return email, password


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    Uses the real build_state() wiring with test settings and a recording
    notifier. The purge task is a long-sleeping coroutine so shutdown has a
    real asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_state(app, settings, notifier=notifier)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        app.state.user_store.close()
        app.state.blacklist.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingNotifier], None, None]:
    """Yield (client, notifier) backed by a fresh named in-memory database.

    The database name includes the test module name so modules never share
    state. The login rate limiter is reset so earlier modules cannot push this
    one over the limit.
    """
    db_name = request.module.__name__.replace(".", "_")
    settings = Settings(
        debug=True,
        secret_key="t" * 48,
        bcrypt_rounds=4,
        database_url=f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true",
        frontend_login_url="http://frontend.test/login",
    )
    notifier = RecordingNotifier()
    limiter.reset()

    app.router.lifespan_context = _patch_lifespan(settings, notifier)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, notifier
