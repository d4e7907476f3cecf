"""Unit tests for auth/store.py and auth/models.py -- User persistence.

Covers:
  - save() inserts, then overwrites the same id
  - insecure read returns every field; secure read strips credentials
  - email lookups are case/whitespace-insensitive
  - UNIQUE(email) surfaces as ConflictError
  - a secure snapshot can never be saved back
  - User invariants (verification token iff unverified, OTP fields paired)
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from auth.models import User
from auth.store import UserStore
from core.errors import ConflictError


def _user(**overrides) -> User:
    base = dict(
        id="u1",
        email="a@x.com",
        password_hash="$2b$04$hash",
        name="Ada",
        is_verified=False,
        verification_token="tok123",
    )
    base.update(overrides)
    return User(**base)


class TestSaveAndFind:
    def test_insecure_read_returns_full_record(self, user_store: UserStore) -> None:
        user_store.save(_user())
        loaded = user_store.find_by_email_insecure("a@x.com")
        assert loaded is not None
        assert loaded.id == "u1"
        assert loaded.password_hash == "$2b$04$hash"
        assert loaded.verification_token == "tok123"
        assert loaded.is_verified is False
        assert loaded.created_at is not None
        assert loaded.secure is False

    def test_secure_read_strips_credentials(self, user_store: UserStore) -> None:
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        user_store.save(_user(otp_hash="$2b$04$otp", otp_expires_at=expires))
        loaded = user_store.find_by_email_secure("a@x.com")
        assert loaded is not None
        assert loaded.secure is True
        assert loaded.email == "a@x.com"
        assert loaded.password_hash is None
        assert loaded.verification_token is None
        assert loaded.otp_hash is None
        assert loaded.otp_expires_at is None

    def test_lookup_normalizes_email(self, user_store: UserStore) -> None:
        user_store.save(_user(email="  Mixed@Case.COM "))
        assert user_store.find_by_email_insecure("mixed@case.com") is not None
        assert user_store.find_by_email_secure("MIXED@CASE.COM") is not None

    def test_missing_user_returns_none(self, user_store: UserStore) -> None:
        assert user_store.find_by_email_secure("nobody@x.com") is None
        assert user_store.find_by_email_insecure("nobody@x.com") is None
        assert user_store.get_by_id("nope") is None

    def test_save_overwrites_existing_record(self, user_store: UserStore) -> None:
        user = _user()
        user_store.save(user)
        login_at = datetime(2026, 5, 1, 8, 30, tzinfo=timezone.utc)
        user_store.save(replace(user, is_verified=True, verification_token=None, last_login=login_at))

        loaded = user_store.get_by_id("u1")
        assert loaded.is_verified is True
        assert loaded.verification_token is None
        assert loaded.last_login == login_at

    def test_otp_fields_round_trip_as_aware_datetimes(self, user_store: UserStore) -> None:
        expires = datetime(2026, 1, 1, 12, 5, tzinfo=timezone.utc)
        user_store.save(_user(otp_hash="$2b$04$otp", otp_expires_at=expires))
        loaded = user_store.find_by_email_insecure("a@x.com")
        assert loaded.otp_expires_at == expires
        assert loaded.otp_expires_at.tzinfo is not None

    def test_created_at_is_kept_on_update(self, user_store: UserStore) -> None:
        user_store.save(_user())
        first = user_store.get_by_id("u1").created_at
        user_store.save(replace(user_store.get_by_id("u1"), name="Grace"))
        assert user_store.get_by_id("u1").created_at == first


class TestConstraints:
    def test_duplicate_email_raises_conflict(self, user_store: UserStore) -> None:
        user_store.save(_user(id="u1"))
        with pytest.raises(ConflictError):
            user_store.save(_user(id="u2", email="A@X.com"))
        assert user_store.get_by_id("u2") is None

    def test_secure_snapshot_cannot_be_saved(self, user_store: UserStore) -> None:
        user_store.save(_user())
        snapshot = user_store.find_by_email_secure("a@x.com")
        with pytest.raises(ValueError):
            user_store.save(snapshot)
        assert user_store.find_by_email_insecure("a@x.com").password_hash == "$2b$04$hash"

    def test_ping(self, user_store: UserStore) -> None:
        assert user_store.ping() is True


class TestUserInvariants:
    def test_unverified_user_requires_token(self) -> None:
        with pytest.raises(ValueError):
            _user(verification_token=None)

    def test_verified_user_must_not_keep_token(self) -> None:
        with pytest.raises(ValueError):
            _user(is_verified=True, verification_token="tok123")

    def test_otp_fields_must_be_paired(self) -> None:
        with pytest.raises(ValueError):
            _user(otp_hash="$2b$04$otp")
        with pytest.raises(ValueError):
            _user(otp_expires_at=datetime.now(timezone.utc) + timedelta(minutes=5))

    def test_public_dict_has_no_secrets(self) -> None:
        data = _user(otp_hash="h", otp_expires_at=datetime.now(timezone.utc)).public_dict()
        assert set(data) == {"id", "email", "name", "isVerified", "lastLogin", "createdAt"}
