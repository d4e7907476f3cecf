"""Tests for the main.py command-line entry point."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

import main
from auth.blacklist import TokenBlacklistStore
from core.config import Settings


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        main.build_parser().parse_args([])


def test_serve_defaults() -> None:
    args = main.build_parser().parse_args(["serve"])
    assert (args.host, args.port, args.reload) == ("127.0.0.1", 8000, False)


def test_purge_blacklist_command(tmp_path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    db_url = f"sqlite:///{tmp_path / 'accounts.db'}"
    now = datetime.now(timezone.utc)
    store = TokenBlacklistStore(db_url)
    store.blacklist("expired-1", now - timedelta(hours=1))
    store.blacklist("expired-2", now - timedelta(days=2))
    store.blacklist("live", now + timedelta(days=1))
    store.close()

    settings = Settings(debug=True, secret_key="c" * 40, database_url=db_url)
    monkeypatch.setattr(main, "get_settings", lambda: settings)

    assert main.main(["purge-blacklist"]) == 0
    assert "Removed 2 expired blacklist entries (1 remaining)." in capsys.readouterr().out

    store = TokenBlacklistStore(db_url)
    try:
        assert store.is_blacklisted("live")
        assert store.count() == 1
    finally:
        store.close()
