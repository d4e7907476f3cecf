#!/usr/bin/env python3
"""
AccountKit -- command-line entry point.

Usage:
  python main.py serve                       # uvicorn asgi:app on 127.0.0.1:8000
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py purge-blacklist             # drop expired refresh-token revocations

Environment variables are read through core.config (SECRET_KEY, DATABASE_URL,
DEBUG, SMTP_HOST, ...). See core/config.py for the full list.
"""

import argparse
import logging
import sys

from auth.blacklist import TokenBlacklistStore
from core.config import get_settings


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_purge_blacklist(args: argparse.Namespace) -> int:
    settings = get_settings()
    blacklist = TokenBlacklistStore(settings.database_url)
    try:
        removed = blacklist.purge_expired()
        remaining = blacklist.count()
    finally:
        blacklist.close()
    print(f"  Removed {removed} expired blacklist entr{'y' if removed == 1 else 'ies'} ({remaining} remaining).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="accountkit",
        description="AccountKit -- user accounts, sessions and password reset.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development).")
    serve.set_defaults(func=_cmd_serve)

    purge = sub.add_parser("purge-blacklist", help="Delete blacklist entries whose tokens have expired.")
    purge.set_defaults(func=_cmd_purge_blacklist)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
