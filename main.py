#!/usr/bin/env python3
"""
VPlan -- school substitution timetable server.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py setup-db
  python main.py create-user mueller --group teachers
  python main.py purge-tokens
  python main.py seed-demo

Environment variables (see core/config.py for the full list):
  DATABASE_URL    SQLAlchemy URL. Defaults to SQLite vplan.db beside this file.
  SECRET_KEY      Signs session cookies. Required unless DEBUG=true.
  AUTH_PROVIDER   debug, database (default) or oidc.
"""

import argparse
import getpass
import sys
from datetime import timedelta

from auth.models import Credential
from auth.store import CredentialStore, TokenStore
from auth.tokens import PASSWORD_MAX_BYTES, hash_password
from core.config import get_settings
from core.database import create_db_engine, utcnow
from core.errors import StorageError
from vplan.models import News, VPlan, VPlanEntry
from vplan.store import VPlanStore


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _setup_db(args: argparse.Namespace) -> int:
    engine = create_db_engine(get_settings().database_url)
    try:
        TokenStore(engine)
        CredentialStore(engine)
        VPlanStore(engine)
    finally:
        engine.dispose()
    print("Database schema is up to date.")
    return 0


def _create_user(args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass(f"Password for {args.username}: ")
    if not password:
        print("  [!] Password must not be empty.")
        return 1
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        print(f"  [!] Password must be at most {PASSWORD_MAX_BYTES} bytes.")
        return 1
    engine = create_db_engine(get_settings().database_url)
    try:
        store = CredentialStore(engine)
        if store.get_by_username(args.username) is not None:
            store.set_password(args.username, hash_password(password))
            store.set_active(args.username, True)
            print(f"Updated password for {args.username}.")
        else:
            store.create_user(Credential(username=args.username, hashed_password=hash_password(password), group=args.group))
            print(f"Created user {args.username} (group: {args.group or '-'}).")
    finally:
        engine.dispose()
    return 0


def _purge_tokens(args: argparse.Namespace) -> int:
    engine = create_db_engine(get_settings().database_url)
    try:
        removed = TokenStore(engine).purge_expired()
    finally:
        engine.dispose()
    print(f"Removed {removed} expired token(s).")
    return 0


def _seed_demo(args: argparse.Namespace) -> int:
    """Write three days of sample plans and one news item for local testing."""
    engine = create_db_engine(get_settings().database_url)
    now = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    try:
        store = VPlanStore(engine)
        for offset in range(3):
            store.create_vplan(
                VPlan(
                    date_for=now + timedelta(days=offset),
                    date_edit=utcnow(),
                    block="A" if offset % 2 == 0 else "B",
                    header="Demo plan",
                    entries=[
                        VPlanEntry(vplan_id=0, class_name="10a", time="1./2.", measures="Entfall", responsible="Mue"),
                        VPlanEntry(vplan_id=0, class_name="7b", time="3.", measures="Raum 204", responsible="Sch"),
                    ],
                )
            )
        store.create_news(News(date=utcnow(), headline="Willkommen", short="Der neue Vertretungsplan ist online."))
    finally:
        engine.dispose()
    print("Seeded 3 demo plans and 1 news item.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="vplan",
        description="School substitution timetable server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP server with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=_serve)

    sub.add_parser("setup-db", help="Create any missing tables").set_defaults(func=_setup_db)

    create_user = sub.add_parser("create-user", help="Create a local user, or reset its password if it exists")
    create_user.add_argument("username")
    create_user.add_argument("--group", default="", help="Group label checked on login (default: none)")
    create_user.add_argument("--password", help="Password (prompted if omitted; avoid on shared machines)")
    create_user.set_defaults(func=_create_user)

    sub.add_parser("purge-tokens", help="Delete expired API tokens").set_defaults(func=_purge_tokens)
    sub.add_parser("seed-demo", help="Insert sample plans and news").set_defaults(func=_seed_demo)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return

    try:
        code = args.func(args)
    except StorageError as exc:
        print(f"  [!] Database error: {exc}")
        code = 1
    except ValueError as exc:
        # Settings validation (e.g. missing SECRET_KEY outside debug mode)
        print(f"  [!] Configuration error: {exc}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
