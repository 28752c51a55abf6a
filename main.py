#!/usr/bin/env python3
"""
Shieldgate -- Management CLI.

Usage:
  python main.py create-user --email ada@example.com --name "Ada Lovelace"
  python main.py delete-user --email ada@example.com
  python main.py purge-sessions
  python main.py serve --host 0.0.0.0 --port 8000 --reload

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the user store (default: sqlite file in the repo root)
  SECRET_KEY     Signing key for session tokens. Required unless DEBUG=true.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.actions import sign_up
from auth.store import UserStore
from core.config import get_settings


def _open_store() -> UserStore:
    return UserStore(get_settings().database_url)


def cmd_create_user(args: argparse.Namespace) -> int:
    """Register a credential user. The password is prompted, never passed on argv."""
    password = getpass.getpass("  Password: ")
    confirm = getpass.getpass("  Confirm password: ")
    if password != confirm:
        print("  [!] Passwords do not match.")
        return 1

    store = _open_store()
    try:
        result = sign_up(store, {"email": args.email, "name": args.name, "password": password})
    finally:
        store.close()

    if result.error:
        print(f"  [!] {result.error}")
        for field_name, message in result.field_errors.items():
            print(f"      {field_name}: {message}")
        return 1

    print(f"  {result.success} Created {args.email}.")
    return 0


def cmd_delete_user(args: argparse.Namespace) -> int:
    """Delete a user. Linked accounts and sessions go with it."""
    store = _open_store()
    try:
        user = store.get_by_email(args.email)
        if user is None:
            print(f"  [!] No user with email {args.email}.")
            return 1
        store.delete_user(user.id)
    finally:
        store.close()

    print(f"  Deleted {args.email}.")
    return 0


def cmd_purge_sessions(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        removed = store.delete_expired_sessions()
    finally:
        store.close()
    print(f"  Purged {removed} expired session(s).")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="shieldgate",
        description="Manage Shieldgate users and sessions, or run the web server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email ada@example.com --name "Ada Lovelace"
  python main.py delete-user --email ada@example.com
  python main.py purge-sessions
  DEBUG=true python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Register a user with email and password")
    create.add_argument("--email", required=True, help="Email address to sign in with")
    create.add_argument("--name", required=True, help="Display name")
    create.set_defaults(func=cmd_create_user)

    delete = sub.add_parser("delete-user", help="Delete a user with its accounts and sessions")
    delete.add_argument("--email", required=True, help="Email address of the user to delete")
    delete.set_defaults(func=cmd_delete_user)

    purge = sub.add_parser("purge-sessions", help="Delete expired database sessions")
    purge.set_defaults(func=cmd_purge_sessions)

    serve = sub.add_parser("serve", help="Run the web server with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes")
    serve.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
