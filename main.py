#!/usr/bin/env python3
"""
AuthCore -- authentication and authorization service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 9000
  python main.py create-user --email admin@example.com --username admin --role admin
  python main.py generate-secrets >> .env

Environment variables:
  ACCESS_TOKEN_SECRET, REFRESH_TOKEN_SECRET, SESSION_SECRET
                Signing secrets, 32+ characters each, access and refresh
                different. Required unless DEBUG=true.
  DATABASE_URL  SQLAlchemy URL of the user store (default sqlite:///authcore.db).
"""

import argparse
import getpass
import secrets
import sys
from typing import Optional

from auth.credentials import CredentialAuthenticator
from auth.errors import AuthError
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import get_settings


def generate_secrets() -> list[str]:
    """Return .env lines with fresh 64-character hex secrets."""
    return [
        f"ACCESS_TOKEN_SECRET={secrets.token_hex(32)}",
        f"REFRESH_TOKEN_SECRET={secrets.token_hex(32)}",
        f"SESSION_SECRET={secrets.token_hex(32)}",
    ]


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_create_user(args: argparse.Namespace) -> int:
    password: Optional[str] = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.", file=sys.stderr)
        return 2

    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        credentials = CredentialAuthenticator(
            store,
            PasswordHasher(rounds=settings.bcrypt_rounds),
            TokenService(settings),
            default_role=settings.default_role,
        )
        user = credentials.register(args.email, args.username, password, role=args.role)
    except AuthError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        store.close()

    print(f"Created user {user.username} <{user.email}> (id={user.id}, role={user.role})")
    return 0


def _cmd_generate_secrets(args: argparse.Namespace) -> int:
    for line in generate_secrets():
        print(line)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authcore",
        description="Authentication and authorization service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --port 8000
  python main.py create-user --email admin@example.com --username admin --role admin
  python main.py generate-secrets >> .env
        """,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(func=_cmd_serve)

    create = subparsers.add_parser("create-user", help="Create a local account")
    create.add_argument("--email", required=True)
    create.add_argument("--username", required=True)
    create.add_argument(
        "--password",
        help="Account password. Prompted for when omitted, which keeps it out of shell history.",
    )
    create.add_argument("--role", default=None, help="Primary role (default: DEFAULT_ROLE setting)")
    create.set_defaults(func=_cmd_create_user)

    gen = subparsers.add_parser("generate-secrets", help="Print fresh signing secrets as .env lines")
    gen.set_defaults(func=_cmd_generate_secrets)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
