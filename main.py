#!/usr/bin/env python3
"""
CredGuard -- operator commands for the credential store.

Usage:
  python main.py create-admin --email admin@example.com
  python main.py deactivate --email user@example.com
  python main.py unlock --email user@example.com
  python main.py unlock --email user@example.com --database-url sqlite:////srv/credguard.db

create-admin prompts for the password twice (never pass it on the command
line, where it would land in shell history). The account is created already
verified with role "admin".

Environment variables (see core/config.py):
  DATABASE_URL   SQLAlchemy URL of the credential store.
  SECRET_KEY     Required unless DEBUG=true.
  BCRYPT_ROUNDS  bcrypt cost for the admin password (default 12).
"""

import argparse
import getpass
import logging
from typing import Optional

from auth.errors import AuthError, ValidationFailed
from auth.service import AuthService
from auth.store import CredentialStore
from core.config import get_settings

logger = logging.getLogger("credguard.cli")


def _build_service(database_url: Optional[str]) -> AuthService:
    settings = get_settings()
    store = CredentialStore(database_url or settings.database_url)
    return AuthService.from_settings(settings, store=store)


def _prompt_password() -> Optional[str]:
    """Read the new admin password twice without echo. Returns None on mismatch."""
    password = getpass.getpass("  Password: ")
    confirm = getpass.getpass("  Confirm password: ")
    if password != confirm:
        print("  [!] Passwords do not match.")
        return None
    return password


def _create_admin(service: AuthService, args: argparse.Namespace) -> int:
    password = _prompt_password()
    if password is None:
        return 1
    try:
        user_id = service.create_admin(args.email, password, first_name=args.first_name, last_name=args.last_name)
    except ValidationFailed as exc:
        for field, message in exc.fields.items():
            print(f"  [!] {field}: {message}")
        return 1
    print(f"  Admin account created (id {user_id}).")
    return 0


def _deactivate(service: AuthService, args: argparse.Namespace) -> int:
    if service.deactivate_account(args.email) is None:
        print(f"  [!] No account found for '{args.email}'.")
        return 1
    print(f"  Account '{args.email}' deactivated.")
    return 0


def _unlock(service: AuthService, args: argparse.Namespace) -> int:
    if service.unlock_account(args.email) is None:
        print(f"  [!] No account found for '{args.email}'.")
        return 1
    print(f"  Account '{args.email}' unlocked; failed attempt counter reset.")
    return 0


_COMMANDS = {
    "create-admin": _create_admin,
    "deactivate": _deactivate,
    "unlock": _unlock,
}


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="credguard",
        description="Account administration for the CredGuard credential store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com
  python main.py deactivate --email former.employee@example.com
  python main.py unlock --email locked.out@example.com
        """,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = subparsers.add_parser("create-admin", help="Create a verified admin account (prompts for password)")
    create.add_argument("--first-name", default="Admin", help="First name (default: Admin)")
    create.add_argument("--last-name", default="User", help="Last name (default: User)")

    subparsers.add_parser("deactivate", help="Deactivate an account; it can no longer log in")
    subparsers.add_parser("unlock", help="Clear the lockout and failed attempt counter")

    for sub in subparsers.choices.values():
        sub.add_argument("--email", required=True, help="Account email address")
        sub.add_argument(
            "--database-url",
            default=None,
            metavar="URL",
            help="SQLAlchemy URL of the credential store (default: DATABASE_URL setting)",
        )

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")

    service = _build_service(args.database_url)
    try:
        return _COMMANDS[args.command](service, args)
    except AuthError as exc:
        logger.warning("%s failed: %s", args.command, exc.code)
        print(f"  [!] {exc.message}")
        return 1
    finally:
        service.close()


if __name__ == "__main__":
    raise SystemExit(main())
