#!/usr/bin/env python3
"""
TierGate -- operator command line.

Works directly against the configured database (DATABASE_URL), so it can be
used before any admin exists, e.g. to promote the first administrator after
they have signed in once through OAuth.

Usage:
  python main.py list-users
  python main.py set-role alice@example.com ADMIN
  python main.py cleanup-tokens
"""

import argparse
import logging
import sys
from typing import Optional

from auth.models import Role
from auth.sessions import assign_role, purge_expired_refresh_tokens
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("tiergate.cli")


def list_users(store: UserStore) -> list[str]:
    """Return one formatted line per user (email, role, ban flag, id)."""
    lines = []
    for user in store.list_users():
        banned = " [banned]" if user.is_banned else ""
        lines.append(f"{user.email:<40} {user.role.value:<8}{banned}  {user.id}")
    return lines


def set_role(store: UserStore, email: str, role: Role) -> bool:
    """Assign role to the user with email. Returns False if no such user."""
    user = store.get_by_email(email)
    if user is None:
        return False
    return assign_role(store, user.id, role) is not None


def cleanup_tokens(store: UserStore) -> tuple[int, int]:
    return purge_expired_refresh_tokens(store)


def main(argv: Optional[list[str]] = None, store: Optional[UserStore] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tiergate",
        description="TierGate operator commands.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list-users", help="List every account with its role")

    role_parser = sub.add_parser("set-role", help="Assign a role to an account by email")
    role_parser.add_argument("email")
    role_parser.add_argument("role", type=str.upper, choices=[r.value for r in Role])

    sub.add_parser("cleanup-tokens", help="Clear stored refresh tokens that have expired")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")

    owns_store = store is None
    if store is None:
        store = UserStore(get_settings().database_url)
    try:
        if args.command == "list-users":
            lines = list_users(store)
            for line in lines:
                print(line)
            if not lines:
                print("  No users yet.")
            return 0

        if args.command == "set-role":
            if not set_role(store, args.email, Role(args.role)):
                print(f"  [!] No user with email '{args.email}'.", file=sys.stderr)
                return 1
            print(f"  {args.email} is now {args.role}.")
            return 0

        removed, total = cleanup_tokens(store)
        print(f"  Removed {removed} expired refresh token(s) out of {total}.")
        return 0
    finally:
        if owns_store:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
