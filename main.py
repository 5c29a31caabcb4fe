#!/usr/bin/env python3
"""
Nevi -- maintenance commands for the authentication database.

Usage:
  python main.py activity
  python main.py activity --limit 100 --user alice
  python main.py revoke alice          # invalidate alice's remember-me token
  python main.py mfa alice on          # require MFA at alice's next login
  python main.py mfa alice off

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the database (default: store/nevi.db)
"""

import argparse
import sys
from datetime import datetime
from typing import Optional

from activity.logger import ActivityLogger
from auth.models import User
from auth.store import UserStore
from core.config import get_settings
from core.timefmt import time_ago
from store.records import RecordStore


def _find_user(users: UserStore, username: str) -> Optional[User]:
    user = users.get_by_username(username)
    if user is None:
        print(f"  [!] No user named '{username}'.")
    return user


def cmd_activity(records: RecordStore, args: argparse.Namespace) -> int:
    user_id = None
    if args.user:
        user = _find_user(UserStore(records), args.user)
        if user is None:
            return 1
        user_id = user.id
    entries = ActivityLogger(records).recent(limit=args.limit, user_id=user_id)
    if not entries:
        print("  No activity recorded.")
        return 0
    for e in entries:
        when = time_ago(datetime.fromisoformat(e.date_time))
        print(f"  {when:<22} {e.username or '-':<16} {e.status:<9} {e.description}  [{e.ip}, {e.os}, {e.browser}]")
    return 0


def cmd_revoke(records: RecordStore, args: argparse.Namespace) -> int:
    users = UserStore(records)
    user = _find_user(users, args.username)
    if user is None:
        return 1
    users.clear_remember_token(user.id)
    print(f"  Remember-me token for '{user.username}' revoked.")
    return 0


def cmd_mfa(records: RecordStore, args: argparse.Namespace) -> int:
    users = UserStore(records)
    user = _find_user(users, args.username)
    if user is None:
        return 1
    users.set_mfa_required(user.id, args.state == "on")
    print(f"  MFA for '{user.username}' turned {args.state}.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Nevi authentication maintenance.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_activity = sub.add_parser("activity", help="Show recent activity log entries")
    p_activity.add_argument("--limit", type=int, default=20)
    p_activity.add_argument("--user", help="Only entries for this username")
    p_activity.set_defaults(func=cmd_activity)

    p_revoke = sub.add_parser("revoke", help="Invalidate a user's remember-me token")
    p_revoke.add_argument("username")
    p_revoke.set_defaults(func=cmd_revoke)

    p_mfa = sub.add_parser("mfa", help="Turn the MFA requirement on or off for a user")
    p_mfa.add_argument("username")
    p_mfa.add_argument("state", choices=["on", "off"])
    p_mfa.set_defaults(func=cmd_mfa)

    args = parser.parse_args(argv)
    records = RecordStore(get_settings().database_url)
    try:
        return args.func(records, args)
    finally:
        records.close()


if __name__ == "__main__":
    sys.exit(main())
