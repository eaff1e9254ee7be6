#!/usr/bin/env python3
"""
SRP auth server -- operator command line.

Usage:
  python main.py purge-expired          # drop expired handshake / refresh / blacklist entries
  python main.py revoke USER_ID         # force logout: delete the user's refresh record
  python main.py lookup USERNAME        # show id and creation time of a registered user

All commands read the same configuration as the API (environment / .env);
see core/config.py.
"""

import argparse
import logging
import sys

from api.main import build_ephemeral_store
from auth.service import normalize_username
from auth.store import CredentialStore
from auth.tokens import refresh_record_key
from core.config import get_settings


def cmd_purge_expired(args: argparse.Namespace) -> int:
    sessions = build_ephemeral_store(get_settings())
    try:
        removed = sessions.purge_expired()
    finally:
        sessions.close()
    print(f"  Purged {removed} expired entries.")
    return 0


def cmd_revoke(args: argparse.Namespace) -> int:
    sessions = build_ephemeral_store(get_settings())
    try:
        sessions.delete(refresh_record_key(args.user_id))
    finally:
        sessions.close()
    print(f"  Refresh record for {args.user_id} revoked. The user must log in again once the access token expires.")
    return 0


def cmd_lookup(args: argparse.Namespace) -> int:
    store = CredentialStore(get_settings().database_url)
    try:
        record = store.get(normalize_username(args.username))
    finally:
        store.close()
    if record is None:
        print(f"  [!] No user named '{args.username}'.")
        return 1
    print(f"  id:         {record.id}")
    print(f"  username:   {record.username}")
    print(f"  created_at: {record.created_at}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SRP auth server -- operator commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    purge = sub.add_parser("purge-expired", help="Delete expired ephemeral entries")
    purge.set_defaults(func=cmd_purge_expired)

    revoke = sub.add_parser("revoke", help="Delete a user's refresh record (force re-login)")
    revoke.add_argument("user_id")
    revoke.set_defaults(func=cmd_revoke)

    lookup = sub.add_parser("lookup", help="Show a registered user")
    lookup.add_argument("username")
    lookup.set_defaults(func=cmd_lookup)
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s", force=True)
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
