#!/usr/bin/env python3
"""
Session maintenance commands for operators and cron jobs.

    session_maintenance.py gc [--max-age SECONDS]
    session_maintenance.py list [--window SECONDS] [--limit N]
    session_maintenance.py count [--window SECONDS]
    session_maintenance.py show SESSION_ID
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from sessiondb.core.config import settings
from sessiondb.core.exceptions import SessionStoreError
from sessiondb.core.logging_config import setup_logging
from sessiondb.core.utils.session_store import SessionStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="sessiondb maintenance")
    commands = parser.add_subparsers(dest="command", required=True)

    gc = commands.add_parser("gc", help="delete expired sessions")
    gc.add_argument("--max-age", type=int, default=settings.SESSION_MAX_LIFETIME_SECONDS)

    listing = commands.add_parser("list", help="list active sessions")
    listing.add_argument("--window", type=int, default=300)
    listing.add_argument("--limit", type=int, default=100)

    count = commands.add_parser("count", help="count active sessions")
    count.add_argument("--window", type=int, default=300)

    show = commands.add_parser("show", help="show one session with its decoded payload")
    show.add_argument("session_id")

    return parser


def run(args: argparse.Namespace, store: SessionStore) -> int:
    if args.command == "gc":
        removed = store.garbage_collect(args.max_age)
        print(f"Removed {removed} expired session(s)")
    elif args.command == "list":
        for summary in store.list_active(window_seconds=args.window, limit=args.limit):
            print(
                f"{summary.ts.isoformat()}  {summary.id}  user={summary.user_id} "
                f"resource={summary.resource_id}  {summary.ip or '-'}  {summary.ua or '-'}"
            )
    elif args.command == "count":
        print(store.count(window_seconds=args.window))
    elif args.command == "show":
        detail = store.get_session_data(args.session_id)
        if detail is None:
            print("Session not found", file=sys.stderr)
            return 1
        print(json.dumps(detail.model_dump(mode="json"), indent=2))
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(log_level=settings.LOG_LEVEL, enable_json=False)
    try:
        return run(args, SessionStore())
    except SessionStoreError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
