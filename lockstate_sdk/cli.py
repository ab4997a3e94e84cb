#!/usr/bin/env python3
"""
lockstate_sdk/cli.py - Command-Line Interface

Usage:
    lockstate status
    lockstate start
    lockstate pause --reason "bathroom"
    lockstate resume
    lockstate end --reason "done"
    lockstate goal 7200 --hardcore --combination 1234
    lockstate unlock ABC123
    lockstate history

State lives in the SQL document store at LOCKSTATE_DATABASE_URL.

Exit Codes:
    0 = action applied
    1 = action rejected (see message)
    2 = store unavailable or bad arguments
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from .clock import ManualClock, SystemClock
from .config import get_settings
from .client import ActionResult, LockStateClient
from .errors import StoreError
from .events import LoggingEventLog
from .history import describe_history
from .reconciler import SyncState
from .schemas import coerce_timestamp
from .store import SqlDocumentStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lockstate", description="Lock session tracker")
    parser.add_argument("--user", default="default", help="Document ID of the user")
    parser.add_argument("--database-url", help="Override LOCKSTATE_DATABASE_URL")
    parser.add_argument("--at", help="Run the command at this ISO-8601 instant instead of now")
    parser.add_argument(
        "--on-conflict",
        choices=["resume", "discard"],
        default="resume",
        help="What to do with an active session found in the store",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("status", help="Show the current session")
    subparsers.add_parser("history", help="List finished sessions")
    subparsers.add_parser("start", help="Start a session")
    subparsers.add_parser("resume", help="Resume a paused session")

    end_parser = subparsers.add_parser("end", help="End the session")
    end_parser.add_argument("--reason", required=True)

    pause_parser = subparsers.add_parser("pause", help="Pause the session")
    pause_parser.add_argument("--reason", default="")

    goal_parser = subparsers.add_parser("goal", help="Set a personal goal in seconds")
    goal_parser.add_argument("seconds", type=int)
    goal_parser.add_argument("--hardcore", action="store_true")
    goal_parser.add_argument("--combination")

    unlock_parser = subparsers.add_parser("unlock", help="Emergency unlock with the backup code")
    unlock_parser.add_argument("code")

    restore_parser = subparsers.add_parser("restore", help="Copy another user's data into yours")
    restore_parser.add_argument("source_user")
    return parser


def _report(result: ActionResult, success: str) -> int:
    if not result.ok:
        message = result.error.message if result.error else "Nothing to do."
        print(f"Rejected: {message}", file=sys.stderr)
        return 1
    print(success)
    for name, value in result.revealed.items():
        print(f"{name.replace('_', ' ').title()}: {value}  (shown once, write it down)")
    if not result.persisted:
        print("Warning: change kept locally, the store could not be written.", file=sys.stderr)
    return 0


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    clock = SystemClock()
    if args.at:
        at = coerce_timestamp(args.at)
        if at is None:
            print(f"Error: invalid --at value: {args.at}", file=sys.stderr)
            return 2
        clock = ManualClock(at)

    store = SqlDocumentStore(args.database_url or settings.DATABASE_URL)
    client = LockStateClient(args.user, store, settings=settings, clock=clock, event_log=LoggingEventLog())
    try:
        if await client.load() == SyncState.CONFLICT_PENDING:
            if args.on_conflict == "resume":
                await client.resume_remote()
            else:
                await client.discard_and_start_new()
                print("Active session discarded.")
        await client.tick()
        for name, value in client.take_revealed().items():
            print(f"{name.replace('_', ' ').title()}: {value}  (shown once, write it down)")
        return await dispatch(client, args)
    finally:
        client.close()


async def dispatch(client: LockStateClient, args: argparse.Namespace) -> int:
    command = args.command
    if command == "status":
        print(json.dumps(client.status(), indent=2))
        return 0
    if command == "history":
        rows = describe_history(client.state.chastity_history)
        if not rows:
            print("No finished sessions.")
        for row in rows:
            line = f"#{row['period']}  {row['start']} -> {row['end']}  effective {row['effective']}"
            line += f"  paused {row['paused']}  ({row['reason']})"
            if row["goal"]:
                line += f"  goal {row['goal']}: {row['goal_difference']}"
            print(line)
        return 0
    if command == "start":
        return _report(await client.start_session(), "Session started.")
    if command == "pause":
        return _report(await client.confirm_pause(args.reason), "Session paused.")
    if command == "resume":
        return _report(await client.resume(), "Session resumed.")
    if command == "end":
        staged = await client.request_end()
        if not staged.ok:
            return _report(staged, "")
        return _report(await client.confirm_end(args.reason), "Session ended.")
    if command == "goal":
        result = await client.set_personal_goal(args.seconds, args.hardcore, args.combination)
        return _report(result, "Goal set.")
    if command == "unlock":
        return _report(await client.attempt_emergency_unlock(args.code), "Unlocked.")
    if command == "restore":
        return _report(await client.restore_from_user(args.source_user), "Data restored.")
    return 2


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=get_settings().LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        return asyncio.run(run(args))
    except StoreError as e:
        print(f"Error: store unavailable: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
