"""CLI handler for `routinely reminder` subcommand."""

import argparse
import sys
from datetime import datetime

from routinely.scheduling.occurrence import next_occurrence
from routinely.scheduling.reminders import Reminder, list_reminders, remove_reminder
from routinely.scheduling.scheduler import offline_service
from routinely.storage import TZ


def _fmt_schedule(r: Reminder) -> str:
    sched = r.schedule
    if "at" in sched:
        return f"at {sched['at'][:16]}"
    label = f"{sched.get('frequency', '?').lower()} {sched.get('time', '?')}"
    upcoming = next_occurrence(sched, datetime.now(TZ))
    if upcoming is None:
        return f"{label} (expired)"
    return f"{label} next {upcoming.isoformat()[:16]}"


def run_reminder_command(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="routinely reminder")
    sub = parser.add_subparsers(dest="action")

    list_p = sub.add_parser("list", help="Show stored reminders")
    list_p.add_argument("--user", "-u", default=None, help="Only this user's reminders")

    cancel_p = sub.add_parser("cancel", help="Cancel a reminder by ID")
    cancel_p.add_argument("id", help="Reminder ID")

    args = parser.parse_args(argv)

    if args.action == "list":
        _handle_list(args.user)
    elif args.action == "cancel":
        _handle_cancel(args.id)
    else:
        parser.print_help()
        sys.exit(1)


def _handle_list(user_id: str | None) -> None:
    reminders = list_reminders(user_id)
    if not reminders:
        print("no reminders")
        return
    for r in reminders:
        print(f"  {r.id}  {r.user_id:10s}  {_fmt_schedule(r):36s}  {r.title}")


def _handle_cancel(reminder_id: str) -> None:
    if remove_reminder(reminder_id):
        offline_service().cancel_reminder_job(reminder_id)
        print(f"cancelled {reminder_id}")
    else:
        print(f"reminder {reminder_id} not found")
        sys.exit(1)
