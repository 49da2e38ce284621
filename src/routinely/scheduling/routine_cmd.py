"""CLI handler for `routinely routine` subcommand."""

import argparse
import sys

from routinely.scheduling.occurrence import FREQUENCIES, WEEKLY, parse_hhmm
from routinely.scheduling.routines import (
    Routine,
    RoutineTask,
    append_routine,
    cancel_routine,
    get_routine,
    list_routines,
    parse_reminder_before,
    remove_routine,
    schedule_routine,
)
from routinely.scheduling.scheduler import offline_service


def _fmt_schedule(r: Routine) -> str:
    sched = f"{r.frequency.lower()} {r.time or '--:--'}"
    if r.frequency == WEEKLY and r.days:
        sched += " days " + ",".join(str(d) for d in r.days)
    if r.day:
        sched += f" day {r.day}"
    if r.month:
        sched += f" month {r.month}"
    if r.reminder_before:
        sched += f" (alarm -{r.reminder_before})"
    if not r.enabled:
        sched = f"[off] {sched}"
    return sched


def _parse_task(raw: str) -> RoutineTask:
    """``"title"`` or ``"title@reminder_time"``."""
    title, _, reminder_time = raw.partition("@")
    return RoutineTask.new(title.strip(), reminder_time.strip() or None)


def run_routine_command(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="routinely routine")
    sub = parser.add_subparsers(dest="action")

    add_p = sub.add_parser("add", help="Add a routine and schedule its reminders")
    add_p.add_argument("--user", "-u", required=True, help="Owner user ID")
    add_p.add_argument("--title", "-m", required=True, help="Routine title")
    add_p.add_argument("--frequency", "-f", required=True, choices=FREQUENCIES)
    add_p.add_argument("--time", "-t", required=True, help='Clock time, "HH:mm"')
    add_p.add_argument("--days", type=int, nargs="+", default=[], help="Weekdays, 0=Sunday (WEEKLY)")
    add_p.add_argument("--day", type=int, default=None, help="Day of month (MONTHLY, YEARLY)")
    add_p.add_argument("--month", type=int, default=None, help="Month 1-12 (YEARLY)")
    add_p.add_argument("--timezone", default=None, help="IANA zone, defaults to ROUTINELY_TIMEZONE")
    add_p.add_argument("--before", default=None, help='Alarm lead time, e.g. "2h", "1d", "1w"')
    add_p.add_argument(
        "--task",
        action="append",
        default=[],
        help='Routine task, "title" or "title@-15min" / "title@07:30" (repeatable)',
    )

    list_p = sub.add_parser("list", help="Show all routines")
    list_p.add_argument("--user", "-u", default=None, help="Only this user's routines")

    schedule_p = sub.add_parser("schedule", help="Reschedule a routine's reminders and alarm")
    schedule_p.add_argument("id", help="Routine ID")

    cancel_p = sub.add_parser("cancel", help="Cancel a routine by ID")
    cancel_p.add_argument("id", help="Routine ID")

    args = parser.parse_args(argv)

    if args.action == "add":
        _handle_add(args)
    elif args.action == "list":
        _handle_list(args.user)
    elif args.action == "schedule":
        _handle_schedule(args.id)
    elif args.action == "cancel":
        _handle_cancel(args.id)
    else:
        parser.print_help()
        sys.exit(1)


def _handle_add(args: argparse.Namespace) -> None:
    if parse_hhmm(args.time) is None:
        print('error: time must be "HH:mm"')
        sys.exit(1)
    if args.before and parse_reminder_before(args.before) is None:
        print('error: --before must look like "2h", "1d" or "1w"')
        sys.exit(1)
    if any(not 0 <= d <= 6 for d in args.days):
        print("error: days are 0 (Sunday) to 6 (Saturday)")
        sys.exit(1)

    routine = Routine.new(
        args.user,
        args.title,
        frequency=args.frequency,
        time=args.time,
        days=args.days,
        day=args.day,
        month=args.month,
        timezone=args.timezone,
        reminder_before=args.before,
        tasks=[_parse_task(t) for t in args.task],
    )
    append_routine(routine)
    reminders = schedule_routine(offline_service(), routine)
    print(f"scheduled {routine.id}: {_fmt_schedule(routine)} -- {routine.title}")
    print(f"  {len(reminders)} task reminder(s)")


def _handle_list(user_id: str | None) -> None:
    routines = list_routines(user_id)
    if not routines:
        print("no routines")
        return
    for r in routines:
        print(f"  {r.id}  {_fmt_schedule(r):32s}  {r.title}  ({len(r.tasks)} tasks)")


def _handle_schedule(routine_id: str) -> None:
    routine = get_routine(routine_id)
    if routine is None:
        print(f"routine {routine_id} not found")
        sys.exit(1)
    reminders = schedule_routine(offline_service(), routine)
    print(f"rescheduled {routine_id}: {len(reminders)} task reminder(s)")


def _handle_cancel(routine_id: str) -> None:
    routine = get_routine(routine_id)
    if routine is None:
        print(f"routine {routine_id} not found")
        sys.exit(1)
    cancel_routine(offline_service(), routine)
    remove_routine(routine_id)
    print(f"cancelled {routine_id}")
