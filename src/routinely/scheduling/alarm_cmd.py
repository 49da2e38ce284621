"""CLI handler for `routinely alarm` subcommand."""

import argparse
import sys
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from routinely.config import TZ_NAME
from routinely.scheduling.alarms import Alarm, cancel_alarm, create_alarm, get_alarm, list_alarms
from routinely.scheduling.scheduler import offline_service


def _fmt_alarm(a: Alarm) -> str:
    sched = f"at {a.time[:16]}"
    if a.recurrence_rule:
        sched += f" ({a.recurrence_rule})"
    if not a.enabled:
        sched = f"[off] {sched}"
    return sched


def run_alarm_command(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="routinely alarm")
    sub = parser.add_subparsers(dest="action")

    add_p = sub.add_parser("add", help="Create an alarm")
    add_p.add_argument("--user", "-u", required=True, help="Owner user ID")
    add_p.add_argument("--title", "-m", required=True, help="Alarm title")
    add_p.add_argument("--at", required=True, help='First firing, "YYYY-MM-DD HH:MM"')
    add_p.add_argument("--rule", default=None, help='Recurrence, e.g. "FREQ=DAILY"')
    add_p.add_argument("--timezone", default=None, help="IANA zone, defaults to ROUTINELY_TIMEZONE")

    list_p = sub.add_parser("list", help="Show alarms")
    list_p.add_argument("--user", "-u", default=None, help="Only this user's alarms")

    cancel_p = sub.add_parser("cancel", help="Cancel an alarm by ID")
    cancel_p.add_argument("id", help="Alarm ID")

    args = parser.parse_args(argv)

    if args.action == "add":
        _handle_add(args)
    elif args.action == "list":
        _handle_list(args.user)
    elif args.action == "cancel":
        _handle_cancel(args.id)
    else:
        parser.print_help()
        sys.exit(1)


def _handle_add(args: argparse.Namespace) -> None:
    timezone = args.timezone or TZ_NAME
    try:
        tz = ZoneInfo(timezone)
        at = datetime.fromisoformat(args.at)
    except (ValueError, ZoneInfoNotFoundError) as exc:
        print(f"error: {exc}")
        sys.exit(1)
    at = at.astimezone(tz) if at.tzinfo else at.replace(tzinfo=tz)

    alarm = create_alarm(
        offline_service(),
        args.user,
        args.title,
        at,
        timezone=timezone,
        recurrence_rule=args.rule,
    )
    print(f"scheduled {alarm.id}: {_fmt_alarm(alarm)} -- {alarm.title}")


def _handle_list(user_id: str | None) -> None:
    alarms = list_alarms(user_id)
    if not alarms:
        print("no alarms")
        return
    for a in alarms:
        print(f"  {a.id}  {_fmt_alarm(a):40s}  {a.title}")


def _handle_cancel(alarm_id: str) -> None:
    alarm = get_alarm(alarm_id)
    if alarm is None:
        print(f"alarm {alarm_id} not found")
        sys.exit(1)
    cancel_alarm(offline_service(), alarm.id, alarm.user_id)
    print(f"cancelled {alarm_id}")
