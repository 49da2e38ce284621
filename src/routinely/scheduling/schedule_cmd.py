"""CLI handler for `routinely next`: preview upcoming occurrences of a schedule."""

import argparse
import sys
from datetime import datetime

from routinely.config import TZ, TZ_NAME
from routinely.scheduling.occurrence import FREQUENCIES, Schedule, next_occurrence, validate_schedule


def run_next_command(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="routinely next")
    parser.add_argument("--frequency", "-f", required=True, choices=FREQUENCIES)
    parser.add_argument("--time", "-t", required=True, help='Clock time, "HH:mm"')
    parser.add_argument("--days", type=int, nargs="+", default=[], help="Weekdays, 0=Sunday (WEEKLY)")
    parser.add_argument("--day", type=int, default=None, help="Day of month (MONTHLY, YEARLY)")
    parser.add_argument("--month", type=int, default=None, help="Month 1-12 (YEARLY)")
    parser.add_argument("--timezone", default=TZ_NAME, help="IANA zone")
    parser.add_argument("--count", "-n", type=int, default=5, help="How many occurrences")
    args = parser.parse_args(argv)

    schedule = Schedule(
        frequency=args.frequency,
        time=args.time,
        days=tuple(args.days),
        day=args.day,
        month=args.month,
        timezone=args.timezone,
    )
    errors = validate_schedule(schedule.to_dict())
    if errors:
        for error in errors:
            print(f"error: {error}")
        sys.exit(1)

    cursor = datetime.now(TZ)
    for _ in range(args.count):
        upcoming = next_occurrence(schedule, cursor)
        if upcoming is None:
            print("schedule never fires")
            sys.exit(1)
        print(f"  {upcoming.isoformat()}  {upcoming:%A}")
        cursor = upcoming
