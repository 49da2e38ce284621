"""CLI handlers for `routinely task` and `routinely goal` subcommands."""

import argparse
import sys
from datetime import date, datetime

from routinely.scheduling.deadlines import (
    Milestone,
    append_milestone,
    cancel_task_reminders,
    schedule_goal_deadline_reminders,
    schedule_milestone_deadline_reminders,
    schedule_task_due_reminders,
)
from routinely.scheduling.notifications import (
    send_task_assignment_notification,
    send_task_created_notification,
)
from routinely.scheduling.reminders import Reminder
from routinely.scheduling.scheduler import offline_service


def _parse_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError:
        print(f"error: invalid date {raw!r}, expected YYYY-MM-DD")
        sys.exit(1)


def _print_scheduled(subject: str, reminders: list[Reminder]) -> None:
    if not reminders:
        print(f"no reminders scheduled for {subject} (deadline passed?)")
        return
    print(f"scheduled {len(reminders)} reminder(s) for {subject}")
    for r in reminders:
        print(f"  {r.id}  at {r.schedule['at'][:16]}  {r.title}")


def run_task_command(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="routinely task")
    sub = parser.add_subparsers(dest="action")

    due_p = sub.add_parser("due", help="Schedule due date reminders for a task")
    due_p.add_argument("task_id", help="Task ID")
    due_p.add_argument("--user", "-u", required=True, help="Owner user ID")
    due_p.add_argument("--title", "-m", required=True, help="Task title")
    due_p.add_argument("--date", "-d", required=True, help="Due date, YYYY-MM-DD")
    due_p.add_argument("--time", "-t", default=None, help='Due time "HH:mm" (default 23:59)')
    due_p.add_argument("--timezone", default=None, help="IANA zone, defaults to ROUTINELY_TIMEZONE")

    clear_p = sub.add_parser("clear", help="Cancel a task's reminders")
    clear_p.add_argument("task_id", help="Task ID")
    clear_p.add_argument("--user", "-u", required=True, help="Owner user ID")

    created_p = sub.add_parser("created", help="Notify a user that a task was created")
    created_p.add_argument("task_id", help="Task ID")
    created_p.add_argument("--user", "-u", required=True, help="Owner user ID")
    created_p.add_argument("--title", "-m", required=True, help="Task title")
    created_p.add_argument("--project", default=None, help="Project title")

    assign_p = sub.add_parser("assign", help="Notify a user about a task assignment")
    assign_p.add_argument("task_id", help="Task ID")
    assign_p.add_argument("--user", "-u", required=True, help="Assignee user ID")
    assign_p.add_argument("--title", "-m", required=True, help="Task title")
    assign_p.add_argument("--by", default=None, help="Name of the assigner")

    args = parser.parse_args(argv)

    if args.action == "due":
        reminders = schedule_task_due_reminders(
            offline_service(),
            args.task_id,
            args.user,
            _parse_date(args.date),
            args.title,
            args.time,
            timezone=args.timezone,
        )
        _print_scheduled(f"task {args.task_id}", reminders)
    elif args.action == "clear":
        count = cancel_task_reminders(offline_service(), args.task_id, args.user)
        print(f"cancelled {count} reminder(s) for task {args.task_id}")
    elif args.action == "created":
        notification = send_task_created_notification(
            offline_service(), args.task_id, args.user, args.title, args.project
        )
        print(f"queued {notification.id}" if notification else "failed to queue notification")
    elif args.action == "assign":
        notification = send_task_assignment_notification(
            offline_service(), args.task_id, args.user, args.title, args.by
        )
        print(f"queued {notification.id}" if notification else "failed to queue notification")
    else:
        parser.print_help()
        sys.exit(1)


def run_goal_command(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="routinely goal")
    sub = parser.add_subparsers(dest="action")

    deadline_p = sub.add_parser("deadline", help="Schedule deadline reminders for a goal")
    deadline_p.add_argument("goal_id", help="Goal ID")
    deadline_p.add_argument("--user", "-u", required=True, help="Owner user ID")
    deadline_p.add_argument("--title", "-m", required=True, help="Goal title")
    deadline_p.add_argument(
        "--date", "-d", required=True, help="Target date YYYY-MM-DD, or an ISO datetime"
    )
    deadline_p.add_argument("--timezone", default=None, help="IANA zone, defaults to ROUTINELY_TIMEZONE")

    milestone_p = sub.add_parser("milestone", help="Track a milestone and schedule its reminders")
    milestone_p.add_argument("goal_id", help="Goal ID")
    milestone_p.add_argument("--id", dest="milestone_id", required=True, help="Milestone ID")
    milestone_p.add_argument("--user", "-u", required=True, help="Owner user ID")
    milestone_p.add_argument("--title", "-m", required=True, help="Milestone title")
    milestone_p.add_argument("--goal-title", required=True, help="Goal title")
    milestone_p.add_argument("--date", "-d", required=True, help="Due date, YYYY-MM-DD")
    milestone_p.add_argument("--timezone", default=None, help="IANA zone, defaults to ROUTINELY_TIMEZONE")

    args = parser.parse_args(argv)

    if args.action == "deadline":
        target = _parse_date(args.date) if len(args.date) == 10 else _parse_datetime(args.date)
        reminders = schedule_goal_deadline_reminders(
            offline_service(), args.goal_id, args.user, target, args.title, timezone=args.timezone
        )
        _print_scheduled(f"goal {args.goal_id}", reminders)
    elif args.action == "milestone":
        milestone = Milestone(
            id=args.milestone_id,
            goal_id=args.goal_id,
            goal_title=args.goal_title,
            user_id=args.user,
            title=args.title,
            due_date=_parse_date(args.date),
        )
        append_milestone(milestone)
        reminders = schedule_milestone_deadline_reminders(
            offline_service(),
            milestone.id,
            milestone.goal_id,
            milestone.user_id,
            milestone.due_date,
            milestone.title,
            timezone=args.timezone,
        )
        _print_scheduled(f"milestone {milestone.id}", reminders)
    else:
        parser.print_help()
        sys.exit(1)


def _parse_datetime(raw: str) -> datetime:
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        print(f"error: invalid datetime {raw!r}")
        sys.exit(1)
