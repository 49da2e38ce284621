"""Deadline reminders for tasks, goals and milestones.

All three share one shape: resolve the due instant, keep the offsets that
still lie strictly between now and the deadline (the at-deadline reminder is
always kept), then create and queue one one-shot reminder per kept offset.
They differ only in the offset table and in how the reminders are correlated
back to their target.

Scheduling here is best-effort. Every public function logs and swallows
collaborator errors so the task/goal write that triggered it still succeeds.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from routinely.config import TZ
from routinely.scheduling.occurrence import Schedule, parse_hhmm
from routinely.scheduling.reminders import (
    DUE_DATE_REMINDER,
    GOAL,
    GOAL_REMINDER,
    TASK,
    Reminder,
    append_reminder,
    delete_reminders,
    find_reminders,
    remove_reminder,
)
from routinely.scheduling.service import SchedulerService
from routinely.storage import DATA_DIR, read_md_dir, remove_md, write_md

MILESTONES_DIR = DATA_DIR / "milestones"

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Offset:
    before: timedelta
    title: str  # formatted with {title}
    note: str


TASK_OFFSETS = (
    Offset(timedelta(days=1), "Task Due Tomorrow: {title}", 'Your task "{title}" is due tomorrow.'),
    Offset(timedelta(hours=1), "Task Due in 1 Hour: {title}", 'Your task "{title}" is due in 1 hour.'),
    Offset(timedelta(0), "Task Due: {title}", 'Your task "{title}" is due now.'),
)

GOAL_OFFSETS = (
    Offset(
        timedelta(weeks=1),
        "Goal Deadline in 1 Week: {title}",
        'Your goal "{title}" deadline is in 1 week.',
    ),
    Offset(timedelta(days=1), "Goal Deadline Tomorrow: {title}", 'Your goal "{title}" deadline is tomorrow.'),
    Offset(timedelta(0), "Goal Deadline Today: {title}", 'Your goal "{title}" deadline is today.'),
)

MILESTONE_OFFSETS = (
    Offset(
        timedelta(days=1),
        "Milestone Due Tomorrow: {title}",
        'Your milestone "{title}" is due tomorrow.',
    ),
    Offset(
        timedelta(hours=1),
        "Milestone Due in 1 Hour: {title}",
        'Your milestone "{title}" is due in 1 hour.',
    ),
    Offset(timedelta(0), "Milestone Due Now: {title}", 'Your milestone "{title}" is due now.'),
)


@dataclass(frozen=True, slots=True)
class Milestone:
    id: str
    goal_id: str
    goal_title: str
    user_id: str
    title: str
    due_date: date
    done: bool = False
    goal_done: bool = False


def append_milestone(milestone: Milestone) -> None:
    write_md(MILESTONES_DIR, milestone, "title")


def list_milestones(user_id: str | None = None) -> list[Milestone]:
    milestones = read_md_dir(MILESTONES_DIR, Milestone, "title")
    if user_id is None:
        return milestones
    return [m for m in milestones if m.user_id == user_id]


def remove_milestone(milestone_id: str) -> bool:
    return remove_md(MILESTONES_DIR, milestone_id)


def _zone(timezone: str | None) -> ZoneInfo:
    return ZoneInfo(timezone) if timezone else TZ


def resolve_due(due_date: date | datetime, due_time: str | None, tz: ZoneInfo) -> datetime:
    """Due date at ``due_time`` ("HH:mm"), or at 23:59 when no time is given."""
    if isinstance(due_date, datetime):
        due_date = due_date.astimezone(tz).date() if due_date.tzinfo else due_date.date()
    hhmm = parse_hhmm(due_time)
    if due_time and hhmm is None:
        log.warning("Ignoring malformed due time %r, using end of day", due_time)
    hour, minute = hhmm or (23, 59)
    return datetime(due_date.year, due_date.month, due_date.day, hour, minute, tzinfo=tz)


def trigger_instants(
    due: datetime, offsets: Iterable[Offset], now: datetime
) -> list[tuple[Offset, datetime]]:
    """Offsets that land strictly in the future and strictly before ``due``.

    Offsets that would be in the past are skipped, not clamped. The
    zero offset is kept whenever ``due`` itself is in the future.
    """
    if due <= now:
        return []
    kept = []
    for offset in offsets:
        instant = due - offset.before
        if instant > now and (not offset.before or instant < due):
            kept.append((offset, instant))
    return kept


def _clear(service: SchedulerService, user_id: str, **filters: str) -> int:
    deleted = delete_reminders(user_id, **filters)
    for reminder_id in deleted:
        service.cancel_reminder_job(reminder_id)
    return len(deleted)


def _schedule_offsets(
    service: SchedulerService,
    *,
    user_id: str,
    due: datetime,
    offsets: Iterable[Offset],
    subject: str,
    target_type: str,
    target_id: str | None,
    correlation: str,
    reminder_type: str,
    now: datetime,
    **extra: str,
) -> list[Reminder]:
    instants = trigger_instants(due, offsets, now)
    if not instants:
        log.warning("%s is due %s, in the past; no reminders scheduled", correlation, due.isoformat())
        return []

    created: list[Reminder] = []
    for offset, instant in instants:
        reminder = Reminder.new(
            user_id,
            target_type=target_type,
            title=offset.title.format(title=subject),
            note=offset.note.format(title=subject),
            schedule=Schedule.one_shot(instant, **extra),
            target_id=target_id,
            reminder_type=reminder_type,
            correlation=correlation,
            now=now,
        )
        append_reminder(reminder)
        try:
            service.schedule_reminder(reminder.id, user_id, instant, reminder_type, now=now)
        except Exception:
            log.exception("Failed to queue reminder %s for %s", reminder.id, correlation)
            remove_reminder(reminder.id)
            continue
        created.append(reminder)
        log.info("Scheduled %r for %s at %s", reminder.title, correlation, instant.isoformat())
    return created


def schedule_task_due_reminders(
    service: SchedulerService,
    task_id: str,
    user_id: str,
    due_date: date | datetime,
    title: str,
    due_time: str | None = None,
    *,
    timezone: str | None = None,
    now: datetime | None = None,
) -> list[Reminder]:
    """Reminders 1 day before, 1 hour before and at the task's due time."""
    try:
        _clear(service, user_id, target_type=TASK, target_id=task_id)
        return _schedule_offsets(
            service,
            user_id=user_id,
            due=resolve_due(due_date, due_time, _zone(timezone)),
            offsets=TASK_OFFSETS,
            subject=title,
            target_type=TASK,
            target_id=task_id,
            correlation=f"task:{task_id}",
            reminder_type=DUE_DATE_REMINDER,
            now=now or service.now(),
        )
    except Exception:
        log.exception("Failed to schedule due date reminders for task %s", task_id)
        return []


def schedule_goal_deadline_reminders(
    service: SchedulerService,
    goal_id: str,
    user_id: str,
    target_date: date | datetime,
    title: str,
    *,
    timezone: str | None = None,
    now: datetime | None = None,
) -> list[Reminder]:
    """Reminders 1 week before, 1 day before and at the goal's target date.

    A bare date targets 23:59 of that day; a datetime is used as given.
    """
    try:
        tz = _zone(timezone)
        _clear(service, user_id, correlation=f"goal:{goal_id}")
        if isinstance(target_date, datetime):
            due = target_date if target_date.tzinfo else target_date.replace(tzinfo=tz)
        else:
            due = resolve_due(target_date, None, tz)
        return _schedule_offsets(
            service,
            user_id=user_id,
            due=due,
            offsets=GOAL_OFFSETS,
            subject=title,
            target_type=GOAL,
            target_id=None,
            correlation=f"goal:{goal_id}",
            reminder_type=GOAL_REMINDER,
            now=now or service.now(),
            goal_id=goal_id,
        )
    except Exception:
        log.exception("Failed to schedule deadline reminders for goal %s", goal_id)
        return []


def schedule_milestone_deadline_reminders(
    service: SchedulerService,
    milestone_id: str,
    goal_id: str,
    user_id: str,
    due_date: date | datetime,
    title: str,
    *,
    timezone: str | None = None,
    now: datetime | None = None,
) -> list[Reminder]:
    """Reminders 1 day before, 1 hour before and at 23:59 of the due date."""
    try:
        _clear(service, user_id, correlation=f"milestone:{milestone_id}")
        return _schedule_offsets(
            service,
            user_id=user_id,
            due=resolve_due(due_date, None, _zone(timezone)),
            offsets=MILESTONE_OFFSETS,
            subject=title,
            target_type=GOAL,
            target_id=None,
            correlation=f"milestone:{milestone_id}",
            reminder_type=GOAL_REMINDER,
            now=now or service.now(),
            milestone_id=milestone_id,
            goal_id=goal_id,
        )
    except Exception:
        log.exception("Failed to schedule due date reminders for milestone %s", milestone_id)
        return []


def cancel_task_reminders(service: SchedulerService, task_id: str, user_id: str) -> int:
    return _clear(service, user_id, target_type=TASK, target_id=task_id)


def cancel_goal_reminders(service: SchedulerService, goal_id: str, user_id: str) -> int:
    return _clear(service, user_id, correlation=f"goal:{goal_id}")


def cancel_milestone_reminders(service: SchedulerService, milestone_id: str, user_id: str) -> int:
    return _clear(service, user_id, correlation=f"milestone:{milestone_id}")


def notify_overdue_milestones(
    service: SchedulerService,
    milestones: Iterable[Milestone],
    *,
    timezone: str | None = None,
    now: datetime | None = None,
) -> list[Reminder]:
    """Send one "overdue" reminder per open milestone per day, right away.

    A milestone is overdue once 23:59 of its due date has passed; reminders
    already created for it since the start of today suppress a repeat.
    """
    tz = _zone(timezone)
    now = (now or service.now()).astimezone(tz)
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    sent: list[Reminder] = []

    for milestone in milestones:
        if milestone.done or milestone.goal_done:
            continue
        if resolve_due(milestone.due_date, None, tz) >= now:
            continue
        correlation = f"overdue:{milestone.id}"
        try:
            earlier = find_reminders(milestone.user_id, correlation=correlation)
            if any(datetime.fromisoformat(r.created_at) >= day_start for r in earlier if r.created_at):
                log.debug("Overdue reminder already sent today for milestone %s", milestone.id)
                continue

            days = (now.date() - milestone.due_date).days
            reminder = Reminder.new(
                milestone.user_id,
                target_type=GOAL,
                title=f"Overdue Milestone: {milestone.title}",
                note=(
                    f'Your milestone "{milestone.title}" for goal "{milestone.goal_title}" '
                    f"is {days} day{'s' if days != 1 else ''} overdue."
                ),
                schedule=Schedule.one_shot(now, milestone_id=milestone.id, goal_id=milestone.goal_id),
                reminder_type=GOAL_REMINDER,
                correlation=correlation,
                now=now,
            )
            append_reminder(reminder)
            try:
                service.remind_now(reminder.id, milestone.user_id, GOAL_REMINDER)
            except Exception:
                log.exception("Failed to queue overdue reminder for milestone %s", milestone.id)
                remove_reminder(reminder.id)
                continue
            sent.append(reminder)
        except Exception:
            log.exception("Failed to check overdue milestone %s", milestone.id)
    log.info("Sent %d overdue milestone reminders", len(sent))
    return sent
