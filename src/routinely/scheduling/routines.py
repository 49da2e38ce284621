"""Routines: recurring reminders per routine task, plus one derived alarm.

Every task of a routine gets its own recurring reminder at the routine's
time, optionally shifted by the task's ``reminder_time`` ("HH:mm" or a
relative "-15min" / "-1hour"). The routine as a whole owns a single alarm,
correlated as ``routine:<id>``, anchored on the routine's next occurrence.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from uuid import uuid4

from routinely.config import TZ_NAME
from routinely.scheduling.alarms import (
    Alarm,
    append_alarm,
    cancel_alarm_notifications,
    delete_alarms,
    recurrence_rule,
    roll_forward,
    schedule_alarm_notification,
)
from routinely.scheduling.occurrence import (
    FREQUENCIES,
    Schedule,
    format_hhmm,
    next_occurrence,
    parse_hhmm,
)
from routinely.scheduling.reminders import (
    CUSTOM,
    ROUTINE_REMINDER,
    Reminder,
    append_reminder,
    delete_reminders,
    get_reminder,
    list_reminders,
    remove_reminder,
    update_reminder,
)
from routinely.scheduling.service import SchedulerService
from routinely.storage import DATA_DIR, read_md, read_md_dir, remove_md, write_md

ROUTINES_DIR = DATA_DIR / "routines"

_RELATIVE = re.compile(r"^-\s*(\d+)\s*(min|minute|hour|h)s?$", re.IGNORECASE)
_BEFORE = re.compile(r"^(\d+)([hdw])$")
_BEFORE_UNITS = {"h": "hours", "d": "days", "w": "weeks"}

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RoutineTask:
    id: str
    title: str
    reminder_time: str | None = None

    @staticmethod
    def new(title: str, reminder_time: str | None = None) -> "RoutineTask":
        return RoutineTask(id=uuid4().hex[:8], title=title, reminder_time=reminder_time)


@dataclass(frozen=True, slots=True)
class Routine:
    id: str
    user_id: str
    title: str
    frequency: str
    time: str | None = None  # "HH:mm"
    days: list[int] = field(default_factory=list)  # 0=Sunday, WEEKLY only
    day: int | None = None  # MONTHLY/YEARLY
    month: int | None = None  # YEARLY
    timezone: str = "UTC"
    reminder_before: str | None = None  # "2h", "1d", "1w"
    enabled: bool = True
    tasks: list[RoutineTask] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.frequency not in FREQUENCIES:
            raise ValueError(f"Invalid frequency: {self.frequency!r}")
        # tasks come back from YAML as plain mappings
        tasks = [t if isinstance(t, RoutineTask) else RoutineTask(**t) for t in self.tasks]
        object.__setattr__(self, "tasks", tasks)

    @staticmethod
    def new(
        user_id: str,
        title: str,
        *,
        frequency: str,
        time: str | None = None,
        days: Iterable[int] = (),
        day: int | None = None,
        month: int | None = None,
        timezone: str | None = None,
        reminder_before: str | None = None,
        tasks: Iterable[RoutineTask] = (),
    ) -> "Routine":
        return Routine(
            id=uuid4().hex[:8],
            user_id=user_id,
            title=title,
            frequency=frequency,
            time=time,
            days=sorted(set(days)),
            day=day,
            month=month,
            timezone=timezone or TZ_NAME,
            reminder_before=reminder_before,
            tasks=list(tasks),
        )

    def schedule(self, time: str | None = None, **extra: str | None) -> Schedule:
        """The routine's descriptor, optionally at another clock time."""
        return Schedule(
            frequency=self.frequency,
            time=time or self.time,
            days=tuple(self.days),
            day=self.day,
            month=self.month,
            timezone=self.timezone,
            **extra,
        )


def append_routine(routine: Routine) -> None:
    write_md(ROUTINES_DIR, routine, "title")


def get_routine(routine_id: str) -> Routine | None:
    return read_md(ROUTINES_DIR, routine_id, Routine, "title")


def list_routines(user_id: str | None = None) -> list[Routine]:
    routines = read_md_dir(ROUTINES_DIR, Routine, "title")
    if user_id is None:
        return routines
    return [r for r in routines if r.user_id == user_id]


def remove_routine(routine_id: str) -> bool:
    return remove_md(ROUTINES_DIR, routine_id)


def parse_reminder_before(value: str | None) -> timedelta | None:
    if not value:
        return None
    m = _BEFORE.match(value.strip())
    if m is None:
        return None
    return timedelta(**{_BEFORE_UNITS[m.group(2)]: int(m.group(1))})


def effective_time(routine_time: str | None, reminder_time: str | None) -> str | None:
    """Clock time a task reminder fires at.

    An absolute "HH:mm" wins; a relative "-15min" or "-1hour" is subtracted
    from the routine time, wrapping around midnight; anything else falls back
    to the routine time.
    """
    base = parse_hhmm(routine_time)
    if base is None:
        return None
    if not reminder_time:
        return format_hhmm(*base)
    absolute = parse_hhmm(reminder_time)
    if absolute is not None:
        return format_hhmm(*absolute)
    m = _RELATIVE.match(reminder_time.strip())
    if m is None:
        log.warning("Unrecognised reminder time %r, using routine time", reminder_time)
        return format_hhmm(*base)
    amount = int(m.group(1))
    minutes = amount if m.group(2).lower().startswith("min") else amount * 60
    total = (base[0] * 60 + base[1] - minutes) % (24 * 60)
    return format_hhmm(*divmod(total, 60))


def alarm_anchor(
    routine: Routine, reminder_time: str | None, now: datetime
) -> datetime | None:
    """When the routine's alarm should ring, before any rollover.

    ``reminder_before`` moves the whole instant back, date included. Without
    it the alarm rings on the routine's next occurrence date, at an absolute
    ``reminder_time`` when given and at the routine time otherwise.
    """
    routine_next = next_occurrence(routine.schedule(), now)
    if routine_next is None:
        return None
    before = parse_reminder_before(routine.reminder_before)
    if before is not None:
        return routine_next - before
    if routine.reminder_before:
        log.warning("Ignoring malformed reminder_before %r on routine %s", routine.reminder_before, routine.id)
    hour, minute = parse_hhmm(reminder_time) or parse_hhmm(routine.time) or (0, 0)
    return routine_next.replace(hour=hour, minute=minute)


def _clear_task(service: SchedulerService, user_id: str, task_id: str) -> int:
    deleted = delete_reminders(user_id, correlation=f"routine-task:{task_id}")
    for reminder_id in deleted:
        service.cancel_reminder_job(reminder_id)
    return len(deleted)


def _clear_alarm(service: SchedulerService, routine: Routine) -> None:
    for alarm_id in delete_alarms(routine.user_id, correlation=f"routine:{routine.id}"):
        cancel_alarm_notifications(service, alarm_id, routine.user_id)


def _task_reminders(routine: Routine) -> list[Reminder]:
    return [
        r
        for r in list_reminders(routine.user_id)
        if r.correlation and r.correlation.startswith("routine-task:")
        and r.schedule.get("routineId") == routine.id
    ]


def _alarm_reminder_time(routine: Routine) -> str | None:
    """A lone task's reminder time sets the alarm clock; shared alarms use the routine time."""
    if len(routine.tasks) == 1:
        return routine.tasks[0].reminder_time
    return None


def _alarm_rule(routine: Routine, anchor: datetime, now: datetime) -> str | None:
    """The routine's recurrence rule, moved onto the alarm's own dates when a
    lead time puts the alarm on an earlier day than the routine."""
    routine_next = next_occurrence(routine.schedule(), now)
    shift = (routine_next.date() - anchor.date()).days if routine_next else 0
    if shift == 0:
        return recurrence_rule(
            routine.frequency, days=routine.days, day=routine.day, month=routine.month
        )
    return recurrence_rule(
        routine.frequency,
        days=sorted({(d - shift) % 7 for d in routine.days}),
        day=anchor.day,
        month=anchor.month,
    )


def derive_routine_alarm(
    service: SchedulerService,
    routine: Routine,
    reminders: Iterable[Reminder],
    *,
    reminder_time: str | None = None,
    now: datetime | None = None,
) -> Alarm | None:
    """Replace the routine's alarm and point ``reminders`` at the new one.

    Failures are logged and swallowed; the reminders stay scheduled either way.
    """
    try:
        now = now or service.now()
        _clear_alarm(service, routine)
        anchor = alarm_anchor(routine, reminder_time, now)
        if anchor is None:
            log.warning("Routine %s has no next occurrence, no alarm derived", routine.id)
            return None
        rule = _alarm_rule(routine, anchor, now)
        fire_at = roll_forward(anchor, rule, now)
        if fire_at is None:
            log.warning("Alarm for routine %s would be in the past, skipped", routine.id)
            return None

        alarm = Alarm.new(
            routine.user_id,
            f"Routine: {routine.title}",
            fire_at,
            timezone=routine.timezone,
            recurrence_rule=rule,
            correlation=f"routine:{routine.id}",
        )
        append_alarm(alarm)
        schedule_alarm_notification(service, alarm, now=now)
        for reminder in reminders:
            update_reminder(reminder.with_schedule(replace(reminder.descriptor, alarm_id=alarm.id)))
        log.info("Derived alarm %s for routine %s at %s", alarm.id, routine.id, fire_at.isoformat())
        return alarm
    except Exception:
        log.exception("Failed to derive alarm for routine %s", routine.id)
        return None


def schedule_routine_task_reminder(
    service: SchedulerService,
    routine: Routine,
    task: RoutineTask,
    *,
    now: datetime | None = None,
    derive_alarm: bool = True,
) -> Reminder | None:
    """Replace the task's recurring reminder. Returns None when nothing was scheduled."""
    try:
        now = now or service.now()
        correlation = f"routine-task:{task.id}"
        _clear_task(service, routine.user_id, task.id)
        if not routine.time:
            log.info("Routine %s has no time, no reminder for task %s", routine.id, task.id)
            return None

        schedule = routine.schedule(
            effective_time(routine.time, task.reminder_time),
            routine_id=routine.id,
            task_id=task.id,
            reminder_before=routine.reminder_before if parse_reminder_before(routine.reminder_before) else None,
        )
        fire_at = next_occurrence(schedule, now)
        if fire_at is None:
            log.warning("Routine %s has an unusable schedule, task %s not scheduled", routine.id, task.id)
            return None

        reminder = Reminder.new(
            routine.user_id,
            target_type=CUSTOM,
            title=f"Routine: {routine.title}",
            note=f'Time to complete "{task.title}"',
            schedule=schedule,
            reminder_type=ROUTINE_REMINDER,
            correlation=correlation,
            now=now,
        )
        append_reminder(reminder)
        try:
            service.schedule_reminder(reminder.id, routine.user_id, fire_at, ROUTINE_REMINDER, now=now)
        except Exception:
            log.exception("Failed to queue reminder for routine task %s", task.id)
            remove_reminder(reminder.id)
            return None
        log.info("Scheduled routine task %s for %s", task.id, fire_at.isoformat())

        if derive_alarm and derive_routine_alarm(
            service,
            routine,
            _task_reminders(routine),
            reminder_time=_alarm_reminder_time(routine),
            now=now,
        ):
            reminder = get_reminder(reminder.id) or reminder
        return reminder
    except Exception:
        log.exception("Failed to schedule reminder for routine task %s", task.id)
        return None


def schedule_routine(
    service: SchedulerService, routine: Routine, *, now: datetime | None = None
) -> list[Reminder]:
    """(Re)schedule every task of the routine and its alarm."""
    now = now or service.now()
    if not routine.enabled:
        cancel_routine(service, routine)
        log.info("Routine %s is disabled, cleared its reminders", routine.id)
        return []

    reminders = []
    for task in routine.tasks:
        reminder = schedule_routine_task_reminder(service, routine, task, now=now, derive_alarm=False)
        if reminder is not None:
            reminders.append(reminder)
    if not reminders:
        _clear_alarm(service, routine)
        return []
    alarm = derive_routine_alarm(
        service, routine, reminders, reminder_time=_alarm_reminder_time(routine), now=now
    )
    if alarm is None:
        return reminders
    return [get_reminder(r.id) or r for r in reminders]


def cancel_routine_task_reminders(service: SchedulerService, routine: Routine, task_id: str) -> int:
    return _clear_task(service, routine.user_id, task_id)


def cancel_routine(service: SchedulerService, routine: Routine) -> int:
    """Drop every task reminder and the alarm of the routine; returns reminders removed."""
    removed = sum(_clear_task(service, routine.user_id, task.id) for task in routine.tasks)
    _clear_alarm(service, routine)
    return removed
