"""Alarm data model, markdown persistence and alarm push scheduling.

An alarm stores its next absolute fire time plus an optional recurrence rule
(``FREQ=DAILY``, ``FREQ=WEEKLY;BYDAY=MO,WE``, ``FREQ=MONTHLY;BYMONTHDAY=15``,
``FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=29``). A past fire time moves forward until
it is in the future: by whole periods, onto a BYDAY weekday, and back onto
the BYMONTHDAY day whenever the month is long enough. Alarms without a rule
tolerate one second of clock skew and are refused beyond that.

Each alarm has at most one pending ALARM_TRIGGER notification, correlated as
``alarm:<id>``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from routinely.config import TZ_NAME
from routinely.scheduling.notifications import (
    ALARM_TRIGGER,
    PENDING,
    Notification,
    append_notification,
    delete_notifications,
    list_notifications,
    remove_notification,
)
from routinely.scheduling.occurrence import DAILY, MONTHLY, WEEKLY, YEARLY, shift_months
from routinely.scheduling.service import SchedulerService, notification_job_id
from routinely.storage import DATA_DIR, read_md, read_md_dir, remove_md, write_md

ALARMS_DIR = DATA_DIR / "alarms"

SKEW = timedelta(seconds=1)
_DAY_CODES = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Alarm:
    id: str
    user_id: str
    title: str
    time: str  # ISO datetime of the next firing
    timezone: str = "UTC"
    recurrence_rule: str | None = None
    enabled: bool = True
    snooze_minutes: int = 5
    max_snoozes: int = 3
    smart_wake_window: int = 5
    correlation: str | None = None

    @property
    def fire_time(self) -> datetime:
        return datetime.fromisoformat(self.time)

    @staticmethod
    def new(
        user_id: str,
        title: str,
        time: datetime,
        *,
        timezone: str | None = None,
        recurrence_rule: str | None = None,
        enabled: bool = True,
        correlation: str | None = None,
    ) -> "Alarm":
        return Alarm(
            id=uuid4().hex[:12],
            user_id=user_id,
            title=title,
            time=time.isoformat(),
            timezone=timezone or TZ_NAME,
            recurrence_rule=recurrence_rule,
            enabled=enabled,
            correlation=correlation,
        )


def append_alarm(alarm: Alarm) -> None:
    write_md(ALARMS_DIR, alarm, "title")


def get_alarm(alarm_id: str) -> Alarm | None:
    return read_md(ALARMS_DIR, alarm_id, Alarm, "title")


def list_alarms(user_id: str | None = None) -> list[Alarm]:
    alarms = read_md_dir(ALARMS_DIR, Alarm, "title")
    if user_id is None:
        return alarms
    return [a for a in alarms if a.user_id == user_id]


def remove_alarm(alarm_id: str) -> bool:
    return remove_md(ALARMS_DIR, alarm_id)


def delete_alarms(user_id: str, *, correlation: str) -> list[str]:
    matches = [a for a in list_alarms(user_id) if a.correlation == correlation]
    return [a.id for a in matches if remove_alarm(a.id)]


def recurrence_rule(
    frequency: str,
    *,
    days: Sequence[int] = (),
    day: int | None = None,
    month: int | None = None,
) -> str | None:
    if frequency == DAILY:
        return "FREQ=DAILY"
    if frequency == WEEKLY:
        if not days:
            return "FREQ=WEEKLY"
        return "FREQ=WEEKLY;BYDAY=" + ",".join(_DAY_CODES[d] for d in days)
    if frequency == MONTHLY and day:
        return f"FREQ=MONTHLY;BYMONTHDAY={day}"
    if frequency == YEARLY:
        if month and day:
            return f"FREQ=YEARLY;BYMONTH={month};BYMONTHDAY={day}"
        return "FREQ=YEARLY"
    return None


def _rule_parts(rule: str | None) -> dict[str, str]:
    parts = {}
    for part in (rule or "").split(";"):
        key, _, value = part.partition("=")
        if key.strip():
            parts[key.strip().upper()] = value.strip().upper()
    return parts


def _weekdays(byday: str | None) -> set[int]:
    """BYDAY codes as ``datetime.weekday()`` numbers (Monday=0)."""
    codes = {code.strip() for code in (byday or "").split(",")}
    return {(i - 1) % 7 for i, code in enumerate(_DAY_CODES) if code in codes}


def _month_day(value: str | None) -> int | None:
    if value and value.isdigit() and 1 <= int(value) <= 31:
        return int(value)
    return None


def roll_forward(time: datetime, rule: str | None, now: datetime) -> datetime | None:
    """First fire time after ``now``, or None when the alarm cannot fire any more.

    Wall-clock time is kept across DST changes, so ``time`` should carry the
    alarm's own timezone. Weekly rules with BYDAY land on the next listed
    weekday; BYMONTHDAY is re-applied every period, so a day clamped in a
    short month does not stick. A non-recurring time up to SKEW in the past is
    returned unchanged.
    """
    if time > now:
        return time
    parts = _rule_parts(rule)
    freq = parts.get("FREQ")
    if freq in (DAILY, WEEKLY):
        weekdays = _weekdays(parts.get("BYDAY")) if freq == WEEKLY else set()
        step = timedelta(days=1 if freq == DAILY or weekdays else 7)
        candidate = time
        while candidate <= now or (weekdays and candidate.weekday() not in weekdays):
            candidate += step
        return candidate
    if freq in (MONTHLY, YEARLY):
        months = 1 if freq == MONTHLY else 12
        day = _month_day(parts.get("BYMONTHDAY"))
        periods = 1
        candidate = shift_months(time, months, day=day)
        while candidate <= now:
            periods += 1
            candidate = shift_months(time, months * periods, day=day)
        return candidate
    if time >= now - SKEW:
        return time
    return None


def cancel_alarm_notifications(service: SchedulerService, alarm_id: str, user_id: str) -> int:
    deleted = delete_notifications(user_id, correlation=f"alarm:{alarm_id}")
    for notification_id in deleted:
        service.cancel_notification_job(notification_id)
    if deleted:
        log.info("Cancelled %d scheduled notifications for alarm %s", len(deleted), alarm_id)
    return len(deleted)


def schedule_alarm_notification(
    service: SchedulerService, alarm: Alarm, *, now: datetime | None = None
) -> Notification | None:
    """Replace the alarm's pending notification with one at its next fire time.

    A past fire time is rolled forward (and the stored alarm updated);
    disabled or expired alarms just lose their pending notification.
    """
    now = now or service.now()
    if not alarm.enabled:
        log.info("Alarm %s is disabled, not scheduling", alarm.id)
        cancel_alarm_notifications(service, alarm.id, alarm.user_id)
        return None

    try:
        fire_time = alarm.fire_time.astimezone(ZoneInfo(alarm.timezone))
    except (ValueError, ZoneInfoNotFoundError):
        log.warning("Alarm %s has an invalid time or timezone, not scheduling", alarm.id)
        cancel_alarm_notifications(service, alarm.id, alarm.user_id)
        return None

    fire_at = roll_forward(fire_time, alarm.recurrence_rule, now)
    if fire_at is None:
        log.warning("Alarm %s time %s is too far in the past, not scheduling", alarm.id, alarm.time)
        cancel_alarm_notifications(service, alarm.id, alarm.user_id)
        return None
    if fire_at != fire_time:
        log.info("Alarm %s rolled forward to %s", alarm.id, fire_at.isoformat())
        append_alarm(replace(alarm, time=fire_at.isoformat()))

    cancel_alarm_notifications(service, alarm.id, alarm.user_id)
    notification = Notification.new(
        alarm.user_id,
        ALARM_TRIGGER,
        title=f"Alarm: {alarm.title}",
        body=f'It\'s time for "{alarm.title}".',
        scheduled_for=fire_at,
        data={"alarmId": alarm.id},
        correlation=f"alarm:{alarm.id}",
    )
    append_notification(notification)
    try:
        if fire_at > now:
            service.schedule_notification(
                notification.id,
                alarm.user_id,
                fire_at,
                ALARM_TRIGGER,
                notification.payload(),
                now=now,
            )
        else:
            service.send_now(notification.id, alarm.user_id, ALARM_TRIGGER, notification.payload())
    except Exception:
        log.exception("Failed to schedule push notification for alarm %s", alarm.id)
        remove_notification(notification.id)
        return None
    log.info("Scheduled alarm %s for %s", alarm.id, fire_at.isoformat())
    return notification


def create_alarm(
    service: SchedulerService,
    user_id: str,
    title: str,
    time: datetime,
    *,
    timezone: str | None = None,
    recurrence_rule: str | None = None,
    enabled: bool = True,
    correlation: str | None = None,
    now: datetime | None = None,
) -> Alarm:
    alarm = Alarm.new(
        user_id,
        title,
        time,
        timezone=timezone,
        recurrence_rule=recurrence_rule,
        enabled=enabled,
        correlation=correlation,
    )
    append_alarm(alarm)
    schedule_alarm_notification(service, alarm, now=now)
    return get_alarm(alarm.id) or alarm


def cancel_alarm(service: SchedulerService, alarm_id: str, user_id: str) -> bool:
    """Idempotent: cancelling a missing alarm only clears leftover notifications."""
    cancel_alarm_notifications(service, alarm_id, user_id)
    return remove_alarm(alarm_id)


def has_pending_notification(service: SchedulerService, alarm: Alarm) -> bool:
    correlation = f"alarm:{alarm.id}"
    return any(
        n.status == PENDING and service.queue.has_job(notification_job_id(n.id))
        for n in list_notifications(alarm.user_id)
        if n.correlation == correlation
    )
