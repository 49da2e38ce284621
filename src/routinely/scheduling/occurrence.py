"""Schedule descriptors and the next-occurrence calculator.

A descriptor is either one-shot (``{"at": ISO}``) or recurring
(``{"frequency": ..., "time": "HH:mm", "timezone": ...}`` plus ``days``, ``day``
or ``month`` depending on the frequency). The mapping form returned by
``Schedule.to_dict`` is what gets persisted on a reminder and must round-trip
unchanged.

``next_occurrence`` never raises on bad input: a descriptor it cannot
interpret yields None, which callers treat as "do not schedule".
"""

from __future__ import annotations

import calendar
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jsonschema import Draft7Validator

log = logging.getLogger(__name__)

DAILY = "DAILY"
WEEKLY = "WEEKLY"
MONTHLY = "MONTHLY"
YEARLY = "YEARLY"
FREQUENCIES = (DAILY, WEEKLY, MONTHLY, YEARLY)

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

# snake_case attribute -> stored camelCase key
_KEYS = {
    "routine_id": "routineId",
    "task_id": "taskId",
    "goal_id": "goalId",
    "milestone_id": "milestoneId",
    "alarm_id": "alarmId",
    "reminder_before": "reminderBefore",
}

_NULLABLE_STR = {"type": ["string", "null"]}

SCHEDULE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "at": {"type": "string", "minLength": 1},
        "frequency": {"enum": list(FREQUENCIES)},
        "time": {"type": "string", "pattern": _HHMM.pattern},
        "days": {
            "type": "array",
            "items": {"type": "integer", "minimum": 0, "maximum": 6},
        },
        "day": {"type": "integer", "minimum": 1, "maximum": 31},
        "month": {"type": "integer", "minimum": 1, "maximum": 12},
        "timezone": {"type": "string", "minLength": 1},
        "routineId": _NULLABLE_STR,
        "taskId": _NULLABLE_STR,
        "goalId": _NULLABLE_STR,
        "milestoneId": _NULLABLE_STR,
        "alarmId": _NULLABLE_STR,
        "reminderBefore": {"type": ["string", "null"], "pattern": r"^\d+[hdw]$"},
    },
    "oneOf": [
        {"required": ["at"], "not": {"required": ["frequency"]}},
        {"required": ["frequency", "timezone"], "not": {"required": ["at"]}},
    ],
}

_VALIDATOR = Draft7Validator(SCHEDULE_SCHEMA)


def validate_schedule(data: Mapping[str, Any]) -> list[str]:
    """Validate a stored descriptor. Returns list of error messages."""
    return [err.message for err in _VALIDATOR.iter_errors(dict(data))]


@dataclass(frozen=True, slots=True)
class Schedule:
    at: str | None = None  # ISO datetime, one-shot only
    frequency: str | None = None
    time: str | None = None  # "HH:mm"
    days: tuple[int, ...] = ()  # 0=Sunday
    day: int | None = None
    month: int | None = None
    timezone: str = "UTC"
    # correlation keys, never scheduling inputs
    routine_id: str | None = None
    task_id: str | None = None
    goal_id: str | None = None
    milestone_id: str | None = None
    alarm_id: str | None = None
    reminder_before: str | None = None

    @property
    def recurring(self) -> bool:
        return self.at is None and self.frequency is not None

    @staticmethod
    def one_shot(at: datetime, **extra: Any) -> Schedule:
        tz = at.tzinfo.key if isinstance(at.tzinfo, ZoneInfo) else "UTC"
        return Schedule(at=at.isoformat(), timezone=tz, **extra)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name == "days":
                if self.frequency != WEEKLY:
                    continue
                value = list(value)
            data[_KEYS.get(f.name, f.name)] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Schedule:
        by_key = {v: k for k, v in _KEYS.items()}
        names = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = by_key.get(key, key)
            if name not in names:
                continue
            if name == "days":
                value = tuple(value or ())
            kwargs[name] = value
        return cls(**kwargs)


def parse_hhmm(value: str | None) -> tuple[int, int] | None:
    if not value:
        return None
    m = _HHMM.match(value.strip())
    if m is None:
        return None
    return int(m.group(1)), int(m.group(2))


def format_hhmm(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def sunday_weekday(dt: datetime | date) -> int:
    """Weekday with 0=Sunday, as stored in ``days``."""
    return (dt.weekday() + 1) % 7


def clamped_date(year: int, month: int, day: int) -> date:
    """Day-of-month clamped to the month's last day (day=31 in April -> April 30)."""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def shift_months(dt: datetime, months: int, *, day: int | None = None) -> datetime:
    """Move ``dt`` by whole months keeping wall-clock time; day is clamped."""
    index = dt.year * 12 + (dt.month - 1) + months
    target = clamped_date(index // 12, index % 12 + 1, day or dt.day)
    return dt.replace(year=target.year, month=target.month, day=target.day)


def _at(d: date, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    return datetime(d.year, d.month, d.day, hour, minute, tzinfo=tz)


def _after(candidate: datetime, now: datetime) -> bool:
    return candidate.timestamp() > now.timestamp()


def next_occurrence(schedule: Schedule | Mapping[str, Any], now: datetime) -> datetime | None:
    """Next fire time strictly after ``now``, in the descriptor's timezone.

    One-shot descriptors always return None; so does anything malformed.
    A naive ``now`` is read as wall-clock time in the descriptor's timezone.
    """
    if not isinstance(schedule, Schedule):
        errors = validate_schedule(schedule)
        if errors:
            log.debug("Unusable schedule %s: %s", dict(schedule), "; ".join(errors))
            return None
        schedule = Schedule.from_dict(schedule)

    if not schedule.recurring:
        return None
    hhmm = parse_hhmm(schedule.time)
    if hhmm is None:
        log.debug("Schedule without a valid time: %s", schedule)
        return None
    try:
        tz = ZoneInfo(schedule.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        log.warning("Unknown timezone %r in schedule", schedule.timezone)
        return None

    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    local_now = now.astimezone(tz)
    today = local_now.date()
    hour, minute = hhmm

    if schedule.frequency == DAILY:
        candidate = _at(today, hour, minute, tz)
        if not _after(candidate, now):
            candidate = _at(today + timedelta(days=1), hour, minute, tz)
        return candidate

    if schedule.frequency == WEEKLY:
        days = set(schedule.days) or {sunday_weekday(today)}
        if not days <= set(range(7)):
            return None
        candidates = []
        for weekday in days:
            delta = (weekday - sunday_weekday(today)) % 7
            candidate = _at(today + timedelta(days=delta), hour, minute, tz)
            if not _after(candidate, now):
                candidate = _at(today + timedelta(days=delta + 7), hour, minute, tz)
            candidates.append(candidate)
        return min(candidates, key=lambda c: c.timestamp())

    if schedule.frequency == MONTHLY:
        if not schedule.day or not 1 <= schedule.day <= 31:
            return None
        candidate = _at(clamped_date(today.year, today.month, schedule.day), hour, minute, tz)
        if not _after(candidate, now):
            candidate = shift_months(candidate, 1, day=schedule.day)
        return candidate

    if schedule.frequency == YEARLY:
        if not schedule.month or not 1 <= schedule.month <= 12:
            return None
        if not schedule.day or not 1 <= schedule.day <= 31:
            return None
        candidate = _at(clamped_date(today.year, schedule.month, schedule.day), hour, minute, tz)
        if not _after(candidate, now):
            candidate = _at(
                clamped_date(today.year + 1, schedule.month, schedule.day), hour, minute, tz
            )
        return candidate

    log.warning("Unsupported schedule frequency %r", schedule.frequency)
    return None
