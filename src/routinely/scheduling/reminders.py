"""Reminder data model and markdown persistence.

A reminder is one persisted schedule plus the message it delivers. One-shot
reminders carry ``{"at": ...}`` and expire after firing; recurring reminders
carry a frequency descriptor and are re-enqueued after every firing.
Domain schedulers always delete the reminders of a correlation before
creating new ones, so a target never accumulates stale reminders.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any
from uuid import uuid4

from routinely.scheduling.occurrence import Schedule
from routinely.storage import DATA_DIR, TZ, read_md, read_md_dir, remove_md, write_md

REMINDERS_DIR = DATA_DIR / "reminders"

TASK = "TASK"
GOAL = "GOAL"
CUSTOM = "CUSTOM"
TARGET_TYPES = (TASK, GOAL, CUSTOM)

# Job types; also the keys of the per-category notification preferences
TASK_REMINDER = "TASK_REMINDER"
GOAL_REMINDER = "GOAL_REMINDER"
DUE_DATE_REMINDER = "DUE_DATE_REMINDER"
ROUTINE_REMINDER = "ROUTINE_REMINDER"


@dataclass(frozen=True, slots=True)
class Reminder:
    id: str
    user_id: str
    target_type: str
    title: str
    note: str
    schedule: dict[str, Any]
    target_id: str | None = None
    trigger_type: str = "TIME"
    reminder_type: str = TASK_REMINDER  # job type and preference category
    correlation: str | None = None
    created_at: str = ""  # ISO datetime

    def __post_init__(self) -> None:
        if self.target_type not in TARGET_TYPES:
            raise ValueError(f"Invalid target type: {self.target_type!r}")

    @property
    def descriptor(self) -> Schedule:
        return Schedule.from_dict(self.schedule)

    @staticmethod
    def new(
        user_id: str,
        *,
        target_type: str,
        title: str,
        note: str,
        schedule: Schedule,
        target_id: str | None = None,
        reminder_type: str = TASK_REMINDER,
        correlation: str | None = None,
        now: datetime | None = None,
    ) -> "Reminder":
        return Reminder(
            id=uuid4().hex[:12],
            user_id=user_id,
            target_type=target_type,
            title=title,
            note=note,
            schedule=schedule.to_dict(),
            target_id=target_id,
            reminder_type=reminder_type,
            correlation=correlation,
            created_at=(now or datetime.now(TZ)).isoformat(),
        )

    def with_schedule(self, schedule: Schedule) -> "Reminder":
        return replace(self, schedule=schedule.to_dict())


def append_reminder(reminder: Reminder) -> None:
    write_md(REMINDERS_DIR, reminder, "note")


update_reminder = append_reminder


def get_reminder(reminder_id: str) -> Reminder | None:
    return read_md(REMINDERS_DIR, reminder_id, Reminder, "note")


def list_reminders(user_id: str | None = None) -> list[Reminder]:
    reminders = read_md_dir(REMINDERS_DIR, Reminder, "note")
    if user_id is None:
        return reminders
    return [r for r in reminders if r.user_id == user_id]


def find_reminders(
    user_id: str,
    *,
    target_type: str | None = None,
    target_id: str | None = None,
    correlation: str | None = None,
) -> list[Reminder]:
    """Reminders of a user matching every filter that is given."""
    return [
        r
        for r in list_reminders(user_id)
        if (target_type is None or r.target_type == target_type)
        and (target_id is None or r.target_id == target_id)
        and (correlation is None or r.correlation == correlation)
    ]


def remove_reminder(reminder_id: str) -> bool:
    return remove_md(REMINDERS_DIR, reminder_id)


def delete_reminders(
    user_id: str,
    *,
    target_type: str | None = None,
    target_id: str | None = None,
    correlation: str | None = None,
) -> list[str]:
    """Delete every match of ``find_reminders``; returns the deleted ids."""
    if target_type is None and target_id is None and correlation is None:
        raise ValueError("Refusing to delete every reminder of a user without a filter")
    matches = find_reminders(
        user_id, target_type=target_type, target_id=target_id, correlation=correlation
    )
    return [r.id for r in matches if remove_reminder(r.id)]
