"""Tests for reminders.py -- Reminder dataclass and its store."""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from routinely.scheduling.occurrence import Schedule
from routinely.scheduling.reminders import (
    CUSTOM,
    GOAL,
    TASK,
    Reminder,
    append_reminder,
    delete_reminders,
    find_reminders,
    get_reminder,
    list_reminders,
    remove_reminder,
)

NOW = datetime(2026, 3, 10, 8, 0, tzinfo=ZoneInfo("UTC"))


def _one_shot(user_id="u1", **kwargs):
    defaults = dict(target_type=TASK, title="t", note="n", schedule=Schedule.one_shot(NOW), now=NOW)
    defaults.update(kwargs)
    return Reminder.new(user_id, **defaults)


def test_reminder_new():
    reminder = _one_shot(target_id="task-1", correlation="task:task-1")

    assert len(reminder.id) == 12
    assert reminder.trigger_type == "TIME"
    assert reminder.schedule == {"at": NOW.isoformat(), "timezone": "UTC"}
    assert reminder.created_at == NOW.isoformat()


def test_invalid_target_type_rejected():
    with pytest.raises(ValueError, match="Invalid target type"):
        _one_shot(target_type="PROJECT")


def test_append_get_and_list(data_dir):
    r1 = _one_shot(title="first")
    r2 = _one_shot("u2", title="second")

    append_reminder(r1)
    append_reminder(r2)

    assert get_reminder(r1.id) == r1
    assert {r.id for r in list_reminders()} == {r1.id, r2.id}
    assert [r.id for r in list_reminders("u2")] == [r2.id]


def test_recurring_descriptor_survives_store(data_dir):
    schedule = Schedule(frequency="WEEKLY", time="08:45", days=(1, 3), timezone="UTC", routine_id="r1")
    reminder = _one_shot(target_type=CUSTOM, schedule=schedule)

    append_reminder(reminder)

    assert get_reminder(reminder.id).descriptor == schedule


def test_find_matches_every_given_filter(data_dir):
    task = _one_shot(target_id="t1", correlation="task:t1")
    other_task = _one_shot(target_id="t2", correlation="task:t2")
    goal = _one_shot(target_type=GOAL, correlation="goal:g1")
    for r in (task, other_task, goal):
        append_reminder(r)

    assert [r.id for r in find_reminders("u1", target_type=TASK, target_id="t1")] == [task.id]
    assert [r.id for r in find_reminders("u1", correlation="goal:g1")] == [goal.id]
    assert find_reminders("u2", correlation="goal:g1") == []


def test_delete_reminders_only_touches_matches(data_dir):
    keep = _one_shot(target_id="t2")
    gone = _one_shot(target_id="t1")
    append_reminder(keep)
    append_reminder(gone)

    deleted = delete_reminders("u1", target_type=TASK, target_id="t1")

    assert deleted == [gone.id]
    assert [r.id for r in list_reminders()] == [keep.id]


def test_delete_reminders_requires_a_filter(data_dir):
    with pytest.raises(ValueError):
        delete_reminders("u1")


def test_remove_reminder(data_dir):
    r = _one_shot()
    append_reminder(r)

    assert remove_reminder(r.id) is True
    assert remove_reminder(r.id) is False
    assert list_reminders() == []
