"""Tests for alarms.py -- recurrence rules, rollover and alarm notifications."""

from dataclasses import replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from routinely.scheduling.alarms import (
    Alarm,
    append_alarm,
    cancel_alarm,
    create_alarm,
    get_alarm,
    list_alarms,
    recurrence_rule,
    roll_forward,
    schedule_alarm_notification,
)
from routinely.scheduling.notifications import list_notifications

UTC = ZoneInfo("UTC")
NY = ZoneInfo("America/New_York")
NOW = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    "frequency, kwargs, expected",
    [
        ("DAILY", {}, "FREQ=DAILY"),
        ("WEEKLY", {"days": [0, 3, 6]}, "FREQ=WEEKLY;BYDAY=SU,WE,SA"),
        ("WEEKLY", {}, "FREQ=WEEKLY"),
        ("MONTHLY", {"day": 15}, "FREQ=MONTHLY;BYMONTHDAY=15"),
        ("MONTHLY", {}, None),
        ("YEARLY", {}, "FREQ=YEARLY"),
        ("YEARLY", {"month": 2, "day": 29}, "FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=29"),
    ],
)
def test_recurrence_rule(frequency, kwargs, expected):
    assert recurrence_rule(frequency, **kwargs) == expected


def test_future_time_is_kept():
    future = NOW + timedelta(minutes=5)

    assert roll_forward(future, None, NOW) == future


def test_daily_rollover_by_whole_days():
    three_days_ago = datetime(2026, 3, 7, 7, 0, tzinfo=UTC)

    assert roll_forward(three_days_ago, "FREQ=DAILY", NOW) == datetime(2026, 3, 11, 7, 0, tzinfo=UTC)


def test_weekly_rollover_keeps_weekday():
    last_monday = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    assert roll_forward(last_monday, "FREQ=WEEKLY;BYDAY=MO", NOW) == datetime(2026, 3, 16, 9, 0, tzinfo=UTC)


def test_monthly_rollover_does_not_drift_after_short_month():
    jan_31 = datetime(2026, 1, 31, 9, 0, tzinfo=UTC)

    assert roll_forward(jan_31, "FREQ=MONTHLY;BYMONTHDAY=31", NOW) == datetime(2026, 3, 31, 9, 0, tzinfo=UTC)


def test_weekly_rollover_visits_every_listed_day():
    last_monday = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    # Tuesday 08:00 -> Wednesday, not next Monday
    assert roll_forward(last_monday, "FREQ=WEEKLY;BYDAY=MO,WE", NOW) == datetime(2026, 3, 11, 9, 0, tzinfo=UTC)


def test_monthly_rollover_returns_to_day_after_february(service):
    alarm = _alarm(time=datetime(2026, 1, 31, 9, 0, tzinfo=UTC), recurrence_rule="FREQ=MONTHLY;BYMONTHDAY=31")
    append_alarm(alarm)

    schedule_alarm_notification(service, alarm, now=datetime(2026, 2, 1, tzinfo=UTC))
    assert get_alarm(alarm.id).fire_time == datetime(2026, 2, 28, 9, 0, tzinfo=UTC)

    schedule_alarm_notification(service, get_alarm(alarm.id), now=datetime(2026, 3, 1, tzinfo=UTC))
    assert get_alarm(alarm.id).fire_time == datetime(2026, 3, 31, 9, 0, tzinfo=UTC)


def test_yearly_leap_day_comes_back():
    clamped = datetime(2027, 2, 28, 9, 0, tzinfo=UTC)
    rule = "FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=29"

    assert roll_forward(clamped, rule, datetime(2027, 3, 1, tzinfo=UTC)) == datetime(2028, 2, 29, 9, 0, tzinfo=UTC)


def test_yearly_rollover():
    last_year = datetime(2025, 2, 1, 9, 0, tzinfo=UTC)

    assert roll_forward(last_year, "FREQ=YEARLY", NOW) == datetime(2027, 2, 1, 9, 0, tzinfo=UTC)


def test_rollover_keeps_wall_clock_across_dst():
    before_dst = datetime(2026, 3, 6, 9, 0, tzinfo=NY)

    rolled = roll_forward(before_dst, "FREQ=DAILY", NOW)

    assert rolled == datetime(2026, 3, 10, 9, 0, tzinfo=NY)
    assert rolled.utcoffset() == timedelta(hours=-4)


def test_one_shot_skew_tolerance():
    assert roll_forward(NOW - timedelta(milliseconds=500), None, NOW) == NOW - timedelta(milliseconds=500)
    assert roll_forward(NOW - timedelta(seconds=5), None, NOW) is None


def _alarm(**kwargs):
    defaults = dict(user_id="u1", title="Wake up", time=datetime(2026, 3, 10, 9, 0, tzinfo=UTC), timezone="UTC")
    defaults.update(kwargs)
    return Alarm.new(defaults.pop("user_id"), defaults.pop("title"), defaults.pop("time"), **defaults)


def test_alarm_defaults():
    alarm = _alarm()

    assert (alarm.snooze_minutes, alarm.max_snoozes, alarm.smart_wake_window) == (5, 3, 5)
    assert alarm.enabled


def test_schedule_future_alarm(service, queue):
    alarm = _alarm()
    append_alarm(alarm)

    notification = schedule_alarm_notification(service, alarm)

    assert notification.title == "Alarm: Wake up"
    assert notification.correlation == f"alarm:{alarm.id}"
    [job] = queue.of("notifications")
    assert job["delay_ms"] == 60 * 60 * 1000
    assert job["payload"]["type"] == "ALARM_TRIGGER"
    assert job["payload"]["payload"]["alarmId"] == alarm.id


def test_past_recurring_alarm_rolled_and_stored(service, queue):
    alarm = _alarm(time=datetime(2026, 3, 9, 7, 0, tzinfo=UTC), recurrence_rule="FREQ=DAILY")
    append_alarm(alarm)

    notification = schedule_alarm_notification(service, alarm)

    assert datetime.fromisoformat(notification.scheduled_for) == datetime(2026, 3, 11, 7, 0, tzinfo=UTC)
    assert get_alarm(alarm.id).fire_time == datetime(2026, 3, 11, 7, 0, tzinfo=UTC)


def test_expired_one_shot_alarm_not_scheduled(service, queue):
    alarm = _alarm(time=NOW - timedelta(hours=1))
    append_alarm(alarm)

    assert schedule_alarm_notification(service, alarm) is None
    assert queue.jobs == {}
    assert list_notifications() == []


def test_alarm_within_skew_sent_immediately(service, queue):
    alarm = _alarm(time=NOW - timedelta(milliseconds=200))

    assert schedule_alarm_notification(service, alarm) is not None
    assert [j["delay_ms"] for j in queue.of("notifications")] == [1000]


def test_rescheduling_replaces_pending_notification(service, queue):
    alarm = _alarm()
    schedule_alarm_notification(service, alarm)
    moved = replace(alarm, time=datetime(2026, 3, 10, 10, 0, tzinfo=UTC).isoformat())

    schedule_alarm_notification(service, moved)

    [notification] = list_notifications()
    assert datetime.fromisoformat(notification.scheduled_for).hour == 10
    assert len(queue.of("notifications")) == 1


def test_disabling_alarm_drops_its_notification(service, queue):
    alarm = _alarm()
    schedule_alarm_notification(service, alarm)

    assert schedule_alarm_notification(service, replace(alarm, enabled=False)) is None
    assert list_notifications() == []
    assert queue.jobs == {}


def test_invalid_timezone_not_scheduled(service, queue):
    assert schedule_alarm_notification(service, _alarm(timezone="Nowhere/Land")) is None
    assert queue.jobs == {}


def test_queue_failure_removes_notification(service, queue):
    queue.fail_enqueue = True

    assert schedule_alarm_notification(service, _alarm()) is None
    assert list_notifications() == []


def test_create_and_cancel_alarm(service, queue):
    alarm = create_alarm(
        service, "u1", "Stand up", datetime(2026, 3, 10, 12, 0, tzinfo=UTC), timezone="UTC"
    )

    assert [a.id for a in list_alarms("u1")] == [alarm.id]
    assert len(list_notifications("u1")) == 1

    assert cancel_alarm(service, alarm.id, "u1") is True
    assert list_alarms() == []
    assert list_notifications() == []
    assert queue.jobs == {}
    assert cancel_alarm(service, alarm.id, "u1") is False
