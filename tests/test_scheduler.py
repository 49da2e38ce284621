"""Tests for scheduler.py -- store-to-queue sync and service wiring."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from routinely.scheduling.alarms import Alarm, append_alarm, list_alarms
from routinely.scheduling.notifications import (
    ALARM_TRIGGER,
    SENT,
    TASK_CREATED,
    Notification,
    append_notification,
    mark_status,
)
from routinely.scheduling.occurrence import Schedule
from routinely.scheduling.queue import DetachedQueue
from routinely.scheduling.reminders import CUSTOM, GOAL_REMINDER, TASK, Reminder, append_reminder
from routinely.scheduling.scheduler import lane_config, offline_service, sync_jobs

UTC = ZoneInfo("UTC")
NOW = datetime(2026, 3, 10, 8, 0, tzinfo=UTC)


def _reminder(schedule, **kwargs):
    reminder = Reminder.new(
        "u1", target_type=kwargs.pop("target_type", TASK), title="t", note="n", schedule=schedule, **kwargs
    )
    append_reminder(reminder)
    return reminder


def test_future_one_shot_reminder_registered(service, queue):
    reminder = _reminder(Schedule.one_shot(NOW + timedelta(hours=2)), reminder_type=GOAL_REMINDER)

    sync_jobs(service)

    job = queue.jobs[f"reminders:{reminder.id}"]
    assert job["delay_ms"] == 2 * 60 * 60 * 1000
    assert job["payload"]["type"] == GOAL_REMINDER


def test_recurring_reminder_registered_for_next_occurrence(service, queue):
    reminder = _reminder(
        Schedule(frequency="DAILY", time="07:00", timezone="UTC"), target_type=CUSTOM
    )

    sync_jobs(service)

    assert queue.jobs[f"reminders:{reminder.id}"]["delay_ms"] == 23 * 60 * 60 * 1000


def test_expired_one_shot_left_alone(service, queue):
    _reminder(Schedule.one_shot(NOW - timedelta(hours=1)))

    sync_jobs(service)

    assert queue.jobs == {}


def test_existing_job_not_touched(service, queue):
    reminder = _reminder(Schedule.one_shot(NOW + timedelta(hours=2)))
    service.schedule_reminder(reminder.id, "u1", NOW + timedelta(hours=1), "TASK_REMINDER")

    sync_jobs(service)

    assert queue.jobs[f"reminders:{reminder.id}"]["delay_ms"] == 60 * 60 * 1000


def test_orphan_jobs_dropped(service, queue):
    service.schedule_reminder("ghost", "u1", NOW + timedelta(hours=1), "TASK_REMINDER")
    service.send_now("ghost", "u1", TASK_CREATED, {})

    sync_jobs(service)

    assert queue.jobs == {}
    assert {"reminders:ghost", "notifications:ghost"} <= set(queue.cancelled)


def _notification(notification_type=TASK_CREATED, scheduled_for=NOW):
    notification = Notification.new(
        "u1", notification_type, title="t", body="b", scheduled_for=scheduled_for
    )
    append_notification(notification)
    return notification


def test_pending_notifications_registered(service, queue):
    later = _notification(scheduled_for=NOW + timedelta(minutes=10))
    missed = _notification(scheduled_for=NOW - timedelta(minutes=1))
    done = mark_status(_notification(), SENT)

    sync_jobs(service)

    assert queue.jobs[f"notifications:{later.id}"]["delay_ms"] == 10 * 60 * 1000
    assert queue.jobs[f"notifications:{missed.id}"]["delay_ms"] == 1000
    assert f"notifications:{done.id}" not in queue.jobs


def test_stale_alarm_notification_not_resent(service, queue):
    _notification(ALARM_TRIGGER, scheduled_for=NOW - timedelta(hours=1))

    sync_jobs(service)

    assert queue.jobs == {}


def test_recurring_alarm_gets_next_notification(service, queue):
    alarm = Alarm.new(
        "u1", "Gym", NOW - timedelta(hours=1), timezone="UTC", recurrence_rule="FREQ=DAILY"
    )
    append_alarm(alarm)

    sync_jobs(service)

    [job] = queue.of("notifications")
    assert job["delay_ms"] == 23 * 60 * 60 * 1000
    assert list_alarms()[0].fire_time == NOW + timedelta(hours=23)

    sync_jobs(service)
    assert len(queue.of("notifications")) == 1


def test_past_one_shot_alarm_skipped(service, queue):
    append_alarm(Alarm.new("u1", "Once", NOW - timedelta(hours=1), timezone="UTC"))

    sync_jobs(service)

    assert queue.jobs == {}


def test_lane_config_from_settings():
    lanes = lane_config()

    assert lanes["reminders"].concurrency == 10
    assert lanes["notifications"].concurrency == 20
    assert lanes["reminders"].attempts == 3
    assert lanes["reminders"].backoff_ms == 2000


def test_offline_service_stores_without_running(data_dir):
    service = offline_service()

    assert isinstance(service.queue, DetachedQueue)
    reminder = _reminder(Schedule.one_shot(datetime.now(UTC) + timedelta(hours=1)))
    assert service.schedule_reminder(reminder.id, "u1", datetime.now(UTC) + timedelta(hours=1), "TASK_REMINDER")
