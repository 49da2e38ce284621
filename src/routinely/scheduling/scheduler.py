"""Wires the job queue, firing handlers and periodic jobs onto one AsyncIOScheduler.

The store is the source of truth. Every ``SYNC_SECONDS`` the sync job
registers queue jobs for stored reminders and notifications that should fire
later but have none (after a restart, or records written by the CLI), and
drops queued jobs whose record is gone. Recurring alarms get their next
notification the same way once the previous one has fired.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from routinely import config
from routinely.preferences import load_prefs
from routinely.push import NullPushSender, PushSender
from routinely.scheduling.alarms import (
    has_pending_notification,
    list_alarms,
    schedule_alarm_notification,
)
from routinely.scheduling.deadlines import Milestone, list_milestones, notify_overdue_milestones
from routinely.scheduling.firing import handle_notification_job, handle_reminder_job
from routinely.scheduling.notifications import ALARM_TRIGGER, PENDING, list_notifications
from routinely.scheduling.occurrence import next_occurrence
from routinely.scheduling.queue import (
    NOTIFICATIONS,
    REMINDERS,
    DelayedJobQueue,
    DetachedQueue,
    LaneConfig,
)
from routinely.scheduling.reminders import list_reminders
from routinely.scheduling.service import (
    SchedulerService,
    notification_job_id,
    reminder_job_id,
)

log = logging.getLogger(__name__)

OVERDUE_CHECK_HOUR = 9


def lane_config() -> dict[str, LaneConfig]:
    return {
        REMINDERS: LaneConfig(
            config.REMINDER_CONCURRENCY, config.JOB_ATTEMPTS, config.JOB_BACKOFF_MS
        ),
        NOTIFICATIONS: LaneConfig(
            config.NOTIFICATION_CONCURRENCY, config.JOB_ATTEMPTS, config.JOB_BACKOFF_MS
        ),
    }


def build_service(
    scheduler: AsyncIOScheduler,
    push: PushSender,
    *,
    clock: Callable[[], datetime] | None = None,
) -> SchedulerService:
    """Service over ``scheduler`` with both firing handlers registered."""
    queue = DelayedJobQueue(scheduler, lane_config())
    service = SchedulerService(queue, push, prefs=load_prefs, clock=clock)

    async def consume_reminder(payload: dict[str, Any]) -> None:
        await handle_reminder_job(service, payload)

    async def consume_notification(payload: dict[str, Any]) -> None:
        await handle_notification_job(service, payload)

    queue.register(REMINDERS, consume_reminder)
    queue.register(NOTIFICATIONS, consume_notification)
    return service


def offline_service() -> SchedulerService:
    """Service for CLI processes: records land in the store and the worker's
    sync loop queues their jobs."""
    return SchedulerService(DetachedQueue(lane_config()), NullPushSender(), prefs=load_prefs)


def _fire_time(schedule: dict[str, Any], now: datetime) -> datetime | None:
    at = schedule.get("at")
    if at is None:
        return next_occurrence(schedule, now)
    try:
        fire_at = datetime.fromisoformat(at)
    except (TypeError, ValueError):
        return None
    return fire_at if fire_at > now else None


def sync_jobs(service: SchedulerService, now: datetime | None = None) -> None:
    """Make the queue match the store. Safe to run at any time."""
    now = now or service.now()
    queue = service.queue

    reminders = list_reminders()
    for reminder in reminders:
        if queue.has_job(reminder_job_id(reminder.id)):
            continue
        fire_at = _fire_time(reminder.schedule, now)
        if fire_at is None:
            continue
        service.schedule_reminder(reminder.id, reminder.user_id, fire_at, reminder.reminder_type, now=now)
        log.info("Registered reminder %s for %s", reminder.id, fire_at.isoformat())
    known = {reminder_job_id(r.id) for r in reminders}
    for stale in queue.job_ids(REMINDERS) - known:
        queue.cancel(stale)
        log.info("Dropped job %s, its reminder is gone", stale)

    notifications = list_notifications()
    for notification in notifications:
        if notification.status != PENDING or queue.has_job(notification_job_id(notification.id)):
            continue
        fire_at = _fire_time({"at": notification.scheduled_for}, now)
        if fire_at is None:
            # never-delivered "send now" notifications; stale alarms are re-derived below
            if notification.type != ALARM_TRIGGER:
                service.send_now(
                    notification.id, notification.user_id, notification.type, notification.payload()
                )
                log.info("Sending overdue notification %s now", notification.id)
            continue
        service.schedule_notification(
            notification.id,
            notification.user_id,
            fire_at,
            notification.type,
            notification.payload(),
            now=now,
        )
        log.info("Registered notification %s for %s", notification.id, fire_at.isoformat())
    known = {notification_job_id(n.id) for n in notifications}
    for stale in queue.job_ids(NOTIFICATIONS) - known:
        queue.cancel(stale)
        log.info("Dropped job %s, its notification is gone", stale)

    for alarm in list_alarms():
        if not alarm.enabled or has_pending_notification(service, alarm):
            continue
        if alarm.recurrence_rule is None and alarm.fire_time <= now:
            continue
        schedule_alarm_notification(service, alarm, now=now)


def setup_scheduler(
    push: PushSender,
    *,
    milestones: Callable[[], Iterable[Milestone]] = list_milestones,
    clock: Callable[[], datetime] | None = None,
) -> tuple[AsyncIOScheduler, SchedulerService]:
    """Scheduler with the sync loop and the daily overdue-milestone check."""
    scheduler = AsyncIOScheduler(timezone=config.TZ)
    service = build_service(scheduler, push, clock=clock)

    # first sync right at startup
    @scheduler.scheduled_job(
        IntervalTrigger(seconds=config.SYNC_SECONDS), next_run_time=datetime.now(config.TZ)
    )
    async def sync_all() -> None:
        try:
            sync_jobs(service)
        except Exception:
            log.exception("Sync failed")

    @scheduler.scheduled_job(CronTrigger(hour=OVERDUE_CHECK_HOUR, minute=0))
    async def check_overdue_milestones() -> None:
        try:
            notify_overdue_milestones(service, milestones())
        except Exception:
            log.exception("Overdue milestone check failed")

    return scheduler, service
