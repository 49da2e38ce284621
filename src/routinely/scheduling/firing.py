"""Queue consumers: deliver a fired reminder or notification.

A reminder job carries only ids; the reminder is re-read at firing time, so
a job whose reminder was deleted in the meantime is a silent no-op. Recurring
reminders re-enqueue themselves for their next occurrence after delivery,
whether or not delivery succeeded. Notifications never recur.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from routinely.push import PushMessage
from routinely.scheduling.notifications import (
    FAILED,
    PENDING,
    SENT,
    SKIPPED,
    get_notification,
    mark_status,
)
from routinely.scheduling.occurrence import next_occurrence
from routinely.scheduling.reminders import Reminder, get_reminder
from routinely.scheduling.service import SchedulerService

log = logging.getLogger(__name__)


def _should_notify(service: SchedulerService, user_id: str, notification_type: str) -> bool:
    try:
        return service.prefs(user_id).allows(notification_type)
    except Exception:
        log.exception("Failed to load preferences for user %s, notifying anyway", user_id)
        return True


async def _deliver(service: SchedulerService, user_id: str, message: PushMessage) -> bool:
    try:
        return await service.push.send(user_id, message)
    except Exception:
        log.exception("Push delivery to user %s failed", user_id)
        return False


def _reminder_message(reminder: Reminder) -> PushMessage:
    data = {
        "reminderId": reminder.id,
        "targetType": reminder.target_type,
    }
    if reminder.target_id:
        data["targetId"] = reminder.target_id
    return PushMessage(title=reminder.title, body=reminder.note or "Reminder", data=data)


async def handle_reminder_job(service: SchedulerService, payload: Mapping[str, Any]) -> None:
    reminder_id = payload["reminderId"]
    user_id = payload["userId"]
    reminder_type = payload["type"]

    reminder = get_reminder(reminder_id)
    if reminder is None:
        log.info("Reminder %s no longer exists, skipping", reminder_id)
        return

    if _should_notify(service, user_id, reminder_type):
        if await _deliver(service, user_id, _reminder_message(reminder)):
            log.info("Delivered reminder %s to user %s", reminder_id, user_id)
        else:
            log.warning("Reminder %s was not delivered to user %s", reminder_id, user_id)
    else:
        log.info("User %s has %s notifications disabled", user_id, reminder_type)

    next_fire = next_occurrence(reminder.schedule, service.now())
    if next_fire is None:
        log.debug("Reminder %s has no further occurrences", reminder_id)
        return
    service.schedule_reminder(reminder_id, user_id, next_fire, reminder_type)
    log.info("Rescheduled reminder %s for %s", reminder_id, next_fire.isoformat())


async def handle_notification_job(service: SchedulerService, payload: Mapping[str, Any]) -> None:
    notification_id = payload["notificationId"]
    user_id = payload["userId"]
    notification_type = payload["type"]

    notification = get_notification(notification_id)
    if notification is None:
        log.info("Notification %s no longer exists, skipping", notification_id)
        return
    if notification.status != PENDING:
        log.debug("Notification %s already %s", notification_id, notification.status)
        return

    if not _should_notify(service, user_id, notification_type):
        log.info("User %s has %s notifications disabled", user_id, notification_type)
        mark_status(notification, SKIPPED)
        return

    data = {k: str(v) for k, v in payload.get("payload", {}).items() if k not in ("title", "body")}
    message = PushMessage(title=notification.title, body=notification.body, data=data)
    delivered = await _deliver(service, user_id, message)
    mark_status(notification, SENT if delivered else FAILED, now=service.now())
    log.info("Notification %s %s", notification_id, "sent" if delivered else "failed")
