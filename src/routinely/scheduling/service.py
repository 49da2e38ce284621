"""SchedulerService: the object shared by domain schedulers and firing handlers.

Built once at startup (see ``scheduler.setup_scheduler``) and passed
explicitly; it owns the job queue, the push sender, the preference lookup and
the clock, so tests can swap any of them.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from routinely.config import TZ
from routinely.preferences import NotificationPrefs, load_prefs
from routinely.push import PushSender
from routinely.scheduling.queue import (
    NOTIFICATIONS,
    REMINDERS,
    SEND_NOTIFICATION,
    SEND_REMINDER,
    DelayedJobQueue,
    DetachedQueue,
    JobHandle,
)

# "send now" jobs go out after a fixed 1s delay; the only path exempt from
# the positive-delay check
IMMEDIATE_DELAY_MS = 1000


def reminder_job_id(reminder_id: str) -> str:
    return f"{REMINDERS}:{reminder_id}"


def notification_job_id(notification_id: str) -> str:
    return f"{NOTIFICATIONS}:{notification_id}"


def _delay_ms(fire_at: datetime, now: datetime) -> int:
    return int((fire_at - now).total_seconds() * 1000)


class SchedulerService:
    def __init__(
        self,
        queue: DelayedJobQueue | DetachedQueue,
        push: PushSender,
        *,
        prefs: Callable[[str], NotificationPrefs] = load_prefs,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.queue = queue
        self.push = push
        self.prefs = prefs
        self._clock = clock or (lambda: datetime.now(TZ))

    def now(self) -> datetime:
        return self._clock()

    def schedule_reminder(
        self,
        reminder_id: str,
        user_id: str,
        fire_at: datetime,
        reminder_type: str,
        *,
        now: datetime | None = None,
    ) -> JobHandle:
        """Raises JobScheduleError when ``fire_at`` is not in the future."""
        return self.queue.enqueue(
            REMINDERS,
            SEND_REMINDER,
            {"reminderId": reminder_id, "userId": user_id, "type": reminder_type},
            _delay_ms(fire_at, now or self.now()),
            job_id=reminder_job_id(reminder_id),
        )

    def remind_now(self, reminder_id: str, user_id: str, reminder_type: str) -> JobHandle:
        return self.queue.enqueue(
            REMINDERS,
            SEND_REMINDER,
            {"reminderId": reminder_id, "userId": user_id, "type": reminder_type},
            IMMEDIATE_DELAY_MS,
            job_id=reminder_job_id(reminder_id),
        )

    def schedule_notification(
        self,
        notification_id: str,
        user_id: str,
        fire_at: datetime,
        notification_type: str,
        payload: Mapping[str, Any],
        *,
        now: datetime | None = None,
    ) -> JobHandle:
        return self.queue.enqueue(
            NOTIFICATIONS,
            SEND_NOTIFICATION,
            {
                "notificationId": notification_id,
                "userId": user_id,
                "type": notification_type,
                "payload": dict(payload),
            },
            _delay_ms(fire_at, now or self.now()),
            job_id=notification_job_id(notification_id),
        )

    def send_now(
        self,
        notification_id: str,
        user_id: str,
        notification_type: str,
        payload: Mapping[str, Any],
    ) -> JobHandle:
        return self.queue.enqueue(
            NOTIFICATIONS,
            SEND_NOTIFICATION,
            {
                "notificationId": notification_id,
                "userId": user_id,
                "type": notification_type,
                "payload": dict(payload),
            },
            IMMEDIATE_DELAY_MS,
            job_id=notification_job_id(notification_id),
        )

    def cancel_reminder_job(self, reminder_id: str) -> bool:
        return self.queue.cancel(reminder_job_id(reminder_id))

    def cancel_notification_job(self, notification_id: str) -> bool:
        return self.queue.cancel(notification_job_id(notification_id))
