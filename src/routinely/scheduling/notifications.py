"""Notification records: one-shot pushes that never recur.

Used for alarm triggers and "send now" events such as a task being created
or assigned. The firing path marks each record SENT, SKIPPED (preferences
said no) or FAILED.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from uuid import uuid4

from routinely.scheduling.service import SchedulerService
from routinely.storage import DATA_DIR, TZ, read_md, read_md_dir, remove_md, write_md

NOTIFICATIONS_DIR = DATA_DIR / "notifications"

PENDING = "PENDING"
SENT = "SENT"
SKIPPED = "SKIPPED"
FAILED = "FAILED"

TASK_ASSIGNMENT = "TASK_ASSIGNMENT"
TASK_CREATED = "TASK_CREATED"
ALARM_TRIGGER = "ALARM_TRIGGER"

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Notification:
    id: str
    user_id: str
    type: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)
    scheduled_for: str = ""  # ISO datetime
    status: str = PENDING
    sent_at: str | None = None
    correlation: str | None = None

    @staticmethod
    def new(
        user_id: str,
        notification_type: str,
        *,
        title: str,
        body: str,
        scheduled_for: datetime,
        data: dict[str, str] | None = None,
        correlation: str | None = None,
    ) -> "Notification":
        return Notification(
            id=uuid4().hex[:12],
            user_id=user_id,
            type=notification_type,
            title=title,
            body=body,
            data=data or {},
            scheduled_for=scheduled_for.isoformat(),
            correlation=correlation,
        )

    def payload(self) -> dict[str, str]:
        return {"title": self.title, "body": self.body, "notificationType": self.type, **self.data}


def append_notification(notification: Notification) -> None:
    write_md(NOTIFICATIONS_DIR, notification, "body")


def get_notification(notification_id: str) -> Notification | None:
    return read_md(NOTIFICATIONS_DIR, notification_id, Notification, "body")


def list_notifications(user_id: str | None = None) -> list[Notification]:
    notifications = read_md_dir(NOTIFICATIONS_DIR, Notification, "body")
    if user_id is None:
        return notifications
    return [n for n in notifications if n.user_id == user_id]


def remove_notification(notification_id: str) -> bool:
    return remove_md(NOTIFICATIONS_DIR, notification_id)


def delete_notifications(user_id: str, *, correlation: str) -> list[str]:
    matches = [n for n in list_notifications(user_id) if n.correlation == correlation]
    return [n.id for n in matches if remove_notification(n.id)]


def mark_status(notification: Notification, status: str, *, now: datetime | None = None) -> Notification:
    sent_at = (now or datetime.now(TZ)).isoformat() if status == SENT else notification.sent_at
    updated = replace(notification, status=status, sent_at=sent_at)
    append_notification(updated)
    return updated


def _send_now(service: SchedulerService, notification: Notification) -> Notification | None:
    append_notification(notification)
    try:
        service.send_now(notification.id, notification.user_id, notification.type, notification.payload())
    except Exception:
        log.exception("Failed to queue %s notification %s", notification.type, notification.id)
        remove_notification(notification.id)
        return None
    log.info("Queued %s notification %s for user %s", notification.type, notification.id, notification.user_id)
    return notification


def send_task_assignment_notification(
    service: SchedulerService,
    task_id: str,
    assignee_id: str,
    task_title: str,
    assigner_name: str | None = None,
) -> Notification | None:
    body = (
        f"{assigner_name} assigned you a task: {task_title}"
        if assigner_name
        else f"You have been assigned a new task: {task_title}"
    )
    notification = Notification.new(
        assignee_id,
        TASK_ASSIGNMENT,
        title=f"New Task Assigned: {task_title}",
        body=body,
        scheduled_for=service.now(),
        data={"taskId": task_id, "assignerName": assigner_name or "Someone"},
        correlation=f"task:{task_id}",
    )
    return _send_now(service, notification)


def send_task_created_notification(
    service: SchedulerService,
    task_id: str,
    user_id: str,
    task_title: str,
    project_title: str | None = None,
) -> Notification | None:
    body = (
        f'Task "{task_title}" was created in {project_title}.'
        if project_title
        else f'Task "{task_title}" was created successfully.'
    )
    notification = Notification.new(
        user_id,
        TASK_CREATED,
        title=f"Task Created: {task_title}",
        body=body,
        scheduled_for=service.now(),
        data={"taskId": task_id},
        correlation=f"task:{task_id}",
    )
    return _send_now(service, notification)
