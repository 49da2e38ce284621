"""Scheduling: reminders, routines, alarms, notifications and the delayed job queue."""

from routinely.scheduling.alarms import Alarm, cancel_alarm, create_alarm, schedule_alarm_notification
from routinely.scheduling.deadlines import (
    Milestone,
    cancel_task_reminders,
    notify_overdue_milestones,
    schedule_goal_deadline_reminders,
    schedule_milestone_deadline_reminders,
    schedule_task_due_reminders,
)
from routinely.scheduling.firing import handle_notification_job, handle_reminder_job
from routinely.scheduling.notifications import Notification
from routinely.scheduling.occurrence import Schedule, next_occurrence
from routinely.scheduling.reminders import Reminder
from routinely.scheduling.routines import (
    Routine,
    RoutineTask,
    cancel_routine,
    derive_routine_alarm,
    schedule_routine,
    schedule_routine_task_reminder,
)
from routinely.scheduling.scheduler import setup_scheduler, sync_jobs
from routinely.scheduling.service import SchedulerService

__all__ = [
    "Alarm",
    "Milestone",
    "Notification",
    "Reminder",
    "Routine",
    "RoutineTask",
    "Schedule",
    "SchedulerService",
    "cancel_alarm",
    "cancel_routine",
    "cancel_task_reminders",
    "create_alarm",
    "derive_routine_alarm",
    "handle_notification_job",
    "handle_reminder_job",
    "next_occurrence",
    "notify_overdue_milestones",
    "schedule_alarm_notification",
    "schedule_goal_deadline_reminders",
    "schedule_milestone_deadline_reminders",
    "schedule_routine",
    "schedule_routine_task_reminder",
    "schedule_task_due_reminders",
    "setup_scheduler",
    "sync_jobs",
]
