"""Per-user notification preferences, read from ``users/<user_id>.yaml``.

Example file::

    notifications:
      push_notifications: true
      routine_reminders: false

Every flag defaults to enabled; only an explicit ``false`` turns it off.
"""

import logging
from dataclasses import dataclass, field

import yaml

from routinely.storage import DATA_DIR

USERS_DIR = DATA_DIR / "users"

log = logging.getLogger(__name__)

# notification/job type -> settings flag
CATEGORY_FLAGS = {
    "TASK_REMINDER": "task_reminders",
    "GOAL_REMINDER": "goal_reminders",
    "DUE_DATE_REMINDER": "due_date_reminders",
    "ROUTINE_REMINDER": "routine_reminders",
    "TASK_ASSIGNMENT": "task_assignments",
    "PROJECT_INVITATION": "project_invitations",
    "TASK_COMMENT": "task_comments",
}


@dataclass(frozen=True, slots=True)
class NotificationPrefs:
    push_enabled: bool = True
    categories: dict[str, bool] = field(default_factory=dict)

    def allows(self, notification_type: str) -> bool:
        if not self.push_enabled:
            return False
        flag = CATEGORY_FLAGS.get(notification_type)
        return flag is None or self.categories.get(flag) is not False


def load_prefs(user_id: str) -> NotificationPrefs:
    """Missing or unreadable settings mean everything is enabled."""
    filepath = USERS_DIR / f"{user_id}.yaml"
    if not filepath.exists():
        return NotificationPrefs()
    try:
        data = yaml.safe_load(filepath.read_text()) or {}
    except yaml.YAMLError:
        log.warning("Ignoring unreadable settings file: %s", filepath)
        return NotificationPrefs()
    notifications = data.get("notifications") if isinstance(data, dict) else None
    if not isinstance(notifications, dict):
        return NotificationPrefs()
    return NotificationPrefs(
        push_enabled=notifications.get("push_notifications") is not False,
        categories={
            key: value for key, value in notifications.items() if isinstance(value, bool)
        },
    )


def save_prefs(user_id: str, prefs: NotificationPrefs) -> None:
    USERS_DIR.mkdir(parents=True, exist_ok=True)
    data = {"notifications": {"push_notifications": prefs.push_enabled, **prefs.categories}}
    (USERS_DIR / f"{user_id}.yaml").write_text(yaml.safe_dump(data, sort_keys=False))
