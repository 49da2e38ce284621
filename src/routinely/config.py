"""User-configurable values loaded from environment variables."""

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value <= 0:
        print(f"{name} must be a positive integer, got {raw!r}", file=sys.stderr)
        raise SystemExit(1)
    return value


def _detect_local_tz() -> str:
    """Detect the system's IANA timezone name. Falls back to UTC."""
    # Debian/Ubuntu: plain text file with IANA name
    etc_tz = Path("/etc/timezone")
    if etc_tz.exists():
        name = etc_tz.read_text().strip()
        if name:
            return name

    # Most Linux/WSL: /etc/localtime is a symlink into zoneinfo
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        target = str(localtime.resolve())
        marker = "/zoneinfo/"
        idx = target.find(marker)
        if idx != -1:
            return target[idx + len(marker) :]

    return "UTC"


TZ_NAME: str = os.environ.get("ROUTINELY_TIMEZONE") or _detect_local_tz()
TZ: ZoneInfo = ZoneInfo(TZ_NAME)

DATA_ROOT: Path = Path(os.environ.get("ROUTINELY_DATA_DIR") or Path.home() / ".routinely")
DISCORD_TOKEN: str | None = os.environ.get("DISCORD_TOKEN") or None

REMINDER_CONCURRENCY: int = _int_env("ROUTINELY_REMINDER_CONCURRENCY", 10)
NOTIFICATION_CONCURRENCY: int = _int_env("ROUTINELY_NOTIFICATION_CONCURRENCY", 20)
JOB_ATTEMPTS: int = _int_env("ROUTINELY_JOB_ATTEMPTS", 3)
JOB_BACKOFF_MS: int = _int_env("ROUTINELY_JOB_BACKOFF_MS", 2000)
SYNC_SECONDS: int = _int_env("ROUTINELY_SYNC_SECONDS", 10)
