"""Entry point for routinely."""

from __future__ import annotations

import asyncio
import atexit
import logging
import os
import signal
import sys
from pathlib import Path

import discord

from routinely import config
from routinely.storage import DATA_DIR

PID_FILE = DATA_DIR / "worker.pid"


HELP = """\
routinely -- recurring reminder and notification scheduler

commands:
  routinely                    Run the scheduler worker
  routinely routine add        Add a routine with tasks and schedule it
  routinely routine list       Show all routines
  routinely routine schedule   Reschedule a routine's reminders and alarm
  routinely routine cancel     Cancel a routine by ID
  routinely reminder list      Show stored reminders
  routinely reminder cancel    Cancel a reminder by ID
  routinely task due           Schedule due date reminders for a task
  routinely task clear         Cancel a task's reminders
  routinely task created       Notify that a task was created
  routinely task assign        Notify an assignee about a task
  routinely goal deadline      Schedule deadline reminders for a goal
  routinely goal milestone     Track a milestone and schedule its reminders
  routinely alarm add          Create an alarm
  routinely alarm list         Show alarms
  routinely alarm cancel       Cancel an alarm by ID
  routinely device add         Register a Discord user to receive a user's pushes
  routinely device list        Show the Discord users receiving a user's pushes
  routinely next               Preview the next occurrences of a schedule
  routinely help               Show this help message

examples:
  routinely routine add -u alice -m "Morning" -f DAILY -t 09:00 --task "Stretch@-15min"
  routinely task due t-42 -u alice -m "Ship release" -d 2026-11-02 -t 17:00
  routinely next -f MONTHLY -t 08:00 --day 31
"""


def _check_already_running() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    if PID_FILE.exists():
        pid = int(PID_FILE.read_text().strip())
        proc_cmdline = Path(f"/proc/{pid}/cmdline")
        if proc_cmdline.exists() and "routinely" in proc_cmdline.read_bytes().decode(errors="replace"):
            print(f"routinely is already running (pid {pid})")
            raise SystemExit(1)
    PID_FILE.write_text(str(os.getpid()))
    atexit.register(PID_FILE.unlink, missing_ok=True)


def _dispatch_subcommand() -> bool:
    """Route CLI subcommands. Returns True if handled."""
    if len(sys.argv) < 2:
        return False
    cmd = sys.argv[1]
    rest = sys.argv[2:]
    if cmd in ("help", "--help", "-h"):
        print(HELP)
        return True
    routes: dict[str, tuple[str, str]] = {
        "routine": ("routinely.scheduling.routine_cmd", "run_routine_command"),
        "reminder": ("routinely.scheduling.reminder_cmd", "run_reminder_command"),
        "task": ("routinely.scheduling.deadline_cmd", "run_task_command"),
        "goal": ("routinely.scheduling.deadline_cmd", "run_goal_command"),
        "alarm": ("routinely.scheduling.alarm_cmd", "run_alarm_command"),
        "device": ("routinely.push", "run_device_command"),
        "next": ("routinely.scheduling.schedule_cmd", "run_next_command"),
    }
    if cmd in routes:
        from importlib import import_module

        mod_path, func_name = routes[cmd]
        getattr(import_module(mod_path), func_name)(rest)
        return True
    return False


log = logging.getLogger(__name__)


async def _run(token: str | None) -> None:
    """Run the scheduler (and the Discord client when a token is set) until signalled."""
    from routinely.push import DiscordPushSender, NullPushSender, PushSender
    from routinely.scheduling import setup_scheduler

    client: discord.Client | None = None
    push: PushSender
    if token:
        client = discord.Client(intents=discord.Intents.default())
        push = DiscordPushSender(client)
    else:
        log.warning("DISCORD_TOKEN not set, pushes will not be delivered")
        push = NullPushSender()

    scheduler, _ = setup_scheduler(push)
    scheduler.start()
    log.info("Scheduler started (timezone %s, data in %s)", config.TZ_NAME, DATA_DIR)

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    _background_tasks: set[asyncio.Task[None]] = set()

    def _on_signal(sig_name: str) -> None:
        log.info("Received %s, shutting down", sig_name)
        stop.set()
        if client is not None and not client.is_closed():
            task = loop.create_task(client.close())
            _background_tasks.add(task)
            task.add_done_callback(_background_tasks.discard)

    loop.add_signal_handler(signal.SIGTERM, _on_signal, "SIGTERM")
    loop.add_signal_handler(signal.SIGINT, _on_signal, "SIGINT")

    try:
        if client is not None and token:
            await client.start(token)
        else:
            await stop.wait()
    except asyncio.CancelledError:
        pass  # signal handler already closed the client
    finally:
        scheduler.shutdown(wait=False)
        if client is not None and not client.is_closed():
            await client.close()


def main() -> None:
    if _dispatch_subcommand():
        return

    discord.utils.setup_logging(level=logging.INFO)
    _check_already_running()
    asyncio.run(_run(config.DISCORD_TOKEN))


if __name__ == "__main__":
    main()
