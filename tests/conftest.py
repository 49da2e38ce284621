"""Shared fixtures for routinely tests."""

import os

os.environ.setdefault("ROUTINELY_TIMEZONE", "UTC")

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from routinely.scheduling.queue import JobHandle, JobScheduleError

# Tuesday
NOW = datetime(2026, 3, 10, 8, 0, tzinfo=ZoneInfo("UTC"))


class RecordingQueue:
    """Stands in for DelayedJobQueue: keeps jobs in a dict instead of running them."""

    def __init__(self):
        self.jobs: dict[str, dict] = {}
        self.cancelled: list[str] = []
        self.consumers: dict = {}
        self.fail_enqueue = False

    def register(self, queue_name, consumer):
        self.consumers[queue_name] = consumer

    def enqueue(self, queue_name, job_type, payload, delay_ms, *, job_id=None):
        if self.fail_enqueue:
            raise RuntimeError("queue unavailable")
        if delay_ms <= 0:
            raise JobScheduleError(f"delay {delay_ms}ms")
        job_id = job_id or f"{queue_name}:{len(self.jobs)}"
        self.jobs[job_id] = {
            "queue": queue_name,
            "job_type": job_type,
            "payload": dict(payload),
            "delay_ms": delay_ms,
        }
        return JobHandle(id=job_id, queue=queue_name, job_type=job_type, run_at=NOW)

    def cancel(self, job_id):
        self.cancelled.append(job_id)
        return self.jobs.pop(job_id, None) is not None

    def has_job(self, job_id):
        return job_id in self.jobs

    def job_ids(self, queue_name):
        return {j for j, job in self.jobs.items() if job["queue"] == queue_name}

    def of(self, queue_name):
        return [job for job in self.jobs.values() if job["queue"] == queue_name]


class RecordingPush:
    def __init__(self):
        self.sent: list[tuple[str, object]] = []
        self.result = True
        self.error: Exception | None = None

    async def send(self, user_id, message):
        if self.error is not None:
            raise self.error
        self.sent.append((user_id, message))
        return self.result


@pytest.fixture()
def data_dir(tmp_path, monkeypatch):
    """Redirect all data file paths to a temp directory."""
    import routinely.main as main_mod
    import routinely.preferences as preferences_mod
    import routinely.push as push_mod
    import routinely.scheduling.alarms as alarms_mod
    import routinely.scheduling.deadlines as deadlines_mod
    import routinely.scheduling.notifications as notifications_mod
    import routinely.scheduling.reminders as reminders_mod
    import routinely.scheduling.routines as routines_mod
    import routinely.storage as storage_mod

    monkeypatch.setattr(storage_mod, "DATA_DIR", tmp_path)
    monkeypatch.setattr(reminders_mod, "REMINDERS_DIR", tmp_path / "reminders")
    monkeypatch.setattr(alarms_mod, "ALARMS_DIR", tmp_path / "alarms")
    monkeypatch.setattr(notifications_mod, "NOTIFICATIONS_DIR", tmp_path / "notifications")
    monkeypatch.setattr(routines_mod, "ROUTINES_DIR", tmp_path / "routines")
    monkeypatch.setattr(deadlines_mod, "MILESTONES_DIR", tmp_path / "milestones")
    monkeypatch.setattr(preferences_mod, "USERS_DIR", tmp_path / "users")
    monkeypatch.setattr(push_mod, "DEVICES_DIR", tmp_path / "devices")
    monkeypatch.setattr(main_mod, "PID_FILE", tmp_path / "worker.pid")
    return tmp_path


@pytest.fixture()
def queue():
    return RecordingQueue()


@pytest.fixture()
def push():
    return RecordingPush()


@pytest.fixture()
def clock():
    """Mutable clock: set ``clock.now`` to move time."""

    class Clock:
        now = NOW

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture()
def service(data_dir, queue, push, clock):
    from routinely.scheduling.service import SchedulerService

    return SchedulerService(queue, push, clock=clock)
