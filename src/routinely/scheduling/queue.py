"""Delayed job queue on APScheduler.

Jobs are one-shot DateTrigger jobs on a shared AsyncIOScheduler. Each lane
(``reminders``, ``notifications``) has its own consumer and concurrency limit,
so a backlog in one lane never starves the other. A consumer that raises is
retried with exponential backoff under the same job id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

log = logging.getLogger(__name__)

REMINDERS = "reminders"
NOTIFICATIONS = "notifications"

SEND_REMINDER = "send-reminder"
SEND_NOTIFICATION = "send-notification"

Consumer = Callable[[dict[str, Any]], Awaitable[None]]


class JobScheduleError(ValueError):
    """A job was asked to fire now or in the past."""


@dataclass(frozen=True, slots=True)
class LaneConfig:
    concurrency: int
    attempts: int = 3
    backoff_ms: int = 2000


@dataclass(frozen=True, slots=True)
class JobHandle:
    id: str
    queue: str
    job_type: str
    run_at: datetime


class DelayedJobQueue:
    def __init__(self, scheduler: AsyncIOScheduler, lanes: Mapping[str, LaneConfig]) -> None:
        self._scheduler = scheduler
        self._lanes = dict(lanes)
        self._consumers: dict[str, Consumer] = {}
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._running: set[str] = set()

    def _lane(self, queue_name: str) -> LaneConfig:
        lane = self._lanes.get(queue_name)
        if lane is None:
            raise KeyError(f"Queue {queue_name} not found")
        return lane

    def register(self, queue_name: str, consumer: Consumer) -> None:
        self._lane(queue_name)
        self._consumers[queue_name] = consumer

    def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Mapping[str, Any],
        delay_ms: int,
        *,
        job_id: str | None = None,
    ) -> JobHandle:
        """Schedule ``payload`` for delivery to the lane's consumer in ``delay_ms``.

        Re-using a job id replaces the queued job, so re-enqueueing the same
        reminder never leaves two jobs behind.
        """
        self._lane(queue_name)
        if delay_ms <= 0:
            raise JobScheduleError(f"Cannot schedule {job_type} job {delay_ms}ms in the past")
        job_id = job_id or f"{queue_name}:{uuid4().hex[:12]}"
        return self._add(queue_name, job_type, dict(payload), delay_ms, job_id, attempt=1)

    def _add(
        self,
        queue_name: str,
        job_type: str,
        payload: dict[str, Any],
        delay_ms: int,
        job_id: str,
        attempt: int,
    ) -> JobHandle:
        run_at = datetime.now(timezone.utc) + timedelta(milliseconds=delay_ms)
        self._scheduler.add_job(
            self._run,
            DateTrigger(run_date=run_at),
            id=job_id,
            name=f"{queue_name}/{job_type}",
            kwargs={
                "queue_name": queue_name,
                "job_id": job_id,
                "job_type": job_type,
                "payload": payload,
                "attempt": attempt,
            },
            replace_existing=True,
            misfire_grace_time=None,
        )
        return JobHandle(id=job_id, queue=queue_name, job_type=job_type, run_at=run_at)

    def cancel(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        return True

    def has_job(self, job_id: str) -> bool:
        """Queued, or currently being consumed."""
        return job_id in self._running or self._scheduler.get_job(job_id) is not None

    def job_ids(self, queue_name: str) -> set[str]:
        prefix = f"{queue_name}:"
        return {job.id for job in self._scheduler.get_jobs() if job.id.startswith(prefix)}

    async def _run(
        self,
        queue_name: str,
        job_id: str,
        job_type: str,
        payload: dict[str, Any],
        attempt: int,
    ) -> None:
        consumer = self._consumers.get(queue_name)
        if consumer is None:
            log.error("No consumer for queue %s, dropping job %s", queue_name, job_id)
            return
        lane = self._lane(queue_name)
        semaphore = self._semaphores.setdefault(queue_name, asyncio.Semaphore(lane.concurrency))
        self._running.add(job_id)
        try:
            async with semaphore:
                await consumer(payload)
        except Exception:
            if attempt >= lane.attempts:
                log.exception("Job %s failed after %d attempts", job_id, attempt)
                return
            backoff = lane.backoff_ms * 2 ** (attempt - 1)
            log.warning(
                "Job %s failed (attempt %d/%d), retrying in %dms",
                job_id,
                attempt,
                lane.attempts,
                backoff,
                exc_info=True,
            )
            self._add(queue_name, job_type, payload, backoff, job_id, attempt + 1)
        finally:
            self._running.discard(job_id)


class DetachedQueue:
    """Validates and acknowledges jobs without running them.

    CLI processes write records through this; the worker's sync loop queues
    the real jobs from the store.
    """

    def __init__(self, lanes: Mapping[str, LaneConfig]) -> None:
        self._lanes = dict(lanes)

    def register(self, queue_name: str, consumer: Consumer) -> None:
        if queue_name not in self._lanes:
            raise KeyError(f"Queue {queue_name} not found")

    def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Mapping[str, Any],
        delay_ms: int,
        *,
        job_id: str | None = None,
    ) -> JobHandle:
        if queue_name not in self._lanes:
            raise KeyError(f"Queue {queue_name} not found")
        if delay_ms <= 0:
            raise JobScheduleError(f"Cannot schedule {job_type} job {delay_ms}ms in the past")
        run_at = datetime.now(timezone.utc) + timedelta(milliseconds=delay_ms)
        job_id = job_id or f"{queue_name}:{uuid4().hex[:12]}"
        return JobHandle(id=job_id, queue=queue_name, job_type=job_type, run_at=run_at)

    def cancel(self, job_id: str) -> bool:
        return False

    def has_job(self, job_id: str) -> bool:
        return False

    def job_ids(self, queue_name: str) -> set[str]:
        return set()
