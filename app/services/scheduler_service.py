"""
Deferred jobs on Redis.

Jobs live in three kinds of keys under a common prefix:

- ``{prefix}:due`` is a sorted set of job ids scored by run time (epoch seconds)
- ``{prefix}:job:{job_id}`` holds the JSON job record
- ``{prefix}:appointment:{appointment_id}`` is the set of job ids for an appointment

A runner claims a due job by removing it from the sorted set; only the
runner whose ``ZREM`` returns 1 executes it, so each job fires at most once.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

import redis
import structlog

from app.core.timezone import as_utc

logger = structlog.get_logger(__name__)


class JobKind(str, Enum):
    """Kinds of deferred job."""

    FEEDBACK = "feedback"
    REMINDER = "reminder"


@dataclass(frozen=True)
class JobHandle:
    """A scheduled job."""

    job_id: str
    appointment_id: int
    kind: JobKind
    run_at: datetime


JobHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class RedisJobScheduler:
    """Schedules and cancels per-appointment jobs."""

    def __init__(self, client: redis.Redis, key_prefix: str = "appointment-jobs"):
        """
        Initialize scheduler.

        Args:
            client: Redis client (``decode_responses`` enabled)
            key_prefix: Namespace for all scheduler keys
        """
        self.redis = client
        self.key_prefix = key_prefix

    @property
    def due_key(self) -> str:
        """Sorted set of pending job ids."""
        return f"{self.key_prefix}:due"

    def job_key(self, job_id: str) -> str:
        """Key holding a job record."""
        return f"{self.key_prefix}:job:{job_id}"

    def appointment_key(self, appointment_id: int) -> str:
        """Key holding the job ids of an appointment."""
        return f"{self.key_prefix}:appointment:{appointment_id}"

    def schedule(
        self,
        appointment_id: int,
        run_at: datetime,
        payload: dict[str, Any],
        kind: JobKind = JobKind.FEEDBACK,
    ) -> JobHandle:
        """
        Schedule a job, replacing any live job of the same kind.

        Args:
            appointment_id: Appointment the job belongs to
            run_at: When to run (naive values are UTC)
            payload: JSON-serializable data handed to the callback
            kind: Job kind

        Returns:
            Handle of the new job
        """
        self.cancel_for_appointment(appointment_id, kind)

        run_at = as_utc(run_at)
        job_id = f"{kind.value}-{appointment_id}-{uuid4().hex}"
        record = {
            "job_id": job_id,
            "appointment_id": appointment_id,
            "kind": kind.value,
            "run_at": run_at.isoformat(),
            "payload": payload,
        }

        pipe = self.redis.pipeline(transaction=True)
        pipe.set(self.job_key(job_id), json.dumps(record))
        pipe.sadd(self.appointment_key(appointment_id), job_id)
        pipe.zadd(self.due_key, {job_id: run_at.timestamp()})
        pipe.execute()

        logger.info(
            "job_scheduled",
            job_id=job_id,
            appointment_id=appointment_id,
            kind=kind.value,
            run_at=run_at.isoformat(),
        )
        return JobHandle(job_id=job_id, appointment_id=appointment_id, kind=kind, run_at=run_at)

    def cancel_for_appointment(self, appointment_id: int, kind: JobKind | None = None) -> int:
        """
        Cancel live jobs of an appointment.

        Args:
            appointment_id: Appointment ID
            kind: Only cancel jobs of this kind; all kinds when None

        Returns:
            Number of jobs removed before they ran
        """
        cancelled = 0
        for job_id in self.redis.smembers(self.appointment_key(appointment_id)):
            if kind is not None and not job_id.startswith(f"{kind.value}-"):
                continue
            cancelled += self.redis.zrem(self.due_key, job_id)
            self.redis.delete(self.job_key(job_id))
            self.redis.srem(self.appointment_key(appointment_id), job_id)

        if cancelled:
            logger.info(
                "jobs_cancelled",
                appointment_id=appointment_id,
                kind=kind.value if kind else "all",
                count=cancelled,
            )
        return cancelled

    def cancel_all_for_appointment(self, appointment_id: int) -> int:
        """Cancel every live job of an appointment."""
        return self.cancel_for_appointment(appointment_id)

    def live_jobs(self, appointment_id: int) -> list[JobHandle]:
        """Jobs of an appointment that have not run or been cancelled."""
        handles = []
        for job_id in self.redis.smembers(self.appointment_key(appointment_id)):
            score = self.redis.zscore(self.due_key, job_id)
            raw = self.redis.get(self.job_key(job_id))
            if score is None or raw is None:
                continue
            record = json.loads(raw)
            handles.append(
                JobHandle(
                    job_id=job_id,
                    appointment_id=appointment_id,
                    kind=JobKind(record["kind"]),
                    run_at=datetime.fromtimestamp(score, tz=UTC),
                )
            )
        return sorted(handles, key=lambda handle: handle.run_at)

    def claim_due(self, now: datetime, limit: int) -> list[dict[str, Any]]:
        """
        Claim jobs whose run time has passed.

        Returns:
            Job records claimed by this caller
        """
        job_ids = self.redis.zrangebyscore(
            self.due_key, "-inf", as_utc(now).timestamp(), start=0, num=limit
        )

        claimed = []
        for job_id in job_ids:
            if self.redis.zrem(self.due_key, job_id) != 1:
                # Another runner got it first
                continue
            raw = self.redis.get(self.job_key(job_id))
            self.redis.delete(self.job_key(job_id))
            if raw is None:
                continue
            record = json.loads(raw)
            self.redis.srem(self.appointment_key(record["appointment_id"]), job_id)
            claimed.append(record)
        return claimed


class JobRunner:
    """Polls the scheduler and runs due jobs with their handlers."""

    def __init__(
        self,
        scheduler: RedisJobScheduler,
        handlers: dict[JobKind, JobHandler],
        batch_size: int = 50,
        poll_interval: float = 5.0,
    ):
        """Initialize runner."""
        self.scheduler = scheduler
        self.handlers = handlers
        self.batch_size = batch_size
        self.poll_interval = poll_interval

    async def run_due(self, now: datetime | None = None) -> int:
        """
        Run every job due at ``now``.

        Failures are logged and not retried.

        Returns:
            Number of jobs claimed
        """
        jobs = self.scheduler.claim_due(now or datetime.now(UTC), self.batch_size)

        for job in jobs:
            kind = JobKind(job["kind"])
            handler = self.handlers.get(kind)
            if handler is None:
                logger.warning("job_handler_missing", job_id=job["job_id"], kind=kind.value)
                continue

            try:
                await handler(job["payload"])
                logger.info("job_completed", job_id=job["job_id"], kind=kind.value)
            except Exception as e:
                logger.error(
                    "job_failed",
                    job_id=job["job_id"],
                    kind=kind.value,
                    appointment_id=job["appointment_id"],
                    error=str(e),
                    exc_info=True,
                )

        return len(jobs)

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        """Poll until ``stop`` is set."""
        stop = stop or asyncio.Event()
        logger.info(
            "job_runner_started",
            poll_interval=self.poll_interval,
            batch_size=self.batch_size,
        )

        while not stop.is_set():
            try:
                await self.run_due()
            except redis.RedisError as e:
                logger.error("job_poll_failed", error=str(e))

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except TimeoutError:
                pass

        logger.info("job_runner_stopped")
