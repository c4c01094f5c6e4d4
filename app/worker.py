"""
Follow-up job worker.

Usage:
    python -m app.worker

Polls Redis for due feedback and reminder jobs and sends their messages.
Run it as a separate process next to the API.
"""

import asyncio
import signal
from functools import partial
from typing import Any

import structlog

from app.config import settings
from app.core.redis_client import close_redis_connection, get_redis_client
from app.database import AsyncSessionLocal, engine
from app.middleware.logging import configure_logging
from app.services.lifecycle_service import AppointmentLifecycle
from app.services.notification_service import NotificationGateway
from app.services.scheduler_service import JobKind, JobRunner, RedisJobScheduler

logger = structlog.get_logger(__name__)


async def run_followup(
    kind: JobKind,
    gateway: NotificationGateway,
    scheduler: RedisJobScheduler,
    payload: dict[str, Any],
) -> bool:
    """Job handler: send one follow-up inside its own session."""
    async with AsyncSessionLocal() as session:
        lifecycle = AppointmentLifecycle(session, gateway, scheduler, settings)
        return await lifecycle.send_followup(kind, payload)


def build_runner(
    scheduler: RedisJobScheduler,
    gateway: NotificationGateway,
) -> JobRunner:
    """Wire a runner with a handler per job kind."""
    handlers = {kind: partial(run_followup, kind, gateway, scheduler) for kind in JobKind}
    return JobRunner(
        scheduler,
        handlers,
        batch_size=settings.job_batch_size,
        poll_interval=settings.job_poll_interval_seconds,
    )


async def worker_loop() -> None:
    """Run until SIGINT or SIGTERM."""
    scheduler = RedisJobScheduler(get_redis_client(), settings.job_key_prefix)
    runner = build_runner(scheduler, NotificationGateway(settings))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await runner.run_forever(stop)
    finally:
        await engine.dispose()
        close_redis_connection()


def main() -> None:
    """Entry point for the worker."""
    configure_logging(component="worker")
    logger.info("worker_starting", key_prefix=settings.job_key_prefix)
    asyncio.run(worker_loop())


if __name__ == "__main__":
    main()
