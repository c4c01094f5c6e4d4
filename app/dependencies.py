"""FastAPI dependencies."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.redis_client import get_redis_client
from app.database import get_db
from app.services.delivery_service import DeliveryTracker
from app.services.lifecycle_service import AppointmentLifecycle
from app.services.notification_service import NotificationGateway
from app.services.scheduler_service import RedisJobScheduler
from app.services.webhook_service import WebhookDispatcher


@lru_cache
def get_notification_gateway() -> NotificationGateway:
    """Get the process-wide notification gateway."""
    return NotificationGateway(settings)


def get_job_scheduler() -> RedisJobScheduler:
    """Get a job scheduler on the shared Redis client."""
    return RedisJobScheduler(get_redis_client(), settings.job_key_prefix)


DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
Gateway = Annotated[NotificationGateway, Depends(get_notification_gateway)]
Scheduler = Annotated[RedisJobScheduler, Depends(get_job_scheduler)]


def get_lifecycle(
    db: DatabaseSession,
    gateway: Gateway,
    scheduler: Scheduler,
) -> AppointmentLifecycle:
    """Build the appointment lifecycle for the request's session."""
    return AppointmentLifecycle(db, gateway, scheduler, settings)


Lifecycle = Annotated[AppointmentLifecycle, Depends(get_lifecycle)]


def get_webhook_dispatcher(lifecycle: Lifecycle) -> WebhookDispatcher:
    """Build the reply webhook dispatcher."""
    return WebhookDispatcher(lifecycle)


def get_delivery_tracker(db: DatabaseSession, gateway: Gateway) -> DeliveryTracker:
    """Build the delivery receipt tracker."""
    return DeliveryTracker(db, gateway, settings)


Dispatcher = Annotated[WebhookDispatcher, Depends(get_webhook_dispatcher)]
Tracker = Annotated[DeliveryTracker, Depends(get_delivery_tracker)]
