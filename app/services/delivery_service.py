"""Delivery receipt tracking for outbound WhatsApp messages."""

import structlog
from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings
from app.core.exceptions import AppException, TransientException
from app.core.timeouts import bounded
from app.core.timezone import utcnow
from app.models.message_logs import message_logs
from app.services.appointment_service import AppointmentService
from app.services.notification_service import NotificationGateway

logger = structlog.get_logger(__name__)

DELIVERED = "delivered"
# Provider statuses that carry no new information
IGNORED_STATUSES = ("sent",)


class DeliveryTracker:
    """
    Records sent messages and reacts to provider status callbacks.

    The first ``delivered`` callback for a message triggers one
    acknowledgment to the doctor; repeats and late callbacks are no-ops.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: NotificationGateway,
        config: Settings | None = None,
    ):
        """Initialize tracker with database session and gateway."""
        self.db = db
        self.gateway = gateway
        self.config = config or settings
        self.timeout = self.config.store_timeout_seconds

    async def record_sent(
        self,
        message_sid: str,
        appointment_id: int,
        message_type: str,
        recipient: str,
    ) -> bool:
        """
        Log an accepted outbound message so later receipts can be matched.

        Commits on its own. A logging failure is reported but does not
        affect the send it describes.

        Returns:
            True if the log row was written
        """
        stmt = insert(message_logs).values(
            message_sid=message_sid,
            appointment_id=appointment_id,
            message_type=message_type,
            recipient=recipient,
        )
        try:
            await bounded(self.db.execute(stmt), self.timeout, "message log insert")
            await bounded(self.db.commit(), self.timeout, "message log commit")
        except (SQLAlchemyError, TransientException) as e:
            await self.db.rollback()
            logger.warning(
                "message_log_failed",
                message_sid=message_sid,
                appointment_id=appointment_id,
                error=str(e),
            )
            return False
        return True

    async def get_log(self, message_sid: str) -> dict | None:
        """Get the log row for a provider message SID."""
        query = select(message_logs).where(message_logs.c.message_sid == message_sid)
        result = await bounded(self.db.execute(query), self.timeout, "message log lookup")
        row = result.mappings().first()
        return dict(row) if row else None

    async def handle_status(self, message_sid: str, status: str) -> bool:
        """
        Apply a delivery status callback.

        Args:
            message_sid: Provider message SID
            status: Provider status (queued, sent, delivered, read, failed, ...)

        Returns:
            True if this callback caused the doctor acknowledgment to be sent

        Raises:
            TransientException: Store timeout
            SQLAlchemyError: Store failure
        """
        status = status.strip().lower()
        if status in IGNORED_STATUSES:
            return False

        log = await self.get_log(message_sid)
        if log is None:
            logger.info("delivery_status_unknown_message", message_sid=message_sid, status=status)
            return False

        values: dict = {"status": status, "updated_at": utcnow()}
        if status == DELIVERED:
            values["delivered_at"] = utcnow()

        stmt = (
            update(message_logs)
            .where(
                and_(
                    message_logs.c.message_sid == message_sid,
                    message_logs.c.status != DELIVERED,
                    message_logs.c.status != status,
                )
            )
            .values(**values)
        )
        result = await bounded(self.db.execute(stmt), self.timeout, "message log update")
        await bounded(self.db.commit(), self.timeout, "message log commit")

        if result.rowcount != 1:
            logger.info("delivery_status_already_applied", message_sid=message_sid, status=status)
            return False

        logger.info("delivery_status_updated", message_sid=message_sid, status=status)
        if status != DELIVERED:
            return False

        return await self._acknowledge(log)

    async def _acknowledge(self, log: dict) -> bool:
        """Tell the doctor a patient message reached its recipient."""
        template_id = self.config.delivery_ack_template_sid
        if not template_id:
            logger.info("delivery_ack_not_configured", message_sid=log["message_sid"])
            return False

        try:
            details = await AppointmentService(self.db, self.timeout).get_details(
                log["appointment_id"]
            )
        except AppException as e:
            logger.warning(
                "delivery_ack_skipped",
                message_sid=log["message_sid"],
                error=e.message,
            )
            return False

        recipient = details.doctor.get("whatsapp")
        if not recipient:
            logger.info("delivery_ack_no_doctor_number", doctor_id=details.doctor["id"])
            return False

        result = await self.gateway.send(
            recipient,
            template_id,
            {1: log["message_type"], 2: details.patient["name"]},
        )
        return result.success
