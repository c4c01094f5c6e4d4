"""
Appointment lifecycle.

Ties the stores, the notification path and the job scheduler together for
booking, confirming, cancelling and rescheduling. State changes commit
before anything is sent, so a failed send never rolls back a transition.
"""

from contextlib import asynccontextmanager
from datetime import timedelta

import redis
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings
from app.core.exceptions import (
    AppException,
    ConflictException,
    NotFoundException,
    TransientException,
    ValidationException,
)
from app.core.timeouts import bounded
from app.core.timezone import as_utc, parse_local_date, to_storage_instant, utcnow
from app.schemas.appointments import (
    AppointmentResponse,
    AppointmentStatus,
    BookingRequest,
    OriginType,
)
from app.schemas.notifications import MessageKind
from app.services.appointment_service import AppointmentDetails, AppointmentService
from app.services.delivery_service import DeliveryTracker
from app.services.doctor_service import NO_LOCATION, DoctorService
from app.services.notification_profiles import NotificationProfile, get_profile
from app.services.notification_service import NotificationGateway
from app.services.notifier import AppointmentNotifier
from app.services.patient_service import PatientService
from app.services.scheduler_service import JobKind, RedisJobScheduler
from app.services.timeslot_service import TimeslotService

logger = structlog.get_logger(__name__)

BOOKING_RETRY_MESSAGE = "Unable to book the appointment right now, please try again."
SLOT_TAKEN_MESSAGE = "The selected timeslot is not available"
RESCHEDULE_RETRY_MESSAGE = "Unable to reschedule the appointment right now, please try again."

# Store failures a caller may retry; never raised out of confirm, cancel or reschedule
STORE_ERRORS = (TransientException, SQLAlchemyError)

FOLLOWUP_MESSAGES = {
    JobKind.FEEDBACK: MessageKind.FEEDBACK,
    JobKind.REMINDER: MessageKind.REMINDER,
}


class AppointmentLifecycle:
    """Booking state machine for one database session."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: NotificationGateway,
        scheduler: RedisJobScheduler,
        config: Settings | None = None,
    ):
        """
        Initialize lifecycle.

        Args:
            db: Database session, committed per state change
            gateway: Outbound message transport
            scheduler: Deferred job scheduler
            config: Settings, defaults to the process settings
        """
        self.db = db
        self.gateway = gateway
        self.scheduler = scheduler
        self.config = config or settings
        self.timeout = self.config.store_timeout_seconds

        self.appointments = AppointmentService(db, self.timeout)
        self.timeslots = TimeslotService(db, self.timeout)
        self.patients = PatientService(db, self.timeout)
        self.doctors = DoctorService(db, self.timeout)
        self.tracker = DeliveryTracker(db, gateway, self.config)
        self.notifier = AppointmentNotifier(gateway, self.tracker)

    @asynccontextmanager
    async def _atomic(self):
        """Commit the enclosed writes together, or roll them all back."""
        try:
            yield
            await bounded(self.db.commit(), self.timeout, "commit")
        except BaseException:
            await self.db.rollback()
            raise

    @staticmethod
    def _profile(details: AppointmentDetails) -> NotificationProfile:
        return get_profile(details.doctor.get("notification_profile"))

    @staticmethod
    def _effective_status(
        status: AppointmentStatus, profile: NotificationProfile
    ) -> AppointmentStatus:
        """RESCHEDULED reads as CONFIRMED where reschedules hold the slot, else PENDING."""
        if status != AppointmentStatus.RESCHEDULED:
            return status
        if profile.hold_slot_on_reschedule:
            return AppointmentStatus.CONFIRMED
        return AppointmentStatus.PENDING

    async def _load(self, appointment_id: int, action: str) -> AppointmentDetails | None:
        """
        Read an appointment with its relations for ``action``.

        Returns None when the store fails; NotFoundException still propagates.
        """
        try:
            return await self.appointments.get_details(appointment_id)
        except STORE_ERRORS as e:
            logger.warning(
                "appointment_read_failed",
                appointment_id=appointment_id,
                action=action,
                error=str(e),
            )
            return None

    async def _current_status(self, appointment_id: int) -> str | None:
        """Re-read the stored status after losing a race; None if unreadable."""
        try:
            current = await self.appointments.get(appointment_id)
        except STORE_ERRORS as e:
            logger.warning("appointment_reread_failed", appointment_id=appointment_id, error=str(e))
            return None
        return current["status"] if current else None

    async def create(self, booking: BookingRequest) -> AppointmentResponse:
        """
        Book an appointment.

        FORM bookings stay PENDING and notify the doctor and patient;
        MANUAL bookings (entered by staff) are confirmed straight away.

        Raises:
            ValidationException: Missing or malformed date, time, phone or service
            NotFoundException: Unknown doctor or service
            ConflictException: A FORM booking on a slot that is already held
            TransientException: Store timeout or error
        """
        if not booking.date or not booking.time:
            raise ValidationException("Date and time are required")
        if not booking.patient.phone:
            raise ValidationException("Phone number is required")

        appointment_date = parse_local_date(booking.date)
        start_time = to_storage_instant(booking.date, booking.time, self.config.practice_timezone)

        try:
            async with self._atomic():
                doctor = await self.doctors.get_doctor(booking.doctor_id)
                if booking.service_id is not None:
                    await self.doctors.get_service_for_doctor(doctor["id"], booking.service_id)

                patient = await self.patients.upsert(booking.patient)
                slot = await self.timeslots.get_or_create(doctor["id"], start_time, booking.origin)
                if booking.origin == OriginType.FORM and not slot["is_available"]:
                    raise ConflictException(SLOT_TAKEN_MESSAGE)

                appointment = await self.appointments.create(
                    doctor_id=doctor["id"],
                    patient_id=patient["id"],
                    timeslot_id=slot["id"],
                    appointment_date=appointment_date,
                    service_id=booking.service_id,
                    location=booking.location or NO_LOCATION,
                    reason=booking.reason,
                )
        except STORE_ERRORS as e:
            logger.error("appointment_create_failed", doctor_id=booking.doctor_id, error=str(e))
            raise TransientException(BOOKING_RETRY_MESSAGE)

        logger.info(
            "appointment_created",
            appointment_id=appointment["id"],
            doctor_id=appointment["doctor_id"],
            timeslot_id=appointment["timeslot_id"],
            origin=booking.origin.value,
        )

        if booking.origin == OriginType.MANUAL:
            await self.confirm(appointment["id"])
            appointment = await self.appointments.get(appointment["id"]) or appointment
        elif not await self._acknowledge(appointment["id"]):
            logger.warning("booking_notification_failed", appointment_id=appointment["id"])

        return AppointmentResponse.model_validate(appointment)

    async def confirm(self, appointment_id: int) -> bool:
        """
        Confirm a pending appointment.

        Confirming an already confirmed appointment is a no-op success, so
        duplicate button presses are harmless.

        Returns:
            False if the appointment cannot be confirmed or a store call or
            send failed

        Raises:
            NotFoundException: Unknown appointment or missing relation
        """
        details = await self._load(appointment_id, "confirm")
        if details is None:
            return False
        profile = self._profile(details)
        status = AppointmentStatus(details.appointment["status"])
        effective = self._effective_status(status, profile)

        if effective == AppointmentStatus.CONFIRMED:
            logger.info("appointment_already_confirmed", appointment_id=appointment_id)
            return True
        if effective != AppointmentStatus.PENDING:
            logger.warning(
                "appointment_confirm_rejected",
                appointment_id=appointment_id,
                status=status.value,
            )
            return False

        holds_slot = details.timeslot["origin_type"] == OriginType.FORM.value
        try:
            async with self._atomic():
                moved = await self.appointments.transition(
                    appointment_id, status, AppointmentStatus.CONFIRMED
                )
                if moved and holds_slot and not await self.timeslots.hold(details.timeslot["id"]):
                    raise ConflictException(SLOT_TAKEN_MESSAGE)
        except (ConflictException, *STORE_ERRORS) as e:
            logger.warning(
                "appointment_confirm_failed",
                appointment_id=appointment_id,
                error=str(e),
            )
            return False

        if not moved:
            # Someone else changed the status between our read and write
            confirmed = await self._current_status(appointment_id) == AppointmentStatus.CONFIRMED.value
            logger.info(
                "appointment_confirm_raced",
                appointment_id=appointment_id,
                confirmed=confirmed,
            )
            return confirmed

        details.appointment["status"] = AppointmentStatus.CONFIRMED.value
        if holds_slot:
            details.timeslot["is_available"] = False
        logger.info("appointment_confirmed", appointment_id=appointment_id)

        scheduled = self._schedule_followups(details)
        notified = await self.notifier.notify(MessageKind.PATIENT_CONFIRM, details, profile)
        return scheduled and notified

    async def cancel(self, appointment_id: int) -> bool:
        """
        Cancel an appointment, free its slot and drop its pending jobs.

        Cancelling twice is a no-op success.

        Returns:
            False if the cancellation could not be stored or a send failed

        Raises:
            NotFoundException: Unknown appointment or missing relation
        """
        details = await self._load(appointment_id, "cancel")
        if details is None:
            return False
        status = AppointmentStatus(details.appointment["status"])

        if status == AppointmentStatus.CANCELLED:
            logger.info("appointment_already_cancelled", appointment_id=appointment_id)
            return True

        try:
            async with self._atomic():
                moved = await self.appointments.transition(
                    appointment_id, status, AppointmentStatus.CANCELLED
                )
                if moved:
                    await self.timeslots.release(details.timeslot["id"], appointment_id)
        except STORE_ERRORS as e:
            logger.warning("appointment_cancel_failed", appointment_id=appointment_id, error=str(e))
            return False

        if not moved:
            cancelled = await self._current_status(appointment_id) == AppointmentStatus.CANCELLED.value
            logger.info(
                "appointment_cancel_raced",
                appointment_id=appointment_id,
                cancelled=cancelled,
            )
            return cancelled

        details.appointment["status"] = AppointmentStatus.CANCELLED.value
        logger.info("appointment_cancelled", appointment_id=appointment_id)

        jobs_cleared = self._cancel_jobs(appointment_id)
        notified = await self.notifier.notify(
            MessageKind.PATIENT_CANCEL, details, self._profile(details)
        )
        return jobs_cleared and notified

    async def reschedule(
        self,
        appointment_id: int,
        new_date: str,
        new_time: str,
    ) -> AppointmentResponse | str:
        """
        Move an appointment to a new practice-local date and time.

        Returns:
            The updated appointment, or a message describing why it failed
        """
        try:
            return await self._reschedule(appointment_id, new_date, new_time)
        except AppException as e:
            logger.warning(
                "appointment_reschedule_failed",
                appointment_id=appointment_id,
                error=e.message,
            )
            return e.message
        except SQLAlchemyError as e:
            logger.error("appointment_reschedule_failed", appointment_id=appointment_id, error=str(e))
            return RESCHEDULE_RETRY_MESSAGE

    async def _reschedule(
        self,
        appointment_id: int,
        new_date: str,
        new_time: str,
    ) -> AppointmentResponse | str:
        if not new_date or not new_time:
            raise ValidationException("Date and time are required")

        details = await self.appointments.get_details(appointment_id)
        profile = self._profile(details)
        status = AppointmentStatus(details.appointment["status"])
        if status == AppointmentStatus.CANCELLED:
            raise ConflictException("Cancelled appointments cannot be rescheduled")

        appointment_date = parse_local_date(new_date)
        start_time = to_storage_instant(new_date, new_time, self.config.practice_timezone)
        old_slot = details.timeslot

        async with self._atomic():
            new_slot = await self.timeslots.get_or_create(
                details.doctor["id"], start_time, OriginType.FORM
            )
            same_slot = new_slot["id"] == old_slot["id"]
            if not same_slot and not new_slot["is_available"]:
                raise ConflictException(SLOT_TAKEN_MESSAGE)

            if not await self.appointments.rebind(
                appointment_id, status, new_slot["id"], appointment_date
            ):
                raise ConflictException("Appointment was changed by another request, please retry")

            if not same_slot or not profile.hold_slot_on_reschedule:
                await self.timeslots.release(old_slot["id"], appointment_id)
            if profile.hold_slot_on_reschedule:
                held = await self.timeslots.hold(new_slot["id"])
                if not held and not same_slot:
                    raise ConflictException(SLOT_TAKEN_MESSAGE)

        logger.info(
            "appointment_rescheduled",
            appointment_id=appointment_id,
            old_timeslot_id=old_slot["id"],
            new_timeslot_id=new_slot["id"],
        )

        if not self._cancel_jobs(appointment_id):
            return "Appointment rescheduled but its follow-ups could not be updated"

        details = await self.appointments.get_details(appointment_id)
        scheduled = self._schedule_followups(details)
        notified = await self.notifier.notify(MessageKind.RESCHEDULE, details, profile)
        if not scheduled:
            return "Appointment rescheduled but its follow-ups could not be scheduled"
        if not notified:
            return "Appointment rescheduled but the patient could not be notified"

        return AppointmentResponse.model_validate(details.appointment)

    async def send_followup(self, kind: JobKind, payload: dict) -> bool:
        """
        Deferred job callback: send the feedback request or reminder.

        Jobs for cancelled appointments, or anchored to a time the
        appointment has since moved away from, are skipped.

        Returns:
            True if the message was sent
        """
        appointment_id = int(payload["appointment_id"])
        try:
            details = await self.appointments.get_details(appointment_id)
        except NotFoundException:
            logger.info("followup_skipped_missing", appointment_id=appointment_id, kind=kind.value)
            return False

        if details.appointment["status"] == AppointmentStatus.CANCELLED.value:
            logger.info("followup_skipped_cancelled", appointment_id=appointment_id, kind=kind.value)
            return False

        anchored_to = payload.get("start_time")
        if anchored_to and anchored_to != as_utc(details.timeslot["start_time"]).isoformat():
            logger.info("followup_skipped_stale", appointment_id=appointment_id, kind=kind.value)
            return False

        return await self.notifier.notify(FOLLOWUP_MESSAGES[kind], details, self._profile(details))

    async def _acknowledge(self, appointment_id: int) -> bool:
        """Tell the doctor and patient about a new FORM booking."""
        try:
            details = await self.appointments.get_details(appointment_id)
        except AppException as e:
            logger.error("booking_details_unavailable", appointment_id=appointment_id, error=e.message)
            return False
        return await self.notifier.acknowledge(details, self._profile(details))

    def _schedule_followups(self, details: AppointmentDetails) -> bool:
        """Replace the feedback and reminder jobs for the appointment's current slot."""
        start = as_utc(details.timeslot["start_time"])
        payload = {"appointment_id": details.id, "start_time": start.isoformat()}
        feedback_at = start + timedelta(minutes=self.config.feedback_delay_minutes)
        reminder_at = start - timedelta(minutes=self.config.reminder_lead_minutes)

        try:
            self.scheduler.schedule(details.id, feedback_at, payload, JobKind.FEEDBACK)
            if reminder_at > as_utc(utcnow()):
                self.scheduler.schedule(details.id, reminder_at, payload, JobKind.REMINDER)
            else:
                self.scheduler.cancel_for_appointment(details.id, JobKind.REMINDER)
        except redis.RedisError as e:
            logger.error("followup_schedule_failed", appointment_id=details.id, error=str(e))
            return False
        return True

    def _cancel_jobs(self, appointment_id: int) -> bool:
        try:
            self.scheduler.cancel_all_for_appointment(appointment_id)
        except redis.RedisError as e:
            logger.error("followup_cancel_failed", appointment_id=appointment_id, error=str(e))
            return False
        return True

