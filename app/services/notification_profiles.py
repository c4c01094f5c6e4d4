"""
Notification profiles.

A doctor's ``notification_profile`` column names one of the profiles below.
A profile decides how the numbered variables of each WhatsApp template are
filled and whether a rescheduled appointment holds its new slot straight
away. Template ids themselves live on the doctor row.
"""

from app.core.exceptions import ValidationException
from app.core.timezone import format_date_time
from app.schemas.notifications import MessageKind
from app.services.appointment_service import AppointmentDetails

NOT_SPECIFIED = "Not specified"


class NotificationProfile:
    """Base profile: generic doctor practice."""

    name = "standard"
    # Rescheduled appointments hold the new slot without a confirm step
    hold_slot_on_reschedule = False
    email_enabled = True

    def variables(self, kind: MessageKind, details: AppointmentDetails) -> dict[int, str]:
        """
        Build the positional template variables for a message.

        Args:
            kind: Message kind
            details: Appointment with its relations

        Returns:
            Mapping of placeholder index (from 1) to value
        """
        builder = getattr(self, f"_{kind.value}")
        date_str, time_str = format_date_time(details.timeslot["start_time"])
        values = builder(details, date_str, time_str)
        return {index: str(value) for index, value in enumerate(values, start=1)}

    def email_fields(self, details: AppointmentDetails) -> dict[str, str]:
        """Named fields for email bodies."""
        date_str, time_str = format_date_time(details.timeslot["start_time"])
        return {
            "appointment_id": str(details.id),
            "doctor_name": details.doctor["name"],
            "patient_name": details.patient["name"],
            "patient_phone": details.patient["phone"],
            "age": str(details.patient["age"] or NOT_SPECIFIED),
            "service": _service_name(details),
            "date": date_str,
            "time": time_str,
            "location": _location(details),
            "feedback_link": details.doctor.get("feedback_link") or "",
        }

    def _doctor_notify(self, details, date_str, time_str):
        return (
            details.patient["name"],
            f"{date_str} and {time_str}",
            details.patient["phone"],
            details.id,
            details.id,
            _location(details),
            details.patient["age"] or NOT_SPECIFIED,
        )

    def _patient_ack(self, details, date_str, time_str):
        return (
            details.doctor["name"],
            details.patient["name"],
            date_str,
            time_str,
            details.doctor.get("image_slug") or "N/A",
        )

    def _patient_confirm(self, details, date_str, time_str):
        return (
            details.doctor["name"],
            details.patient["name"],
            date_str,
            time_str,
            _location(details),
        )

    def _patient_cancel(self, details, date_str, time_str):
        return (details.doctor["name"], details.patient["name"], date_str, time_str)

    def _reminder(self, details, date_str, time_str):
        return (
            details.doctor["name"],
            details.patient["name"],
            date_str,
            time_str,
            details.doctor.get("image_slug") or "N/A",
        )

    def _feedback(self, details, date_str, time_str):
        return (
            details.doctor["name"],
            details.patient["name"],
            details.doctor.get("feedback_link") or "",
            details.doctor.get("image_slug") or "N/A",
        )

    def _reschedule(self, details, date_str, time_str):
        return (details.doctor["name"], details.patient["name"], date_str, time_str)


class ServiceLineProfile(NotificationProfile):
    """
    Specialist units that book by named service (e.g. a transplant unit).

    Messages lead with the patient and service rather than the doctor, and
    a rescheduled visit is treated as booked immediately.
    """

    name = "service_line"
    hold_slot_on_reschedule = True

    def _doctor_notify(self, details, date_str, time_str):
        return (
            details.patient["name"],
            _service_name(details),
            f"{date_str} and {time_str}",
            details.patient["phone"],
            details.id,
            details.id,
            _location(details),
            details.patient["age"] or NOT_SPECIFIED,
        )

    def _patient_ack(self, details, date_str, time_str):
        return (
            details.patient["name"],
            details.patient["name"],
            _service_name(details),
            date_str,
            time_str,
            _location(details),
        )

    def _patient_confirm(self, details, date_str, time_str):
        return (
            details.patient["name"],
            _service_name(details),
            date_str,
            time_str,
            _location(details),
        )

    def _patient_cancel(self, details, date_str, time_str):
        return (details.patient["name"], date_str, time_str)

    def _reminder(self, details, date_str, time_str):
        return (details.patient["name"], _service_name(details), date_str, time_str)

    def _feedback(self, details, date_str, time_str):
        return (details.patient["name"],)

    def _reschedule(self, details, date_str, time_str):
        return (details.patient["name"], _service_name(details), date_str, time_str)


class ClinicProfile(NotificationProfile):
    """Multi-doctor clinics; rescheduled visits hold their slot like bookings."""

    name = "clinic"
    hold_slot_on_reschedule = True
    email_enabled = False


def _service_name(details: AppointmentDetails) -> str:
    return details.service["name"] if details.service else NOT_SPECIFIED


def _location(details: AppointmentDetails) -> str:
    return details.appointment.get("location") or NOT_SPECIFIED


PROFILES: dict[str, NotificationProfile] = {
    profile.name: profile
    for profile in (NotificationProfile(), ServiceLineProfile(), ClinicProfile())
}


def get_profile(name: str | None) -> NotificationProfile:
    """
    Look up a profile by name.

    Raises:
        ValidationException: If no profile has that name
    """
    profile = PROFILES.get(name or NotificationProfile.name)
    if profile is None:
        raise ValidationException(f"Unknown notification profile: {name}")
    return profile
