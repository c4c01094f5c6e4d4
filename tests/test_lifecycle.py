"""Tests for the appointment lifecycle."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    ConflictException,
    NotFoundException,
    TransientException,
    ValidationException,
)
from app.core.timezone import to_local, to_storage_instant
from app.models import appointments, message_logs, patients, timeslots
from app.schemas.appointments import AppointmentStatus, BookingRequest
from app.services.lifecycle_service import BOOKING_RETRY_MESSAGE, RESCHEDULE_RETRY_MESSAGE
from app.services.scheduler_service import JobKind
from app.services.timeslot_service import TimeslotService


def _future_local_date(days: int = 3) -> str:
    return (datetime.now(ZoneInfo("Asia/Kolkata")) + timedelta(days=days)).date().isoformat()


async def _slot(db_session, timeslot_id: int) -> dict:
    return await TimeslotService(db_session).get(timeslot_id)


async def _status(db_session, appointment_id: int) -> str:
    result = await db_session.execute(
        select(appointments.c.status).where(appointments.c.id == appointment_id)
    )
    return result.scalar_one()


async def _count(db_session, table) -> int:
    result = await db_session.execute(select(func.count()).select_from(table))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_form_booking_is_pending_and_notifies_both_parties(
    lifecycle, gateway, booking_data, test_doctor, db_session
) -> None:
    """A FORM booking stays PENDING and sends the request and acknowledgment."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))

    assert appointment.status == AppointmentStatus.PENDING
    assert gateway.templates() == ["HXdoctornotify", "HXpatientack"]

    doctor_message = gateway.sent[0]
    assert doctor_message.recipient == test_doctor["whatsapp"]
    assert doctor_message.variables[1] == "Ravi Kumar"
    assert doctor_message.variables[2] == "2025-03-10 and 10:00 AM"
    assert doctor_message.variables[4] == str(appointment.id)

    slot = await _slot(db_session, appointment.timeslot_id)
    assert slot["is_available"] is True
    assert slot["origin_type"] == "FORM"
    assert slot["start_time"] == datetime(2025, 3, 10, 4, 30)


@pytest.mark.asyncio
async def test_manual_booking_is_confirmed_without_holding_slot(
    lifecycle, gateway, scheduler, booking_data, db_session
) -> None:
    """MANUAL bookings skip straight to confirmation; the slot stays as staff left it."""
    booking_data["origin"] = "MANUAL"
    appointment = await lifecycle.create(BookingRequest(**booking_data))

    assert appointment.status == AppointmentStatus.CONFIRMED
    assert gateway.templates() == ["HXpatientconfirm"]
    assert len(scheduler.live_jobs(appointment.id)) == 1

    slot = await _slot(db_session, appointment.timeslot_id)
    assert slot["is_available"] is True
    assert slot["origin_type"] == "MANUAL"


@pytest.mark.asyncio
async def test_repeated_bookings_share_one_timeslot(lifecycle, booking_data, db_session) -> None:
    """Bookings for the same doctor and instant converge on one timeslot row."""
    first = await lifecycle.create(BookingRequest(**booking_data))

    booking_data["patient"] = {**booking_data["patient"], "phone": "9800000001", "name": "Meena"}
    second = await lifecycle.create(BookingRequest(**booking_data))

    assert first.timeslot_id == second.timeslot_id
    assert await _count(db_session, timeslots) == 1


@pytest.mark.asyncio
async def test_repeat_patient_is_updated_in_place(lifecycle, booking_data, db_session) -> None:
    """A second booking from the same phone updates the stored patient."""
    first = await lifecycle.create(BookingRequest(**booking_data))

    booking_data["patient"] = {**booking_data["patient"], "age": "35", "email": "ravi@example.com"}
    booking_data["time"] = "10:30"
    second = await lifecycle.create(BookingRequest(**booking_data))

    assert first.patient_id == second.patient_id
    assert await _count(db_session, patients) == 1

    result = await db_session.execute(select(patients).where(patients.c.id == first.patient_id))
    patient = result.mappings().one()
    assert patient["age"] == "35"
    assert patient["email"] == "ravi@example.com"
    assert patient["phone"] == "9812345678"


@pytest.mark.asyncio
async def test_booking_requires_date_time_and_phone(lifecycle, booking_data) -> None:
    """Missing date, time or phone are validation errors."""
    with pytest.raises(ValidationException):
        await lifecycle.create(BookingRequest(**{**booking_data, "time": None}))

    with pytest.raises(ValidationException):
        await lifecycle.create(BookingRequest(**{**booking_data, "date": None}))

    patient = {**booking_data["patient"], "phone": None}
    with pytest.raises(ValidationException):
        await lifecycle.create(BookingRequest(**{**booking_data, "patient": patient}))

    patient = {**booking_data["patient"], "phone": "12345"}
    with pytest.raises(ValidationException):
        await lifecycle.create(BookingRequest(**{**booking_data, "patient": patient}))


@pytest.mark.asyncio
async def test_booking_unknown_doctor(lifecycle, booking_data) -> None:
    """Booking with an unknown doctor is not found."""
    with pytest.raises(NotFoundException):
        await lifecycle.create(BookingRequest(**{**booking_data, "doctor_id": 999}))


@pytest.mark.asyncio
async def test_booking_service_of_another_doctor(
    lifecycle, booking_data, service_line_doctor
) -> None:
    """A service must belong to the booked doctor."""
    booking = {**booking_data, "service_id": service_line_doctor["service_id"]}
    with pytest.raises(ValidationException):
        await lifecycle.create(BookingRequest(**booking))

    with pytest.raises(NotFoundException):
        await lifecycle.create(BookingRequest(**{**booking_data, "service_id": 999}))


@pytest.mark.asyncio
async def test_form_booking_on_held_slot_conflicts(lifecycle, booking_data, db_session) -> None:
    """A confirmed FORM slot cannot be booked again from the form."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    assert await lifecycle.confirm(appointment.id) is True

    booking_data["patient"] = {**booking_data["patient"], "phone": "9800000001"}
    with pytest.raises(ConflictException):
        await lifecycle.create(BookingRequest(**booking_data))

    assert await _count(db_session, appointments) == 1


@pytest.mark.asyncio
async def test_confirm_holds_slot_and_schedules_feedback(
    lifecycle, gateway, scheduler, booking_data, db_session
) -> None:
    """Confirming holds the FORM slot and schedules feedback an hour after the visit."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))

    assert await lifecycle.confirm(appointment.id) is True

    assert await _status(db_session, appointment.id) == "CONFIRMED"
    slot = await _slot(db_session, appointment.timeslot_id)
    assert slot["is_available"] is False

    # The visit is in the past, so there is no reminder to send
    jobs = scheduler.live_jobs(appointment.id)
    assert [job.kind for job in jobs] == [JobKind.FEEDBACK]
    assert to_local(jobs[0].run_at) == datetime(2025, 3, 10, 11, 0)

    confirmations = gateway.by_template("HXpatientconfirm")
    assert len(confirmations) == 1
    assert confirmations[0].recipient == "9812345678"
    assert confirmations[0].variables == {
        1: "Dr. Asha Rao",
        2: "Ravi Kumar",
        3: "2025-03-10",
        4: "10:00 AM",
        5: "no location",
    }


@pytest.mark.asyncio
async def test_confirm_is_idempotent(lifecycle, gateway, scheduler, booking_data) -> None:
    """A second confirm is a no-op success."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))

    assert await lifecycle.confirm(appointment.id) is True
    assert await lifecycle.confirm(appointment.id) is True

    assert len(scheduler.live_jobs(appointment.id)) == 1
    assert len(gateway.by_template("HXpatientconfirm")) == 1


@pytest.mark.asyncio
async def test_confirm_records_message_for_delivery_tracking(
    lifecycle, booking_data, db_session
) -> None:
    """Patient messages are logged by provider SID."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    await lifecycle.confirm(appointment.id)

    result = await db_session.execute(
        select(message_logs.c.message_type).where(
            message_logs.c.appointment_id == appointment.id
        )
    )
    assert sorted(result.scalars().all()) == ["patient_ack", "patient_confirm"]


@pytest.mark.asyncio
async def test_confirm_reports_failed_notification(
    lifecycle, gateway, booking_data, db_session
) -> None:
    """A failed send returns False but keeps the confirmation."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    gateway.fail = True

    assert await lifecycle.confirm(appointment.id) is False
    assert await _status(db_session, appointment.id) == "CONFIRMED"


@pytest.mark.asyncio
async def test_confirm_unknown_appointment(lifecycle) -> None:
    """Confirming a missing appointment is not found."""
    with pytest.raises(NotFoundException):
        await lifecycle.confirm(12345)


@pytest.mark.asyncio
async def test_confirm_loses_to_another_holder(lifecycle, booking_data, db_session) -> None:
    """Two pending requests for one slot: only the first confirm wins."""
    first = await lifecycle.create(BookingRequest(**booking_data))
    booking_data["patient"] = {**booking_data["patient"], "phone": "9800000001"}
    second = await lifecycle.create(BookingRequest(**booking_data))

    assert await lifecycle.confirm(first.id) is True
    assert await lifecycle.confirm(second.id) is False

    assert await _status(db_session, second.id) == "PENDING"
    assert await _status(db_session, first.id) == "CONFIRMED"


@pytest.mark.asyncio
async def test_cancel_frees_slot_and_jobs(lifecycle, gateway, scheduler, booking_data, db_session) -> None:
    """Cancelling frees the slot, drops all jobs and tells the patient."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    await lifecycle.confirm(appointment.id)

    assert await lifecycle.cancel(appointment.id) is True

    assert await _status(db_session, appointment.id) == "CANCELLED"
    slot = await _slot(db_session, appointment.timeslot_id)
    assert slot["is_available"] is True
    assert scheduler.live_jobs(appointment.id) == []
    assert len(gateway.by_template("HXpatientcancel")) == 1


@pytest.mark.asyncio
async def test_cancel_twice_is_noop(lifecycle, gateway, booking_data) -> None:
    """Cancelling a cancelled appointment succeeds without sending again."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))

    assert await lifecycle.cancel(appointment.id) is True
    assert await lifecycle.cancel(appointment.id) is True
    assert len(gateway.by_template("HXpatientcancel")) == 1


@pytest.mark.asyncio
async def test_book_confirm_cancel_returns_slot(lifecycle, booking_data, db_session) -> None:
    """The slot is available again after a full book-confirm-cancel cycle."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    assert (await _slot(db_session, appointment.timeslot_id))["is_available"] is True

    await lifecycle.confirm(appointment.id)
    assert (await _slot(db_session, appointment.timeslot_id))["is_available"] is False

    await lifecycle.cancel(appointment.id)
    assert (await _slot(db_session, appointment.timeslot_id))["is_available"] is True


@pytest.mark.asyncio
async def test_confirm_after_cancel_returns_false(lifecycle, gateway, booking_data, db_session) -> None:
    """A cancelled appointment cannot be confirmed."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    await lifecycle.cancel(appointment.id)

    assert await lifecycle.confirm(appointment.id) is False
    assert gateway.by_template("HXpatientconfirm") == []
    assert (await _slot(db_session, appointment.timeslot_id))["is_available"] is True


@pytest.mark.asyncio
async def test_confirm_racing_cancel_returns_false(
    lifecycle, scheduler, booking_data, db_session, monkeypatch
) -> None:
    """Confirm working from a stale read loses to a cancel that committed first."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    stale = await lifecycle.appointments.get_details(appointment.id)

    assert await lifecycle.cancel(appointment.id) is True

    async def stale_details(appointment_id: int):
        return stale

    monkeypatch.setattr(lifecycle.appointments, "get_details", stale_details)

    assert await lifecycle.confirm(appointment.id) is False
    assert await _status(db_session, appointment.id) == "CANCELLED"
    assert (await _slot(db_session, appointment.timeslot_id))["is_available"] is True
    assert scheduler.live_jobs(appointment.id) == []


@pytest.mark.asyncio
async def test_reschedule_releases_old_slot(
    lifecycle, gateway, scheduler, booking_data, db_session
) -> None:
    """On the standard profile the new slot waits for confirmation; the old one is freed."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    await lifecycle.confirm(appointment.id)
    old_slot_id = appointment.timeslot_id

    result = await lifecycle.reschedule(appointment.id, "2025-03-11", "11:30")

    assert not isinstance(result, str)
    assert result.status == AppointmentStatus.RESCHEDULED
    assert result.timeslot_id != old_slot_id
    assert result.date.isoformat() == "2025-03-11"

    old_slot = await _slot(db_session, old_slot_id)
    new_slot = await _slot(db_session, result.timeslot_id)
    assert old_slot["is_available"] is True
    assert new_slot["is_available"] is True
    assert new_slot["start_time"] == to_storage_instant("2025-03-11", "11:30")

    jobs = scheduler.live_jobs(appointment.id)
    assert [job.kind for job in jobs] == [JobKind.FEEDBACK]
    assert to_local(jobs[0].run_at) == datetime(2025, 3, 11, 12, 30)

    reschedules = gateway.by_template("HXreschedule")
    assert len(reschedules) == 1
    assert reschedules[0].variables[3] == "2025-03-11"
    assert reschedules[0].variables[4] == "11:30 AM"


@pytest.mark.asyncio
async def test_rescheduled_appointment_can_be_confirmed(lifecycle, booking_data, db_session) -> None:
    """On the standard profile a rescheduled appointment is confirmed like a pending one."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    result = await lifecycle.reschedule(appointment.id, "2025-03-11", "11:30")

    assert await lifecycle.confirm(appointment.id) is True
    assert await _status(db_session, appointment.id) == "CONFIRMED"
    assert (await _slot(db_session, result.timeslot_id))["is_available"] is False


@pytest.mark.asyncio
async def test_reschedule_holds_new_slot_for_service_line(
    lifecycle, gateway, service_line_doctor, booking_data, db_session
) -> None:
    """Service-line doctors hold the new slot at once; old and new are never both held."""
    booking_data["doctor_id"] = service_line_doctor["id"]
    booking_data["service_id"] = service_line_doctor["service_id"]
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    await lifecycle.confirm(appointment.id)

    result = await lifecycle.reschedule(appointment.id, "2025-03-12", "09:00")

    assert not isinstance(result, str)
    old_slot = await _slot(db_session, appointment.timeslot_id)
    new_slot = await _slot(db_session, result.timeslot_id)
    assert old_slot["is_available"] is True
    assert new_slot["is_available"] is False

    # RESCHEDULED counts as confirmed for this profile
    assert await lifecycle.confirm(appointment.id) is True
    assert await _status(db_session, appointment.id) == "RESCHEDULED"

    message = gateway.by_template("HXreschedule")[0]
    assert message.variables == {
        1: "Ravi Kumar",
        2: "Bone Marrow Consultation",
        3: "2025-03-12",
        4: "9:00 AM",
    }


@pytest.mark.asyncio
async def test_reschedule_to_held_slot_fails(lifecycle, booking_data, db_session) -> None:
    """Moving onto a slot someone else holds returns a message and changes nothing."""
    taken = await lifecycle.create(BookingRequest(**{**booking_data, "time": "12:00"}))
    await lifecycle.confirm(taken.id)

    booking_data["patient"] = {**booking_data["patient"], "phone": "9800000001"}
    appointment = await lifecycle.create(BookingRequest(**booking_data))

    result = await lifecycle.reschedule(appointment.id, "2025-03-10", "12:00")

    assert result == "The selected timeslot is not available"
    assert await _status(db_session, appointment.id) == "PENDING"


@pytest.mark.asyncio
async def test_reschedule_cancelled_appointment_fails(lifecycle, booking_data) -> None:
    """Cancelled appointments stay cancelled."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    await lifecycle.cancel(appointment.id)

    result = await lifecycle.reschedule(appointment.id, "2025-03-11", "10:00")
    assert isinstance(result, str)


@pytest.mark.asyncio
async def test_reschedule_unknown_appointment_returns_message(lifecycle) -> None:
    """Failures come back as text rather than exceptions."""
    result = await lifecycle.reschedule(777, "2025-03-11", "10:00")
    assert result == "Appointment 777 not found"

    result = await lifecycle.reschedule(777, "not-a-date", "10:00")
    assert isinstance(result, str)


@pytest.mark.asyncio
async def test_confirm_future_visit_schedules_reminder(lifecycle, scheduler, booking_data) -> None:
    """Visits far enough ahead also get a reminder two hours before."""
    booking_data["date"] = _future_local_date()
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    await lifecycle.confirm(appointment.id)

    jobs = {job.kind: job for job in scheduler.live_jobs(appointment.id)}
    assert set(jobs) == {JobKind.FEEDBACK, JobKind.REMINDER}
    assert jobs[JobKind.FEEDBACK].run_at - jobs[JobKind.REMINDER].run_at == timedelta(hours=3)


@pytest.mark.asyncio
async def test_followup_sends_feedback(lifecycle, gateway, scheduler, booking_data) -> None:
    """The feedback job sends the doctor's feedback link to the patient."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    await lifecycle.confirm(appointment.id)
    job = scheduler.live_jobs(appointment.id)[0]

    assert await lifecycle.send_followup(JobKind.FEEDBACK, scheduler.payload_of(job)) is True

    feedback = gateway.by_template("HXfeedback")
    assert len(feedback) == 1
    assert feedback[0].variables[3] == "https://example.com/feedback/asha-rao"


@pytest.mark.asyncio
async def test_followup_skips_cancelled_and_stale_jobs(
    lifecycle, gateway, scheduler, booking_data
) -> None:
    """Jobs for cancelled or moved appointments send nothing."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    await lifecycle.confirm(appointment.id)
    payload = scheduler.payload_of(scheduler.live_jobs(appointment.id)[0])

    await lifecycle.reschedule(appointment.id, "2025-03-11", "10:00")
    assert await lifecycle.send_followup(JobKind.FEEDBACK, payload) is False

    await lifecycle.cancel(appointment.id)
    fresh = {"appointment_id": appointment.id}
    assert await lifecycle.send_followup(JobKind.FEEDBACK, fresh) is False

    assert gateway.by_template("HXfeedback") == []


@pytest.mark.asyncio
async def test_missing_template_skips_send(lifecycle, gateway, booking_data, db_session) -> None:
    """A doctor without a template for a kind gets no message of that kind."""
    from sqlalchemy import update

    from app.models import doctors

    await db_session.execute(
        update(doctors)
        .where(doctors.c.id == booking_data["doctor_id"])
        .values(template_patient_ack=None)
    )
    await db_session.commit()

    await lifecycle.create(BookingRequest(**booking_data))
    assert gateway.templates() == ["HXdoctornotify"]


def _store_error(message: str) -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception(message))


@pytest.mark.asyncio
async def test_concurrent_bookings_converge(make_lifecycle, booking_data, db_session) -> None:
    """Simultaneous bookings for one doctor and instant share the slot and the patient."""
    booking = BookingRequest(**booking_data)

    first, second = await asyncio.gather(
        make_lifecycle().create(booking),
        make_lifecycle().create(booking),
    )

    assert first.id != second.id
    assert first.timeslot_id == second.timeslot_id
    assert first.patient_id == second.patient_id
    assert await _count(db_session, timeslots) == 1
    assert await _count(db_session, patients) == 1


@pytest.mark.asyncio
async def test_concurrent_confirms_converge(
    lifecycle, make_lifecycle, gateway, scheduler, booking_data, db_session
) -> None:
    """Two confirms racing on separate sessions both succeed; only one sends and schedules."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    gateway.sent.clear()

    results = await asyncio.gather(
        make_lifecycle().confirm(appointment.id),
        make_lifecycle().confirm(appointment.id),
    )

    assert results == [True, True]
    assert [handle.kind for handle in scheduler.live_jobs(appointment.id)] == [JobKind.FEEDBACK]
    assert len(gateway.by_template("HXpatientconfirm")) == 1
    assert await _status(db_session, appointment.id) == "CONFIRMED"
    slot = await _slot(db_session, appointment.timeslot_id)
    assert slot["is_available"] is False


@pytest.mark.asyncio
async def test_store_timeout_on_read_returns_false(
    lifecycle, gateway, booking_data, db_session, monkeypatch
) -> None:
    """Confirm and cancel report a store timeout as False instead of raising."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    gateway.sent.clear()
    monkeypatch.setattr(
        lifecycle.appointments,
        "get_details",
        AsyncMock(side_effect=TransientException("appointment lookup timed out after 5s")),
    )

    assert await lifecycle.confirm(appointment.id) is False
    assert await lifecycle.cancel(appointment.id) is False

    assert gateway.sent == []
    assert await _status(db_session, appointment.id) == "PENDING"


@pytest.mark.asyncio
async def test_store_error_on_reread_returns_false(
    lifecycle, booking_data, monkeypatch
) -> None:
    """A lost race whose re-read fails is reported as False."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    monkeypatch.setattr(lifecycle.appointments, "transition", AsyncMock(return_value=False))
    monkeypatch.setattr(
        lifecycle.appointments, "get", AsyncMock(side_effect=_store_error("disk I/O error"))
    )

    assert await lifecycle.confirm(appointment.id) is False
    assert await lifecycle.cancel(appointment.id) is False


@pytest.mark.asyncio
async def test_reschedule_store_error_returns_message(
    lifecycle, booking_data, db_session, monkeypatch
) -> None:
    """A database error while rescheduling comes back as a retry message."""
    appointment = await lifecycle.create(BookingRequest(**booking_data))
    monkeypatch.setattr(
        lifecycle.timeslots,
        "get_or_create",
        AsyncMock(side_effect=_store_error("no such table: timeslots")),
    )

    result = await lifecycle.reschedule(appointment.id, "2025-03-12", "16:00")

    assert result == RESCHEDULE_RETRY_MESSAGE
    assert await _status(db_session, appointment.id) == "PENDING"


@pytest.mark.asyncio
async def test_booking_store_error_asks_for_retry(lifecycle, booking_data, monkeypatch) -> None:
    """A database error while booking surfaces as a transient retry."""
    monkeypatch.setattr(
        lifecycle.patients, "upsert", AsyncMock(side_effect=_store_error("database is locked"))
    )

    with pytest.raises(TransientException) as exc_info:
        await lifecycle.create(BookingRequest(**booking_data))
    assert exc_info.value.message == BOOKING_RETRY_MESSAGE
