"""Conversion between practice-local wall time and stored instants.

Instants are stored as naive UTC datetimes. Everything that talks to people
(form input, message variables, booked-slot listings) works in the practice
timezone, and this module is the only place the two meet.
"""

from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo

from app.config import settings
from app.core.exceptions import ValidationException


def _zone(tz_name: str | None = None) -> ZoneInfo:
    return ZoneInfo(tz_name or settings.practice_timezone)


def parse_local_date(value: str | date) -> date:
    """Parse a ``YYYY-MM-DD`` string (or pass a date through)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip()[:10])
    except (AttributeError, ValueError):
        raise ValidationException(f"Invalid date: {value!r}")


def parse_local_time(value: str | time) -> time:
    """Parse an ``HH:MM`` string (or pass a time through)."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        parsed = time.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise ValidationException(f"Invalid time: {value!r}")
    return parsed.replace(second=0, microsecond=0)


def to_storage_instant(
    local_date: str | date,
    local_time: str | time,
    tz_name: str | None = None,
) -> datetime:
    """
    Combine a practice-local date and time into a stored instant.

    Args:
        local_date: Date as seen by the patient
        local_time: Time of day as seen by the patient
        tz_name: Override of the practice timezone

    Returns:
        Naive UTC datetime
    """
    wall = datetime.combine(parse_local_date(local_date), parse_local_time(local_time))
    aware = wall.replace(tzinfo=_zone(tz_name))
    return aware.astimezone(UTC).replace(tzinfo=None)


def to_local(instant: datetime, tz_name: str | None = None) -> datetime:
    """Convert a stored instant into naive practice-local wall time."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(_zone(tz_name)).replace(tzinfo=None)


def as_utc(instant: datetime) -> datetime:
    """Attach UTC to a stored naive instant."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC)


def format_date_time(instant: datetime, tz_name: str | None = None) -> tuple[str, str]:
    """
    Format a stored instant for message templates.

    Returns:
        Tuple of (``YYYY-MM-DD``, ``h:MM AM/PM``) in practice-local time
    """
    local = to_local(instant, tz_name)
    hours = local.hour % 12 or 12
    period = "PM" if local.hour >= 12 else "AM"
    return local.date().isoformat(), f"{hours}:{local.minute:02d} {period}"


def slot_key(instant: datetime, tz_name: str | None = None) -> tuple[str, str]:
    """Local ``(YYYY-MM-DD, HH:MM)`` pair used by booking forms."""
    local = to_local(instant, tz_name)
    return local.date().isoformat(), local.strftime("%H:%M")


def utcnow() -> datetime:
    """Current instant in storage form."""
    return datetime.now(UTC).replace(tzinfo=None)
