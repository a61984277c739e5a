"""Time helpers."""

from collections.abc import Callable
from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def slot_to_utc(slot_date: date, slot_time: str, timezone: str) -> datetime:
    """
    Convert an appointment's local date and HH:MM time to an aware UTC instant.

    Args:
        slot_date: Calendar date of the appointment
        slot_time: 24h HH:MM time of day
        timezone: IANA timezone the date and time are expressed in

    Returns:
        Aware UTC datetime
    """
    local = datetime.combine(slot_date, time.fromisoformat(slot_time), tzinfo=ZoneInfo(timezone))
    return local.astimezone(UTC)
