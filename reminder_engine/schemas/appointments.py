"""Appointment schemas for request/response validation."""

import datetime as dt
import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from reminder_engine.schemas.notifications import ReminderPreferences

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


def parse_date(value: Any) -> dt.date:
    """Parse a YYYY-MM-DD calendar date."""
    if isinstance(value, dt.datetime):
        raise ValueError("Invalid date format. Use YYYY-MM-DD")
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise ValueError("Invalid date format. Use YYYY-MM-DD")
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise ValueError("Invalid calendar date")


def normalize_time(value: Any) -> str:
    """Validate a 24h HH:MM time and zero-pad the hour."""
    if not isinstance(value, str):
        raise ValueError("Invalid time format. Use HH:MM")
    match = TIME_PATTERN.match(value)
    if not match:
        raise ValueError("Invalid time format. Use HH:MM")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


class AppointmentBase(BaseModel):
    """Base appointment schema with common fields."""

    title: str = Field(..., min_length=3, max_length=200)
    type: str = Field(..., min_length=1, max_length=100)
    date: dt.date
    time: str
    client: str = Field(..., min_length=1, max_length=200)
    case_reference: str | None = Field(None, max_length=200)
    description: str | None = Field(None, max_length=2000)

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> dt.date:
        """Validate date format."""
        return parse_date(v)

    @field_validator("time", mode="before")
    @classmethod
    def validate_time(cls, v: Any) -> str:
        """Validate time format."""
        return normalize_time(v)


class AppointmentCreate(AppointmentBase):
    """Schema for creating a new appointment."""

    reminders: ReminderPreferences | None = Field(
        default=None,
        description="When given, reminders are scheduled right after booking",
    )


class AppointmentUpdate(BaseModel):
    """Schema for updating an existing appointment."""

    title: str | None = Field(None, min_length=3, max_length=200)
    type: str | None = Field(None, min_length=1, max_length=100)
    date: dt.date | None = None
    time: str | None = None
    client: str | None = Field(None, min_length=1, max_length=200)
    case_reference: str | None = Field(None, max_length=200)
    description: str | None = Field(None, max_length=2000)
    reminders: ReminderPreferences | None = Field(
        default=None,
        description="When given and the slot moves, reminders are rescheduled",
    )

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> dt.date | None:
        """Validate date format."""
        if v is None:
            return v
        return parse_date(v)

    @field_validator("time", mode="before")
    @classmethod
    def validate_time(cls, v: Any) -> str | None:
        """Validate time format."""
        if v is None:
            return v
        return normalize_time(v)


class AppointmentResponse(AppointmentBase):
    """Schema for appointment response."""

    id: str
    status: AppointmentStatus
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = {"from_attributes": True}


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering. All given filters must match."""

    date: dt.date | None = None
    client: str | None = Field(None, description="Case-insensitive substring of the client")
    status: AppointmentStatus | None = None
    type: str | None = None
