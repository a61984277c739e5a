"""Notification schemas."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, EmailStr, Field, TypeAdapter, field_validator


class NotificationChannel(str, Enum):
    """Delivery channel enumeration."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class NotificationStatus(str, Enum):
    """Notification status enumeration."""

    PENDING = "pending"
    # Claimed by a queue run that is delivering it right now
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _validate_phone(value: str) -> str:
    cleaned = (
        value.replace("-", "").replace(" ", "").replace("(", "").replace(")", "").replace("+", "")
    )
    if not cleaned.isdigit():
        raise ValueError("Phone number must contain only digits and separators")
    if len(cleaned) < 7:
        raise ValueError("Phone number must have at least 7 digits")
    return value


class EmailRecipient(BaseModel):
    """Email address recipient."""

    channel: Literal["email"] = "email"
    address: EmailStr


class PhoneRecipient(BaseModel):
    """SMS recipient."""

    channel: Literal["sms"] = "sms"
    number: str = Field(..., min_length=7, max_length=20)

    @field_validator("number")
    @classmethod
    def validate_number(cls, v: str) -> str:
        """Validate phone number format."""
        return _validate_phone(v)


class PushRecipient(BaseModel):
    """Push notification recipient (device token)."""

    channel: Literal["push"] = "push"
    token: str = Field(..., min_length=1, max_length=4096)


Recipient = Annotated[
    EmailRecipient | PhoneRecipient | PushRecipient,
    Field(discriminator="channel"),
]

recipient_adapter: TypeAdapter[Recipient] = TypeAdapter(Recipient)


class ReminderPreferences(BaseModel):
    """Where and how a client wants to be reminded."""

    email: EmailStr | None = None
    phone: str | None = Field(None, min_length=7, max_length=20)
    push_token: str | None = Field(None, min_length=1, max_length=4096)
    enabled_types: list[NotificationChannel] = Field(
        default_factory=lambda: [NotificationChannel.EMAIL],
    )

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        """Validate phone number format."""
        if v is None:
            return v
        return _validate_phone(v)

    def recipient_for(
        self, channel: NotificationChannel
    ) -> EmailRecipient | PhoneRecipient | PushRecipient | None:
        """Build the recipient for a channel, or None when no address is known for it."""
        if channel == NotificationChannel.EMAIL and self.email:
            return EmailRecipient(address=self.email)
        if channel == NotificationChannel.SMS and self.phone:
            return PhoneRecipient(number=self.phone)
        if channel == NotificationChannel.PUSH and self.push_token:
            return PushRecipient(token=self.push_token)
        return None


class ImmediateNotificationRequest(BaseModel):
    """Schema for sending a notification right away."""

    template_name: str = Field(..., min_length=1, max_length=100)
    channel: NotificationChannel
    recipient: Recipient


class NotificationRecord(BaseModel):
    """Schema for notification record."""

    id: str
    appointment_id: str
    user_id: str
    channel: NotificationChannel
    status: NotificationStatus
    scheduled_for: datetime
    template_name: str
    recipient: Recipient
    subject: str | None = None
    message: str
    retry_count: int
    max_retries: int
    error_message: str | None = None
    sent_at: datetime | None = None
    claim_token: str | None = Field(default=None, exclude=True)
    claimed_until: datetime | None = Field(default=None, exclude=True)
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ScheduleRemindersResponse(BaseModel):
    """Schema for the reminders created for an appointment."""

    scheduled: int
    notifications: list[NotificationRecord]


class DeliveryResult(BaseModel):
    """Outcome of a single delivery attempt."""

    success: bool
    error: str | None = None


class QueueProcessingResult(BaseModel):
    """Aggregate counts for one pass over the notification queue."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
