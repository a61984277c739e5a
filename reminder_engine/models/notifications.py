"""Notification model for tracking scheduled reminders and their delivery status."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

from reminder_engine.models.types import UTCDateTime

metadata = MetaData()

notifications = Table(
    "notifications",
    metadata,
    Column("id", String(36), primary_key=True, default=lambda: str(uuid4())),
    Column("appointment_id", String(36), nullable=False),
    Column("user_id", Text, nullable=False),
    Column("channel", String(10), nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("scheduled_for", UTCDateTime, nullable=False),
    Column("template_name", String(100), nullable=False),
    # Tagged recipient payload: {"channel": ..., "address" | "number" | "token": ...}
    Column("recipient", JSON, nullable=False),
    Column("subject", Text, nullable=True),
    Column("message", Text, nullable=False),
    Column("retry_count", Integer, nullable=False, server_default="0"),
    Column("max_retries", Integer, nullable=False, server_default="3"),
    Column("error_message", Text, nullable=True),
    Column("sent_at", UTCDateTime, nullable=True),
    # Claim held by the queue run currently delivering the notification
    Column("claim_token", String(36), nullable=True),
    Column("claimed_until", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
    CheckConstraint(
        "channel IN ('email', 'sms', 'push')",
        name="notifications_channel_check",
    ),
    CheckConstraint(
        "status IN ('pending', 'processing', 'sent', 'failed', 'cancelled')",
        name="notifications_status_check",
    ),
    CheckConstraint(
        "retry_count >= 0 AND retry_count <= max_retries",
        name="notifications_retry_count_check",
    ),
    Index("idx_notifications_appointment_id", "appointment_id"),
    Index("idx_notifications_user_id", "user_id"),
    Index("idx_notifications_status_scheduled", "status", "scheduled_for"),
)
