"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    Index,
    MetaData,
    String,
    Table,
    Text,
    text,
)

from reminder_engine.models.types import UTCDateTime

# Metadata for all tables
metadata = MetaData()

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", String(36), primary_key=True, default=lambda: str(uuid4())),
    # Appointment details
    Column("title", Text, nullable=False),
    Column("type", Text, nullable=False),
    Column("date", Date, nullable=False),
    # 24h HH:MM, zero padded so equal slots compare equal
    Column("time", String(5), nullable=False),
    # Client and case references
    Column("client", Text, nullable=False),
    Column("case_reference", Text, nullable=True),
    Column("description", Text, nullable=True),
    # Status management
    Column("status", String(20), nullable=False, server_default="scheduled"),
    # Audit fields
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'completed', 'cancelled', 'rescheduled')",
        name="appointments_status_check",
    ),
    Index("idx_appointments_date_time", "date", "time"),
    Index("idx_appointments_status", "status"),
    # One active appointment per slot
    Index(
        "uq_appointments_active_slot",
        "date",
        "time",
        unique=True,
        postgresql_where=text("status <> 'cancelled'"),
        sqlite_where=text("status <> 'cancelled'"),
    ),
)
