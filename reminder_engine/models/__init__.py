"""Database models."""

from sqlalchemy import MetaData

from reminder_engine.models.appointments import appointments
from reminder_engine.models.appointments import metadata as appointments_metadata
from reminder_engine.models.notifications import metadata as notifications_metadata
from reminder_engine.models.notifications import notifications

# Combined metadata used to create the schema
metadata = MetaData()
for table in appointments_metadata.tables.values():
    table.to_metadata(metadata)
for table in notifications_metadata.tables.values():
    table.to_metadata(metadata)

__all__ = [
    "appointments",
    "metadata",
    "notifications",
]
