"""Appointment store over the appointments table."""

from datetime import date, datetime
from typing import Any

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.core.exceptions import AppointmentConflictException
from reminder_engine.models.appointments import appointments
from reminder_engine.schemas.appointments import (
    AppointmentFilters,
    AppointmentResponse,
    AppointmentStatus,
)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class AppointmentRepository:
    """CRUD and query operations for appointments."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def create(self, values: dict[str, Any], now: datetime) -> AppointmentResponse:
        """
        Insert a scheduled appointment.

        Raises:
            AppointmentConflictException: If an active appointment took the slot
                between the conflict check and the insert
        """
        stmt = (
            insert(appointments)
            .values(
                **values,
                status=AppointmentStatus.SCHEDULED.value,
                created_at=now,
                updated_at=now,
            )
            .returning(appointments)
        )

        try:
            result = await self.db.execute(stmt)
            row = result.fetchone()
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AppointmentConflictException(str(values["date"]), values["time"])

        return AppointmentResponse.model_validate(dict(row._mapping))

    async def find_by_id(self, appointment_id: str) -> AppointmentResponse | None:
        """Get appointment by ID."""
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.fetchone()
        if not row:
            return None
        return AppointmentResponse.model_validate(dict(row._mapping))

    async def find_all(
        self, filters: AppointmentFilters | None = None
    ) -> list[AppointmentResponse]:
        """List appointments matching every given filter, ordered by date and time."""
        conditions = []

        if filters is not None:
            if filters.date:
                conditions.append(appointments.c.date == filters.date)

            if filters.client:
                pattern = f"%{_escape_like(filters.client)}%"
                conditions.append(appointments.c.client.ilike(pattern, escape="\\"))

            if filters.status:
                conditions.append(appointments.c.status == filters.status.value)

            if filters.type:
                conditions.append(appointments.c.type == filters.type)

        stmt = select(appointments).order_by(appointments.c.date, appointments.c.time)
        if conditions:
            stmt = stmt.where(and_(*conditions))

        result = await self.db.execute(stmt)
        return [AppointmentResponse.model_validate(dict(row._mapping)) for row in result.fetchall()]

    async def find_by_date_range(self, start: date, end: date) -> list[AppointmentResponse]:
        """List appointments whose date falls within [start, end]."""
        stmt = (
            select(appointments)
            .where(appointments.c.date >= start, appointments.c.date <= end)
            .order_by(appointments.c.date, appointments.c.time)
        )
        result = await self.db.execute(stmt)
        return [AppointmentResponse.model_validate(dict(row._mapping)) for row in result.fetchall()]

    async def update(
        self,
        appointment_id: str,
        values: dict[str, Any],
        now: datetime,
    ) -> AppointmentResponse | None:
        """
        Update fields of an appointment.

        Raises:
            AppointmentConflictException: If the new slot is taken by another active appointment
        """
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(**values, updated_at=now)
            .returning(appointments)
        )

        try:
            result = await self.db.execute(stmt)
            row = result.fetchone()
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AppointmentConflictException(
                str(values.get("date", "")), values.get("time", "")
            )

        if not row:
            return None
        return AppointmentResponse.model_validate(dict(row._mapping))

    async def update_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        now: datetime,
    ) -> AppointmentResponse | None:
        """Set the status of an appointment without re-checking its slot."""
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(status=status.value, updated_at=now)
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        await self.db.commit()

        if not row:
            return None
        return AppointmentResponse.model_validate(dict(row._mapping))

    async def delete(self, appointment_id: str) -> bool:
        """Permanently delete an appointment."""
        result = await self.db.execute(
            delete(appointments).where(appointments.c.id == appointment_id)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def has_conflict(
        self,
        slot_date: date,
        slot_time: str,
        exclude_id: str | None = None,
    ) -> bool:
        """Check whether an active appointment already occupies the slot."""
        conditions = [
            appointments.c.date == slot_date,
            appointments.c.time == slot_time,
            appointments.c.status != AppointmentStatus.CANCELLED.value,
        ]
        if exclude_id:
            conditions.append(appointments.c.id != exclude_id)

        result = await self.db.execute(
            select(appointments.c.id).where(and_(*conditions)).limit(1)
        )
        return result.first() is not None
