"""Appointment service for business logic."""

from collections.abc import Mapping
from datetime import date
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.config import Settings, get_settings
from reminder_engine.core.clock import Clock, slot_to_utc, utcnow
from reminder_engine.core.exceptions import (
    AppointmentConflictException,
    NotFoundException,
    ValidationException,
)
from reminder_engine.repositories.appointment_repository import AppointmentRepository
from reminder_engine.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentUpdate,
    parse_date,
)
from reminder_engine.schemas.notifications import (
    DeliveryResult,
    NotificationChannel,
    NotificationRecord,
    Recipient,
    ReminderPreferences,
)
from reminder_engine.services.notification_service import NotificationService

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Optional columns an update may set back to null
CLEARABLE_FIELDS = frozenset({"case_reference", "description"})


def _parse(model: type[ModelT], data: ModelT | Mapping[str, Any]) -> ModelT:
    """Validate raw input, turning the first schema error into a field-specific rejection."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or None
        raise ValidationException(error["msg"].removeprefix("Value error, "), field=field)


class AppointmentService:
    """Service for managing appointments."""

    def __init__(
        self,
        db: AsyncSession,
        notification_service: NotificationService | None = None,
        config: Settings | None = None,
        clock: Clock = utcnow,
    ):
        """Initialize service with database session."""
        self.db = db
        self.config = config or get_settings()
        self.clock = clock
        self.repository = AppointmentRepository(db)
        self.notifications = notification_service or NotificationService(
            db, config=self.config, clock=clock
        )

    def _ensure_not_past(self, slot_date: date, slot_time: str) -> None:
        if slot_to_utc(slot_date, slot_time, self.config.timezone) < self.clock():
            raise ValidationException(
                "Cannot book an appointment for a past date and time",
                field="date",
            )

    async def create_appointment(
        self,
        data: AppointmentCreate | Mapping[str, Any],
    ) -> AppointmentResponse:
        """
        Book a new appointment.

        Args:
            data: Appointment creation data, optionally with reminder preferences

        Returns:
            Created appointment

        Raises:
            ValidationException: If the date or time is malformed or in the past
            AppointmentConflictException: If an active appointment occupies the slot
        """
        data = _parse(AppointmentCreate, data)
        self._ensure_not_past(data.date, data.time)

        if await self.repository.has_conflict(data.date, data.time):
            raise AppointmentConflictException(data.date.isoformat(), data.time)

        appointment = await self.repository.create(
            data.model_dump(exclude={"reminders"}),
            self.clock(),
        )
        logger.info(
            "appointment_created",
            appointment_id=appointment.id,
            date=appointment.date.isoformat(),
            time=appointment.time,
        )

        if data.reminders is not None:
            try:
                await self.notifications.schedule_reminders(appointment, data.reminders)
            except Exception as e:
                # Booking stands even when reminders could not be queued
                logger.warning(
                    "failed_to_schedule_reminders",
                    appointment_id=appointment.id,
                    error=str(e),
                )

        return appointment

    async def get_appointment(self, appointment_id: str) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
        """
        appointment = await self.repository.find_by_id(appointment_id)
        if appointment is None:
            raise NotFoundException("Appointment not found")
        return appointment

    async def list_appointments(
        self,
        filters: AppointmentFilters | Mapping[str, Any] | None = None,
    ) -> list[AppointmentResponse]:
        """List appointments matching all given filters."""
        if filters is not None:
            filters = _parse(AppointmentFilters, filters)
        return await self.repository.find_all(filters)

    async def list_appointments_by_date_range(
        self,
        start_date: date | str,
        end_date: date | str,
    ) -> list[AppointmentResponse]:
        """
        List appointments between two dates, both inclusive.

        Raises:
            ValidationException: If a date is malformed or the range is reversed
        """
        try:
            start = parse_date(start_date)
        except ValueError as e:
            raise ValidationException(str(e), field="start_date")
        try:
            end = parse_date(end_date)
        except ValueError as e:
            raise ValidationException(str(e), field="end_date")

        if end < start:
            raise ValidationException("end_date must not be before start_date", field="end_date")

        return await self.repository.find_by_date_range(start, end)

    async def update_appointment(
        self,
        appointment_id: str,
        data: AppointmentUpdate | Mapping[str, Any],
    ) -> AppointmentResponse:
        """
        Update an existing appointment.

        Moving the appointment to another slot re-runs the past-date and
        conflict checks, marks a scheduled appointment as rescheduled and
        cancels its pending reminders, which were timed for the old slot.
        Reminders given with the update are scheduled for the new slot.

        Raises:
            NotFoundException: If appointment not found
            ValidationException: If the new date or time is malformed or in the past,
                or the appointment is cancelled or completed and would change slot
            AppointmentConflictException: If the new slot is taken
        """
        data = _parse(AppointmentUpdate, data)
        existing = await self.get_appointment(appointment_id)

        update_values = {
            field: value
            for field, value in data.model_dump(exclude_unset=True, exclude={"reminders"}).items()
            if value is not None or field in CLEARABLE_FIELDS
        }

        slot_changed = False
        if "date" in update_values or "time" in update_values:
            new_date = update_values.get("date", existing.date)
            new_time = update_values.get("time", existing.time)

            if (new_date, new_time) != (existing.date, existing.time) and existing.status in (
                AppointmentStatus.CANCELLED,
                AppointmentStatus.COMPLETED,
            ):
                raise ValidationException(
                    f"Cannot move a {existing.status.value} appointment to another slot",
                    field="date",
                )

            self._ensure_not_past(new_date, new_time)

            if await self.repository.has_conflict(new_date, new_time, exclude_id=appointment_id):
                raise AppointmentConflictException(new_date.isoformat(), new_time)

            slot_changed = (new_date, new_time) != (existing.date, existing.time)
            if slot_changed and existing.status == AppointmentStatus.SCHEDULED:
                update_values["status"] = AppointmentStatus.RESCHEDULED.value

        if not update_values:
            return existing

        appointment = await self.repository.update(appointment_id, update_values, self.clock())
        if appointment is None:
            raise NotFoundException("Appointment not found")

        logger.info(
            "appointment_updated",
            appointment_id=appointment_id,
            fields=sorted(update_values),
        )

        if slot_changed:
            await self.notifications.cancel_notifications(appointment_id)
            if data.reminders is not None:
                await self.notifications.schedule_reminders(appointment, data.reminders)

        return appointment

    async def _set_status(
        self, appointment_id: str, status: AppointmentStatus
    ) -> AppointmentResponse:
        appointment = await self.repository.update_status(appointment_id, status, self.clock())
        if appointment is None:
            raise NotFoundException("Appointment not found")
        logger.info(
            "appointment_status_changed",
            appointment_id=appointment_id,
            status=status.value,
        )
        return appointment

    async def cancel_appointment(self, appointment_id: str) -> AppointmentResponse:
        """
        Cancel an appointment together with its pending notifications.

        Raises:
            NotFoundException: If appointment not found
        """
        appointment = await self._set_status(appointment_id, AppointmentStatus.CANCELLED)
        await self.notifications.cancel_notifications(appointment_id)
        return appointment

    async def complete_appointment(self, appointment_id: str) -> AppointmentResponse:
        """
        Mark an appointment as completed.

        Raises:
            NotFoundException: If appointment not found
        """
        return await self._set_status(appointment_id, AppointmentStatus.COMPLETED)

    async def delete_appointment(self, appointment_id: str) -> bool:
        """
        Permanently delete an appointment and cancel its pending notifications.

        Returns:
            True if the appointment existed
        """
        deleted = await self.repository.delete(appointment_id)
        if deleted:
            await self.notifications.cancel_notifications(appointment_id)
            logger.info("appointment_deleted", appointment_id=appointment_id)
        return deleted

    async def schedule_reminders(
        self,
        appointment_id: str,
        preferences: ReminderPreferences | Mapping[str, Any],
    ) -> list[NotificationRecord]:
        """
        Schedule reminders for a booked appointment.

        Raises:
            NotFoundException: If appointment not found
            ValidationException: If the appointment is cancelled or completed
        """
        preferences = _parse(ReminderPreferences, preferences)
        appointment = await self.get_appointment(appointment_id)

        if appointment.status in (AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED):
            raise ValidationException(
                f"Cannot schedule reminders for a {appointment.status.value} appointment",
                field="appointment_id",
            )

        return await self.notifications.schedule_reminders(appointment, preferences)

    async def send_immediate_notification(
        self,
        appointment_id: str,
        template_name: str,
        recipient: Recipient | Mapping[str, Any],
        channel: NotificationChannel | str,
    ) -> DeliveryResult:
        """
        Send a templated notification about an appointment right away.

        Raises:
            NotFoundException: If appointment not found
            ValidationException: If the template, channel or recipient is invalid
        """
        appointment = await self.get_appointment(appointment_id)
        return await self.notifications.send_immediate_notification(
            appointment, template_name, recipient, channel
        )
