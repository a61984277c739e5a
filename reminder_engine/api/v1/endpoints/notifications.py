"""Notification endpoints."""

from fastapi import APIRouter, status

from reminder_engine.dependencies import Appointments, Notifications
from reminder_engine.schemas.notifications import (
    DeliveryResult,
    ImmediateNotificationRequest,
    NotificationRecord,
    QueueProcessingResult,
    ReminderPreferences,
    ScheduleRemindersResponse,
)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post(
    "/appointments/{appointment_id}/reminders",
    response_model=ScheduleRemindersResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule appointment reminders",
)
async def schedule_reminders(
    appointment_id: str,
    preferences: ReminderPreferences,
    service: Appointments,
) -> ScheduleRemindersResponse:
    """
    Schedule reminders for an appointment.

    One reminder is created per configured interval and per enabled channel
    the preferences hold an address for. Intervals already in the past are
    skipped.

    Args:
        appointment_id: Appointment ID
        preferences: Recipient addresses and enabled channels
        service: Appointment service

    Returns:
        Created reminders
    """
    created = await service.schedule_reminders(appointment_id, preferences)
    return ScheduleRemindersResponse(scheduled=len(created), notifications=created)


@router.post(
    "/appointments/{appointment_id}/notify",
    response_model=DeliveryResult,
    status_code=status.HTTP_200_OK,
    summary="Send notification now",
)
async def send_immediate_notification(
    appointment_id: str,
    data: ImmediateNotificationRequest,
    service: Appointments,
) -> DeliveryResult:
    """
    Render a template for an appointment and deliver it right away.

    A failed delivery is reported in the result, not as an error status.

    Args:
        appointment_id: Appointment ID
        data: Template, channel and recipient
        service: Appointment service

    Returns:
        Delivery outcome
    """
    return await service.send_immediate_notification(
        appointment_id, data.template_name, data.recipient, data.channel
    )


@router.get(
    "/appointments/{appointment_id}",
    response_model=list[NotificationRecord],
    status_code=status.HTTP_200_OK,
    summary="List appointment notifications",
)
async def list_appointment_notifications(
    appointment_id: str,
    service: Notifications,
) -> list[NotificationRecord]:
    """List every notification of an appointment, earliest first."""
    return await service.list_notifications(appointment_id)


@router.get(
    "/{notification_id}",
    response_model=NotificationRecord,
    status_code=status.HTTP_200_OK,
    summary="Get notification by ID",
)
async def get_notification(
    notification_id: str,
    service: Notifications,
) -> NotificationRecord:
    """
    Get a notification with its delivery state.

    Raises:
        NotFoundException: If notification not found
    """
    return await service.get_notification(notification_id)


@router.post(
    "/process-queue",
    response_model=QueueProcessingResult,
    status_code=status.HTTP_200_OK,
    summary="Process notification queue",
)
async def process_notification_queue(service: Notifications) -> QueueProcessingResult:
    """
    Deliver the due notifications of one batch outside the worker schedule.

    Returns:
        Counts of processed, successful and failed notifications
    """
    return await service.process_notification_queue()
