"""Appointment endpoints."""

from fastapi import APIRouter, Query, status

from reminder_engine.core.exceptions import NotFoundException
from reminder_engine.dependencies import Appointments
from reminder_engine.schemas.appointments import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentUpdate,
)

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book new appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    service: Appointments,
) -> AppointmentResponse:
    """
    Book a new appointment, optionally scheduling its reminders.

    Args:
        data: Appointment creation data
        service: Appointment service

    Returns:
        Created appointment
    """
    return await service.create_appointment(data)


@router.get(
    "/",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    service: Appointments,
    date: str | None = Query(None, description="Exact date, YYYY-MM-DD"),
    client: str | None = Query(None, description="Case-insensitive client substring"),
    status_filter: str | None = Query(None, alias="status"),
    type: str | None = Query(None),
) -> list[AppointmentResponse]:
    """
    List appointments ordered by date and time.

    Args:
        service: Appointment service
        date: Filter by date
        client: Filter by client
        status_filter: Filter by status
        type: Filter by appointment type

    Returns:
        Matching appointments
    """
    filters = {
        "date": date,
        "client": client,
        "status": status_filter,
        "type": type,
    }
    return await service.list_appointments(
        {key: value for key, value in filters.items() if value is not None}
    )


@router.get(
    "/range",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments in a date range",
)
async def list_appointments_by_date_range(
    service: Appointments,
    start_date: str = Query(..., description="First date, YYYY-MM-DD"),
    end_date: str = Query(..., description="Last date, YYYY-MM-DD"),
) -> list[AppointmentResponse]:
    """List appointments between two dates, both inclusive."""
    return await service.list_appointments_by_date_range(start_date, end_date)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: str,
    service: Appointments,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Raises:
        NotFoundException: If appointment not found
    """
    return await service.get_appointment(appointment_id)


@router.put(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment",
)
async def update_appointment(
    appointment_id: str,
    data: AppointmentUpdate,
    service: Appointments,
) -> AppointmentResponse:
    """
    Update an existing appointment.

    Moving it to another slot reschedules it and cancels its pending reminders.

    Args:
        appointment_id: Appointment ID
        data: Update data
        service: Appointment service

    Returns:
        Updated appointment
    """
    return await service.update_appointment(appointment_id, data)


@router.patch(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: str,
    service: Appointments,
) -> AppointmentResponse:
    """Cancel an appointment and its pending notifications."""
    return await service.cancel_appointment(appointment_id)


@router.patch(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Complete appointment",
)
async def complete_appointment(
    appointment_id: str,
    service: Appointments,
) -> AppointmentResponse:
    """Mark an appointment as completed."""
    return await service.complete_appointment(appointment_id)


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Appointments"],
    summary="Delete appointment",
)
async def delete_appointment(
    appointment_id: str,
    service: Appointments,
) -> None:
    """
    Permanently delete an appointment.

    Raises:
        NotFoundException: If appointment not found
    """
    if not await service.delete_appointment(appointment_id):
        raise NotFoundException("Appointment not found")
