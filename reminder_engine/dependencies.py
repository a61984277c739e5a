"""FastAPI dependencies."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.config import settings
from reminder_engine.database import get_db
from reminder_engine.services.appointment_service import AppointmentService
from reminder_engine.services.notification_service import NotificationService
from reminder_engine.services.providers import ProviderRegistry, build_provider_registry


@lru_cache
def get_provider_registry() -> ProviderRegistry:
    """
    Get the process-wide delivery provider registry.

    Returns:
        Provider registry for the configured delivery mode
    """
    return build_provider_registry(settings)


def get_notification_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    registry: Annotated[ProviderRegistry, Depends(get_provider_registry)],
) -> NotificationService:
    """Build a notification service bound to the request session."""
    return NotificationService(db, registry=registry, config=settings)


def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    notification_service: Annotated[NotificationService, Depends(get_notification_service)],
) -> AppointmentService:
    """Build an appointment service sharing the request's notification service."""
    return AppointmentService(db, notification_service=notification_service, config=settings)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
Providers = Annotated[ProviderRegistry, Depends(get_provider_registry)]
Appointments = Annotated[AppointmentService, Depends(get_appointment_service)]
Notifications = Annotated[NotificationService, Depends(get_notification_service)]
