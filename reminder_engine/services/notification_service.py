"""Notification service: reminder scheduling, immediate sends and the delivery queue."""

from collections.abc import Mapping
from datetime import timedelta
from typing import Any
from uuid import uuid4

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_engine.config import Settings, get_settings
from reminder_engine.core.clock import Clock, slot_to_utc, utcnow
from reminder_engine.core.exceptions import (
    ConfigurationError,
    NotFoundException,
    ValidationException,
)
from reminder_engine.repositories.notification_repository import NotificationRepository
from reminder_engine.schemas.appointments import AppointmentResponse
from reminder_engine.schemas.notifications import (
    DeliveryResult,
    NotificationChannel,
    NotificationRecord,
    NotificationStatus,
    QueueProcessingResult,
    Recipient,
    ReminderPreferences,
    recipient_adapter,
)
from reminder_engine.services.providers import ProviderRegistry, build_provider_registry
from reminder_engine.services.template_catalog import (
    NOTIFICATION_TEMPLATES,
    appointment_variables,
    get_template,
    render_template,
)

logger = structlog.get_logger(__name__)


def validate_notification_config(config: Settings, registry: ProviderRegistry) -> None:
    """
    Check the reminder configuration against the template catalog and providers.

    Raises:
        ConfigurationError: If an interval names an unknown template or has a
            non-positive offset, the retry delay list is unusable, or a channel
            has no provider
    """
    problems = []

    for interval in config.reminder_intervals:
        if interval.template not in NOTIFICATION_TEMPLATES:
            problems.append(f"reminder interval uses unknown template {interval.template!r}")
        if interval.hours <= 0:
            problems.append(f"reminder interval offset must be positive, got {interval.hours}h")

    if not config.retry_delay_minutes:
        problems.append("retry delay list is empty")
    if any(delay < 0 for delay in config.retry_delay_minutes):
        problems.append("retry delays must not be negative")

    for channel in NotificationChannel:
        if channel not in registry.channels:
            problems.append(f"no provider registered for channel {channel.value!r}")

    if problems:
        raise ConfigurationError("; ".join(problems))


class NotificationService:
    """Service for scheduling and delivering appointment notifications."""

    def __init__(
        self,
        db: AsyncSession,
        registry: ProviderRegistry | None = None,
        config: Settings | None = None,
        clock: Clock = utcnow,
    ):
        """Initialize service with database session and delivery providers."""
        self.db = db
        self.config = config or get_settings()
        self.registry = registry or build_provider_registry(self.config)
        self.repository = NotificationRepository(db)
        self.clock = clock

    async def schedule_reminders(
        self,
        appointment: AppointmentResponse,
        preferences: ReminderPreferences,
    ) -> list[NotificationRecord]:
        """
        Create pending reminder notifications for an appointment.

        One notification is created per configured reminder interval and per
        enabled channel the preferences hold an address for. Intervals whose
        reminder time has already passed are skipped.

        Args:
            appointment: Appointment to remind about
            preferences: Recipient addresses and enabled channels

        Returns:
            Created notifications
        """
        starts_at = slot_to_utc(appointment.date, appointment.time, self.config.timezone)
        now = self.clock()
        variables = appointment_variables(appointment, self.config.date_display_format)

        rows = []
        for interval in self.config.reminder_intervals:
            scheduled_for = starts_at - timedelta(hours=interval.hours)
            if scheduled_for <= now:
                continue

            template = get_template(interval.template)
            if template is None:
                raise ConfigurationError(f"Unknown template {interval.template!r}")
            content = render_template(template, variables)

            for channel in dict.fromkeys(preferences.enabled_types):
                recipient = preferences.recipient_for(channel)
                if recipient is None:
                    continue

                rows.append(
                    {
                        "appointment_id": appointment.id,
                        "user_id": appointment.client,
                        "channel": channel,
                        "scheduled_for": scheduled_for,
                        "template_name": template.name,
                        "recipient": recipient.model_dump(mode="json"),
                        "subject": content.subject,
                        "message": content.message,
                        "max_retries": self.config.max_retries,
                    }
                )

        created = await self.repository.create_many(rows, now)
        logger.info(
            "reminders_scheduled",
            appointment_id=appointment.id,
            count=len(created),
        )
        return created

    async def send_immediate_notification(
        self,
        appointment: AppointmentResponse,
        template_name: str,
        recipient: Recipient | Mapping[str, Any],
        channel: NotificationChannel | str,
    ) -> DeliveryResult:
        """
        Render a template and deliver it right away.

        The notification is stored already claimed, so the queue never picks
        it up, and gets a single attempt.

        Args:
            appointment: Appointment the message is about
            template_name: Name of the template to render
            recipient: Recipient matching the channel
            channel: Delivery channel

        Returns:
            Delivery outcome

        Raises:
            ValidationException: If the template is unknown or the recipient
                does not match the channel
        """
        template = get_template(template_name)
        if template is None:
            raise ValidationException(f"Unknown template: {template_name}", field="template_name")

        try:
            channel = NotificationChannel(channel)
        except ValueError:
            raise ValidationException(f"Unknown channel: {channel}", field="channel")

        if isinstance(recipient, Mapping):
            try:
                recipient = recipient_adapter.validate_python(dict(recipient))
            except ValidationError as e:
                raise ValidationException(
                    f"Invalid recipient: {e.errors()[0]['msg']}", field="recipient"
                )

        if recipient.channel != channel.value:
            raise ValidationException(
                f"Recipient is for channel {recipient.channel}, not {channel.value}",
                field="recipient",
            )

        content = render_template(
            template, appointment_variables(appointment, self.config.date_display_format)
        )
        now = self.clock()
        claim_token = str(uuid4())

        notification = await self.repository.create(
            {
                "appointment_id": appointment.id,
                "user_id": appointment.client,
                "channel": channel,
                "status": NotificationStatus.PROCESSING,
                "scheduled_for": now,
                "template_name": template.name,
                "recipient": recipient.model_dump(mode="json"),
                "subject": content.subject,
                "message": content.message,
                "max_retries": 1,
                "claim_token": claim_token,
                "claimed_until": now + timedelta(seconds=self.config.claim_lease_seconds),
            },
            now,
        )
        logger.info(
            "immediate_notification_created",
            notification_id=notification.id,
            appointment_id=appointment.id,
            template=template.name,
            channel=channel.value,
        )

        return await self._deliver(notification, claim_token)

    async def process_notification_queue(self) -> QueueProcessingResult:
        """
        Deliver the due notifications of one batch.

        Notifications are claimed first, then attempted one by one in
        ``scheduled_for`` order. An unexpected error on one notification
        releases its claim and does not stop the batch.

        Returns:
            Counts of processed, successful and failed notifications
        """
        now = self.clock()
        claim_token = str(uuid4())
        claimed = await self.repository.claim_due(
            now=now,
            limit=self.config.queue_batch_size,
            claim_token=claim_token,
            lease_until=now + timedelta(seconds=self.config.claim_lease_seconds),
        )

        result = QueueProcessingResult(processed=len(claimed))
        for notification in claimed:
            try:
                delivery = await self._deliver(notification, claim_token)
            except Exception as e:
                result.failed += 1
                logger.error(
                    "notification_processing_error",
                    notification_id=notification.id,
                    error=str(e),
                )
                await self._release(notification, claim_token)
                continue

            if delivery.success:
                result.successful += 1
            else:
                result.failed += 1

        logger.info("notification_queue_processed", **result.model_dump())
        return result

    async def cancel_notifications(self, appointment_id: str) -> int:
        """
        Cancel every pending notification of an appointment.

        Sent, failed and in-flight notifications are left alone.

        Returns:
            Number of notifications cancelled
        """
        count = await self.repository.cancel_by_appointment_id(appointment_id, self.clock())
        logger.info("notifications_cancelled", appointment_id=appointment_id, count=count)
        return count

    async def list_notifications(self, appointment_id: str) -> list[NotificationRecord]:
        """List the notifications of an appointment."""
        return await self.repository.find_by_appointment_id(appointment_id)

    async def get_notification(self, notification_id: str) -> NotificationRecord:
        """
        Get notification by ID.

        Raises:
            NotFoundException: If notification not found
        """
        notification = await self.repository.find_by_id(notification_id)
        if notification is None:
            raise NotFoundException("Notification not found")
        return notification

    def retry_delay(self, retry_count: int) -> timedelta:
        """Delay before the next attempt after ``retry_count`` earlier failures."""
        delays = self.config.retry_delay_minutes
        if retry_count < len(delays):
            return timedelta(minutes=delays[retry_count])
        return timedelta(minutes=self.config.fallback_retry_delay_minutes)

    async def _deliver(self, notification: NotificationRecord, claim_token: str) -> DeliveryResult:
        result = await self.registry.dispatch(notification)

        if result.success:
            await self.repository.mark_sent(notification.id, claim_token, self.clock())
            logger.info(
                "notification_sent",
                notification_id=notification.id,
                channel=notification.channel.value,
            )
        else:
            await self._handle_failed_delivery(notification, claim_token, result.error)

        return result

    async def _handle_failed_delivery(
        self,
        notification: NotificationRecord,
        claim_token: str,
        error: str | None,
    ) -> None:
        now = self.clock()

        if notification.retry_count + 1 >= notification.max_retries:
            await self.repository.record_failure(
                notification.id, claim_token, error, now, retry_at=None
            )
            logger.warning(
                "notification_failed",
                notification_id=notification.id,
                channel=notification.channel.value,
                attempts=notification.retry_count + 1,
                error=error,
            )
            return

        retry_at = now + self.retry_delay(notification.retry_count)
        await self.repository.record_failure(
            notification.id, claim_token, error, now, retry_at=retry_at
        )
        logger.info(
            "notification_retry_scheduled",
            notification_id=notification.id,
            channel=notification.channel.value,
            retry_count=notification.retry_count + 1,
            retry_at=retry_at.isoformat(),
            error=error,
        )

    async def _release(self, notification: NotificationRecord, claim_token: str) -> None:
        await self.db.rollback()
        try:
            await self.repository.release_claim(notification.id, claim_token, self.clock())
        except Exception as e:
            # The lease expiry hands the notification back to the queue instead
            logger.error(
                "notification_claim_release_failed",
                notification_id=notification.id,
                error=str(e),
            )
