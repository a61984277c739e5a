"""Tests for reminder scheduling, immediate sends and the notification queue."""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from reminder_engine.config import ReminderInterval
from reminder_engine.core.exceptions import (
    ConfigurationError,
    NotFoundException,
    ValidationException,
)
from reminder_engine.repositories.notification_repository import NotificationRepository
from reminder_engine.schemas.notifications import (
    NotificationChannel,
    NotificationStatus,
    ReminderPreferences,
)
from reminder_engine.services.appointment_service import AppointmentService
from reminder_engine.services.notification_service import (
    NotificationService,
    validate_notification_config,
)
from reminder_engine.services.providers import ProviderRegistry


@pytest.fixture
async def appointment(appointment_service: AppointmentService, sample_appointment_data: dict):
    """Appointment on 2030-01-10 at 14:00, 30 hours after the frozen clock."""
    return await appointment_service.create_appointment(sample_appointment_data)


def _record_values(appointment, **overrides) -> dict:
    values = {
        "appointment_id": appointment.id,
        "user_id": appointment.client,
        "channel": NotificationChannel.EMAIL,
        "template_name": "APPOINTMENT_REMINDER_24H",
        "recipient": {"channel": "email", "address": "maria@example.com"},
        "subject": "Reminder",
        "message": "Hello",
        "max_retries": 3,
    }
    values.update(overrides)
    return values


@pytest.mark.asyncio
async def test_schedule_reminders_email_only(
    notification_service: NotificationService,
    appointment,
    clock,
) -> None:
    """An appointment 30h ahead gets one pending email per interval."""
    created = await notification_service.schedule_reminders(
        appointment, ReminderPreferences(email="maria@example.com")
    )

    assert len(created) == 2
    assert {n.channel for n in created} == {NotificationChannel.EMAIL}
    assert {n.status for n in created} == {NotificationStatus.PENDING}
    assert sorted(n.template_name for n in created) == [
        "APPOINTMENT_REMINDER_24H",
        "APPOINTMENT_REMINDER_2H",
    ]
    assert created[0].scheduled_for == clock.now + timedelta(hours=6)
    assert all("{{" not in n.message for n in created)
    assert "10/01/2030" in created[0].message


@pytest.mark.asyncio
async def test_schedule_reminders_counts_addressed_channels(
    notification_service: NotificationService,
    appointment,
) -> None:
    """Enabled channels without an address are skipped."""
    preferences = ReminderPreferences(
        email="maria@example.com",
        phone="+55 11 99999-0000",
        enabled_types=[
            NotificationChannel.EMAIL,
            NotificationChannel.SMS,
            NotificationChannel.PUSH,
            NotificationChannel.EMAIL,
        ],
    )

    created = await notification_service.schedule_reminders(appointment, preferences)

    assert len(created) == 4
    assert {n.channel for n in created} == {NotificationChannel.EMAIL, NotificationChannel.SMS}


@pytest.mark.asyncio
async def test_schedule_reminders_skips_past_intervals(
    notification_service: NotificationService,
    appointment,
    clock,
) -> None:
    """Only the 2h reminder is left once the 24h reminder time has passed."""
    clock.advance(hours=20)

    created = await notification_service.schedule_reminders(
        appointment, ReminderPreferences(email="maria@example.com")
    )

    assert [n.template_name for n in created] == ["APPOINTMENT_REMINDER_2H"]


@pytest.mark.asyncio
async def test_schedule_reminders_for_cancelled_appointment_rejected(
    appointment_service: AppointmentService,
    appointment,
) -> None:
    """Cancelled appointments cannot get new reminders."""
    await appointment_service.cancel_appointment(appointment.id)

    with pytest.raises(ValidationException):
        await appointment_service.schedule_reminders(appointment.id, {"email": "maria@example.com"})


@pytest.mark.asyncio
async def test_failed_delivery_retries_then_fails(
    notification_service: NotificationService,
    providers,
    appointment,
    clock,
) -> None:
    """Three failures with max_retries=3 end in failed with retry_count=3."""
    providers[NotificationChannel.EMAIL].succeed = False
    providers[NotificationChannel.EMAIL].error = "SMTP connection failure"
    created = await notification_service.schedule_reminders(
        appointment, ReminderPreferences(email="maria@example.com")
    )
    first = min(created, key=lambda n: n.scheduled_for)
    clock.now = first.scheduled_for

    result = await notification_service.process_notification_queue()
    assert result.model_dump() == {"processed": 1, "successful": 0, "failed": 1}
    record = await notification_service.get_notification(first.id)
    assert record.status == NotificationStatus.PENDING
    assert record.retry_count == 1
    assert record.scheduled_for == clock.now + timedelta(minutes=5)
    assert record.error_message == "SMTP connection failure"

    clock.advance(minutes=5)
    await notification_service.process_notification_queue()
    record = await notification_service.get_notification(first.id)
    assert record.retry_count == 2
    assert record.scheduled_for == clock.now + timedelta(minutes=15)

    clock.advance(minutes=15)
    await notification_service.process_notification_queue()
    record = await notification_service.get_notification(first.id)
    assert record.status == NotificationStatus.FAILED
    assert record.retry_count == 3

    clock.advance(hours=2)
    result = await notification_service.process_notification_queue()
    assert result.processed == 0
    assert len(providers[NotificationChannel.EMAIL].sent) == 3


@pytest.mark.asyncio
async def test_successful_delivery_marks_sent(
    notification_service: NotificationService,
    appointment,
    clock,
) -> None:
    """A delivered notification is sent with its send time recorded."""
    created = await notification_service.schedule_reminders(
        appointment, ReminderPreferences(email="maria@example.com")
    )
    first = min(created, key=lambda n: n.scheduled_for)
    clock.now = first.scheduled_for + timedelta(minutes=1)

    result = await notification_service.process_notification_queue()

    assert result.model_dump() == {"processed": 1, "successful": 1, "failed": 0}
    record = await notification_service.get_notification(first.id)
    assert record.status == NotificationStatus.SENT
    assert record.sent_at == clock.now
    assert record.claim_token is None


@pytest.mark.asyncio
async def test_queue_only_processes_due_notifications(
    db_session,
    notification_service: NotificationService,
    appointment,
    clock,
) -> None:
    """One due, one not-due and one failed notification: only the due one is processed."""
    repository = NotificationRepository(db_session)
    due = await repository.create(
        _record_values(appointment, scheduled_for=clock.now - timedelta(minutes=1)), clock.now
    )
    await repository.create(
        _record_values(appointment, scheduled_for=clock.now + timedelta(hours=1)), clock.now
    )
    await repository.create(
        _record_values(
            appointment,
            scheduled_for=clock.now - timedelta(hours=1),
            status=NotificationStatus.FAILED,
            retry_count=3,
        ),
        clock.now,
    )

    result = await notification_service.process_notification_queue()

    assert result.processed == 1
    assert (await notification_service.get_notification(due.id)).status == NotificationStatus.SENT


@pytest.mark.asyncio
async def test_queue_respects_batch_size_and_order(
    db_session,
    registry: ProviderRegistry,
    providers,
    test_settings,
    appointment,
    clock,
) -> None:
    """A batch takes the earliest due notifications first."""
    repository = NotificationRepository(db_session)
    for minutes in (3, 1, 2):
        await repository.create(
            _record_values(
                appointment,
                scheduled_for=clock.now - timedelta(minutes=minutes),
                message=f"{minutes} minutes ago",
            ),
            clock.now,
        )
    service = NotificationService(
        db_session,
        registry=registry,
        config=test_settings.model_copy(update={"queue_batch_size": 2}),
        clock=clock,
    )

    result = await service.process_notification_queue()

    assert result.processed == 2
    sent = [n.message for n in providers[NotificationChannel.EMAIL].sent]
    assert sent == ["3 minutes ago", "2 minutes ago"]


@pytest.mark.asyncio
async def test_claim_prevents_double_processing(db_session, appointment, clock) -> None:
    """A claimed notification is not claimed again until its lease runs out."""
    repository = NotificationRepository(db_session)
    created = await repository.create(
        _record_values(appointment, scheduled_for=clock.now), clock.now
    )
    lease_until = clock.now + timedelta(minutes=10)

    first = await repository.claim_due(clock.now, 10, "token-a", lease_until)
    second = await repository.claim_due(clock.now, 10, "token-b", lease_until)

    assert [n.id for n in first] == [created.id]
    assert first[0].status == NotificationStatus.PROCESSING
    assert second == []

    # Lease expired: the notification is claimable again and the old token is void
    later = lease_until + timedelta(seconds=1)
    reclaimed = await repository.claim_due(later, 10, "token-c", later + timedelta(minutes=10))
    assert [n.id for n in reclaimed] == [created.id]
    assert await repository.mark_sent(created.id, "token-a", later) is None

    sent = await repository.mark_sent(created.id, "token-c", later)
    assert sent.status == NotificationStatus.SENT


@pytest.mark.asyncio
async def test_queue_error_releases_claim(
    db_session,
    providers,
    test_settings,
    appointment,
    clock,
) -> None:
    """An unexpected error on one notification releases it and the batch goes on."""

    class ExplodingRegistry(ProviderRegistry):
        async def dispatch(self, notification):
            if notification.message == "explode":
                raise RuntimeError("provider registry corrupted")
            return await super().dispatch(notification)

    registry = ExplodingRegistry(providers.values())
    repository = NotificationRepository(db_session)
    broken = await repository.create(
        _record_values(
            appointment, scheduled_for=clock.now - timedelta(minutes=2), message="explode"
        ),
        clock.now,
    )
    fine = await repository.create(
        _record_values(appointment, scheduled_for=clock.now - timedelta(minutes=1)), clock.now
    )
    service = NotificationService(db_session, registry=registry, config=test_settings, clock=clock)

    result = await service.process_notification_queue()

    assert result.model_dump() == {"processed": 2, "successful": 1, "failed": 1}
    released = await service.get_notification(broken.id)
    assert released.status == NotificationStatus.PENDING
    assert released.retry_count == 0
    assert (await service.get_notification(fine.id)).status == NotificationStatus.SENT


@pytest.mark.asyncio
async def test_cancel_notifications_only_touches_pending(
    db_session,
    notification_service: NotificationService,
    appointment,
    clock,
) -> None:
    """Sent, failed and in-flight notifications survive a cancellation."""
    repository = NotificationRepository(db_session)
    pending = await repository.create(
        _record_values(appointment, scheduled_for=clock.now + timedelta(hours=1)), clock.now
    )
    settled = (NotificationStatus.SENT, NotificationStatus.FAILED, NotificationStatus.PROCESSING)
    for status in settled:
        await repository.create(
            _record_values(appointment, scheduled_for=clock.now, status=status), clock.now
        )

    count = await notification_service.cancel_notifications(appointment.id)

    assert count == 1
    records = await notification_service.list_notifications(appointment.id)
    statuses = {record.id: record.status for record in records}
    assert statuses[pending.id] == NotificationStatus.CANCELLED
    assert sorted(s.value for s in statuses.values()) == [
        "cancelled",
        "failed",
        "processing",
        "sent",
    ]


@pytest.mark.asyncio
async def test_send_immediate_notification(
    notification_service: NotificationService,
    providers,
    appointment,
) -> None:
    """An immediate send is rendered, delivered and stored as sent."""
    result = await notification_service.send_immediate_notification(
        appointment,
        "APPOINTMENT_CONFIRMATION",
        {"channel": "sms", "number": "+55 11 99999-0000"},
        "sms",
    )

    assert result.success is True
    sent = providers[NotificationChannel.SMS].sent
    assert len(sent) == 1
    assert "Maria Silva" in sent[0].message
    record = await notification_service.get_notification(sent[0].id)
    assert record.status == NotificationStatus.SENT


@pytest.mark.asyncio
async def test_send_immediate_notification_failure_is_final(
    notification_service: NotificationService,
    providers,
    appointment,
    clock,
) -> None:
    """A failed immediate send is not retried by the queue."""
    providers[NotificationChannel.PUSH].succeed = False
    providers[NotificationChannel.PUSH].error = "invalid push token"

    result = await notification_service.send_immediate_notification(
        appointment, "APPOINTMENT_CANCELLED", {"channel": "push", "token": "device-1"}, "push"
    )

    assert result.success is False
    assert result.error == "invalid push token"
    sent = providers[NotificationChannel.PUSH].sent
    record = await notification_service.get_notification(sent[0].id)
    assert record.status == NotificationStatus.FAILED
    assert record.retry_count == 1

    clock.advance(hours=1)
    assert (await notification_service.process_notification_queue()).processed == 0


@pytest.mark.asyncio
async def test_send_immediate_notification_rejects_bad_input(
    notification_service: NotificationService,
    appointment,
) -> None:
    """Unknown templates and mismatched recipients are validation errors."""
    with pytest.raises(ValidationException) as exc_info:
        await notification_service.send_immediate_notification(
            appointment,
            "NO_SUCH_TEMPLATE",
            {"channel": "email", "address": "a@example.com"},
            "email",
        )
    assert exc_info.value.field == "template_name"

    with pytest.raises(ValidationException) as exc_info:
        await notification_service.send_immediate_notification(
            appointment,
            "APPOINTMENT_CONFIRMATION",
            {"channel": "email", "address": "a@example.com"},
            "sms",
        )
    assert exc_info.value.field == "recipient"


def test_retry_delay_uses_list_then_fallback(notification_service: NotificationService) -> None:
    """Delays follow the configured list and fall back past its end."""
    delays = [notification_service.retry_delay(count) for count in range(5)]
    assert delays == [
        timedelta(minutes=5),
        timedelta(minutes=15),
        timedelta(minutes=60),
        timedelta(minutes=60),
        timedelta(minutes=60),
    ]


@pytest.mark.asyncio
async def test_get_notification_not_found(notification_service: NotificationService) -> None:
    """Unknown notification IDs raise."""
    with pytest.raises(NotFoundException):
        await notification_service.get_notification("missing")


def test_validate_notification_config(test_settings, registry: ProviderRegistry) -> None:
    """Startup validation catches unknown templates, bad retries and missing providers."""
    validate_notification_config(test_settings, registry)

    broken = test_settings.model_copy(
        update={
            "reminder_intervals": [ReminderInterval(hours=24, template="MISSING")],
            "retry_delay_minutes": [],
        }
    )
    with pytest.raises(ConfigurationError, match="MISSING") as exc_info:
        validate_notification_config(broken, registry)
    assert "retry delay list is empty" in str(exc_info.value)

    partial = ProviderRegistry([registry.get(NotificationChannel.EMAIL)])
    with pytest.raises(ConfigurationError, match="sms"):
        validate_notification_config(test_settings, partial)


@pytest.mark.asyncio
async def test_reminder_endpoints(
    client: AsyncClient,
    sample_appointment_data: dict,
) -> None:
    """Schedule reminders, list them and fetch one over HTTP."""
    create_response = await client.post("/api/v1/appointments/", json=sample_appointment_data)
    appointment_id = create_response.json()["id"]

    response = await client.post(
        f"/api/v1/notifications/appointments/{appointment_id}/reminders",
        json={"email": "maria@example.com", "enabled_types": ["email"]},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["scheduled"] == 2
    assert "claim_token" not in data["notifications"][0]

    response = await client.get(f"/api/v1/notifications/appointments/{appointment_id}")
    assert response.status_code == 200
    notifications = response.json()
    assert len(notifications) == 2

    response = await client.get(f"/api/v1/notifications/{notifications[0]['id']}")
    assert response.status_code == 200
    assert response.json()["recipient"] == {"channel": "email", "address": "maria@example.com"}

    response = await client.get("/api/v1/notifications/missing")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_notify_and_process_queue_endpoints(
    client: AsyncClient,
    sample_appointment_data: dict,
) -> None:
    """Send an immediate notification and run the queue over HTTP."""
    create_response = await client.post("/api/v1/appointments/", json=sample_appointment_data)
    appointment_id = create_response.json()["id"]

    response = await client.post(
        f"/api/v1/notifications/appointments/{appointment_id}/notify",
        json={
            "template_name": "APPOINTMENT_CONFIRMATION",
            "channel": "email",
            "recipient": {"channel": "email", "address": "maria@example.com"},
        },
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "error": None}

    response = await client.post(
        f"/api/v1/notifications/appointments/{appointment_id}/notify",
        json={
            "template_name": "UNKNOWN",
            "channel": "email",
            "recipient": {"channel": "email", "address": "maria@example.com"},
        },
    )
    assert response.status_code == 422
    assert response.json()["field"] == "template_name"

    response = await client.post("/api/v1/notifications/process-queue")
    assert response.status_code == 200
    assert response.json() == {"processed": 0, "successful": 0, "failed": 0}
