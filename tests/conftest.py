from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from reminder_engine.config import Settings
from reminder_engine.database import get_db
from reminder_engine.dependencies import get_provider_registry
from reminder_engine.main import app
from reminder_engine.models import metadata
from reminder_engine.schemas.notifications import (
    DeliveryResult,
    NotificationChannel,
    NotificationRecord,
    NotificationStatus,
)
from reminder_engine.services.appointment_service import AppointmentService
from reminder_engine.services.notification_service import NotificationService
from reminder_engine.services.providers import DeliveryProvider, ProviderRegistry

# Every test gets its own in-memory database; StaticPool keeps the single
# connection alive so all sessions see the same tables
TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeProvider(DeliveryProvider):
    """Provider with scripted outcomes that records what it was asked to send."""

    def __init__(self, channel: NotificationChannel, succeed: bool = True, error: str = "boom"):
        self.channel = channel
        self.succeed = succeed
        self.error = error
        self.sent: list[NotificationRecord] = []

    async def send(self, notification: NotificationRecord) -> DeliveryResult:
        self.sent.append(notification)
        if self.succeed:
            return DeliveryResult(success=True)
        return DeliveryResult(success=False, error=self.error)


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory database with the full schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    """Clock set 30 hours before the 2030-01-10 14:00 UTC slot used across the tests."""
    return FrozenClock(datetime(2030, 1, 9, 8, 0, tzinfo=UTC))


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the local environment."""
    return Settings(
        _env_file=None,
        timezone="UTC",
        max_retries=3,
        retry_delay_minutes=[5, 15, 60],
        fallback_retry_delay_minutes=60,
        queue_batch_size=50,
        queue_interval_seconds=0.01,
        claim_lease_seconds=600,
        delivery_mode="simulated",
        provider_timeout_seconds=1.0,
    )


@pytest.fixture
def providers() -> dict[NotificationChannel, FakeProvider]:
    """One succeeding fake provider per channel."""
    return {channel: FakeProvider(channel) for channel in NotificationChannel}


@pytest.fixture
def registry(providers: dict[NotificationChannel, FakeProvider]) -> ProviderRegistry:
    """Provider registry over the fake providers."""
    return ProviderRegistry(providers.values(), timeout_seconds=1.0)


@pytest.fixture
def notification_service(
    db_session: AsyncSession,
    registry: ProviderRegistry,
    test_settings: Settings,
    clock: FrozenClock,
) -> NotificationService:
    """Notification service on the test database with fake providers."""
    return NotificationService(db_session, registry=registry, config=test_settings, clock=clock)


@pytest.fixture
def appointment_service(
    db_session: AsyncSession,
    notification_service: NotificationService,
    test_settings: Settings,
    clock: FrozenClock,
) -> AppointmentService:
    """Appointment service sharing the test notification service."""
    return AppointmentService(
        db_session,
        notification_service=notification_service,
        config=test_settings,
        clock=clock,
    )


@pytest.fixture
def sample_appointment_data() -> dict:
    """Sample appointment data for testing."""
    return {
        "title": "Initial consultation",
        "type": "consultation",
        "date": "2030-01-10",
        "time": "14:00",
        "client": "Maria Silva",
        "case_reference": "CASE-2030-001",
        "description": "First meeting about the lease dispute",
    }


@pytest.fixture
def notification_factory() -> Callable[..., NotificationRecord]:
    """Build in-memory notification records for provider tests."""

    def build(**overrides: Any) -> NotificationRecord:
        now = datetime(2030, 1, 9, 8, 0, tzinfo=UTC)
        values = {
            "id": str(uuid4()),
            "appointment_id": str(uuid4()),
            "user_id": "Maria Silva",
            "channel": NotificationChannel.EMAIL,
            "status": NotificationStatus.PROCESSING,
            "scheduled_for": now,
            "template_name": "APPOINTMENT_REMINDER_24H",
            "recipient": {"channel": "email", "address": "maria@example.com"},
            "subject": "Reminder: your appointment is tomorrow",
            "message": "Hello Maria Silva",
            "retry_count": 0,
            "max_retries": 3,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        return NotificationRecord.model_validate(values)

    return build


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    registry: ProviderRegistry,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider_registry] = lambda: registry

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
