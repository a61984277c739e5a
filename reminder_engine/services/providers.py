"""Delivery providers, one per notification channel."""

import asyncio
import random
import smtplib
import ssl
from abc import ABC, abstractmethod
from collections.abc import Iterable
from email.message import EmailMessage

import httpx
import structlog
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from reminder_engine.config import Settings
from reminder_engine.schemas.notifications import (
    DeliveryResult,
    EmailRecipient,
    NotificationChannel,
    NotificationRecord,
    PhoneRecipient,
    PushRecipient,
)

logger = structlog.get_logger(__name__)


class DeliveryProvider(ABC):
    """Delivers a rendered notification over one channel."""

    channel: NotificationChannel

    @abstractmethod
    async def send(self, notification: NotificationRecord) -> DeliveryResult:
        """Attempt delivery and report the outcome."""


class EmailProvider(DeliveryProvider):
    """Email delivery over SMTP."""

    channel = NotificationChannel.EMAIL

    def __init__(
        self,
        host: str,
        port: int,
        from_address: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        """Initialize provider with SMTP connection settings."""
        self.host = host
        self.port = port
        self.from_address = from_address
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    async def send(self, notification: NotificationRecord) -> DeliveryResult:
        """Send the notification as a plain text email."""
        recipient = notification.recipient
        if not isinstance(recipient, EmailRecipient):
            return DeliveryResult(success=False, error="Recipient email address missing")
        if not notification.subject:
            return DeliveryResult(success=False, error="Email subject missing")

        email = EmailMessage()
        email["From"] = self.from_address
        email["To"] = recipient.address
        email["Subject"] = notification.subject
        email.set_content(notification.message)

        try:
            await asyncio.to_thread(self._deliver, email)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(
                "email_delivery_failed",
                notification_id=notification.id,
                error=str(e),
            )
            return DeliveryResult(success=False, error=f"SMTP failure: {e}")

        logger.info("email_sent", notification_id=notification.id)
        return DeliveryResult(success=True)

    def _deliver(self, email: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.username:
                server.login(self.username, self.password)
            server.send_message(email)


class SmsProvider(DeliveryProvider):
    """SMS delivery through the Twilio REST API."""

    channel = NotificationChannel.SMS

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize provider with Twilio credentials."""
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def send(self, notification: NotificationRecord) -> DeliveryResult:
        """Send the notification body as a text message."""
        recipient = notification.recipient
        if not isinstance(recipient, PhoneRecipient):
            return DeliveryResult(success=False, error="Recipient phone number missing")

        url = f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                auth=(self.account_sid, self.auth_token),
            ) as client:
                response = await client.post(
                    url,
                    data={
                        "To": recipient.number,
                        "From": self.from_number,
                        "Body": notification.message,
                    },
                )
        except httpx.HTTPError as e:
            logger.warning("sms_delivery_failed", notification_id=notification.id, error=str(e))
            return DeliveryResult(success=False, error=f"SMS gateway failure: {e}")

        if response.status_code >= 400:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            logger.warning(
                "sms_delivery_rejected",
                notification_id=notification.id,
                status_code=response.status_code,
                error=detail,
            )
            return DeliveryResult(
                success=False,
                error=f"SMS gateway failure ({response.status_code}): {detail}",
            )

        logger.info("sms_sent", notification_id=notification.id)
        return DeliveryResult(success=True)


class PushProvider(DeliveryProvider):
    """Push delivery via Firebase Cloud Messaging."""

    channel = NotificationChannel.PUSH

    def __init__(self, app=None):
        """Initialize provider with an optional Firebase app (default app otherwise)."""
        self.app = app

    async def send(self, notification: NotificationRecord) -> DeliveryResult:
        """Send the notification to a single device token."""
        recipient = notification.recipient
        if not isinstance(recipient, PushRecipient):
            return DeliveryResult(success=False, error="Recipient push token missing")

        message = messaging.Message(
            token=recipient.token,
            notification=messaging.Notification(
                title=notification.subject or "Notification",
                body=notification.message,
            ),
            data={
                "appointment_id": notification.appointment_id,
                "notification_id": notification.id,
            },
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(sound="default"),
                ),
            ),
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(sound="default"),
            ),
        )

        try:
            message_id = await asyncio.to_thread(messaging.send, message, app=self.app)
        except messaging.UnregisteredError:
            logger.warning("push_token_unregistered", notification_id=notification.id)
            return DeliveryResult(success=False, error="invalid push token")
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            logger.warning("push_delivery_failed", notification_id=notification.id, error=str(e))
            return DeliveryResult(success=False, error=f"Push failure: {e}")

        logger.info("push_sent", notification_id=notification.id, message_id=message_id)
        return DeliveryResult(success=True)


class SimulatedProvider(DeliveryProvider):
    """Stand-in provider that logs the message and succeeds at a fixed rate."""

    recipient_types = {
        NotificationChannel.EMAIL: EmailRecipient,
        NotificationChannel.SMS: PhoneRecipient,
        NotificationChannel.PUSH: PushRecipient,
    }

    def __init__(
        self,
        channel: NotificationChannel,
        success_rate: float,
        failure_reason: str,
        rng: random.Random | None = None,
    ):
        """Initialize provider for a channel."""
        self.channel = channel
        self.success_rate = success_rate
        self.failure_reason = failure_reason
        self._rng = rng or random.Random()

    async def send(self, notification: NotificationRecord) -> DeliveryResult:
        """Pretend to deliver the notification."""
        if not isinstance(notification.recipient, self.recipient_types[self.channel]):
            return DeliveryResult(
                success=False,
                error=f"Recipient does not match channel {self.channel.value}",
            )

        logger.info(
            "simulated_delivery",
            channel=self.channel.value,
            notification_id=notification.id,
            subject=notification.subject,
        )

        if self._rng.random() >= self.success_rate:
            return DeliveryResult(success=False, error=self.failure_reason)
        return DeliveryResult(success=True)


class ProviderRegistry:
    """Static channel -> provider map with timeout-guarded dispatch."""

    def __init__(self, providers: Iterable[DeliveryProvider], timeout_seconds: float = 10.0):
        """Initialize registry with one provider per channel."""
        self._providers: dict[NotificationChannel, DeliveryProvider] = {
            provider.channel: provider for provider in providers
        }
        self.timeout_seconds = timeout_seconds

    @property
    def channels(self) -> frozenset[NotificationChannel]:
        """Channels that have a registered provider."""
        return frozenset(self._providers)

    def get(self, channel: NotificationChannel | str) -> DeliveryProvider | None:
        """Get the provider registered for a channel."""
        try:
            return self._providers.get(NotificationChannel(channel))
        except ValueError:
            return None

    async def dispatch(self, notification: NotificationRecord) -> DeliveryResult:
        """
        Deliver a notification through the provider for its channel.

        A missing provider, a timeout or an exception raised by the provider
        are all reported as a failed delivery.
        """
        provider = self.get(notification.channel)
        if provider is None:
            channel = getattr(notification.channel, "value", notification.channel)
            return DeliveryResult(
                success=False,
                error=f"No provider registered for channel {channel}",
            )

        try:
            return await asyncio.wait_for(provider.send(notification), self.timeout_seconds)
        except TimeoutError:
            logger.warning(
                "delivery_timed_out",
                notification_id=notification.id,
                timeout=self.timeout_seconds,
            )
            return DeliveryResult(
                success=False,
                error=f"Delivery timed out after {self.timeout_seconds}s",
            )
        except Exception as e:
            logger.error(
                "delivery_provider_error",
                notification_id=notification.id,
                channel=provider.channel.value,
                error=str(e),
            )
            return DeliveryResult(success=False, error=str(e) or e.__class__.__name__)


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    """Build the provider registry for the configured delivery mode."""
    if settings.is_live_delivery:
        providers: list[DeliveryProvider] = [
            EmailProvider(
                host=settings.smtp_host,
                port=settings.smtp_port,
                from_address=settings.smtp_from_address,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                timeout=settings.provider_timeout_seconds,
            ),
            SmsProvider(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                from_number=settings.twilio_from_number,
                base_url=settings.twilio_api_base_url,
                timeout=settings.provider_timeout_seconds,
            ),
            PushProvider(),
        ]
    else:
        providers = [
            SimulatedProvider(
                NotificationChannel.EMAIL,
                settings.simulated_email_success_rate,
                "SMTP connection failure",
            ),
            SimulatedProvider(
                NotificationChannel.SMS,
                settings.simulated_sms_success_rate,
                "SMS gateway failure",
            ),
            SimulatedProvider(
                NotificationChannel.PUSH,
                settings.simulated_push_success_rate,
                "invalid push token",
            ),
        ]

    return ProviderRegistry(providers, timeout_seconds=settings.provider_timeout_seconds)
