"""Application configuration."""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReminderInterval(BaseModel):
    """A reminder sent a fixed number of hours before the appointment."""

    hours: int = Field(..., description="Hours before the appointment")
    template: str = Field(..., description="Template name used to render the reminder")


DEFAULT_REMINDER_INTERVALS = [
    ReminderInterval(hours=24, template="APPOINTMENT_REMINDER_24H"),
    ReminderInterval(hours=2, template="APPOINTMENT_REMINDER_2H"),
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Reminder Engine", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./reminder_engine.db",
        alias="DATABASE_URL",
    )

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # Scheduling
    timezone: str = Field(
        default="UTC",
        alias="TIMEZONE",
        description="IANA timezone appointment dates and times are expressed in",
    )
    date_display_format: str = Field(default="%d/%m/%Y", alias="DATE_DISPLAY_FORMAT")
    reminder_intervals: list[ReminderInterval] = Field(
        default_factory=lambda: list(DEFAULT_REMINDER_INTERVALS),
        alias="REMINDER_INTERVALS",
    )
    max_retries: int = Field(default=3, ge=1, alias="MAX_RETRIES")
    retry_delay_minutes: list[int] = Field(
        default_factory=lambda: [5, 15, 60],
        alias="RETRY_DELAY_MINUTES",
    )
    fallback_retry_delay_minutes: int = Field(default=60, alias="FALLBACK_RETRY_DELAY_MINUTES")

    # Queue processing
    queue_batch_size: int = Field(default=50, ge=1, alias="QUEUE_BATCH_SIZE")
    queue_interval_seconds: float = Field(default=300, gt=0, alias="QUEUE_INTERVAL_SECONDS")
    queue_worker_enabled: bool = Field(default=True, alias="QUEUE_WORKER_ENABLED")
    queue_use_redis_lock: bool = Field(default=False, alias="QUEUE_USE_REDIS_LOCK")
    queue_lock_key: str = Field(default="reminder_engine:queue_tick", alias="QUEUE_LOCK_KEY")
    # A claimed notification becomes claimable again once its lease runs out
    claim_lease_seconds: int = Field(default=600, gt=0, alias="CLAIM_LEASE_SECONDS")

    # Delivery
    delivery_mode: str = Field(
        default="simulated",
        alias="DELIVERY_MODE",
        pattern="^(simulated|live)$",
    )
    provider_timeout_seconds: float = Field(default=10.0, gt=0, alias="PROVIDER_TIMEOUT_SECONDS")
    simulated_email_success_rate: float = Field(default=0.9, ge=0, le=1)
    simulated_sms_success_rate: float = Field(default=0.85, ge=0, le=1)
    simulated_push_success_rate: float = Field(default=0.95, ge=0, le=1)

    # SMTP
    smtp_host: str = Field(default="localhost", alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_username: str = Field(default="", alias="SMTP_USERNAME")
    smtp_password: str = Field(default="", alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, alias="SMTP_USE_TLS")
    smtp_from_address: str = Field(default="no-reply@localhost", alias="SMTP_FROM_ADDRESS")

    # Twilio
    twilio_account_sid: str = Field(default="", alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str = Field(default="", alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: str = Field(default="", alias="TWILIO_FROM_NUMBER")
    twilio_api_base_url: str = Field(
        default="https://api.twilio.com/2010-04-01",
        alias="TWILIO_API_BASE_URL",
    )

    # Firebase
    firebase_credentials_path: str | None = Field(
        default=None,
        alias="FIREBASE_CREDENTIALS_PATH",
        description="Path to Firebase service account JSON file",
    )

    firebase_config_json: str | None = Field(
        default=None,
        alias="FIREBASE_CONFIG_JSON",
        description="Raw JSON string of the Firebase service account",
    )

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str | None = Field(default=None, alias="LOG_FORMAT")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def is_live_delivery(self) -> bool:
        """Check if notifications go through the real provider integrations."""
        return self.delivery_mode == "live"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
