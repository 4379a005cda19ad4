# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for the guardian
notification core. Settings are loaded from environment variables with
sensible defaults for a single-school deployment.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from guardian_notify.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.delivery.channel_priority)
    ['whatsapp', 'sms', 'email']
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ChannelName = Literal["whatsapp", "sms", "email"]


class AdmissionSettings(BaseSettings):
    """Admission pipeline configuration.

    Attributes:
        manual_bypass_categories: Consent categories a teacher's manual
            message may send regardless of opt-outs and quiet hours.
        timezone: School-local IANA timezone used for quiet hours.
        default_weekly_cap: Weekly automated message cap applied to
            guardians without stored preferences.
    """

    model_config = SettingsConfigDict(
        env_prefix="ADMISSION_",
        extra="ignore",
    )

    manual_bypass_categories: list[str] = Field(
        default_factory=lambda: [
            "attendance_notifications",
            "academic_updates",
            "school_announcements",
            "event_invitations",
        ]
    )
    timezone: str = "Africa/Lusaka"
    default_weekly_cap: int = Field(default=5, ge=0)


class GuardianLinkSettings(BaseSettings):
    """Guardian-student link limits.

    Attributes:
        max_guardians_per_student: Maximum linked guardians for one student.
        max_primary_guardians: Maximum primary guardians for one student.
    """

    model_config = SettingsConfigDict(
        env_prefix="GUARDIAN_LINK_",
        extra="ignore",
    )

    max_guardians_per_student: int = 10
    max_primary_guardians: int = 2


class DeliverySettings(BaseSettings):
    """Delivery orchestration configuration.

    Attributes:
        channel_priority: Fallback order for non-emergency messages.
        emergency_channel_priority: Fallback order for emergency messages.
        whatsapp_timeout_seconds: Transport timeout for WhatsApp sends.
        sms_timeout_seconds: Transport timeout for SMS sends.
        email_timeout_seconds: Transport timeout for email sends.
        scheduler_poll_seconds: Upper bound on retry scheduler sleep.
    """

    model_config = SettingsConfigDict(
        env_prefix="DELIVERY_",
        extra="ignore",
    )

    channel_priority: list[ChannelName] = Field(
        default_factory=lambda: ["whatsapp", "sms", "email"]
    )
    emergency_channel_priority: list[ChannelName] = Field(
        default_factory=lambda: ["sms", "whatsapp", "email"]
    )
    whatsapp_timeout_seconds: float = 30.0
    sms_timeout_seconds: float = 20.0
    email_timeout_seconds: float = 60.0
    scheduler_poll_seconds: float = 1.0

    def timeout_for(self, channel: str) -> float:
        """Get the transport timeout for a channel name."""
        return {
            "whatsapp": self.whatsapp_timeout_seconds,
            "sms": self.sms_timeout_seconds,
            "email": self.email_timeout_seconds,
        }[channel]


class OfflineQueueSettings(BaseSettings):
    """Durable offline queue configuration.

    Attributes:
        database_url: Async SQLAlchemy URL of the local device store.
        max_size: Maximum queued items on one device.
        device_id: Identifier recorded on queued items.
        echo: Log SQL statements.
    """

    model_config = SettingsConfigDict(
        env_prefix="OFFLINE_QUEUE_",
        extra="ignore",
    )

    database_url: str = "sqlite+aiosqlite:///./guardian_notify_offline.db"
    max_size: int = 100
    device_id: str | None = None
    echo: bool = False


class RedisSettings(BaseSettings):
    """Redis configuration for the shared weekly send counter.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        key_prefix: Prefix for counter keys.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    password: SecretStr = SecretStr("")
    database: int = 0
    key_prefix: str = "guardian_notify"

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        pwd = self.password.get_secret_value()
        if pwd:
            return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"
        return f"redis://{self.host}:{self.port}/{self.database}"


class Settings(BaseSettings):
    """Main application settings.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        send_counter_backend: Weekly send counter implementation.
        admission: Admission pipeline settings.
        guardian_links: Guardian-student link limits.
        delivery: Delivery orchestration settings.
        offline_queue: Offline queue settings.
        redis: Redis settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"
    send_counter_backend: Literal["memory", "redis"] = "memory"

    # Subsettings - loaded with their own env prefixes
    admission: AdmissionSettings = Field(default_factory=AdmissionSettings)
    guardian_links: GuardianLinkSettings = Field(default_factory=GuardianLinkSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    offline_queue: OfflineQueueSettings = Field(default_factory=OfflineQueueSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with a per-process counter.
        """
        if self.environment == "production" and self.send_counter_backend == "memory":
            raise ValueError(
                "The in-memory send counter cannot enforce the weekly cap across "
                "workers. Set SEND_COUNTER_BACKEND=redis in production."
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
