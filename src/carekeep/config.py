"""
CareKeep Configuration Module

Centralized configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CAREKEEP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    log_json: bool = True
    # Configure the structlog pipeline when CareKeep starts
    setup_logging: bool = True


class SessionSettings(BaseSettings):
    """Session timeout settings."""

    model_config = SettingsConfigDict(
        env_prefix="CAREKEEP_SESSION_",
        env_file=".env",
        extra="ignore",
    )

    lifetime_minutes: float = Field(default=30, gt=0)
    warning_threshold_minutes: float = Field(default=5, ge=0)

    # Monitor cadence
    check_interval_seconds: float = Field(default=30, gt=0)
    warning_tick_seconds: float = Field(default=1, gt=0)

    # How long an expired session stays queryable before eviction
    expired_retention_minutes: float = Field(default=60, ge=0)

    @property
    def lifetime(self) -> timedelta:
        return timedelta(minutes=self.lifetime_minutes)

    @property
    def warning_threshold(self) -> timedelta:
        return timedelta(minutes=self.warning_threshold_minutes)

    @property
    def expired_retention(self) -> timedelta:
        return timedelta(minutes=self.expired_retention_minutes)


class ConsentSettings(BaseSettings):
    """Consent lifecycle settings."""

    model_config = SettingsConfigDict(
        env_prefix="CAREKEEP_CONSENT_",
        env_file=".env",
        extra="ignore",
    )

    min_time_limit_days: int = 1
    max_time_limit_days: int = 3650
    sweep_interval_seconds: float = Field(default=3600, gt=0)


class AuditSettings(BaseSettings):
    """Audit delivery settings."""

    model_config = SettingsConfigDict(
        env_prefix="CAREKEEP_AUDIT_",
        env_file=".env",
        extra="ignore",
    )

    retry_attempts: int = Field(default=3, ge=1)
    retry_min_wait_seconds: float = Field(default=0.1, ge=0)
    retry_max_wait_seconds: float = Field(default=2.0, ge=0)
    flush_interval_seconds: float = Field(default=1.0, gt=0)
    max_pending: int = Field(default=10000, gt=0)


class Settings:
    """
    Aggregated settings container.

    Usage:
        from carekeep.config import get_settings
        settings = get_settings()
        print(settings.session.lifetime)
    """

    def __init__(self):
        self.app = AppSettings()
        self.session = SessionSettings()
        self.consent = ConsentSettings()
        self.audit = AuditSettings()

    @property
    def is_production(self) -> bool:
        return self.app.env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()
