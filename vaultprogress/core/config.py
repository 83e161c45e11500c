"""
Configuration management for VaultProgress.

Loads settings from environment variables with sensible defaults.
Uses pydantic-settings for validation.
"""

from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class DatabaseSettings(BaseSettings):
    """Record store connection settings."""

    url: str = Field(
        default="sqlite:///./vaultprogress.db",
        description="SQLAlchemy database URL for progress, checkpoints and errors"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )

    class Config:
        env_prefix = "DB_"


class ProgressSettings(BaseSettings):
    """Progress tracking and recovery behaviour."""

    initial_phase: str = Field(
        default="initializing",
        description="Phase shown before the first progress record arrives"
    )
    initial_message: str = Field(
        default="Initializing extraction...",
        description="Message shown before the first progress record arrives"
    )

    # Recovery
    stall_timeout_seconds: float = Field(
        default=90.0,
        description="Seconds without a progress change before offering recovery"
    )
    fallback_route: str = Field(
        default="/career-vault",
        description="Where Skip sends the user"
    )

    # Change feed limits
    max_subscriptions: int = Field(
        default=100,
        description="Maximum concurrent change-feed subscriptions"
    )

    class Config:
        env_prefix = "PROGRESS_"


class TriggerSettings(BaseSettings):
    """Outbound job trigger (extraction function endpoint)."""

    extraction_url: Optional[str] = Field(
        default=None,
        description="URL of the extraction function that runs the job"
    )
    api_key: Optional[str] = Field(
        default=None,
        description="Bearer token sent with trigger requests"
    )
    timeout_seconds: float = Field(
        default=30.0,
        description="HTTP timeout for trigger requests"
    )

    class Config:
        env_prefix = "TRIGGER_"


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    # Application
    app_name: str = "VaultProgress"
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)
    trigger: TriggerSettings = Field(default_factory=TriggerSettings)

    class Config:
        env_prefix = "VAULTPROGRESS_"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings. Useful for dependency injection."""
    return settings
