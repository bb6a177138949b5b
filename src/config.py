"""
Configuration module for the meeting scheduler.

Loads environment variables and provides configuration settings for the
database, the Microsoft Graph adapters and the sign-in wait.
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        database_url: SQLAlchemy connection string for session state
        graph_base_url: Microsoft Graph REST endpoint
        graph_access_token: Optional token used to pre-seed the token broker
        graph_timeout_seconds: Per-request timeout for Graph calls
        meeting_timezone: Time zone attached to created events
        signin_timeout_seconds: How long a sign-in prompt waits for a token
        log_level: Minimum log level
        environment: development, production or test
    """

    database_url: str = Field(
        default="sqlite:///meeting_scheduler.db",
        alias="DATABASE_URL",
        description="SQLAlchemy connection string"
    )

    graph_base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        alias="GRAPH_BASE_URL",
        description="Microsoft Graph base URL"
    )

    graph_access_token: Optional[str] = Field(
        default=None,
        alias="GRAPH_ACCESS_TOKEN",
        description="Bearer token used when no interactive sign-in is available"
    )

    graph_timeout_seconds: float = Field(
        default=25.0,
        gt=0,
        alias="GRAPH_TIMEOUT_SECONDS",
        description="Timeout for a single Graph request"
    )

    meeting_timezone: str = Field(
        default="Pacific Standard Time",
        alias="MEETING_TIMEZONE",
        description="Windows time zone name used for events"
    )

    # User has 5 minutes to sign in
    signin_timeout_seconds: int = Field(
        default=300,
        gt=0,
        alias="SIGNIN_TIMEOUT_SECONDS",
        description="Sign-in prompt timeout in seconds"
    )

    log_level: Optional[str] = Field(
        default=None,
        alias="LOG_LEVEL",
        description="Overrides the environment's default log level"
    )

    environment: str = Field(
        default="development",
        alias="ENVIRONMENT",
        description="Runtime environment name"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create the global settings instance.

    Returns:
        Settings instance with loaded configuration
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
