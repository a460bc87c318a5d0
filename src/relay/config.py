"""Relay configuration using pydantic-settings.

This module defines the RelaySettings class that reads configuration
from environment variables with the RELAY_ prefix. The Slack credentials
must be set for the relay to start; everything else has a default.
"""

import logging
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RelaySettings(BaseSettings):
    """Relay configuration from environment variables.

    All environment variables are prefixed with RELAY_ (e.g., RELAY_SLACK_BOT_TOKEN).

    Required fields (must be set via environment variables):
    - slack_bot_token: Bot token used to post replies
    - slack_signing_secret: Secret for validating Slack request signatures
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Jules Configuration
    # -------------------------------------------------------------------------
    jules_api_base_url: str = "https://jules.googleapis.com/v1alpha"

    # Per-request timeout for Jules API calls
    jules_timeout_seconds: float = 30.0

    # Branch every session starts from
    default_starting_branch: str = "main"

    # -------------------------------------------------------------------------
    # Polling Configuration
    # -------------------------------------------------------------------------
    poll_interval_seconds: float = 10.0

    # Ticks before a session is reported as still in progress
    max_poll_attempts: int = 60

    # -------------------------------------------------------------------------
    # Slack Configuration
    # -------------------------------------------------------------------------
    slack_bot_token: str

    slack_signing_secret: str

    # Bot's own user id, stripped from mention text when set
    slack_bot_user_id: Optional[str] = None

    slack_api_base_url: str = "https://slack.com/api"

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    # PostgreSQL connection string; the in-memory store is used when unset
    database_url: Optional[str] = None

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 8080

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("slack_bot_token", "slack_signing_secret")
    @classmethod
    def validate_not_empty(cls, v: str, info) -> str:
        """Validate that Slack credentials are not empty."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        return v

    @field_validator("jules_api_base_url", "slack_api_base_url")
    @classmethod
    def validate_url(cls, v: str, info) -> str:
        """Validate that API base URLs are http(s) and strip the trailing slash."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"{info.field_name} must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("default_starting_branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("default_starting_branch cannot be empty")
        return v.strip()

    @field_validator("jules_timeout_seconds", "poll_interval_seconds")
    @classmethod
    def validate_positive(cls, v: float, info) -> float:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("max_poll_attempts")
    @classmethod
    def validate_max_poll_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_poll_attempts must be at least 1")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the database URL format when one is given."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "database_url must start with postgresql:// or postgres://"
            )
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if v < 1 or v > 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"log_level must be a standard level name, got {v!r}")
        return level


def get_settings() -> RelaySettings:
    """Create and return relay settings from environment variables.

    Raises:
        ValidationError: If required environment variables are missing
                         or invalid.
    """
    return RelaySettings()
