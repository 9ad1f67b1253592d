# src/visidash/server/config.py
"""Server configuration."""

import os
from dataclasses import dataclass
from functools import lru_cache


class ConfigurationError(Exception):
    """Raised when required configuration is missing."""

    pass


def _require_env(name: str) -> str:
    """Get a required environment variable or raise an error."""
    value = os.environ.get(name)
    if not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def _int_env(name: str, default: int) -> int:
    """Get an integer environment variable, falling back to default when unset."""
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {name} must be an integer, got {value!r}")


@dataclass
class Settings:
    """Application settings from environment variables.

    Provider and webhook values here are only fallbacks; the values an admin
    saves through /api/settings take precedence.
    """

    # Database
    database_url: str

    # AI provider fallback
    ai_provider_url: str = ""
    ai_provider_api_key: str = ""

    # Webhook fallback (used when the settings table cannot be reached)
    webhook_url: str = ""
    webhook_username: str = ""
    webhook_password: str = ""
    webhook_timeout_seconds: int = 60

    # Log every SQL statement
    sql_echo: bool = False

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables.

        Required variables:
            DATABASE_URL: Database connection string

        Optional variables:
            AI_PROVIDER_URL: AI provider endpoint
            AI_PROVIDER_API_KEY: AI provider credential (raw or "Bearer ..." form)
            N8N_WEBHOOK_URL: Query webhook endpoint
            N8N_WEBHOOK_USERNAME / N8N_WEBHOOK_PASSWORD: Webhook basic auth
            N8N_WEBHOOK_TIMEOUT_SECONDS: Webhook timeout (default: 60)
            SQL_ECHO: "true" to log SQL statements (default: false)
            LOG_LEVEL: Root log level (default: INFO)

        Raises:
            ConfigurationError: If a required variable is missing or malformed.
        """
        return cls(
            database_url=_require_env("DATABASE_URL"),
            ai_provider_url=os.environ.get("AI_PROVIDER_URL", "").strip(),
            ai_provider_api_key=os.environ.get("AI_PROVIDER_API_KEY", "").strip(),
            webhook_url=os.environ.get("N8N_WEBHOOK_URL", "").strip(),
            webhook_username=os.environ.get("N8N_WEBHOOK_USERNAME", ""),
            webhook_password=os.environ.get("N8N_WEBHOOK_PASSWORD", ""),
            webhook_timeout_seconds=_int_env("N8N_WEBHOOK_TIMEOUT_SECONDS", 60),
            sql_echo=os.environ.get("SQL_ECHO", "").strip().lower() == "true",
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
