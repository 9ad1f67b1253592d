"""Tests for server configuration."""

import pytest

from visidash.server.config import ConfigurationError, Settings, get_settings
from visidash.server.database import close_db, get_database_url, get_engine

OPTIONAL_VARS = [
    "AI_PROVIDER_URL",
    "AI_PROVIDER_API_KEY",
    "N8N_WEBHOOK_URL",
    "N8N_WEBHOOK_USERNAME",
    "N8N_WEBHOOK_PASSWORD",
    "N8N_WEBHOOK_TIMEOUT_SECONDS",
    "LOG_LEVEL",
    "SQL_ECHO",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in OPTIONAL_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestSettingsFromEnv:
    def test_defaults(self, clean_env):
        settings = Settings.from_env()

        assert settings.database_url == "sqlite+aiosqlite:///./test.db"
        assert settings.ai_provider_url == ""
        assert settings.ai_provider_api_key == ""
        assert settings.webhook_url == ""
        assert settings.webhook_timeout_seconds == 60
        assert settings.log_level == "INFO"
        assert settings.sql_echo is False

    def test_reads_optional_values(self, clean_env):
        clean_env.setenv("AI_PROVIDER_URL", " https://ai.example.com/chat ")
        clean_env.setenv("AI_PROVIDER_API_KEY", "Bearer abc")
        clean_env.setenv("N8N_WEBHOOK_TIMEOUT_SECONDS", "120")
        clean_env.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.ai_provider_url == "https://ai.example.com/chat"
        assert settings.ai_provider_api_key == "Bearer abc"
        assert settings.webhook_timeout_seconds == 120
        assert settings.log_level == "DEBUG"

    def test_missing_database_url(self, clean_env):
        clean_env.delenv("DATABASE_URL")
        with pytest.raises(ConfigurationError, match="DATABASE_URL"):
            Settings.from_env()

    def test_non_integer_timeout(self, clean_env):
        clean_env.setenv("N8N_WEBHOOK_TIMEOUT_SECONDS", "soon")
        with pytest.raises(ConfigurationError, match="N8N_WEBHOOK_TIMEOUT_SECONDS"):
            Settings.from_env()

    def test_get_settings_is_cached(self, clean_env):
        assert get_settings() is get_settings()


class TestDatabaseUrl:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("postgres://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
            ("postgresql://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
            ("postgresql+asyncpg://u:p@db/app", "postgresql+asyncpg://u:p@db/app"),
            ("sqlite+aiosqlite:///./x.db", "sqlite+aiosqlite:///./x.db"),
        ],
    )
    def test_async_driver_rewrite(self, clean_env, raw, expected):
        clean_env.setenv("DATABASE_URL", raw)
        get_settings.cache_clear()
        assert get_database_url() == expected

    def test_explicit_url_skips_settings(self, clean_env):
        clean_env.delenv("DATABASE_URL")
        get_settings.cache_clear()
        assert get_database_url("postgres://u:p@db/app") == "postgresql+asyncpg://u:p@db/app"


class TestEngine:
    @pytest.mark.parametrize("raw, expected", [("true", True), ("TRUE ", True), ("1", False)])
    def test_sql_echo_flag(self, clean_env, raw, expected):
        clean_env.setenv("SQL_ECHO", raw)
        assert Settings.from_env().sql_echo is expected

    @pytest.mark.asyncio
    async def test_close_db_rebuilds_from_current_settings(self, clean_env, tmp_path):
        await close_db()
        clean_env.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'a.db'}")
        clean_env.setenv("SQL_ECHO", "true")
        get_settings.cache_clear()
        first = get_engine()
        assert get_engine() is first
        assert first.echo is True

        await close_db()
        clean_env.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'b.db'}")
        clean_env.delenv("SQL_ECHO")
        get_settings.cache_clear()
        second = get_engine()

        assert second is not first
        assert second.url.database.endswith("b.db")
        assert second.echo is False
        await close_db()
