"""Tests for environment-based settings."""

import logging

import pytest

from qbconductor_mcp import config
from qbconductor_mcp.config import (
    DEFAULT_API_BASE_URL,
    Settings,
    disabled_tools_from_env,
    log_level_from_env,
)

ENV_VARS = (
    "CONDUCTOR_SECRET_KEY",
    "CONDUCTOR_API_KEY",
    "CONDUCTOR_END_USER_ID",
    "CONDUCTOR_API_BASE_URL",
    "LOG_LEVEL",
    "CACHE_TTL_MINUTES",
    "CACHE_MAX_SIZE",
    "CONDUCTOR_TIMEOUT",
    "CONDUCTOR_MAX_RETRIES",
    "DISABLED_TOOLS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test from an empty configuration without reading .env."""
    monkeypatch.setattr(config, "load_dotenv", lambda: False)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestFromEnv:
    """Test cases for Settings.from_env."""

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("CONDUCTOR_SECRET_KEY", "sk_live")
        monkeypatch.setenv("CONDUCTOR_END_USER_ID", "end_usr_1")

        settings = Settings.from_env()

        assert settings.secret_key == "sk_live"
        assert settings.default_end_user_id == "end_usr_1"
        assert settings.api_base_url == DEFAULT_API_BASE_URL
        assert settings.cache_ttl_minutes == 1440
        assert settings.cache_ttl_seconds == 86400
        assert settings.cache_max_size == 1000
        assert settings.max_retries == 0

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("CONDUCTOR_SECRET_KEY", "sk_live")
        monkeypatch.setenv("CONDUCTOR_END_USER_ID", "end_usr_1")
        monkeypatch.setenv("CONDUCTOR_API_KEY", "pk_live")
        monkeypatch.setenv("CACHE_TTL_MINUTES", "5")
        monkeypatch.setenv("CACHE_MAX_SIZE", "10")
        monkeypatch.setenv("CONDUCTOR_MAX_RETRIES", "2")

        settings = Settings.from_env()

        assert settings.publishable_key == "pk_live"
        assert settings.cache_ttl_seconds == 300
        assert settings.cache_max_size == 10
        assert settings.max_retries == 2

    def test_missing_required(self):
        with pytest.raises(ValueError) as info:
            Settings.from_env()
        assert "CONDUCTOR_SECRET_KEY" in str(info.value)
        assert "CONDUCTOR_END_USER_ID" in str(info.value)

    def test_stored_secret_used_when_env_unset(self, monkeypatch):
        monkeypatch.setenv("CONDUCTOR_END_USER_ID", "end_usr_1")
        assert Settings.from_env(secret_key="sk_stored").secret_key == "sk_stored"

    def test_env_secret_wins_over_stored(self, monkeypatch):
        monkeypatch.setenv("CONDUCTOR_SECRET_KEY", "sk_env")
        monkeypatch.setenv("CONDUCTOR_END_USER_ID", "end_usr_1")
        assert Settings.from_env(secret_key="sk_stored").secret_key == "sk_env"

    def test_malformed_integer(self, monkeypatch):
        monkeypatch.setenv("CONDUCTOR_SECRET_KEY", "sk_live")
        monkeypatch.setenv("CONDUCTOR_END_USER_ID", "end_usr_1")
        monkeypatch.setenv("CACHE_MAX_SIZE", "lots")
        with pytest.raises(ValueError, match="CACHE_MAX_SIZE must be an integer"):
            Settings.from_env()


class TestDisabledTools:
    """Test cases for disabled_tools_from_env."""

    def test_empty(self):
        assert disabled_tools_from_env() == []

    def test_list(self, monkeypatch):
        monkeypatch.setenv("DISABLED_TOOLS", "bulk_operations")
        assert disabled_tools_from_env() == ["bulk_operations"]

    def test_trims_entries(self, monkeypatch):
        monkeypatch.setenv("DISABLED_TOOLS", "delete_end_user, passthrough_request,")
        assert disabled_tools_from_env() == ["delete_end_user", "passthrough_request"]


class TestLogLevel:
    """Test cases for log_level_from_env."""

    def test_default(self):
        assert log_level_from_env() == "INFO"

    def test_name_is_upper_cased(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        assert log_level_from_env() == "DEBUG"

    def test_unknown_name_falls_back_to_info(self, monkeypatch, caplog):
        """An unknown name is replaced by a level logging accepts."""
        monkeypatch.setenv("LOG_LEVEL", "verbose")

        with caplog.at_level(logging.WARNING, logger="qbconductor_mcp.config"):
            level = log_level_from_env()

        assert level == "INFO"
        assert "VERBOSE" in caplog.text
        assert logging.getLevelName(level) == logging.INFO
