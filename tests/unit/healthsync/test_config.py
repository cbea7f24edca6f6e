"""
Tests for configuration management in `healthsync/config.py`.

Covers:
- Environment parsing and debug defaults
- Logging level coercion to the expected Literal
- Store backend and boolean flag parsing
- Assistant key handling
- get_config cache behavior
- AppConfig validation (debug only allowed in development)
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from pydantic import ValidationError

from healthsync.config import (
    AppConfig,
    AssistantConfig,
    SyncConfig,
    get_config,
    load_config_from_env,
)

_ENV_VARS = (
    "ENVIRONMENT",
    "EVENT_STORE_BACKEND",
    "EVENT_STORE_PATH",
    "REMOTE_COLLECTION",
    "TOMBSTONE_TTL_SECONDS",
    "DEFAULT_EVENT_TIME",
    "REMINDERS_ENABLED",
    "CALENDAR_STRIP_DAYS",
    "ASSISTANT_ENABLED",
    "ASSISTANT_API_KEY",
    "OPENAI_API_KEY",
    "ASSISTANT_MODEL",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Start every test from an empty environment and a cold config cache."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


def test_load_config_dev_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "development")

    config = load_config_from_env()

    assert config.environment == "development"
    assert config.debug is True
    assert config.logging.format == "console"
    assert config.store.backend == "memory"
    assert config.sync.collection_name == "health_hub"
    assert config.sync.tombstone_ttl_seconds == 300.0
    assert config.sync.default_time == "08:00 AM"
    assert config.reminders.enabled is True
    assert config.reminders.calendar_strip_days == 14
    assert config.assistant.enabled is False


def test_production_uses_json_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "prod")

    config = load_config_from_env()

    assert config.environment == "production"
    assert config.debug is False
    assert config.logging.format == "json"


def test_logging_level_literal_coercion(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "staging")

    # Unknown level should coerce to INFO
    monkeypatch.setenv("LOG_LEVEL", "unknown")
    config = load_config_from_env()
    assert config.logging.level == "INFO"

    # Known level should pass through
    monkeypatch.setenv("LOG_LEVEL", "error")
    config = load_config_from_env()
    assert config.logging.level == "ERROR"


def test_store_backend_selection(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EVENT_STORE_BACKEND", "SQLite")
    monkeypatch.setenv("EVENT_STORE_PATH", "/tmp/events.db")

    config = load_config_from_env()
    assert config.store.backend == "sqlite"
    assert config.store.sqlite_path == "/tmp/events.db"

    # Anything unrecognised falls back to memory
    monkeypatch.setenv("EVENT_STORE_BACKEND", "postgres")
    assert load_config_from_env().store.backend == "memory"


def test_reminder_flag_parsing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REMINDERS_ENABLED", "off")
    assert load_config_from_env().reminders.enabled is False

    monkeypatch.setenv("REMINDERS_ENABLED", "yes")
    assert load_config_from_env().reminders.enabled is True


def test_sync_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REMOTE_COLLECTION", "health_hub_test")
    monkeypatch.setenv("TOMBSTONE_TTL_SECONDS", "42.5")
    monkeypatch.setenv("DEFAULT_EVENT_TIME", "07:15 PM")

    sync = load_config_from_env().sync

    assert sync.collection_name == "health_hub_test"
    assert sync.tombstone_ttl_seconds == 42.5
    assert sync.default_time == "07:15 PM"


def test_invalid_default_time_fails_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEFAULT_EVENT_TIME", "8am")
    with pytest.raises(ValidationError):
        load_config_from_env()


def test_sync_config_rejects_non_positive_ttl() -> None:
    with pytest.raises(ValidationError):
        SyncConfig(tombstone_ttl_seconds=0)


def test_assistant_key_comes_from_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ASSISTANT_ENABLED", "true")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-openai")
    monkeypatch.setenv("ASSISTANT_MODEL", "openai:gpt-4o")

    assistant = load_config_from_env().assistant

    assert assistant.enabled is True
    assert assistant.api_key == "sk-test-openai"
    assert assistant.model_name == "openai:gpt-4o"


def test_unread_assistant_key_variable_does_not_enable_model(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    # Only the variable the provider itself reads counts as configured
    monkeypatch.setenv("ASSISTANT_ENABLED", "true")
    monkeypatch.setenv("ASSISTANT_API_KEY", "sk-test-assistant")

    with pytest.raises(ValueError, match="no API key"):
        load_config_from_env()


def test_placeholder_api_key_is_dropped() -> None:
    assert AssistantConfig(api_key="your-api-key-here").api_key is None
    assert AssistantConfig(api_key="   ").api_key is None


def test_enabled_assistant_requires_key(monkeypatch: pytest.MonkeyPatch) -> None:
    with pytest.raises(ValueError, match="no API key"):
        AssistantConfig(enabled=True)

    monkeypatch.setenv("ASSISTANT_ENABLED", "1")
    with pytest.raises(ValueError, match="no API key"):
        load_config_from_env()


def test_get_config_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "development")

    # First call populates cache
    c1 = get_config()
    c2 = get_config()
    assert c1 is c2  # same object due to lru_cache


def test_app_config_debug_only_in_dev_validation() -> None:
    with pytest.raises(ValueError, match="debug mode is only allowed"):
        AppConfig(environment="production", debug=True)
