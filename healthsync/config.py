"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (no API keys in code)
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

_TIME_PATTERN = r"^(0[1-9]|1[0-2]):[0-5]\d (AM|PM)$"


class StoreConfig(BaseModel):
    """Local event cache settings."""

    backend: Literal["memory", "sqlite"] = Field(
        default="memory", description="Local cache backend"
    )
    sqlite_path: str = Field(
        default="./data/health_events.db", description="SQLite file for the sqlite backend"
    )


class SyncConfig(BaseModel):
    """Remote synchronization policy."""

    collection_name: str = Field(default="health_hub", description="Remote collection name")
    tombstone_ttl_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="How long a confirmed remote delete keeps blocking stale snapshots",
    )
    default_time: str = Field(
        default="08:00 AM",
        pattern=_TIME_PATTERN,
        description="Time of day used when a remote document has none",
    )
    stop_timeout_seconds: float = Field(
        default=5.0, gt=0.0, description="Grace period for the listener on shutdown"
    )


class ReminderConfig(BaseModel):
    """Local reminder and calendar strip settings."""

    enabled: bool = Field(default=True, description="Schedule local reminders")
    calendar_strip_days: int = Field(
        default=14, gt=0, le=366, description="Days shown in the calendar strip"
    )


class AssistantConfig(BaseModel):
    """AI daily briefing settings."""

    enabled: bool = Field(default=False, description="Use the AI model for briefings")
    api_key: str | None = Field(
        default=None, description="OPENAI_API_KEY, checked at startup; the provider reads it itself"
    )
    model_name: str = Field(default="openai:gpt-4o-mini", description="pydantic-ai model id")
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    timeout_seconds: float = Field(default=20.0, gt=0.0)

    @field_validator("api_key")
    def validate_api_key(cls, v):
        if v is not None and v.strip() in {"", "your-api-key-here"}:
            return None
        return v

    @model_validator(mode="after")
    def enabled_requires_key(self) -> "AssistantConfig":
        """The assistant cannot be enabled without credentials."""
        if self.enabled and not self.api_key:
            raise ValueError("assistant is enabled but no API key is configured")
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    store: StoreConfig = Field(default_factory=StoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    reminders: ReminderConfig = Field(default_factory=ReminderConfig)
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
    v = val.strip().lower()
    if v in {"dev", "development"}:
        return "development"
    if v in {"stage", "staging"}:
        return "staging"
    return "production"


def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
    v = val.strip().upper()
    return cast(
        Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
    )


def _parse_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    backend = os.getenv("EVENT_STORE_BACKEND", "memory").strip().lower()
    store_config = StoreConfig(
        backend="sqlite" if backend == "sqlite" else "memory",
        sqlite_path=os.getenv("EVENT_STORE_PATH", "./data/health_events.db"),
    )

    sync_config = SyncConfig(
        collection_name=os.getenv("REMOTE_COLLECTION", "health_hub"),
        tombstone_ttl_seconds=float(os.getenv("TOMBSTONE_TTL_SECONDS", "300")),
        default_time=os.getenv("DEFAULT_EVENT_TIME", "08:00 AM"),
    )

    reminder_config = ReminderConfig(
        enabled=_parse_bool(os.getenv("REMINDERS_ENABLED"), True),
        calendar_strip_days=int(os.getenv("CALENDAR_STRIP_DAYS", "14")),
    )

    assistant_config = AssistantConfig(
        enabled=_parse_bool(os.getenv("ASSISTANT_ENABLED"), False),
        # pydantic-ai providers read their key from the environment themselves
        api_key=os.getenv("OPENAI_API_KEY"),
        model_name=os.getenv("ASSISTANT_MODEL", "openai:gpt-4o-mini"),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        store=store_config,
        sync=sync_config,
        reminders=reminder_config,
        assistant=assistant_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()
