"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Everything here is read once at process start. Rate limit policies in
particular are not mutable at runtime; the registry is built from these
values when the application (or the sweeper job) boots.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class PolicyOverride(BaseModel):
    """Partial override for one named rate limit policy.

    Unset fields keep the built-in default for that policy.
    """

    max_requests: int | None = Field(None, ge=1)
    window_ms: int | None = Field(None, ge=1)
    key_prefix: str | None = Field(None, pattern=r"^[A-Za-z0-9_]+$")


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    rate_limit_enabled: bool = Field(
        True,
        description="Enforce admission control on protected routes",
    )
    trust_forwarded_for: bool = Field(
        True,
        description="Derive the client key from the forwarded-for header when present",
    )
    forwarded_for_header: str = Field(
        "X-Forwarded-For",
        description="Header carrying the proxy chain (first entry is the original client)",
    )
    task_api_key_required: bool = Field(
        True,
        description="Whether maintenance task endpoints require an API key",
    )
    task_api_keys: str | None = Field(
        None,
        description="Comma-separated list of API keys accepted by task endpoints",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Policy overrides and request-path limits for the decision engine."""

    policies: dict[str, PolicyOverride] = Field(
        default_factory=dict,
        description='JSON object of overrides keyed by policy name, e.g. {"auth": {"max_requests": 5}}',
    )
    check_timeout_seconds: float = Field(
        2.0,
        gt=0,
        description="Upper bound for one admission check before failing open",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Counter store backend configuration."""

    backend: str = Field(
        "memory",
        description="Counter store backend: 'memory' (single process) or 'redis'",
    )
    redis_url: str | None = Field(
        None,
        description="Redis connection URL (required for the redis backend)",
    )
    collection: str = Field(
        "_rateLimits",
        description="Collection (key namespace) holding counter records",
    )
    max_transaction_retries: int = Field(
        5,
        ge=1,
        description="Optimistic transaction attempts before giving up on a contended key",
    )
    socket_timeout_seconds: float = Field(
        1.0,
        gt=0,
        description="Socket timeout applied to every store call",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class SweeperSettings(BaseSettings):
    """Counter cleanup job configuration."""

    retention_hours: float = Field(
        24.0,
        gt=0,
        description="Counters whose window started longer ago than this are deleted",
    )
    batch_size: int = Field(
        500,
        ge=1,
        le=500,
        description="Maximum deletions per store batch",
    )
    max_batches: int = Field(
        10,
        ge=1,
        description="Maximum batches per sweep invocation; leftovers wait for the next run",
    )

    model_config = SettingsConfigDict(
        env_prefix="SWEEPER_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="'json' or 'plain'")
    output: str = Field("stdout", description="'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(0, ge=0, description="Rotate the log file after this size (0 disables)")
    backup_count: int = Field(5, ge=0, description="Rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    sweeper: SweeperSettings = Field(default_factory=SweeperSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Nested settings are created via default_factory so env loading works.
settings = Settings()
