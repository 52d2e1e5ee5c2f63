"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


FIFTEEN_MINUTES_MS = 15 * 60 * 1000


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Quota policies applied by the HTTP layer.

    Defaults mirror the dashboard's historical limits: 100 requests per
    15 minutes for generic identifiers, 50 per user action and 200 per IP.
    """

    enabled: bool = Field(
        True,
        description="Enable rate limiting on guarded endpoints",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    trust_forwarded_headers: bool = Field(
        True,
        description="Derive client IP from X-Forwarded-For / X-Real-IP when present",
    )
    default_requests: int = Field(
        100,
        description="Default per-identifier limit per window",
    )
    default_window_ms: int = Field(
        FIFTEEN_MINUTES_MS,
        description="Default per-identifier window in milliseconds",
        ge=1,
    )
    user_requests: int = Field(
        50,
        description="Default per-user, per-action limit per window",
    )
    user_window_ms: int = Field(
        FIFTEEN_MINUTES_MS,
        description="Default per-user window in milliseconds",
        ge=1,
    )
    ip_requests: int = Field(
        200,
        description="Default per-IP limit per window",
    )
    ip_window_ms: int = Field(
        FIFTEEN_MINUTES_MS,
        description="Default per-IP window in milliseconds",
        ge=1,
    )
    ip_burst_limit: int | None = Field(
        None,
        description="Optional burst cap applied to the per-IP guard",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class LimiterSettings(BaseSettings):
    """Window store and burst guard tuning."""

    burst_window_ms: int = Field(
        1_000,
        description="Burst sub-window length in milliseconds",
        ge=1,
    )
    sweep_interval_ms: int = Field(
        5 * 60 * 1000,
        description="Minimum time between opportunistic store sweeps",
        ge=1,
    )
    sweep_grace_ms: int = Field(
        60_000,
        description="How long a record must stay expired before eviction",
        ge=0,
    )
    violation_retention_ms: int = Field(
        24 * 60 * 60 * 1000,
        description="How long denied admissions are kept in the violation log",
        ge=1,
    )
    violation_max_entries: int = Field(
        1000,
        description="Maximum number of entries kept in the violation log",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="LIMITER_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json | plain")
    output: str = Field("stdout", description="stdout | file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file at this size (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting is invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    limiter: LimiterSettings = Field(default_factory=LimiterSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
