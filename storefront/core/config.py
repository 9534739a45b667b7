"""Storefront configuration, read from the environment with Pydantic Settings.

Each concern has its own settings class and env prefix (``APP_``, ``LOG_``,
``RATE_LIMIT_``, ``CACHE_``). ``APP_ENV`` selects an optional
``.env.<environment>`` file at the project root whose values are loaded into
the process environment before any settings class is built.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_ENV = os.getenv("APP_ENV", "development")

# Resolved from this file so the working directory does not matter
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENVIRONMENTS = ("development", "testing", "staging", "production")


def env_file_for(environment: str) -> Path | None:
    """Return the ``.env`` file for ``environment`` if it exists.

    Unknown environments fall back to development. Deployments that inject
    variables directly simply ship no file.
    """
    name = environment if environment in ENVIRONMENTS else "development"
    path = PROJECT_ROOT / f".env.{name}"
    return path if path.is_file() else None


# Nested BaseSettings do not inherit env_file, so populate os.environ up front
_env_file = env_file_for(APP_ENV)
if _env_file is not None:
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    name: str = Field(
        "Storefront API",
        description="Service name shown in OpenAPI docs",
    )
    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field(
        "json",
        description="Log format: 'json' (structured) or 'plain'",
    )
    output: str = Field(
        "stdout",
        description="Log destination: 'stdout' or 'file'",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file (default logs/app.log)",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Request throttling configuration.

    Category limits mirror the storefront's traffic classes: login and
    password flows (auth), general API traffic (api) and checkout (payment).
    """

    enabled: bool = Field(
        True,
        description="Enable request throttling on wrapped handlers",
    )
    auth_max_requests: int = Field(5, ge=1)
    auth_window_seconds: float = Field(15 * 60, gt=0)
    api_max_requests: int = Field(60, ge=1)
    api_window_seconds: float = Field(60, gt=0)
    payment_max_requests: int = Field(3, ge=1)
    payment_window_seconds: float = Field(5 * 60, gt=0)

    allowlist: str | None = Field(
        "127.0.0.1",
        description="Comma-separated client identifiers exempt from throttling",
    )
    escalation_multiplier: float = Field(
        2.0,
        description="Block a client once its windowed count exceeds max * multiplier",
        ge=1,
    )
    block_duration_seconds: float = Field(
        30 * 60,
        description="Duration of an escalated block",
        gt=0,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers on responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """In-process cache namespaces configuration."""

    default_max_size: int = Field(
        100,
        description="Capacity of namespaces created on demand",
        ge=1,
    )
    default_ttl_seconds: float = Field(
        300,
        description="TTL applied when set() is called without one",
        gt=0,
    )
    products_max_size: int = Field(30, ge=1)
    categories_max_size: int = Field(15, ge=1)
    users_max_size: int = Field(25, ge=1)
    cart_max_size: int = Field(25, ge=1)
    static_max_size: int = Field(10, ge=1)

    housekeeping_interval_seconds: float = Field(
        5 * 60,
        description="Interval between background sweeps of throttle/cache state",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """All storefront settings; invalid values fail at import time."""

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
