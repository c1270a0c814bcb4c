"""
Configuration management for the task dispatch service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class PlatformConfig(BaseModel):
    """Platform runtime configuration."""

    model_config = ConfigDict(extra="forbid")
    config_cache_ttl_seconds: float
    cron_secret: str | None = None


class SweepersConfig(BaseModel):
    """Background sweeper schedule."""

    model_config = ConfigDict(extra="forbid")
    enabled: bool
    timeout_recovery_interval_seconds: float
    unfreeze_interval_seconds: float
    benchmark_interval_seconds: float


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    request: RequestConfig
    platform: PlatformConfig
    sweepers: SweepersConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    return Path(os.environ.get("CONFIG_PATH", "config.yaml"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache settings from the configuration file."""
    config_path = get_config_path()
    with config_path.open(encoding="utf-8") as config_file:
        raw = yaml.safe_load(config_file)
    if not isinstance(raw, dict):
        msg = f"Configuration file {config_path} must contain a mapping"
        raise ValueError(msg)
    return Settings.model_validate(raw)


def clear_settings_cache() -> None:
    """Drop cached settings so the next call reloads the file."""
    get_settings.cache_clear()

