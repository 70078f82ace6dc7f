"""
Configuration management for quoteflow.

Settings come from (in priority order) explicit keyword arguments, environment
variables prefixed with ``QUOTEFLOW_`` (nested sections use ``__``, e.g.
``QUOTEFLOW_RECORDER__HOUR=21``), a ``.env`` file and finally the defaults
below. A TOML file can be loaded with :meth:`QuoteflowSettings.load_from_file`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import toml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from quoteflow.core.exceptions import ConfigurationError


class ProviderSettings(BaseModel):
    """Quote provider client options."""

    name: str = Field("yfinance", description="Provider name used in logs and metrics")
    timeout: float = Field(15.0, gt=0, description="Per-call client timeout in seconds")
    quote_window_days: int = Field(5, ge=1, description="Recent bar window used to refine day high/low")


class UniverseSettings(BaseModel):
    """Where the static instrument list lives."""

    path: Path = Field(Path("data/universe.json"), description="JSON universe file")
    default_currency: str = Field("INR", description="Currency assumed when the provider omits one")
    symbol_limit: int | None = Field(None, ge=1, description="Only load the first N instruments")


class RefreshSettings(BaseModel):
    """Live-refresh scheduler options."""

    enabled: bool = Field(True, description="Start the periodic refresh with the service")
    interval: float = Field(300.0, gt=0, description="Seconds between refresh cycles")
    batch_size: int = Field(100, ge=1, description="Instruments per batch")
    fan_out: int = Field(100, ge=1, description="Concurrent provider calls per batch")
    batch_delay: float = Field(20.0, ge=0, description="Pause between batches in seconds")
    retry_delay: float = Field(30.0, ge=0, description="Delay before retrying a failed cycle")
    top_movers_limit: int = Field(10, ge=1, description="Gainers and losers kept per side")


class RecorderSettings(BaseModel):
    """Daily historical recorder options."""

    enabled: bool = Field(True, description="Schedule the daily ingest with the service")
    timezone: str = Field("Asia/Kolkata", description="IANA zone the run time is expressed in")
    hour: int = Field(22, ge=0, le=23, description="Local hour of the daily run")
    minute: int = Field(0, ge=0, le=59, description="Local minute of the daily run")
    batch_size: int = Field(100, ge=1, description="Instruments per batch")
    concurrency: int = Field(100, ge=1, description="Concurrent provider calls per batch")
    batch_delay: float = Field(20.0, ge=0, description="Pause between batches in seconds")
    lookback_days: int = Field(30, ge=0, description="Days re-fetched before the watermark")
    seed_days: int = Field(30, ge=1, description="Days fetched for an instrument without a watermark")
    symbol_limit: int | None = Field(None, ge=1, description="Only ingest the first N instruments")

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class StorageSettings(BaseModel):
    """DuckDB database locations."""

    instruments_database: str = Field("data/quoteflow.duckdb", description="Relational store for cached quotes")
    history_database: str = Field("data/quoteflow_history.duckdb", description="Bars, watermarks and ingest metadata")
    threads: int = Field(1, ge=1, description="DuckDB worker threads per connection")


class BroadcastSettings(BaseModel):
    """Push channel options."""

    access_token: SecretStr | None = Field(None, description="Shared token required from push clients")
    max_connections_per_address: int = Field(20, ge=1, description="Concurrent sockets per client address")
    recent_updates_limit: int = Field(100, ge=1, description="Instruments kept in the recent updates map")


class LoggingSettings(BaseModel):
    """Logging options."""

    level: str = Field("INFO", description="Log level")
    file_path: str | None = Field(None, description="Optional JSON lines log file")


class QuoteflowSettings(BaseSettings):
    """Top level quoteflow configuration."""

    model_config = SettingsConfigDict(
        env_prefix="QUOTEFLOW_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field("production", description="Deployment environment name")
    host: str = Field("0.0.0.0", description="HTTP bind address")
    port: int = Field(8000, description="HTTP port")

    provider: ProviderSettings = Field(default_factory=lambda: ProviderSettings(), description="Provider options")
    universe: UniverseSettings = Field(default_factory=lambda: UniverseSettings(), description="Universe options")
    refresh: RefreshSettings = Field(default_factory=lambda: RefreshSettings(), description="Live refresh options")
    recorder: RecorderSettings = Field(default_factory=lambda: RecorderSettings(), description="Daily recorder options")
    storage: StorageSettings = Field(default_factory=lambda: StorageSettings(), description="Storage options")
    broadcast: BroadcastSettings = Field(default_factory=lambda: BroadcastSettings(), description="Push channel options")
    logging: LoggingSettings = Field(default_factory=lambda: LoggingSettings(), description="Logging options")

    @classmethod
    def load_from_file(cls, config_path: Path, **overrides: Any) -> QuoteflowSettings:
        """Load configuration from a TOML file."""
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}", {"path": str(config_path)})
        try:
            config_data = toml.load(config_path)
        except toml.TomlDecodeError as exc:
            raise ConfigurationError(f"Invalid configuration file: {exc}", {"path": str(config_path)}) from exc
        return cls(**{**config_data, **overrides})


_DEFAULT_SETTINGS: QuoteflowSettings | None = None


def get_settings() -> QuoteflowSettings:
    """Return the process-wide settings, loading them on first use."""

    global _DEFAULT_SETTINGS
    if _DEFAULT_SETTINGS is None:
        _DEFAULT_SETTINGS = QuoteflowSettings()
    return _DEFAULT_SETTINGS


def configure_settings(settings: QuoteflowSettings | None) -> None:
    """Override the process-wide settings for application wiring or tests."""

    global _DEFAULT_SETTINGS
    _DEFAULT_SETTINGS = settings
