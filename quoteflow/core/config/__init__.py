"""Configuration module."""

from quoteflow.core.config.settings import (
    BroadcastSettings,
    LoggingSettings,
    ProviderSettings,
    QuoteflowSettings,
    RecorderSettings,
    RefreshSettings,
    StorageSettings,
    UniverseSettings,
    configure_settings,
    get_settings,
)

__all__ = [
    "QuoteflowSettings",
    "ProviderSettings",
    "UniverseSettings",
    "RefreshSettings",
    "RecorderSettings",
    "StorageSettings",
    "BroadcastSettings",
    "LoggingSettings",
    "get_settings",
    "configure_settings",
]
