"""Configuration module for mediasession."""

from .settings import (
    DatabaseSettings,
    ObservabilitySettings,
    SessionSettings,
    Settings,
    SpotifySettings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "ObservabilitySettings",
    "SessionSettings",
    "Settings",
    "SpotifySettings",
    "StorageSettings",
    "get_settings",
]
