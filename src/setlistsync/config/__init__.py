"""Configuration module for setlistsync."""

from .settings import (
    CatalogSettings,
    DatabaseSettings,
    JobSettings,
    ObservabilitySettings,
    RateLimitSettings,
    SetlistFmSettings,
    Settings,
    SpotifySettings,
    TicketmasterSettings,
    get_settings,
)

__all__ = [
    "CatalogSettings",
    "DatabaseSettings",
    "JobSettings",
    "ObservabilitySettings",
    "RateLimitSettings",
    "SetlistFmSettings",
    "Settings",
    "SpotifySettings",
    "TicketmasterSettings",
    "get_settings",
]
