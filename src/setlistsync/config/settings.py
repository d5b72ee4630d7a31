"""Application settings loaded from environment variables.

Every group is a nested pydantic model so callers read ``settings.database.url``
or ``settings.rate_limits.spotify.requests_per_minute``. Environment variables use
the ``SETLISTSYNC_`` prefix and ``__`` as the nesting delimiter::

    SETLISTSYNC_DATABASE__URL=postgresql+asyncpg://...
    SETLISTSYNC_SPOTIFY__CLIENT_ID=...
    SETLISTSYNC_RATE_LIMITS__TICKETMASTER__REQUESTS_PER_SECOND=5
    SETLISTSYNC_JOBS__TRIGGER_SECRET=...
"""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = Field(
        default="sqlite+aiosqlite:///./setlistsync.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = False
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=1800, ge=-1)
    pool_pre_ping: bool = True


class SpotifySettings(BaseModel):
    """Music catalog (Spotify Web API) credentials.

    Client credentials flow only - we never act on behalf of a user, so there is
    no redirect URI here.
    """

    client_id: str = ""
    client_secret: str = ""
    api_base_url: str = "https://api.spotify.com/v1"
    token_url: str = "https://accounts.spotify.com/api/token"
    market: str = "US"
    timeout_seconds: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id.strip() and self.client_secret.strip())


class TicketmasterSettings(BaseModel):
    """Ticketing (Ticketmaster Discovery v2) settings."""

    api_key: str = ""
    api_base_url: str = "https://app.ticketmaster.com/discovery/v2"
    page_size: int = Field(default=100, ge=1, le=100)
    lookahead_days: int = Field(default=180, ge=1)
    popular_events_size: int = Field(default=50, ge=1, le=100)
    max_pages: int = Field(default=5, ge=1)
    timeout_seconds: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key.strip())


class SetlistFmSettings(BaseModel):
    """Setlist history (setlist.fm REST 1.0) settings."""

    api_key: str = ""
    api_base_url: str = "https://api.setlist.fm/rest/1.0"
    timeout_seconds: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key.strip())


class RateLimitSettings(BaseModel):
    """Quota and retry settings for ONE upstream.

    The three ceilings are independent sliding windows (1s, 60s, 86400s). A request
    only runs when all three have room.
    """

    requests_per_second: int = Field(default=10, ge=1)
    requests_per_minute: int = Field(default=180, ge=1)
    requests_per_day: int = Field(default=10000, ge=1)
    max_retries: int = Field(default=3, ge=0)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_seconds: float = Field(default=60.0, ge=0)
    jitter_seconds: float = Field(default=0.5, ge=0)
    queue_timeout_seconds: float = Field(default=300.0, gt=0)
    max_queue_size: int = Field(default=1000, ge=1)


class TicketmasterRateLimits(RateLimitSettings):
    # Defaults live on the class so env overrides merge field by field
    requests_per_second: int = Field(default=5, ge=1)
    requests_per_minute: int = Field(default=200, ge=1)
    requests_per_day: int = Field(default=5000, ge=1)


class SetlistFmRateLimits(RateLimitSettings):
    requests_per_second: int = Field(default=2, ge=1)
    requests_per_minute: int = Field(default=60, ge=1)
    requests_per_day: int = Field(default=1440, ge=1)


class RateLimitGroup(BaseModel):
    """One RateLimitSettings block per upstream."""

    spotify: RateLimitSettings = Field(default_factory=RateLimitSettings)
    ticketmaster: TicketmasterRateLimits = Field(default_factory=TicketmasterRateLimits)
    setlistfm: SetlistFmRateLimits = Field(default_factory=SetlistFmRateLimits)


class JobSettings(BaseModel):
    """Background job scheduling and retry settings."""

    max_retries: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0)

    trending_interval_seconds: int = Field(default=3600, ge=1)
    show_sync_interval_seconds: int = Field(default=6 * 3600, ge=1)
    artist_sync_interval_seconds: int = Field(default=24 * 3600, ge=1)
    setlist_import_interval_seconds: int = Field(default=24 * 3600, ge=1)
    cache_maintenance_interval_seconds: int = Field(default=30 * 60, ge=1)
    health_check_interval_seconds: int = Field(default=15 * 60, ge=1)
    maintenance_hour_utc: int = Field(default=3, ge=0, le=23)

    trigger_secret: str = ""

    artist_sync_batch: int = Field(default=50, ge=1)
    artist_stale_days: int = Field(default=7, ge=1)
    show_sync_batch: int = Field(default=100, ge=1)
    setlist_import_window_days: int = Field(default=7, ge=1)
    setlist_import_batch: int = Field(default=50, ge=1)
    trending_window_days: int = Field(default=365, ge=1)
    retention_days: int = Field(default=365, ge=1)
    item_delay_seconds: float = Field(default=0.5, ge=0)


class CatalogSettings(BaseModel):
    """Catalog import tuning."""

    # Import is skipped once an artist has MORE than this many songs
    skip_threshold: int = Field(default=20, ge=1)
    page_size: int = Field(default=50, ge=1, le=50)
    max_pages: int = Field(default=20, ge=1)
    album_batch_size: int = Field(default=5, ge=1)
    album_batch_delay_seconds: float = Field(default=0.5, ge=0)
    upsert_batch_size: int = Field(default=50, ge=1)
    search_cache_ttl_seconds: int = Field(default=3600, ge=1)
    search_cache_max_size: int = Field(default=1000, ge=1)
    seed_pool_size: int = Field(default=20, ge=1)
    seed_song_count: int = Field(default=5, ge=1)


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json_format: bool = False
    health_log_every_cycles: int = Field(default=10, ge=1)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper() if isinstance(value, str) else value


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_prefix="SETLISTSYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "setlistsync"
    app_env: Literal["development", "production", "test"] = "development"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    ticketmaster: TicketmasterSettings = Field(default_factory=TicketmasterSettings)
    setlistfm: SetlistFmSettings = Field(default_factory=SetlistFmSettings)
    rate_limits: RateLimitGroup = Field(default_factory=RateLimitGroup)
    jobs: JobSettings = Field(default_factory=JobSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process (composition root only)."""
    return Settings()
