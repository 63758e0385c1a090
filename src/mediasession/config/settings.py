"""Application settings loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Hey future me - these are ALL scopes the session client needs. Playback scopes drive the
# player widget, library scopes drive the like button, history scopes drive "recently played".
# Adding scopes later forces every user through the consent screen again, so ask once upfront.
DEFAULT_SPOTIFY_SCOPES = " ".join(
    [
        # Playback
        "streaming",
        "user-read-playback-state",
        "user-modify-playback-state",
        "user-read-currently-playing",
        # User
        "user-read-email",
        "user-read-private",
        # Library
        "user-library-read",
        "user-library-modify",
        # Playlists
        "playlist-read-private",
        "playlist-read-collaborative",
        "playlist-modify-public",
        "playlist-modify-private",
        # History
        "user-read-recently-played",
        "user-top-read",
    ]
)


class SpotifySettings(BaseSettings):
    """Spotify OAuth and Web API settings."""

    model_config = SettingsConfigDict(env_prefix="SPOTIFY_", extra="ignore")

    client_id: str = ""
    redirect_uri: str = ""
    scopes: str = DEFAULT_SPOTIFY_SCOPES
    authorize_url: str = "https://accounts.spotify.com/authorize"
    token_url: str = "https://accounts.spotify.com/api/token"  # nosec B105 - public endpoint URL
    api_base_url: str = "https://api.spotify.com/v1"

    @property
    def is_configured(self) -> bool:
        """Check that the PKCE flow can be started."""
        return bool(self.client_id.strip() and self.redirect_uri.strip())


class StorageSettings(BaseSettings):
    """Local durable storage settings."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    data_dir: Path = Path("./data")


class DatabaseSettings(BaseSettings):
    """Remote backup store (SQL) settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", extra="ignore")

    url: str = "sqlite+aiosqlite:///./mediasession.db"
    echo: bool = False
    pool_pre_ping: bool = True


class SessionSettings(BaseSettings):
    """Timing knobs for the session controller and its workers.

    Hey future me - poll_interval bounds the drift of the locally ticked progress bar.
    Going below ~3s burns rate-limit budget for no visible gain.
    """

    model_config = SettingsConfigDict(env_prefix="SESSION_", extra="ignore")

    refresh_buffer_seconds: int = 300
    tick_interval_seconds: float = 1.0
    tick_quantum_ms: int = 1000
    poll_interval_seconds: float = 5.0
    command_refetch_delay_seconds: float = 0.5
    pending_watch_interval_seconds: float = 2.0
    verifier_max_age_seconds: int = 600
    recently_played_limit: int = Field(default=10, ge=1, le=50)
    http_timeout_seconds: float = 30.0
    reconcile_after_commands: bool = False
    # Host user the remote token backup is keyed by. Hosts with their own sign-in can also
    # push it at runtime via PUT /api/media/identity.
    user_id: str | None = None


class ObservabilitySettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_", extra="ignore")

    log_json_format: bool = False


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "mediasession"
    log_level: str = "INFO"

    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    def ensure_directories(self) -> None:
        """Create the local storage directory if it does not exist."""
        self.storage.data_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
