from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Top Artists Explorer"
    debug: bool = False
    static_dir: str = "public"
    cors_origins: list[str] = []
    trust_proxy: bool = False  # Use X-Forwarded-For for the client IP
    security_headers: bool = True

    # Per-IP request limit
    rate_limit_enabled: bool = True
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/app.db"

    # Spotify API (client credentials + authorization code)
    spotify_client_id: Optional[str] = None
    spotify_client_secret: Optional[str] = None
    spotify_redirect_uri: str = "http://localhost:8000/auth/spotify/callback"
    spotify_scopes: str = "user-read-email user-read-private user-top-read"
    spotify_market: str = "US"

    # Disk cache
    cache_dir: str = ".cache"
    artist_cache_ttl_seconds: int = 12 * 60 * 60
    cache_check_interval_seconds: int = 12 * 60 * 60
    background_refresh: bool = True
    token_expiry_margin_seconds: int = 60

    # Artist discovery
    discovery_genres: list[str] = [
        "pop",
        "hip-hop",
        "rap",
        "rock",
        "latin",
        "r&b",
        "edm",
        "k-pop",
        "country",
        "reggaeton",
    ]
    discovery_min_popularity: int = 60
    discovery_min_candidates: int = 50
    spotify_batch_size: int = 50
    spotify_request_delay_seconds: float = 0.1
    spotify_max_concurrency: int = 1
    top_artists_limit: int = 50
    http_timeout_seconds: float = 15.0
    http_max_connections: int = 20

    # Sessions
    session_cookie_name: str = "spotify.sid"
    session_ttl_seconds: int = 60 * 60
    session_cookie_secure: bool = False
    session_cookie_samesite: str = "lax"

    # Local accounts and comments
    max_accounts_per_ip: int = 3
    max_comments_per_user: int = 5
    comment_title_max_length: int = 128
    comment_body_max_length: int = 4000
    username_min_length: int = 3
    username_max_length: int = 50
    password_min_length: int = 8
    password_max_length: int = 128

    @property
    def spotify_configured(self) -> bool:
        return bool(self.spotify_client_id and self.spotify_client_secret)

    @property
    def effective_batch_size(self) -> int:
        # Spotify rejects more than 50 ids per /artists call
        return max(1, min(self.spotify_batch_size, 50))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
