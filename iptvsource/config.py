"""
Configuration management for the IPTV source client.
Uses pydantic-settings for environment variable loading.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    app_name: str = "IPTV Source Client"
    app_version: str = "0.1.0"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS Configuration
    cors_origins: list[str] = ["*"]

    # Rate Limiting
    rate_limit_per_minute: int = 100

    # Storage
    database_path: str = "data/iptv_sources.db"

    # Xtream reachability probing
    # Many panels only answer known media-player signatures
    xtream_user_agents: list[str] = ["VLC/3.0.0 LibVLC/3.0.0", "IPTV Smarters Pro"]
    xtream_blocking_status: Optional[int] = 520  # None disables the blocking check
    xtream_alternate_endpoints: list[str] = [
        "http:8080", "http:80", "https:443", "https:8443", "http:8000", "http:8888"
    ]
    xtream_probe_timeout: float = 10.0
    xtream_alternate_timeout: float = 3.0

    # Xtream authentication and listing
    xtream_auth_attempts: int = 3
    xtream_auth_retry_delay: float = 3.0
    xtream_auth_timeout: float = 15.0
    xtream_request_timeout: float = 30.0

    # M3U download
    m3u_attempts: int = 3
    m3u_retry_delay: float = 2.0
    m3u_timeout: float = 60.0
    m3u_stream_timeout: float = 120.0  # Streamed and raw transports (large playlists)
    m3u_user_agent: str = "VLC/3.0.0 LibVLC/3.0.0"

    # Stream URL resolution
    resolver_timeout: float = 10.0
    resolver_user_agent: str = "VLC/3.0.0 LibVLC/3.0.0"
    web_player_hosts: list[str] = []

    # Pydantic V2 configuration
    model_config = SettingsConfigDict(env_prefix="IPTV_", env_file=".env")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
