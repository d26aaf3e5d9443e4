"""Settings read from the environment (and ``nowplaying/.env`` when present)"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[2] / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Spotify app (required: it is the login provider)
    spotify_client_id: str = Field(..., description="Spotify app client id")
    spotify_client_secret: str = Field(..., description="Spotify app client secret")

    # Twitter, offered only when enabled and both credentials are set
    twitter_client_id: str = Field(default="", description="Twitter OAuth 2.0 client id")
    twitter_client_secret: str = Field(default="", description="Twitter OAuth 2.0 client secret")
    twitter_enabled: bool = Field(default=True, description="Operator switch for Twitter")
    twitter_require_misskey: bool = Field(
        default=False, description="Twitter needs a linked Misskey account first"
    )
    twitter_allowed_hosts: str = Field(
        default="",
        description="Comma-separated Misskey hosts whose users may link Twitter; empty allows any",
    )

    # Sessions and handshakes
    session_secret_key: str = Field(..., description="HMAC key for session envelopes")
    session_algorithm: str = Field(default="HS256", description="JWT algorithm for envelopes")
    session_expire_days: int = Field(default=7, ge=1, description="Days a session stays valid")
    session_cookie_name: str = Field(default="session_token", description="Session cookie")
    linking_attempt_ttl_minutes: int = Field(
        default=10, ge=1, description="Minutes a provider handshake may take"
    )

    # PostgreSQL
    database_url: str = Field(..., description="asyncpg DSN")
    db_pool_min_size: int = Field(default=1, ge=0, description="Connections kept open")
    db_pool_max_size: int = Field(default=10, ge=1, description="Connection pool ceiling")
    db_connect_attempts: int = Field(default=3, ge=1, description="Pool open attempts per try")
    token_encryption_key: str = Field(
        default="",
        description="32-byte key (raw or base64) for provider tokens; empty stores plaintext",
    )

    # Public addresses
    frontend_url: str = Field(default="http://localhost:3000", description="Dashboard origin")
    api_url: str = Field(default="http://localhost:8000", description="Public base of this API")
    app_name: str = Field(default="Spotify NowPlaying", description="Name shown on MiAuth")

    environment: str = Field(default="development", description="development or production")
    log_level: str = Field(default="INFO", description="Root log level")

    # Uvicorn bind address
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    sweep_interval: int = Field(
        default=600, ge=10, description="Seconds between purges of expired handshakes and sessions"
    )

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level in LOG_LEVELS:
            return level
        logger.warning(f"Unknown log level '{v}', using INFO")
        return "INFO"

    @field_validator("api_url", "frontend_url")
    @classmethod
    def _no_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def twitter_allowed_host_list(self) -> list[str]:
        hosts = (part.strip().lower() for part in self.twitter_allowed_hosts.split(","))
        return [host for host in hosts if host]

    @property
    def twitter_available(self) -> bool:
        return self.twitter_enabled and bool(self.twitter_client_id and self.twitter_client_secret)

    @property
    def cors_origins(self) -> list[str]:
        # Only the dashboard sends credentialed requests
        return [self.frontend_url]

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
