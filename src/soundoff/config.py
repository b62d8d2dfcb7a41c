"""Application configuration via pydantic-settings."""

import socket
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "SoundOff"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    dry_run: bool = False

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "soundoff"
    db_user: str = "soundoff"
    db_password: str = Field("", description="PostgreSQL password")
    database_url_override: str | None = None

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str | None = None

    @property
    def redis_url(self) -> str:
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Discord
    discord_bot_token: str | None = None

    # Blob store (encoded audio, keyed by SoundCron ID)
    blob_base_url: str = "http://localhost:9000"
    blob_bucket: str = "soundoff"
    blob_prefix: str = "sound-off/dca"

    # Scheduling
    poll_interval_seconds: float = 27.0
    claim_horizon_seconds: float = 60.0
    schedule_batch_size: int = 5

    # Delivery
    consumer_name: str = Field(default_factory=socket.gethostname)
    preload_margin_seconds: float = 5.0
    voice_send_timeout_seconds: float = 60.0
    execute_misfire_grace_seconds: int = 30
    blacklist_ttl_seconds: int = 24 * 60 * 60

    # Quotas
    max_guild_storage_bytes: int = 10 * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()
