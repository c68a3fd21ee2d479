"""
Shared configuration management for the cached document store.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the store, the cache and the data layer defaults."""

    model_config = SettingsConfigDict(
        env_prefix="CACHED_DB_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Cache
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_socket_timeout: float = Field(default=5.0, gt=0)

    # Document store
    postgres_dsn: str = Field(default="postgres://localhost:5432/cached_db")
    postgres_min_pool: int = Field(default=2, ge=1)
    postgres_max_pool: int = Field(default=10, ge=1)
    postgres_command_timeout: Optional[float] = Field(default=30.0)

    # Data layer defaults
    cache_ttl: int = Field(default=7200, gt=0)
    id_field: str = Field(default="uuid", min_length=1)
    id_prefix: str = Field(default="")
    index_poll_interval: float = Field(default=0.1, gt=0)


def get_settings(**overrides) -> Settings:
    """Load settings from the environment, applying explicit overrides."""
    return Settings(**overrides)
