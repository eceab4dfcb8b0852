"""Configuration management using pydantic-settings."""
import math
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class CacheSettings(BaseSettings):
    """Cache settings loaded from FLIGHTCACHE_* environment variables."""

    # Expiry ("inf" never expires, 0 never caches)
    ttl_seconds: float = Field(default=300.0, ge=0)
    sliding_expiry: bool = False

    # Capacity (None = unbounded)
    max_entries: Optional[int] = Field(default=None, ge=1)
    # Min seconds between expiry sweeps when a full cache needs room
    sweep_interval_seconds: float = Field(default=1.0, ge=0)

    # Cache None results from loaders
    negative_caching_enabled: bool = False

    # Max seconds a caller waits on another caller's load (None = no limit)
    wait_timeout_seconds: Optional[float] = Field(default=30.0, gt=0)

    # Backing store
    backing_store_url: Optional[str] = None
    read_through: bool = False

    # Write-back
    write_back_enabled: bool = False
    write_back_max_attempts: int = Field(default=5, ge=1)
    write_back_backoff_multiplier: float = Field(default=0.5, ge=0)
    write_back_backoff_max_seconds: float = Field(default=30.0, ge=0)
    write_back_workers: int = Field(default=4, ge=1)

    @property
    def never_expires(self) -> bool:
        return math.isinf(self.ttl_seconds)

    class Config:
        env_prefix = "FLIGHTCACHE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = CacheSettings()
