"""
Application settings using Pydantic.

Provides environment-based configuration loading with STACKWEAVE_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Provisioning backend (see stackweave.providers.registry)
    backend: str = "memory"

    # Output store: file, redis, memory
    output_store: str = "file"
    output_dir: str = ".stackweave/outputs"

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "stackweave:outputs"

    # Cross-deployment output lookups
    lookup_max_attempts: int = 5
    lookup_wait_seconds: float = 2.0

    # Execution
    node_timeout_seconds: float | None = None
    max_concurrency: int | None = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "STACKWEAVE_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
