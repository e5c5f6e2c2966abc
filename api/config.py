"""Settings for the API layer."""
from __future__ import annotations

from typing import List

from pydantic_settings import BaseSettings

from ..config import (
    CACHE_SWEEP_INTERVAL_SECONDS,
    DEFAULT_GENERATIVE_MODEL,
    GENERATIVE_API_BASE_URL,
    GENERATIVE_API_TIMEOUT_SECONDS,
    LOG_LEVEL,
)


class ApiSettings(BaseSettings):
    """Immutable settings loaded from environment / .env file."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: str = "http://localhost:5173,http://localhost:8000"
    job_db_path: str = "scene_jobs.db"
    log_level: str = LOG_LEVEL

    generative_api_base_url: str = GENERATIVE_API_BASE_URL
    generative_api_key: str = ""
    generative_model: str = DEFAULT_GENERATIVE_MODEL
    generative_timeout: float = GENERATIVE_API_TIMEOUT_SECONDS

    # Base URL of a storage API serving /api/storage/jobs; empty disables the remote tier.
    remote_cache_url: str = ""
    remote_cache_key: str = ""
    # Comma-separated keys accepted on protected endpoints.
    database_access_keys: str = ""
    auth_enabled: bool = True

    max_concurrent_jobs: int = 2
    max_queued_jobs: int = 20
    sweep_interval_seconds: float = CACHE_SWEEP_INTERVAL_SECONDS

    model_config = {"env_prefix": "SO_API_", "env_file": ".env", "extra": "ignore"}

    @property
    def access_keys(self) -> List[str]:
        return [k.strip() for k in self.database_access_keys.split(",") if k.strip()]
