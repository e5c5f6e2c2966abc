"""Dependency injection providers."""
from .auth import require_access_key
from .providers import (
    get_event_tracker,
    get_generative_client,
    get_job_cache,
    get_job_runner,
    get_job_store,
    get_pipeline,
    get_progress_map,
    get_settings,
)

__all__ = [
    "get_event_tracker",
    "get_generative_client",
    "get_job_cache",
    "get_job_runner",
    "get_job_store",
    "get_pipeline",
    "get_progress_map",
    "get_settings",
    "require_access_key",
]
