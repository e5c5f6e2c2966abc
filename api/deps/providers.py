"""Singleton dependency providers for FastAPI ``Depends()``."""
from __future__ import annotations

from functools import lru_cache

from ..config import ApiSettings


@lru_cache
def get_settings() -> ApiSettings:
    return ApiSettings()


# Lazy singletons, initialised at first call rather than import time
# so the event loop is already running when async resources are needed.

_job_store = None
_job_cache = None
_progress_map = None
_event_tracker = None
_generative_client = None
_pipeline = None
_job_runner = None


def get_job_store():
    """Return the singleton ``JobStore``."""
    global _job_store
    if _job_store is None:
        from ..jobs.store import JobStore

        _job_store = JobStore(get_settings().job_db_path)
    return _job_store


def get_job_cache():
    """Return the singleton ``TieredJobCache``."""
    global _job_cache
    if _job_cache is None:
        from ..cache.local import LocalJobCache
        from ..cache.remote import RemoteJobCache
        from ..cache.tiered import TieredJobCache

        settings = get_settings()
        remote = None
        if settings.remote_cache_url:
            remote = RemoteJobCache(settings.remote_cache_url, access_key=settings.remote_cache_key)
        _job_cache = TieredJobCache(LocalJobCache(), remote)
    return _job_cache


def get_progress_map():
    """Return the singleton ``ProgressMap``."""
    global _progress_map
    if _progress_map is None:
        from ..cache.manager import ProgressMap

        _progress_map = ProgressMap()
    return _progress_map


def get_event_tracker():
    """Return the singleton ``EventTracker``."""
    global _event_tracker
    if _event_tracker is None:
        from ...streaming.recovery import EventTracker

        _event_tracker = EventTracker()
    return _event_tracker


def get_generative_client():
    """Return the singleton ``GenerativeClient``."""
    global _generative_client
    if _generative_client is None:
        from ..clients.generative import GenerativeClient

        settings = get_settings()
        _generative_client = GenerativeClient(
            api_key=settings.generative_api_key,
            base_url=settings.generative_api_base_url,
            model=settings.generative_model,
            timeout=settings.generative_timeout,
        )
    return _generative_client


def get_pipeline():
    """Return the singleton ``ScenePipeline``."""
    global _pipeline
    if _pipeline is None:
        from ...orchestration.pipeline import ScenePipeline

        _pipeline = ScenePipeline(get_generative_client())
    return _pipeline


def get_job_runner():
    """Return the singleton ``JobRunner``."""
    global _job_runner
    if _job_runner is None:
        from ..jobs.runner import JobRunner

        settings = get_settings()
        _job_runner = JobRunner(
            get_pipeline(),
            get_job_cache(),
            get_progress_map(),
            get_event_tracker(),
            max_concurrent=settings.max_concurrent_jobs,
            max_queued=settings.max_queued_jobs,
        )
    return _job_runner


def reset_providers() -> None:
    """Drop every singleton so the next call rebuilds it."""
    global _job_store, _job_cache, _progress_map, _event_tracker
    global _generative_client, _pipeline, _job_runner
    _job_store = _job_cache = _progress_map = _event_tracker = None
    _generative_client = _pipeline = _job_runner = None
    get_settings.cache_clear()
