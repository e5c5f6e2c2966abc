"""Liveness and configuration endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ... import config as engine_config
from ..cache.manager import ProgressMap
from ..cache.tiered import TieredJobCache
from ..deps.providers import get_job_cache, get_job_runner, get_progress_map
from ..jobs.runner import JobRunner
from ..schemas.envelope import ApiResponse

router = APIRouter(tags=["system"])


@router.get("/api/health")
async def health(
    runner: JobRunner = Depends(get_job_runner),
    cache: TieredJobCache = Depends(get_job_cache),
    progress_map: ProgressMap = Depends(get_progress_map),
) -> ApiResponse:
    return ApiResponse.success({
        "status": "ok",
        "active_jobs": runner.pending_count,
        "cached_jobs": len(cache.local),
        "live_progress_entries": len(progress_map),
        "remote_cache": cache.has_remote,
        "queued_remote_writes": len(cache.remote.queue) if cache.remote is not None else 0,
    })


@router.get("/api/config/validate")
async def validate_config() -> ApiResponse:
    issues = engine_config.validate_config()
    warnings = [i["message"] for i in issues]
    return ApiResponse.success({"valid": not any(i["level"] == "ERROR" for i in issues), "issues": issues}, warnings=warnings)
