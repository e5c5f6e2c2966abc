"""Durable job storage endpoints, used as the remote cache tier."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import aiosqlite
from fastapi import APIRouter, Body, Depends, Query

from ..deps.auth import require_access_key
from ..deps.providers import get_job_store
from ..errors import InvalidJobConfigError, JobNotFoundError, StorageUnavailableError
from ..jobs.models import CachedJob, JobStatus, expiry_for, now_ms
from ..jobs.store import JobStore
from ..schemas.envelope import ApiResponse

router = APIRouter(
    prefix="/api/storage/jobs",
    tags=["storage"],
    dependencies=[Depends(require_access_key)],
)


@asynccontextmanager
async def _storage_errors():
    try:
        yield
    except aiosqlite.Error as exc:
        raise StorageUnavailableError(f"Job storage unavailable: {exc}") from exc


@router.get("")
async def list_stored_jobs(
    limit: int = Query(default=50, ge=1, le=500),
    status: Optional[JobStatus] = None,
    store: JobStore = Depends(get_job_store),
) -> ApiResponse:
    async with _storage_errors():
        jobs = await store.list_jobs(limit=limit, status=status.value if status else None)
    return ApiResponse.success([j.model_dump() for j in jobs])


@router.get("/{job_id}")
async def get_stored_job(job_id: str, store: JobStore = Depends(get_job_store)) -> ApiResponse:
    async with _storage_errors():
        job = await store.get_job(job_id)
    if job is None:
        raise JobNotFoundError(f"Job '{job_id}' not found")
    return ApiResponse.success(job.model_dump(mode="json"))


@router.put("/{job_id}")
async def put_stored_job(
    job_id: str,
    payload: Dict[str, Any] = Body(...),
    store: JobStore = Depends(get_job_store),
) -> ApiResponse:
    if payload.get("job_id", job_id) != job_id:
        raise InvalidJobConfigError("job_id in body does not match the path")
    job = CachedJob.model_validate({**payload, "job_id": job_id})
    if not job.expires_at:
        job = job.model_copy(update={"expires_at": expiry_for(job.status, now_ms())})
    async with _storage_errors():
        stored = await store.put_job(job)
    return ApiResponse.success(stored.model_dump(mode="json"))


@router.delete("/{job_id}")
async def delete_stored_job(job_id: str, store: JobStore = Depends(get_job_store)) -> ApiResponse:
    async with _storage_errors():
        deleted = await store.delete_job(job_id)
    if not deleted:
        raise JobNotFoundError(f"Job '{job_id}' not found")
    return ApiResponse.success({"deleted": True, "job_id": job_id})


@router.delete("")
async def delete_all_stored_jobs(store: JobStore = Depends(get_job_store)) -> ApiResponse:
    async with _storage_errors():
        deleted = await store.delete_all()
    return ApiResponse.success({"deleted": deleted})


@router.post("/clear-expired")
async def clear_expired_jobs(store: JobStore = Depends(get_job_store)) -> ApiResponse:
    async with _storage_errors():
        deleted = await store.clear_expired()
    return ApiResponse.success({"deleted": deleted})


@router.post("/fix-orphaned")
async def fix_orphaned_stored_jobs(store: JobStore = Depends(get_job_store)) -> ApiResponse:
    async with _storage_errors():
        fixed = await store.fix_orphaned_jobs()
    return ApiResponse.success({"fixed": fixed, "count": len(fixed)})
