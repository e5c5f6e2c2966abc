"""Job control endpoints: start, resume, stream, inspect and cancel."""
from __future__ import annotations

from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Header, Query
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from ...config import SSE_KEEPALIVE_INTERVAL_SECONDS
from ...orchestration.models import Scene
from ...streaming.events import EventType, StreamEvent
from ...streaming.recovery import EventTracker
from ...streaming.sse import SSE_LINE_SEPARATOR, keepalive_event, to_server_sent_event
from ..cache.manager import ProgressMap
from ..cache.tiered import TieredJobCache
from ..deps.auth import require_access_key
from ..deps.providers import get_event_tracker, get_job_cache, get_job_runner, get_progress_map
from ..errors import InvalidJobConfigError, JobNotFoundError, JobNotResumableError
from ..jobs.models import CachedJob, JobStatus
from ..jobs.runner import JobAlreadyRunningError, JobRunner
from ..schemas.envelope import ApiResponse
from ..schemas.jobs import StartJobRequest, resume_request

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def _not_found(job_id: str) -> None:
    """Raise JobNotFoundError to be handled by the global error handler."""
    raise JobNotFoundError(f"Job '{job_id}' not found")


def _event_stream(events: AsyncIterator[StreamEvent], job_id: str) -> EventSourceResponse:
    async def _generate():
        async for event in events:
            yield to_server_sent_event(event)

    return EventSourceResponse(
        _generate(),
        headers={"X-Job-Id": job_id, "Cache-Control": "no-cache"},
        ping=SSE_KEEPALIVE_INTERVAL_SECONDS,
        ping_message_factory=keepalive_event,
        sep=SSE_LINE_SEPARATOR,
    )


def _snapshot_event(job: CachedJob) -> Optional[StreamEvent]:
    """Terminal event rebuilt from a finished snapshot, for reconnects after restart."""
    if job.status == JobStatus.completed:
        return StreamEvent(EventType.COMPLETE, {
            "job_id": job.job_id,
            "status": job.status.value,
            "total_scenes": len(job.scenes),
            "total_batches": job.total_batches,
            "scenes": job.scenes,
            "character_registry": job.character_registry,
            "processing_time": job.summary.processing_time,
        }, batch=job.total_batches or 0)
    if job.status == JobStatus.failed and job.error is not None:
        return StreamEvent(EventType.ERROR, job.error.model_dump(), batch=job.error.failed_batch or 0)
    return None


async def _single(event: StreamEvent) -> AsyncIterator[StreamEvent]:
    yield event


@router.post("", dependencies=[Depends(require_access_key)])
async def start_job(
    request: StartJobRequest,
    runner: JobRunner = Depends(get_job_runner),
) -> EventSourceResponse:
    config = request.to_config()
    await runner.submit(config)
    return _event_stream(runner.subscribe_events(config.job_id, scene_count=config.scene_count), config.job_id)


@router.post("/fix-orphaned", dependencies=[Depends(require_access_key)])
async def fix_orphaned_jobs(cache: TieredJobCache = Depends(get_job_cache)) -> ApiResponse:
    fixed = await cache.fix_orphaned_jobs()
    return ApiResponse.success({"fixed": fixed, "count": len(fixed)})


@router.post("/{job_id}/resume", dependencies=[Depends(require_access_key)])
async def resume_job(
    job_id: str,
    cache: TieredJobCache = Depends(get_job_cache),
    runner: JobRunner = Depends(get_job_runner),
) -> EventSourceResponse:
    job = await cache.get(job_id)
    if job is None:
        _not_found(job_id)
    if runner.is_running(job_id):
        raise JobAlreadyRunningError(f"Job {job_id} is already running")

    data = job.resume_data or {}
    completed = int(data.get("completed_batches") or 0)
    total = int(data.get("total_batches") or 0)
    if job.status == JobStatus.completed or not 0 < completed < total:
        raise JobNotResumableError(f"Job '{job_id}' has no resumable progress")
    if job.error is not None and not job.error.retryable:
        raise JobNotResumableError(f"Job '{job_id}' failed with a non-retryable {job.error.type} error")

    try:
        request = resume_request(job.config, data)
    except ValidationError as exc:
        raise InvalidJobConfigError(f"Stored configuration for '{job_id}' is invalid: {exc}") from exc

    config = request.to_config(
        job_id=job_id,
        resume_from_batch=completed,
        existing_scenes=[Scene.from_dict(s) for s in data.get("existing_scenes") or []],
        existing_characters=data.get("existing_characters"),
    )
    await runner.submit(config)
    return _event_stream(runner.subscribe_events(job_id, scene_count=config.scene_count), job_id)


@router.get("/{job_id}/events")
async def job_events(
    job_id: str,
    last_event_id: Optional[str] = Query(default=None),
    last_event_header: Optional[str] = Header(default=None, alias="Last-Event-ID"),
    cache: TieredJobCache = Depends(get_job_cache),
    runner: JobRunner = Depends(get_job_runner),
    tracker: EventTracker = Depends(get_event_tracker),
) -> EventSourceResponse:
    resume_after = last_event_header or last_event_id
    if runner.is_running(job_id) or tracker.has(job_id):
        return _event_stream(runner.subscribe_events(job_id, last_event_id=resume_after), job_id)

    job = await cache.get(job_id)
    if job is None:
        _not_found(job_id)
    event = _snapshot_event(job)
    if event is None:
        raise JobNotResumableError(f"Job '{job_id}' is not running; resume it to continue")
    return _event_stream(_single(event), job_id)


@router.get("")
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=500),
    status: Optional[JobStatus] = None,
    cache: TieredJobCache = Depends(get_job_cache),
) -> ApiResponse:
    jobs = await cache.list(status=status.value if status else None, limit=limit)
    return ApiResponse.success([j.model_dump() for j in jobs])


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    cache: TieredJobCache = Depends(get_job_cache),
) -> ApiResponse:
    job = await cache.get(job_id)
    if job is None:
        _not_found(job_id)
    return ApiResponse.from_cached(job.model_dump())


@router.get("/{job_id}/progress")
async def job_progress(
    job_id: str,
    progress_map: ProgressMap = Depends(get_progress_map),
    cache: TieredJobCache = Depends(get_job_cache),
) -> ApiResponse:
    live = progress_map.get(job_id)
    if live is not None:
        return ApiResponse.success(live)
    job = await cache.get(job_id)
    if job is None:
        _not_found(job_id)
    total = job.total_batches or 0
    completed = job.completed_batches or 0
    return ApiResponse.from_cached({
        "job_id": job_id,
        "status": job.status.value,
        "completed_batches": completed,
        "total_batches": total,
        "scenes": len(job.scenes),
        "percent": round(completed / total * 100) if total else 100 if job.status == JobStatus.completed else 0,
        "message": job.summary.processing_time,
    })


@router.delete("/{job_id}", dependencies=[Depends(require_access_key)])
async def delete_job(
    job_id: str,
    cache: TieredJobCache = Depends(get_job_cache),
    runner: JobRunner = Depends(get_job_runner),
    progress_map: ProgressMap = Depends(get_progress_map),
    tracker: EventTracker = Depends(get_event_tracker),
) -> ApiResponse:
    if runner.is_running(job_id):
        await runner.cancel(job_id)
        await runner.wait(job_id)
    deleted = await cache.delete(job_id)
    progress_map.delete(job_id)
    tracker.clear(job_id)
    if not deleted:
        _not_found(job_id)
    return ApiResponse.success({"deleted": True, "job_id": job_id})


@router.post("/{job_id}/cancel", dependencies=[Depends(require_access_key)])
async def cancel_job(
    job_id: str,
    runner: JobRunner = Depends(get_job_runner),
) -> ApiResponse:
    if not runner.is_running(job_id):
        _not_found(job_id)
    cancelled = await runner.cancel(job_id)
    return ApiResponse.success({"cancelled": cancelled})
