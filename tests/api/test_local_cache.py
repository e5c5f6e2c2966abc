"""Tests for the in-process job cache tier."""
import pytest

from scene_orchestrator.api.cache.local import LocalJobCache, repair_snapshot
from scene_orchestrator.api.jobs.models import CachedJob, JobStatus
from scene_orchestrator.config import COMPLETED_JOB_CACHE_TTL_SECONDS, FAILED_JOB_CACHE_TTL_SECONDS
from scene_orchestrator.orchestration.audit import LOST_RESPONSE_PLACEHOLDER, create_pending_log


class Clock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(clock):
    return LocalJobCache(max_jobs=3, clock=clock)


@pytest.mark.asyncio
async def test_set_assigns_timestamp_expiry_and_video_id(cache, clock):
    stored = await cache.set({
        "job_id": "a",
        "status": "completed",
        "video_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
    })
    assert stored.timestamp == clock.now
    assert stored.expires_at == clock.now + COMPLETED_JOB_CACHE_TTL_SECONDS * 1000
    assert stored.video_id == "dQw4w9WgXcQ"


@pytest.mark.asyncio
async def test_failed_snapshots_get_short_ttl(cache, clock):
    stored = await cache.set({"job_id": "a", "status": "failed"})
    assert stored.expires_at == clock.now + FAILED_JOB_CACHE_TTL_SECONDS * 1000


@pytest.mark.asyncio
async def test_set_merges_over_existing(cache):
    await cache.set({"job_id": "a", "status": "in_progress", "scenes": [{"description": "x"}],
                     "completed_batches": 1, "total_batches": 3})
    await cache.set({"job_id": "a", "summary": {"processing_time": "Batch 1/3"}})
    job = await cache.get("a")
    assert job.scenes == [{"description": "x"}]
    assert job.summary.processing_time == "Batch 1/3"
    assert job.status == JobStatus.in_progress


@pytest.mark.asyncio
async def test_set_accepts_models(cache):
    await cache.set(CachedJob(job_id="a", status=JobStatus.completed, scenes=[{"description": "x"}]))
    await cache.set(CachedJob(job_id="a", video_url="https://example.com/v"))
    job = await cache.get("a")
    assert job.scenes == [{"description": "x"}]
    assert job.video_url == "https://example.com/v"


@pytest.mark.asyncio
async def test_preserve_timestamp_keeps_write_time(cache, clock):
    await cache.set({"job_id": "a", "status": "completed"})
    first = clock.now
    clock.now += 5000
    stored = await cache.set({"job_id": "a", "status": "completed"}, preserve_timestamp=True)
    assert stored.timestamp == first
    assert stored.expires_at == clock.now + COMPLETED_JOB_CACHE_TTL_SECONDS * 1000


@pytest.mark.asyncio
async def test_preserve_timestamp_keeps_incoming_expiry(cache, clock):
    expires_at = clock.now + 60_000
    stored = await cache.set(
        {"job_id": "a", "status": "completed", "timestamp": clock.now - 1000, "expires_at": expires_at},
        preserve_timestamp=True,
    )
    assert stored.timestamp == clock.now - 1000
    assert stored.expires_at == expires_at
    clock.now = expires_at + 1
    assert await cache.get("a") is None


@pytest.mark.asyncio
async def test_expired_entries_vanish(cache, clock):
    await cache.set({"job_id": "a", "status": "failed"})
    clock.now += FAILED_JOB_CACHE_TTL_SECONDS * 1000 + 1
    assert await cache.list() == []
    assert await cache.get("a") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_clear_expired_counts(cache, clock):
    await cache.set({"job_id": "a", "status": "failed"})
    await cache.set({"job_id": "b", "status": "completed"})
    clock.now += FAILED_JOB_CACHE_TTL_SECONDS * 1000 + 1
    assert await cache.clear_expired() == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_capacity_evicts_oldest(cache, clock):
    for job_id in ("a", "b", "c", "d"):
        await cache.set({"job_id": job_id, "status": "completed"})
        clock.now += 1
    assert [j.job_id for j in await cache.list()] == ["d", "c", "b"]


@pytest.mark.asyncio
async def test_list_filters_status_and_limit(cache, clock):
    await cache.set({"job_id": "a", "status": "completed"})
    clock.now += 1
    await cache.set({"job_id": "b", "status": "failed"})
    clock.now += 1
    await cache.set({"job_id": "c", "status": "completed"})
    assert [j.job_id for j in await cache.list(status="completed")] == ["c", "a"]
    assert [j.job_id for j in await cache.list(limit=1)] == ["c"]


@pytest.mark.asyncio
async def test_get_repairs_orphan_and_pending_logs(cache):
    pending = create_pending_log(2, "m", "prompt", "u")
    await cache.set({
        "job_id": "a",
        "status": "in_progress",
        "scenes": [{"description": "x"}],
        "completed_batches": 2,
        "total_batches": 2,
        "logs": [pending],
        "summary": {"processing_time": "Batch 2/2"},
    })
    job = await cache.get("a")
    assert job.status == JobStatus.completed
    assert job.logs[0]["status"] == "completed"
    assert job.logs[0]["response"]["body"] == LOST_RESPONSE_PLACEHOLDER
    assert job.summary.processing_time.endswith("s")
    assert not job.summary.processing_time.startswith("Batch")


def test_running_snapshot_is_left_alone():
    job = CachedJob(
        job_id="a",
        status=JobStatus.in_progress,
        scenes=[{"description": "x"}],
        completed_batches=1,
        total_batches=3,
        logs=[create_pending_log(2, "m", "prompt", "u")],
    )
    assert repair_snapshot(job) == job


@pytest.mark.asyncio
async def test_fix_orphaned_jobs_reports_changed_ids(cache):
    await cache.set({"job_id": "done", "status": "in_progress", "scenes": [{"description": "x"}],
                     "completed_batches": 1, "total_batches": 1})
    await cache.set({"job_id": "live", "status": "in_progress", "scenes": [{"description": "x"}],
                     "completed_batches": 1, "total_batches": 4})
    assert await cache.fix_orphaned_jobs() == ["done"]
    assert await cache.fix_orphaned_jobs() == []


@pytest.mark.asyncio
async def test_delete_and_clear(cache):
    await cache.set({"job_id": "a", "status": "completed"})
    assert await cache.delete("a") is True
    assert await cache.delete("a") is False
    await cache.set({"job_id": "b", "status": "completed"})
    await cache.clear()
    assert len(cache) == 0
