"""In-process job cache tier.

Snapshots are merged on write and expire according to their status.  Reads
repair snapshots whose stream dropped before the final writes landed.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from ...config import MAX_CACHED_JOBS
from ...orchestration.audit import fix_pending_log_entries
from ..jobs.models import (
    CachedJob,
    CachedJobInfo,
    JobStatus,
    expiry_for,
    extract_video_id,
    fix_orphaned_status,
    job_update_dict,
    now_ms,
)

logger = logging.getLogger(__name__)


def repair_snapshot(job: CachedJob) -> CachedJob:
    """Apply the orphan fix, then settle pending logs of finished jobs."""
    job = fix_orphaned_status(job)
    if job.status == JobStatus.in_progress:
        return job
    repaired = fix_pending_log_entries(job.model_dump())
    return CachedJob.model_validate(repaired)


class LocalJobCache:
    """Bounded in-memory job cache; oldest snapshots are evicted first."""

    def __init__(self, max_jobs: int = MAX_CACHED_JOBS, clock: Callable[[], int] = now_ms) -> None:
        self._jobs: Dict[str, CachedJob] = {}
        self._max_jobs = max_jobs
        self._clock = clock

    def __len__(self) -> int:
        return len(self._jobs)

    async def get(self, job_id: str) -> Optional[CachedJob]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if self._clock() > job.expires_at:
            del self._jobs[job_id]
            logger.debug("Local cache entry %s expired", job_id)
            return None
        return repair_snapshot(job)

    async def set(
        self,
        job: Union[CachedJob, Dict[str, Any]],
        preserve_timestamp: bool = False,
    ) -> CachedJob:
        """Merge *job* over the stored snapshot and refresh its expiry.

        With *preserve_timestamp* the original write time (the stored one, or
        the incoming one for a new entry) is kept so list ordering does not
        change on housekeeping writes and backfills.  An incoming
        ``expires_at`` is kept as well, so a backfilled snapshot expires when
        its source does.
        """
        update = job_update_dict(job)
        job_id = update["job_id"]
        existing = self._jobs.get(job_id)
        merged = existing.merged(update) if existing else CachedJob.model_validate(update)

        now = self._clock()
        timestamp = now
        if preserve_timestamp:
            timestamp = existing.timestamp if existing else update.get("timestamp") or now
        expires_at = expiry_for(merged.status, now)
        if preserve_timestamp and update.get("expires_at"):
            expires_at = update["expires_at"]
        fields: Dict[str, Any] = {"timestamp": timestamp, "expires_at": expires_at}
        if not merged.video_id and merged.video_url:
            fields["video_id"] = extract_video_id(merged.video_url)
        stored = merged.model_copy(update=fields)

        self._jobs[job_id] = stored
        while len(self._jobs) > self._max_jobs:
            oldest = min(self._jobs, key=lambda k: self._jobs[k].timestamp)
            del self._jobs[oldest]
        return stored

    async def delete(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    async def list(self, status: Optional[str] = None, limit: Optional[int] = None) -> List[CachedJobInfo]:
        """Live snapshots, newest first."""
        now = self._clock()
        jobs = [j for j in self._jobs.values() if now <= j.expires_at]
        if status:
            jobs = [j for j in jobs if fix_orphaned_status(j).status.value == status]
        jobs.sort(key=lambda j: j.timestamp, reverse=True)
        infos = [fix_orphaned_status(j).to_info() for j in jobs]
        return infos[:limit] if limit else infos

    async def clear_expired(self) -> int:
        now = self._clock()
        expired = [k for k, j in self._jobs.items() if now > j.expires_at]
        for k in expired:
            del self._jobs[k]
        return len(expired)

    async def fix_orphaned_jobs(self) -> List[str]:
        """Repair every stored snapshot in place. Returns the ids changed."""
        fixed = []
        for job_id, job in list(self._jobs.items()):
            repaired = repair_snapshot(job)
            if repaired != job:
                self._jobs[job_id] = repaired
                fixed.append(job_id)
        return fixed

    async def clear(self) -> None:
        self._jobs.clear()
