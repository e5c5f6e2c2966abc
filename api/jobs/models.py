"""Cached job snapshot models."""
from __future__ import annotations

import enum
import re
import time
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ...config import COMPLETED_JOB_CACHE_TTL_SECONDS, FAILED_JOB_CACHE_TTL_SECONDS
from ...orchestration.models import JobConfig
from ...orchestration.progress import is_orphaned

_YOUTUBE_ID = re.compile(r"(?:v=|youtu\.be/|/shorts/|/embed/)([A-Za-z0-9_-]{11})")


def now_ms() -> int:
    return int(time.time() * 1000)


class JobStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    partial = "partial"


SHORT_TTL_STATUSES = frozenset({JobStatus.failed, JobStatus.partial})


def expiry_for(status: Union[JobStatus, str], written_at_ms: int) -> int:
    """Expiry timestamp (ms) for a snapshot written at *written_at_ms*."""
    ttl = (
        FAILED_JOB_CACHE_TTL_SECONDS
        if JobStatus(status) in SHORT_TTL_STATUSES
        else COMPLETED_JOB_CACHE_TTL_SECONDS
    )
    return written_at_ms + ttl * 1000


def extract_video_id(video_url: str) -> str:
    match = _YOUTUBE_ID.search(video_url or "")
    return match.group(1) if match else ""


class JobSummary(BaseModel):
    mode: str = "direct"
    scene_count_target: int = 0
    scene_count_actual: int = 0
    voice: str = "no-voice"
    characters_found: int = 0
    processing_time: str = ""
    created_at: str = ""


class JobErrorInfo(BaseModel):
    type: str = "UNKNOWN_ERROR"
    message: str = ""
    retryable: bool = False
    failed_batch: Optional[int] = None
    total_batches: Optional[int] = None
    scenes_completed: int = 0


class CachedJob(BaseModel):
    """Durable snapshot of a job: config, progress, audit logs and expiry."""

    job_id: str
    video_id: str = ""
    video_url: str = ""
    summary: JobSummary = Field(default_factory=JobSummary)
    scenes: List[Dict[str, Any]] = Field(default_factory=list)
    character_registry: Dict[str, Any] = Field(default_factory=dict)
    script: Optional[Dict[str, Any]] = None
    status: JobStatus = JobStatus.in_progress
    error: Optional[JobErrorInfo] = None
    logs: List[Dict[str, Any]] = Field(default_factory=list)
    resume_data: Optional[Dict[str, Any]] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    completed_batches: Optional[int] = None
    total_batches: Optional[int] = None
    timestamp: int = Field(default_factory=now_ms)
    expires_at: int = 0

    def merged(self, update: Dict[str, Any]) -> "CachedJob":
        """Return a copy with *update* applied; unspecified fields keep their value."""
        data = self.model_dump()
        for key, value in update.items():
            if key in ("summary",) and isinstance(value, dict):
                data[key] = {**data.get(key, {}), **value}
            else:
                data[key] = value
        return CachedJob.model_validate(data)

    @property
    def is_orphaned(self) -> bool:
        return is_orphaned(self.status.value, len(self.scenes), self.completed_batches, self.total_batches)

    def to_info(self) -> "CachedJobInfo":
        return CachedJobInfo(
            job_id=self.job_id,
            video_id=self.video_id,
            video_url=self.video_url,
            scene_count=len(self.scenes),
            characters_found=len(self.character_registry),
            mode=self.summary.mode,
            voice=self.summary.voice,
            timestamp=self.timestamp,
            created_at=self.summary.created_at,
            expires_at=self.expires_at,
            has_script=self.script is not None,
            status=self.status,
            error=self.error.message if self.error else None,
        )


class CachedJobInfo(BaseModel):
    """List projection of a cached job."""

    job_id: str
    video_id: str = ""
    video_url: str = ""
    scene_count: int = 0
    characters_found: int = 0
    mode: str = "direct"
    voice: str = "no-voice"
    timestamp: int = 0
    created_at: str = ""
    expires_at: int = 0
    has_script: bool = False
    status: JobStatus = JobStatus.in_progress
    error: Optional[str] = None


def job_update_dict(job: Union[CachedJob, Dict[str, Any]]) -> Dict[str, Any]:
    """Fields explicitly provided by the caller, for merge-on-write."""
    if isinstance(job, CachedJob):
        return job.model_dump(exclude_unset=True)
    return dict(job)


def fix_orphaned_status(job: CachedJob) -> CachedJob:
    """Correct an in_progress snapshot that already holds its final content."""
    if not job.is_orphaned:
        return job
    return job.model_copy(update={
        "status": JobStatus.completed,
        "resume_data": None,
        "expires_at": expiry_for(JobStatus.completed, job.timestamp),
    })


def config_snapshot(config: JobConfig) -> Dict[str, Any]:
    """Request-level fields of *config*, enough to rebuild it on resume."""
    return {
        "video_url": config.video_url,
        "mode": config.mode.value,
        "scene_count": config.scene_count,
        "scene_count_mode": config.scene_count_mode.value,
        "batch_size": config.batch_size,
        "content_pacing": config.content_pacing.value,
        "voice": config.voice,
        "audio": dict(config.audio),
        "negative_prompt": config.negative_prompt,
        "media_type": config.media_type.value,
        "script_text": config.script_text,
        "video_duration": config.video_duration,
    }
