"""Job snapshots, durable storage and the background job runner."""
from .models import CachedJob, CachedJobInfo, JobStatus
from .store import JobStore
from .runner import JobAlreadyRunningError, JobQueueFullError, JobRunner

__all__ = [
    "CachedJob",
    "CachedJobInfo",
    "JobAlreadyRunningError",
    "JobQueueFullError",
    "JobRunner",
    "JobStatus",
    "JobStore",
]
