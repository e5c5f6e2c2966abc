"""Two-tier job cache: in-process first, durable storage API second."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from ..jobs.models import CachedJob, CachedJobInfo
from .local import LocalJobCache
from .remote import RemoteCacheError, RemoteJobCache

logger = logging.getLogger(__name__)


class TieredJobCache:
    """Writes go local then remote; reads hit local first and backfill it.

    The remote tier is optional.  Remote failures never fail a local
    operation: writes are queued by the remote tier itself and read or
    sweep errors are logged.
    """

    def __init__(self, local: LocalJobCache, remote: Optional[RemoteJobCache] = None) -> None:
        self.local = local
        self.remote = remote

    @property
    def has_remote(self) -> bool:
        return self.remote is not None and self.remote.enabled

    async def get(self, job_id: str) -> Optional[CachedJob]:
        job = await self.local.get(job_id)
        if job is not None or not self.has_remote:
            return job
        try:
            job = await self.remote.get(job_id)
        except RemoteCacheError as exc:
            logger.warning("Remote lookup for %s failed: %s", job_id, exc)
            return None
        if job is not None:
            await self.local.set(job, preserve_timestamp=True)
        return job

    async def set(self, job: Union[CachedJob, Dict[str, Any]]) -> CachedJob:
        stored = await self.local.set(job)
        if self.has_remote:
            await self.remote.set(stored)
        return stored

    async def delete(self, job_id: str) -> bool:
        deleted = await self.local.delete(job_id)
        if self.has_remote:
            try:
                deleted = await self.remote.delete(job_id) or deleted
            except RemoteCacheError as exc:
                logger.warning("Remote delete for %s failed: %s", job_id, exc)
        return deleted

    async def list(self, status: Optional[str] = None, limit: int = 50) -> List[CachedJobInfo]:
        """Union of both tiers, newest first; local entries win on conflict."""
        merged: Dict[str, CachedJobInfo] = {}
        if self.has_remote:
            try:
                for info in await self.remote.list(status=status, limit=limit):
                    merged[info.job_id] = info
            except RemoteCacheError as exc:
                logger.warning("Remote list failed: %s", exc)
        for info in await self.local.list(status=status):
            merged[info.job_id] = info
        infos = sorted(merged.values(), key=lambda i: i.timestamp, reverse=True)
        return infos[:limit]

    async def clear_expired(self) -> int:
        removed = await self.local.clear_expired()
        if self.has_remote:
            try:
                removed += await self.remote.clear_expired()
            except RemoteCacheError as exc:
                logger.debug("Remote sweep failed: %s", exc)
        return removed

    async def fix_orphaned_jobs(self) -> List[str]:
        fixed = set(await self.local.fix_orphaned_jobs())
        if self.has_remote:
            try:
                fixed.update(await self.remote.fix_orphaned_jobs())
            except RemoteCacheError as exc:
                logger.warning("Remote orphan fix failed: %s", exc)
        return sorted(fixed)
