"""Remote job cache tier backed by the durable storage API.

Writes that fail are queued and retried with exponential backoff.  An
authentication failure clears the whole queue since the credential itself
is invalid.
"""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from ...config import (
    REMOTE_CACHE_TIMEOUT_SECONDS,
    REMOTE_WRITE_BASE_DELAY_SECONDS,
    REMOTE_WRITE_MAX_ATTEMPTS,
)
from ..jobs.models import (
    CachedJob,
    CachedJobInfo,
    expiry_for,
    extract_video_id,
    fix_orphaned_status,
    job_update_dict,
    now_ms,
)

logger = logging.getLogger(__name__)

ACCESS_KEY_HEADER = "x-database-key"

SYNC_SUCCESS = "sync-success"
SYNC_FAILED = "sync-failed"


class RemoteCacheError(Exception):
    """Raised when the storage API rejects or cannot serve a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_auth_error(self) -> bool:
        return self.status_code == 401


@dataclass
class PendingWrite:
    job: Dict[str, Any]
    attempts: int = 0
    next_attempt_at: float = 0.0
    last_error: str = ""


@dataclass
class WriteRetryQueue:
    """Failed remote writes awaiting retry, one entry per job id."""
    max_attempts: int = REMOTE_WRITE_MAX_ATTEMPTS
    base_delay: float = REMOTE_WRITE_BASE_DELAY_SECONDS
    clock: Callable[[], float] = time.monotonic
    _entries: "OrderedDict[str, PendingWrite]" = field(default_factory=OrderedDict)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._entries

    def enqueue(self, job: Dict[str, Any], error: str = "") -> PendingWrite:
        """Queue a failed write as its first attempt.

        A newer payload for a queued job replaces the old one and restarts
        its attempt count; only retries from the queue count toward the limit.
        """
        job_id = job["job_id"]
        entry = PendingWrite(job=job)
        self._entries[job_id] = entry
        self.record_failure(job_id, error)
        return entry

    def record_failure(self, job_id: str, error: str) -> Optional[PendingWrite]:
        entry = self._entries.get(job_id)
        if entry is None:
            return None
        entry.attempts += 1
        entry.last_error = error
        entry.next_attempt_at = self.clock() + self.delay_for(entry.attempts)
        return entry

    def delay_for(self, attempts: int) -> float:
        return self.base_delay * 2 ** max(attempts - 1, 0)

    def due(self) -> List[PendingWrite]:
        now = self.clock()
        return [e for e in self._entries.values() if e.next_attempt_at <= now]

    def remove(self, job_id: str) -> None:
        self._entries.pop(job_id, None)

    def clear(self) -> None:
        self._entries.clear()


SyncListener = Callable[[str, str, Dict[str, Any]], Any]


class RemoteJobCache:
    """Async client for the job storage API.

    Usage::

        async with RemoteJobCache("https://host", access_key="...") as remote:
            await remote.set({"job_id": "abc", "status": "completed"})
            job = await remote.get("abc")
    """

    def __init__(
        self,
        base_url: str,
        access_key: str = "",
        timeout: float = REMOTE_CACHE_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        queue: Optional[WriteRetryQueue] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_key = access_key
        self.queue = queue if queue is not None else WriteRetryQueue()
        self._clock = clock
        self._listeners: List[SyncListener] = []
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=timeout),
        )

    async def __aenter__(self) -> "RemoteJobCache":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def enabled(self) -> bool:
        return bool(self.access_key)

    def add_listener(self, listener: SyncListener) -> None:
        """Register ``listener(kind, job_id, detail)`` for sync notifications."""
        self._listeners.append(listener)

    def _notify(self, kind: str, job_id: str, **detail: Any) -> None:
        for listener in self._listeners:
            try:
                listener(kind, job_id, detail)
            except Exception:  # noqa: BLE001
                logger.debug("Sync listener failed for %s", job_id, exc_info=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if not self.access_key:
            raise RemoteCacheError("Remote cache access key is not configured", status_code=401)
        headers = {ACCESS_KEY_HEADER: self.access_key}
        try:
            response = await self._client.request(method, f"/api/storage{url}", headers=headers, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            raise RemoteCacheError(
                f"HTTP {exc.response.status_code}: {exc.response.text}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.TimeoutException as exc:
            raise RemoteCacheError(f"Request timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise RemoteCacheError(f"Transport error: {exc}") from exc

    @staticmethod
    def _data(response: httpx.Response) -> Any:
        body = response.json()
        if isinstance(body, dict) and "ok" in body:
            return body.get("data")
        return body

    # ------------------------------------------------------------------
    # Cache surface
    # ------------------------------------------------------------------

    async def get(self, job_id: str) -> Optional[CachedJob]:
        try:
            response = await self._request("GET", f"/jobs/{job_id}")
        except RemoteCacheError as exc:
            if exc.status_code == 404:
                return None
            raise
        job = CachedJob.model_validate(self._data(response))
        if self._clock() > job.expires_at:
            return None
        return fix_orphaned_status(job)

    async def set(self, job: Union[CachedJob, Dict[str, Any]]) -> Optional[CachedJob]:
        """Merge *job* over the remote snapshot and upload it.

        Failures are queued for background retry instead of raised; the
        return value is ``None`` in that case.
        """
        update = job_update_dict(job)
        job_id = update["job_id"]
        if not self.enabled:
            self.queue.clear()
            return None
        try:
            existing = await self.get(job_id)
            merged = await self._put(self._merge(existing, update))
        except RemoteCacheError as exc:
            self._handle_write_failure(update, exc)
            return None
        self.queue.remove(job_id)
        return merged

    def _merge(self, existing: Optional[CachedJob], update: Dict[str, Any]) -> CachedJob:
        merged = existing.merged(update) if existing else CachedJob.model_validate(update)
        now = self._clock()
        fields: Dict[str, Any] = {"timestamp": now, "expires_at": expiry_for(merged.status, now)}
        if not merged.video_id and merged.video_url:
            fields["video_id"] = extract_video_id(merged.video_url)
        return merged.model_copy(update=fields)

    async def _put(self, job: CachedJob) -> CachedJob:
        response = await self._request("PUT", f"/jobs/{job.job_id}", json=job.model_dump(mode="json"))
        return CachedJob.model_validate(self._data(response))

    async def delete(self, job_id: str) -> bool:
        self.queue.remove(job_id)
        try:
            await self._request("DELETE", f"/jobs/{job_id}")
        except RemoteCacheError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    async def delete_all(self) -> int:
        self.queue.clear()
        response = await self._request("DELETE", "/jobs")
        return int((self._data(response) or {}).get("deleted", 0))

    async def list(self, status: Optional[str] = None, limit: int = 50) -> List[CachedJobInfo]:
        params: Dict[str, Any] = {"limit": limit}
        if status:
            params["status"] = status
        response = await self._request("GET", "/jobs", params=params)
        return [CachedJobInfo.model_validate(item) for item in self._data(response) or []]

    async def clear_expired(self) -> int:
        response = await self._request("POST", "/jobs/clear-expired")
        return int((self._data(response) or {}).get("deleted", 0))

    async def fix_orphaned_jobs(self) -> List[str]:
        response = await self._request("POST", "/jobs/fix-orphaned")
        return list((self._data(response) or {}).get("fixed", []))

    # ------------------------------------------------------------------
    # Write-retry queue
    # ------------------------------------------------------------------

    def _handle_write_failure(self, update: Dict[str, Any], exc: RemoteCacheError) -> None:
        job_id = update["job_id"]
        if exc.is_auth_error:
            logger.warning("Remote cache rejected credentials; dropping %d queued writes", len(self.queue))
            self.queue.clear()
            return
        entry = self.queue.enqueue(update, str(exc))
        logger.warning(
            "Remote write for %s failed (attempt %d/%d): %s",
            job_id, entry.attempts, self.queue.max_attempts, exc,
        )
        if entry.attempts >= self.queue.max_attempts:
            self._drop(job_id, str(exc))

    def _drop(self, job_id: str, error: str) -> None:
        self.queue.remove(job_id)
        logger.error("Remote write for %s abandoned after %d attempts: %s", job_id, self.queue.max_attempts, error)
        self._notify(SYNC_FAILED, job_id, error=error)

    async def process_queue(self) -> Dict[str, int]:
        """Retry every due queued write once.

        Returns counts of ``synced``, ``failed`` and ``dropped`` writes.
        """
        stats = {"synced": 0, "failed": 0, "dropped": 0}
        if not self.enabled:
            self.queue.clear()
            return stats
        for entry in self.queue.due():
            job_id = entry.job["job_id"]
            try:
                existing = await self.get(job_id)
                await self._put(self._merge(existing, entry.job))
            except RemoteCacheError as exc:
                if exc.is_auth_error:
                    logger.warning("Remote cache rejected credentials; clearing write queue")
                    self.queue.clear()
                    stats["failed"] += 1
                    return stats
                self.queue.record_failure(job_id, str(exc))
                if entry.attempts >= self.queue.max_attempts:
                    self._drop(job_id, str(exc))
                    stats["dropped"] += 1
                else:
                    stats["failed"] += 1
                continue
            self.queue.remove(job_id)
            self._notify(SYNC_SUCCESS, job_id)
            stats["synced"] += 1
        return stats
