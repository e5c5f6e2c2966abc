"""SQLite-backed durable storage for cached job snapshots.

Metadata lives in one table for cheap listing; the full snapshot is stored
gzip-compressed and base64-encoded in a second table.
"""
from __future__ import annotations

import base64
import gzip
import json
import logging
from typing import Any, Dict, List, Optional

import aiosqlite

from .models import CachedJob, CachedJobInfo, JobStatus, fix_orphaned_status, now_ms

logger = logging.getLogger(__name__)


def compress_payload(data: Dict[str, Any]) -> str:
    """JSON -> gzip -> base64 text."""
    raw = json.dumps(data, separators=(",", ":"), default=str).encode("utf-8")
    return base64.b64encode(gzip.compress(raw)).decode("ascii")


def decompress_payload(text: str) -> Dict[str, Any]:
    return json.loads(gzip.decompress(base64.b64decode(text)).decode("utf-8"))


class JobStore:
    """Async SQLite store for job snapshots with expiry."""

    def __init__(self, db_path: str = "scene_jobs.db") -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Create the tables if they don't exist."""
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS job_metadata (
                job_id TEXT PRIMARY KEY,
                video_id TEXT DEFAULT '',
                video_url TEXT DEFAULT '',
                status TEXT NOT NULL,
                scene_count INTEGER DEFAULT 0,
                characters_found INTEGER DEFAULT 0,
                mode TEXT DEFAULT '',
                voice TEXT DEFAULT '',
                has_script INTEGER DEFAULT 0,
                error TEXT,
                created_at TEXT DEFAULT '',
                timestamp INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                expires_at INTEGER NOT NULL
            )
        """)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS job_data (
                job_id TEXT PRIMARY KEY,
                payload TEXT NOT NULL
            )
        """)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db

    # ── CRUD ─────────────────────────────────────────────────────────

    async def put_job(self, job: CachedJob) -> CachedJob:
        """Upsert a full snapshot and purge expired rows."""
        db = await self._conn()
        info = job.to_info()
        updated_at = now_ms()
        await db.execute(
            """
            INSERT INTO job_metadata (job_id, video_id, video_url, status, scene_count,
                characters_found, mode, voice, has_script, error, created_at,
                timestamp, updated_at, expires_at)
            VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            ON CONFLICT(job_id) DO UPDATE SET
                video_id=excluded.video_id, video_url=excluded.video_url,
                status=excluded.status, scene_count=excluded.scene_count,
                characters_found=excluded.characters_found, mode=excluded.mode,
                voice=excluded.voice, has_script=excluded.has_script,
                error=excluded.error, created_at=excluded.created_at,
                timestamp=excluded.timestamp, updated_at=excluded.updated_at,
                expires_at=excluded.expires_at
            """,
            (
                info.job_id, info.video_id, info.video_url, info.status.value,
                info.scene_count, info.characters_found, info.mode, info.voice,
                int(info.has_script), info.error, info.created_at, info.timestamp,
                updated_at, info.expires_at,
            ),
        )
        await db.execute(
            "INSERT OR REPLACE INTO job_data (job_id, payload) VALUES (?, ?)",
            (job.job_id, compress_payload(job.model_dump(mode="json"))),
        )
        await db.commit()
        await self.clear_expired()
        return job

    async def get_job(self, job_id: str) -> Optional[CachedJob]:
        """Fetch a snapshot; expired rows are deleted and reported as missing."""
        db = await self._conn()
        async with db.execute(
            "SELECT m.expires_at, d.payload FROM job_metadata m "
            "JOIN job_data d ON d.job_id = m.job_id WHERE m.job_id = ?",
            (job_id,),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        expires_at, payload = row
        if now_ms() > expires_at:
            await self.delete_job(job_id)
            return None
        return fix_orphaned_status(CachedJob.model_validate(decompress_payload(payload)))

    async def list_jobs(self, limit: int = 50, status: Optional[str] = None) -> List[CachedJobInfo]:
        """List live snapshots, most recently updated first."""
        db = await self._conn()
        sql = "SELECT * FROM job_metadata WHERE expires_at >= ?"
        params: list = [now_ms()]
        if status:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY updated_at DESC LIMIT ?"
        params.append(limit)
        async with db.execute(sql, params) as cur:
            rows = await cur.fetchall()
            desc = cur.description
        return [self._row_to_info(r, desc) for r in rows]

    async def delete_job(self, job_id: str) -> bool:
        db = await self._conn()
        cur = await db.execute("DELETE FROM job_metadata WHERE job_id = ?", (job_id,))
        await db.execute("DELETE FROM job_data WHERE job_id = ?", (job_id,))
        await db.commit()
        return cur.rowcount > 0

    async def delete_all(self) -> int:
        db = await self._conn()
        cur = await db.execute("DELETE FROM job_metadata")
        await db.execute("DELETE FROM job_data")
        await db.commit()
        return cur.rowcount

    async def clear_expired(self) -> int:
        """Delete every expired snapshot. Returns count removed."""
        db = await self._conn()
        now = now_ms()
        await db.execute(
            "DELETE FROM job_data WHERE job_id IN (SELECT job_id FROM job_metadata WHERE expires_at < ?)",
            (now,),
        )
        cur = await db.execute("DELETE FROM job_metadata WHERE expires_at < ?", (now,))
        await db.commit()
        if cur.rowcount:
            logger.debug("Purged %d expired job snapshots", cur.rowcount)
        return cur.rowcount

    async def fix_orphaned_jobs(self) -> List[str]:
        """Rewrite in_progress snapshots that already finished. Returns fixed ids."""
        db = await self._conn()
        async with db.execute(
            "SELECT job_id FROM job_metadata WHERE status = ?", (JobStatus.in_progress.value,)
        ) as cur:
            candidates = [r[0] for r in await cur.fetchall()]
        fixed = []
        for job_id in candidates:
            async with db.execute("SELECT payload FROM job_data WHERE job_id = ?", (job_id,)) as cur:
                row = await cur.fetchone()
            if row is None:
                continue
            job = CachedJob.model_validate(decompress_payload(row[0]))
            if job.is_orphaned:
                await self.put_job(fix_orphaned_status(job))
                fixed.append(job_id)
        if fixed:
            logger.info("Fixed %d orphaned jobs: %s", len(fixed), ", ".join(fixed))
        return fixed

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _row_to_info(row, description) -> CachedJobInfo:
        cols = [d[0] for d in description]
        d = dict(zip(cols, row))
        d["has_script"] = bool(d.get("has_script"))
        d.pop("updated_at", None)
        return CachedJobInfo(**d)
