"""Periodic expiry sweeps for the job caches."""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from ...config import CACHE_SWEEP_INTERVAL_SECONDS
from .manager import ProgressMap
from .tiered import TieredJobCache

logger = logging.getLogger(__name__)


async def sweep_once(cache: TieredJobCache, progress_map: Optional[ProgressMap] = None) -> Dict[str, int]:
    """Expire stale snapshots and live-progress entries; retry queued writes."""
    stats = {"jobs": await cache.clear_expired(), "progress": 0, "synced": 0}
    if progress_map is not None:
        stats["progress"] = progress_map.clear_expired()
    if cache.has_remote and len(cache.remote.queue):
        stats["synced"] = (await cache.remote.process_queue())["synced"]
    if any(stats.values()):
        logger.debug("Cache sweep: %s", stats)
    return stats


async def run_sweeper(
    cache: TieredJobCache,
    progress_map: Optional[ProgressMap] = None,
    interval: float = CACHE_SWEEP_INTERVAL_SECONDS,
) -> None:
    """Sweep forever every *interval* seconds; cancel the task to stop."""
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep_once(cache, progress_map)
        except Exception as exc:  # noqa: BLE001
            logger.error("Cache sweep failed: %s", exc, exc_info=True)
