"""Job snapshot caches and the live-progress map."""
from .invalidation import run_sweeper, sweep_once
from .local import LocalJobCache, repair_snapshot
from .manager import ProgressMap
from .remote import RemoteCacheError, RemoteJobCache, WriteRetryQueue
from .tiered import TieredJobCache

__all__ = [
    "LocalJobCache",
    "ProgressMap",
    "RemoteCacheError",
    "RemoteJobCache",
    "TieredJobCache",
    "WriteRetryQueue",
    "repair_snapshot",
    "run_sweeper",
    "sweep_once",
]
