"""In-memory live-progress map with TTL and bounded size."""
from __future__ import annotations

import copy
import time
from typing import Any, Callable, Dict, Optional

from ...config import PROGRESS_MAP_MAX_ENTRIES, PROGRESS_MAP_TTL_SECONDS


class ProgressMap:
    """Bounded dict of live job progress keyed by job id.

    Entries expire ``ttl`` seconds after they were first created; updates
    keep the original creation time.  Inserting a new key first sweeps
    expired entries, then evicts the oldest entries while at capacity.
    Eviction silently abandons live tracking for that job; durable caches
    are unaffected.  Values are deep-copied on retrieval so callers cannot
    mutate stored state.
    """

    def __init__(
        self,
        max_size: int = PROGRESS_MAP_MAX_ENTRIES,
        ttl: float = PROGRESS_MAP_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store: Dict[str, tuple] = {}  # key -> (value, created_at)
        self._max_size = max_size
        self._ttl = ttl
        self._clock = clock

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[Any]:
        """Return a deep copy of the value or ``None`` if expired / missing."""
        entry = self._store.get(key)
        if entry is None:
            return None
        value, created_at = entry
        if self._clock() - created_at > self._ttl:
            del self._store[key]
            return None
        return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        existing = self._store.get(key)
        if existing is not None:
            self._store[key] = (value, existing[1])
            return
        self.clear_expired()
        while self._store and len(self._store) >= self._max_size:
            self._evict_oldest()
        self._store[key] = (value, self._clock())

    def update(self, key: str, **fields: Any) -> Dict[str, Any]:
        """Merge *fields* into the stored dict for *key*, creating it if absent."""
        current = self.get(key) or {}
        current.update(fields)
        self.set(key, current)
        return current

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear_expired(self) -> int:
        """Remove expired entries. Returns count removed."""
        now = self._clock()
        expired = [k for k, (_, created) in self._store.items() if now - created > self._ttl]
        for k in expired:
            del self._store[k]
        return len(expired)

    def clear(self) -> None:
        self._store.clear()

    # ── Internal ──────────────────────────────────────────────────────

    def _evict_oldest(self) -> None:
        """Remove the entry created earliest."""
        if not self._store:
            return
        oldest_key = min(self._store, key=lambda k: self._store[k][1])
        del self._store[oldest_key]
