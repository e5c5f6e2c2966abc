"""Bounded per-job event buffer for replay after a client reconnects."""
from __future__ import annotations

from collections import OrderedDict, deque
from typing import Deque, Dict, List, Optional, Tuple

from ..config import (
    BASE_STREAM_TIMEOUT_SECONDS,
    MAX_RECOVERY_EVENTS,
    MAX_STREAM_TIMEOUT_SECONDS,
    STREAM_TIMEOUT_PER_SCENE_SECONDS,
)
from .events import StreamEvent


class EventTracker:
    """Ring buffer of the most recent events per job.

    Ids are assigned in emission order, so position in the buffer is the
    replay order.  When full, the oldest event is dropped.
    """

    def __init__(self, capacity: int = MAX_RECOVERY_EVENTS, max_jobs: int = 200) -> None:
        self.capacity = capacity
        self.max_jobs = max_jobs
        self._events: "OrderedDict[str, Deque[Tuple[str, StreamEvent]]]" = OrderedDict()

    def track(self, job_id: str, event_id: str, event: StreamEvent) -> None:
        buf = self._events.get(job_id)
        if buf is None:
            buf = deque(maxlen=self.capacity)
            self._events[job_id] = buf
            while len(self._events) > self.max_jobs:
                self._events.popitem(last=False)
        buf.append((event_id, event))

    def events_since(self, job_id: str, last_event_id: Optional[str] = None) -> List[StreamEvent]:
        """Events strictly after *last_event_id*, in order.

        An unknown or missing id replays the whole buffer.
        """
        buf = self._events.get(job_id)
        if not buf:
            return []
        items = list(buf)
        if last_event_id:
            for idx, (event_id, _) in enumerate(items):
                if event_id == last_event_id:
                    return [event for _, event in items[idx + 1:]]
        return [event for _, event in items]

    def has(self, job_id: str) -> bool:
        return job_id in self._events

    def count(self, job_id: str) -> int:
        return len(self._events.get(job_id, ()))

    def clear(self, job_id: str) -> None:
        self._events.pop(job_id, None)

    def snapshot_sizes(self) -> Dict[str, int]:
        return {job_id: len(buf) for job_id, buf in self._events.items()}


def stream_timeout_seconds(
    scene_count: int,
    base: float = BASE_STREAM_TIMEOUT_SECONDS,
    per_scene: float = STREAM_TIMEOUT_PER_SCENE_SECONDS,
    maximum: float = MAX_STREAM_TIMEOUT_SECONDS,
) -> float:
    """Stream lifetime that scales with the job so long runs are not cut off."""
    return min(base + max(scene_count, 0) * per_scene, maximum)
