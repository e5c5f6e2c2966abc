"""
Stream events, event ids and the producer/consumer event channel.

Event ids have the form ``{job_id}-{batch}-{seq}``; parsing reads the last
two components so job ids may themselves contain dashes.
"""
from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from ..config import EVENT_ID_SEPARATOR


class EventType(str, enum.Enum):
    PROGRESS = "progress"
    LOG_UPDATE = "logUpdate"
    BATCH_COMPLETE = "batchComplete"
    ERROR = "error"
    COMPLETE = "complete"


TERMINAL_EVENTS = frozenset({EventType.ERROR, EventType.COMPLETE})


@dataclass
class StreamEvent:
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    batch: int = 0
    id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "event": self.type.value, "batch": self.batch, "data": self.data}


def generate_event_id(job_id: str, batch: int, seq: int) -> str:
    return EVENT_ID_SEPARATOR.join((job_id, str(batch), str(seq)))


def parse_event_id(event_id: str) -> Optional[Tuple[str, int, int]]:
    """Return ``(job_id, batch, seq)`` or ``None`` for a malformed id."""
    if not event_id:
        return None
    parts = event_id.rsplit(EVENT_ID_SEPARATOR, 2)
    if len(parts) != 3 or not parts[0]:
        return None
    try:
        return parts[0], int(parts[1]), int(parts[2])
    except ValueError:
        return None


class ChannelClosed(Exception):
    """Raised by ``EventChannel.send`` once the channel has been closed."""


_CLOSE = object()


class EventChannel:
    """Single-producer, single-consumer event channel.

    The orchestrator ``send``s, the transport iterates.  Closing from
    either side ends iteration; a later ``send`` raises ``ChannelClosed``
    so a producer whose consumer went away stops at its next event.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, type: EventType, data: Optional[Dict[str, Any]] = None, batch: int = 0) -> StreamEvent:
        if self._closed:
            raise ChannelClosed("event channel is closed")
        event = StreamEvent(type=EventType(type), data=data or {}, batch=batch)
        await self._queue.put(event)
        return event

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSE)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            yield item
