"""
Event streaming: ids, channel, replay buffer and SSE framing.

Components:
    - EventChannel: producer/consumer channel between pipeline and transport
    - EventTracker: bounded per-job replay buffer
    - to_server_sent_event / keepalive_event: wire framing
"""
from .events import (
    ChannelClosed,
    EventChannel,
    EventType,
    StreamEvent,
    TERMINAL_EVENTS,
    generate_event_id,
    parse_event_id,
)
from .recovery import EventTracker, stream_timeout_seconds
from .sse import encode, keepalive_event, to_server_sent_event

__all__ = [
    "ChannelClosed",
    "EventChannel",
    "EventTracker",
    "EventType",
    "StreamEvent",
    "TERMINAL_EVENTS",
    "encode",
    "generate_event_id",
    "keepalive_event",
    "parse_event_id",
    "stream_timeout_seconds",
    "to_server_sent_event",
]
