"""SSE framing for stream events, via ``sse_starlette``."""
from __future__ import annotations

import json

from sse_starlette.sse import ServerSentEvent

from .events import StreamEvent

SSE_LINE_SEPARATOR = "\n"
KEEPALIVE_COMMENT = "keepalive"


def to_server_sent_event(event: StreamEvent) -> ServerSentEvent:
    """Frame as ``id:``, ``event:`` and ``data: <json>`` lines plus a blank line."""
    payload = {"type": event.type.value, "batch": event.batch, **event.data}
    return ServerSentEvent(
        data=json.dumps(payload, default=str),
        event=event.type.value,
        id=event.id,
        sep=SSE_LINE_SEPARATOR,
    )


def keepalive_event() -> ServerSentEvent:
    """``: keepalive`` comment line; holds the connection open through proxies."""
    return ServerSentEvent(comment=KEEPALIVE_COMMENT, sep=SSE_LINE_SEPARATOR)


def encode(event: StreamEvent) -> bytes:
    return to_server_sent_event(event).encode()
