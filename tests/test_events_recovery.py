"""Tests for event ids, the event channel, replay buffering and SSE framing."""
from __future__ import annotations

import json

import pytest

from scene_orchestrator.config import MAX_STREAM_TIMEOUT_SECONDS
from scene_orchestrator.streaming.events import (
    ChannelClosed,
    EventChannel,
    EventType,
    StreamEvent,
    generate_event_id,
    parse_event_id,
)
from scene_orchestrator.streaming.recovery import EventTracker, stream_timeout_seconds
from scene_orchestrator.streaming.sse import encode, keepalive_event


class TestEventIds:
    def test_round_trip_with_dashed_job_id(self):
        event_id = generate_event_id("job-2024-abc", 3, 17)
        assert event_id == "job-2024-abc-3-17"
        assert parse_event_id(event_id) == ("job-2024-abc", 3, 17)

    @pytest.mark.parametrize("bad", ["", "job", "job-1", "job-x-1", "-1-2"])
    def test_malformed_ids(self, bad):
        assert parse_event_id(bad) is None


@pytest.mark.asyncio
class TestEventChannel:
    async def test_events_arrive_in_order_until_close(self):
        channel = EventChannel()
        await channel.send(EventType.PROGRESS, {"n": 1})
        await channel.send("batchComplete", {"n": 2}, batch=1)
        channel.close()
        received = [event async for event in channel]
        assert [e.type for e in received] == [EventType.PROGRESS, EventType.BATCH_COMPLETE]
        assert received[1].batch == 1

    async def test_send_after_close_raises(self):
        channel = EventChannel()
        channel.close()
        channel.close()
        assert channel.closed
        with pytest.raises(ChannelClosed):
            await channel.send(EventType.PROGRESS)


def _tracked(tracker, job_id, count):
    ids = []
    for seq in range(1, count + 1):
        event_id = generate_event_id(job_id, seq, seq)
        tracker.track(job_id, event_id, StreamEvent(EventType.PROGRESS, {"seq": seq}, batch=seq, id=event_id))
        ids.append(event_id)
    return ids


class TestEventTracker:
    def test_replay_after_id_returns_strictly_later_events(self):
        tracker = EventTracker()
        ids = _tracked(tracker, "job", 5)
        replay = tracker.events_since("job", ids[1])
        assert [e.id for e in replay] == ids[2:]

    def test_unknown_or_missing_id_replays_everything(self):
        tracker = EventTracker()
        ids = _tracked(tracker, "job", 3)
        assert [e.id for e in tracker.events_since("job", "job-9-9")] == ids
        assert [e.id for e in tracker.events_since("job")] == ids

    def test_last_id_replays_nothing(self):
        tracker = EventTracker()
        ids = _tracked(tracker, "job", 3)
        assert tracker.events_since("job", ids[-1]) == []

    def test_capacity_drops_oldest(self):
        tracker = EventTracker(capacity=3)
        ids = _tracked(tracker, "job", 5)
        assert tracker.count("job") == 3
        assert [e.id for e in tracker.events_since("job")] == ids[2:]

    def test_job_limit_evicts_oldest_job(self):
        tracker = EventTracker(max_jobs=2)
        for job_id in ("a", "b", "c"):
            _tracked(tracker, job_id, 1)
        assert not tracker.has("a")
        assert tracker.snapshot_sizes() == {"b": 1, "c": 1}

    def test_clear(self):
        tracker = EventTracker()
        _tracked(tracker, "job", 2)
        tracker.clear("job")
        assert tracker.events_since("job") == []


def test_stream_timeout_scales_and_caps():
    assert stream_timeout_seconds(0, base=600, per_scene=30) == 600
    assert stream_timeout_seconds(10, base=600, per_scene=30) == 900
    assert stream_timeout_seconds(10_000) == MAX_STREAM_TIMEOUT_SECONDS


class TestSseFraming:
    def test_event_frame(self):
        event = StreamEvent(EventType.BATCH_COMPLETE, {"scenes": 4}, batch=2, id="job-2-5")
        text = encode(event).decode()
        lines = text.split("\n")
        assert lines[0] == "id: job-2-5"
        assert lines[1] == "event: batchComplete"
        assert lines[2].startswith("data: ")
        assert json.loads(lines[2][len("data: "):]) == {"type": "batchComplete", "batch": 2, "scenes": 4}
        assert text.endswith("\n\n")

    def test_keepalive_is_a_comment(self):
        assert keepalive_event().encode().decode() == ": keepalive\n\n"
