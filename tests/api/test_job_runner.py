"""Tests for the job runner: lifecycle, persistence, replay and cancellation."""
import asyncio

import pytest

from conftest import FakeGenerativeClient, make_payload, make_scene, no_sleep
from scene_orchestrator.api.cache.local import LocalJobCache
from scene_orchestrator.api.cache.manager import ProgressMap
from scene_orchestrator.api.cache.tiered import TieredJobCache
from scene_orchestrator.api.jobs.models import JobStatus
from scene_orchestrator.api.jobs.runner import JobAlreadyRunningError, JobQueueFullError, JobRunner
from scene_orchestrator.orchestration.errors import GenerationApiError
from scene_orchestrator.orchestration.models import JobConfig, Scene
from scene_orchestrator.orchestration.pipeline import ScenePipeline
from scene_orchestrator.orchestration.retry import RetryPolicy
from scene_orchestrator.streaming.events import EventType, parse_event_id
from scene_orchestrator.streaming.recovery import EventTracker


class BlockingClient(FakeGenerativeClient):
    """Blocks every call until released."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, body):
        self.calls.append(body)
        self.started.set()
        await self.release.wait()
        return make_payload([make_scene("late", "Narrator - male, 40s")])


def _config(job_id="job-1", **overrides):
    values = dict(job_id=job_id, video_url="https://youtu.be/dQw4w9WgXcQ", video_duration=400, batch_size=10)
    values.update(overrides)
    return JobConfig(**values)


def _runner(client, **kwargs):
    pipeline = ScenePipeline(
        client,
        policy=RetryPolicy(max_attempts=2, initial_delay_ms=1, max_delay_ms=1),
        batch_delay=0,
        sleep=no_sleep,
    )
    return JobRunner(pipeline, TieredJobCache(LocalJobCache()), ProgressMap(), EventTracker(), **kwargs)


@pytest.fixture
async def runner():
    r = _runner(FakeGenerativeClient())
    yield r
    await r.shutdown()


@pytest.mark.asyncio
async def test_completed_job_is_persisted(runner):
    job_id = await runner.submit(_config())
    assert runner.is_running(job_id)
    await runner.wait(job_id)

    assert not runner.is_running(job_id)
    job = await runner.cache.get(job_id)
    assert job.status == JobStatus.completed
    assert job.video_id == "dQw4w9WgXcQ"
    assert len(job.scenes) == 5
    assert job.completed_batches == job.total_batches == 5
    assert len(job.logs) == 5
    assert all(log["status"] == "completed" for log in job.logs)
    assert job.summary.processing_time.endswith("s")
    assert job.resume_data is None
    assert job.config["batch_size"] == 10

    live = runner.progress_map.get(job_id)
    assert live["status"] == "completed"
    assert live["percent"] == 100


@pytest.mark.asyncio
async def test_event_ids_are_sequential(runner):
    job_id = await runner.submit(_config())
    events = [e async for e in runner.subscribe_events(job_id)]
    assert events[-1].type == EventType.COMPLETE
    seqs = [parse_event_id(e.id)[2] for e in events]
    assert seqs == list(range(1, len(events) + 1))
    assert all(parse_event_id(e.id)[0] == job_id for e in events)


@pytest.mark.asyncio
async def test_reconnect_replays_strictly_later_events(runner):
    job_id = await runner.submit(_config())
    first = [e async for e in runner.subscribe_events(job_id)]
    replay = [e async for e in runner.subscribe_events(job_id, last_event_id=first[2].id)]
    assert [e.id for e in replay] == [e.id for e in first[3:]]


@pytest.mark.asyncio
async def test_duplicate_submit_rejected():
    client = BlockingClient()
    runner = _runner(client)
    await runner.submit(_config())
    with pytest.raises(JobAlreadyRunningError):
        await runner.submit(_config())
    client.release.set()
    await runner.shutdown()


@pytest.mark.asyncio
async def test_queue_full():
    client = BlockingClient()
    runner = _runner(client, max_concurrent=1, max_queued=1)
    await runner.submit(_config("a"))
    with pytest.raises(JobQueueFullError):
        await runner.submit(_config("b"))
    await runner.shutdown()


@pytest.mark.asyncio
async def test_failed_job_keeps_partial_snapshot():
    client = FakeGenerativeClient([
        make_payload([make_scene("one")]),
        GenerationApiError("bad request", status_code=400),
    ])
    runner = _runner(client)
    job_id = await runner.submit(_config())
    await runner.wait(job_id)

    job = await runner.cache.get(job_id)
    assert job.status == JobStatus.failed
    assert [s["description"] for s in job.scenes] == ["one"]
    assert job.error.type == "INVALID_INPUT"
    assert job.error.failed_batch == 2
    assert job.error.retryable is False
    assert job.resume_data is None
    assert [log["status"] for log in job.logs] == ["completed", "error"]


@pytest.mark.asyncio
async def test_retryable_failure_keeps_resume_data():
    client = FakeGenerativeClient([
        make_payload([make_scene("one")]),
        GenerationApiError("overloaded", status_code=503),
        GenerationApiError("overloaded", status_code=503),
    ])
    runner = _runner(client)
    job_id = await runner.submit(_config())
    await runner.wait(job_id)

    job = await runner.cache.get(job_id)
    assert job.status == JobStatus.failed
    assert job.error.type == "API_ERROR"
    assert job.error.retryable is True
    assert job.resume_data["completed_batches"] == 1
    assert [s["description"] for s in job.resume_data["existing_scenes"]] == ["one"]


@pytest.mark.asyncio
async def test_cancel_running_job():
    client = BlockingClient()
    runner = _runner(client)
    job_id = await runner.submit(_config())
    await client.started.wait()

    assert await runner.cancel(job_id) is True
    await runner.wait(job_id)

    assert not runner.is_running(job_id)
    job = await runner.cache.get(job_id)
    assert job.status == JobStatus.failed
    assert job.error.message == "Job cancelled"
    assert job.error.retryable is True
    assert await runner.cancel(job_id) is False


@pytest.mark.asyncio
async def test_cancel_queued_job_reports_failure():
    client = BlockingClient()
    runner = _runner(client, max_concurrent=1)
    await runner.submit(_config("first"))
    await runner.submit(_config("second"))
    await client.started.wait()

    stream = runner.subscribe_events("second")
    waiter = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)
    assert await runner.cancel("second") is True
    event = await waiter
    await stream.aclose()

    assert event.type == EventType.ERROR
    assert event.data["message"] == "Job cancelled"
    await runner.wait("second")
    assert not runner.is_running("second")
    assert (await runner.cache.get("second")).status == JobStatus.failed
    assert len(client.calls) == 1
    await runner.shutdown()


@pytest.mark.asyncio
async def test_resume_runs_remaining_batches(runner):
    config = _config(resume_from_batch=2, existing_scenes=[Scene(description="a"), Scene(description="b")])
    job_id = await runner.submit(config)
    await runner.wait(job_id)
    job = await runner.cache.get(job_id)
    assert job.status == JobStatus.completed
    assert [s["description"] for s in job.scenes][:2] == ["a", "b"]
    assert len(job.scenes) == 5
    assert len(runner.pipeline.client.calls) == 3


@pytest.mark.asyncio
async def test_closing_subscriber_does_not_stop_job(runner):
    job_id = await runner.submit(_config())
    stream = runner.subscribe_events(job_id)
    await stream.__anext__()
    await stream.aclose()
    await runner.wait(job_id)
    assert (await runner.cache.get(job_id)).status == JobStatus.completed


@pytest.mark.asyncio
async def test_stream_timeout_yields_error(monkeypatch):
    monkeypatch.setattr("scene_orchestrator.api.jobs.runner.stream_timeout_seconds", lambda scene_count: 0.05)
    client = BlockingClient()
    runner = _runner(client)
    job_id = await runner.submit(_config())
    await client.started.wait()
    events = [e async for e in runner.subscribe_events(job_id)]
    assert events[-1].type == EventType.ERROR
    assert events[-1].data["type"] == "TIMEOUT"
    assert events[-1].data["failed_batch"] == 1
    assert events[-1].data["completed_batches"] == 0
    assert events[-1].data["scenes_completed"] == 0
    assert events[-1].data["total_batches"] == runner._jobs[job_id].progress.total_batches > 0
    assert runner.is_running(job_id)
    await runner.shutdown()
