"""Async job runner with concurrency control and SSE event streaming."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, AsyncGenerator, Dict, List, Optional

from ...config import SSE_REPLAY_DELAY_MS
from ...orchestration.errors import ErrorType, classify_error, is_retryable_type
from ...orchestration.models import JobConfig, registry_to_dict
from ...orchestration.pipeline import ScenePipeline
from ...orchestration.progress import JobProgress, ProgressStatus
from ...orchestration.scheduler import plan_batches
from ...streaming.events import EventChannel, EventType, StreamEvent, generate_event_id
from ...streaming.recovery import EventTracker, stream_timeout_seconds
from .models import JobStatus, config_snapshot, extract_video_id

if TYPE_CHECKING:
    from ..cache.manager import ProgressMap
    from ..cache.tiered import TieredJobCache

logger = logging.getLogger(__name__)

PERSISTED_EVENTS = frozenset({EventType.BATCH_COMPLETE, EventType.ERROR, EventType.COMPLETE})

_STATUS_FOR_PROGRESS = {
    ProgressStatus.COMPLETED: JobStatus.completed,
    ProgressStatus.FAILED: JobStatus.failed,
}


class JobQueueFullError(Exception):
    """Raised when the job queue is at capacity."""


class JobAlreadyRunningError(Exception):
    """Raised when a job id is submitted while a job with that id is active."""


@dataclass
class ActiveJob:
    config: JobConfig
    progress: JobProgress
    channel: EventChannel = field(default_factory=EventChannel)
    subscribers: List[asyncio.Queue] = field(default_factory=list)
    logs: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    seq: int = 0
    created_at: str = ""
    task: Optional[asyncio.Task] = None
    producer: Optional[asyncio.Task] = None
    terminal: Optional[StreamEvent] = None
    cancel_requested: bool = False

    @property
    def job_id(self) -> str:
        return self.config.job_id


class JobRunner:
    """Runs scene pipelines as asyncio tasks with bounded concurrency.

    Each job's event channel is consumed here: every event gets an id,
    goes into the replay buffer and the live-progress map, is persisted
    on batch completion and on terminal events, and is fanned out to the
    job's subscribers.
    """

    def __init__(
        self,
        pipeline: ScenePipeline,
        cache: TieredJobCache,
        progress_map: ProgressMap,
        tracker: EventTracker,
        max_concurrent: int = 2,
        max_queued: int = 20,
    ) -> None:
        self.pipeline = pipeline
        self.cache = cache
        self.progress_map = progress_map
        self.tracker = tracker
        self._sem = asyncio.Semaphore(max_concurrent)
        self._max_queued = max_queued
        self._jobs: Dict[str, ActiveJob] = {}

    # ── Submit & Run ─────────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        """Number of jobs queued or running."""
        return len(self._jobs)

    def is_running(self, job_id: str) -> bool:
        return job_id in self._jobs

    async def submit(self, config: JobConfig) -> str:
        """Start *config* in the background and return its job id.

        Raises
        ------
        JobQueueFullError
            If the number of pending jobs reaches ``max_queued``.
        JobAlreadyRunningError
            If a job with the same id is still active.
        """
        if config.job_id in self._jobs:
            raise JobAlreadyRunningError(f"Job {config.job_id} is already running")
        if len(self._jobs) >= self._max_queued:
            raise JobQueueFullError(
                f"Job queue full. {self._max_queued} jobs pending. Try again later."
            )

        progress = JobProgress.create(config.job_id, len(plan_batches(config)))
        job = ActiveJob(
            config=config,
            progress=progress,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        if config.is_resume:
            progress.completed_batches = min(config.resume_from_batch, progress.total_batches)
            progress.scenes = list(config.existing_scenes)
            progress.characters = dict(config.existing_characters)
            existing = await self.cache.get(config.job_id)
            if existing is not None:
                job.logs = {int(log.get("batch_number", i)): log for i, log in enumerate(existing.logs)}
                job.created_at = existing.summary.created_at or job.created_at

        self._jobs[config.job_id] = job
        self.tracker.clear(config.job_id)
        self.progress_map.set(config.job_id, {
            "job_id": config.job_id,
            "status": JobStatus.pending.value,
            "completed_batches": progress.completed_batches,
            "total_batches": progress.total_batches,
            "scenes": len(config.existing_scenes),
            "percent": 0,
            "message": job.progress.message,
        })
        await self._persist(job, None)
        job.task = asyncio.create_task(self._run(job))
        job.task.add_done_callback(lambda _: self._release(job))
        logger.info("Job %s submitted (%s)", config.job_id, "resume" if config.is_resume else "new")
        return config.job_id

    async def _run(self, job: ActiveJob) -> None:
        try:
            async with self._sem:
                job.producer = asyncio.create_task(
                    self.pipeline.run(job.config, job.channel, job.progress)
                )
                job.producer.add_done_callback(lambda _: job.channel.close())
                async for event in job.channel:
                    await self._dispatch(job, event)
                await self._settle_producer(job)
        except asyncio.CancelledError:
            if not (job.cancel_requested and job.producer is None):
                raise
            logger.info("Job %s cancelled before it started", job.job_id)

    def _release(self, job: ActiveJob) -> None:
        if self._jobs.get(job.job_id) is job:
            del self._jobs[job.job_id]
        for queue in job.subscribers:
            queue.put_nowait(None)

    async def _settle_producer(self, job: ActiveJob) -> None:
        producer = job.producer
        if producer.cancelled():
            logger.info("Job %s cancelled", job.job_id)
            if job.terminal is None:
                await self._fail(job, "Job cancelled", ErrorType.UNKNOWN_ERROR, retryable=True)
            return
        exc = producer.exception()
        if exc is not None and job.terminal is None:
            logger.error("Job %s crashed: %s", job.job_id, exc, exc_info=exc)
            await self._fail(job, str(exc), classify_error(exc))

    async def _fail(
        self,
        job: ActiveJob,
        message: str,
        error_type: ErrorType,
        retryable: Optional[bool] = None,
    ) -> None:
        """Emit a terminal error for a job whose pipeline could not report it."""
        progress = job.progress
        progress.mark_failed(message)
        await self._dispatch(job, StreamEvent(
            type=EventType.ERROR,
            data={
                "type": error_type.value,
                "message": message,
                "retryable": is_retryable_type(error_type) if retryable is None else retryable,
                "failed_batch": progress.completed_batches + 1,
                "total_batches": progress.total_batches,
                "scenes_completed": len(progress.scenes),
                "completed_batches": progress.completed_batches,
            },
            batch=progress.completed_batches + 1,
        ))

    # ── Event dispatch ───────────────────────────────────────────────

    async def _dispatch(self, job: ActiveJob, event: StreamEvent) -> None:
        job.seq += 1
        event.id = generate_event_id(job.job_id, event.batch, job.seq)
        self.tracker.track(job.job_id, event.id, event)

        if event.type == EventType.LOG_UPDATE:
            job.logs[int(event.data.get("batch_number", event.batch))] = event.data
        self.progress_map.set(job.job_id, self._live_progress(job, event))
        if event.is_terminal:
            job.terminal = event

        # subscribers get the event before any await
        for queue in list(job.subscribers):
            queue.put_nowait(event)

        if event.type in PERSISTED_EVENTS:
            await self._persist(job, event)

    def _live_progress(self, job: ActiveJob, event: StreamEvent) -> Dict[str, Any]:
        progress = job.progress
        message = event.data.get("message") if event.type == EventType.PROGRESS else None
        return {
            "job_id": job.job_id,
            "status": self._job_status(job).value,
            "completed_batches": progress.completed_batches,
            "total_batches": progress.total_batches,
            "scenes": len(progress.scenes),
            "percent": progress.percent,
            "message": message or progress.message,
            "last_event_id": event.id,
        }

    @staticmethod
    def _job_status(job: ActiveJob) -> JobStatus:
        return _STATUS_FOR_PROGRESS.get(job.progress.status, JobStatus.in_progress)

    async def _persist(self, job: ActiveJob, event: Optional[StreamEvent]) -> None:
        try:
            await self.cache.set(self._snapshot(job, event))
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to persist snapshot for job %s: %s", job.job_id, exc, exc_info=True)

    def _snapshot(self, job: ActiveJob, event: Optional[StreamEvent]) -> Dict[str, Any]:
        config, progress = job.config, job.progress
        status = self._job_status(job)
        resume = progress.resume_data(config)
        if event is not None and event.type == EventType.ERROR and not event.data.get("retryable", True):
            # non-retryable failures restart rather than resume
            resume = None

        if event is not None and event.type == EventType.COMPLETE:
            processing_time = event.data.get("processing_time", "")
        else:
            processing_time = f"Batch {progress.completed_batches}/{progress.total_batches}"

        snapshot: Dict[str, Any] = {
            "job_id": job.job_id,
            "video_url": config.video_url,
            "video_id": extract_video_id(config.video_url),
            "status": status.value,
            "config": config_snapshot(config),
            "summary": {
                "mode": config.mode.value,
                "scene_count_target": config.scene_count,
                "scene_count_actual": len(progress.scenes),
                "voice": config.voice,
                "characters_found": len(progress.characters),
                "processing_time": processing_time,
                "created_at": job.created_at,
            },
            "scenes": [s.to_dict() for s in progress.scenes],
            "character_registry": registry_to_dict(progress.characters),
            "logs": list(job.logs.values()),
            "completed_batches": progress.completed_batches,
            "total_batches": progress.total_batches,
            "resume_data": resume.to_dict() if resume else None,
            "script": {"text": config.script_text} if config.script_text else None,
        }
        if event is not None and event.type == EventType.ERROR:
            snapshot["error"] = {
                k: event.data.get(k)
                for k in ("type", "message", "retryable", "failed_batch", "total_batches", "scenes_completed")
            }
        elif status != JobStatus.failed:
            snapshot["error"] = None
        return snapshot

    # ── Cancel ───────────────────────────────────────────────────────

    async def cancel(self, job_id: str) -> bool:
        """Cancel a queued or running job. Returns ``False`` if not active."""
        job = self._jobs.get(job_id)
        if job is None:
            return False
        job.cancel_requested = True
        if job.producer is not None:
            if job.producer.done():
                return False
            job.producer.cancel()
            return True
        # queued: the pipeline never ran, so the failure is reported here
        if job.task is not None:
            job.task.cancel()
        await self._fail(job, "Job cancelled", ErrorType.UNKNOWN_ERROR, retryable=True)
        return True

    async def wait(self, job_id: str) -> None:
        """Block until the job's task has finished (no-op if not active)."""
        job = self._jobs.get(job_id)
        if job is not None and job.task is not None:
            await asyncio.gather(job.task, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = [job.task for job in self._jobs.values() if job.task is not None]
        for job_id in list(self._jobs):
            await self.cancel(job_id)
        await asyncio.gather(*tasks, return_exceptions=True)

    # ── SSE Event Streaming ──────────────────────────────────────────

    async def subscribe_events(
        self,
        job_id: str,
        last_event_id: Optional[str] = None,
        scene_count: int = 0,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Yield buffered events after *last_event_id*, then live events.

        Ends after a terminal event, when the job finishes, or when the
        stream timeout elapses (a ``TIMEOUT`` error event is yielded).
        Closing the generator only unsubscribes; the job keeps running.
        """
        queue: asyncio.Queue = asyncio.Queue()
        job = self._jobs.get(job_id)
        if job is not None:
            job.subscribers.append(queue)
        try:
            replay = self.tracker.events_since(job_id, last_event_id)
            replayed = {event.id for event in replay}
            for i, event in enumerate(replay):
                if i:
                    await asyncio.sleep(SSE_REPLAY_DELAY_MS / 1000)
                yield event
                if event.is_terminal:
                    return
            if job is None:
                return

            loop = asyncio.get_running_loop()
            timeout = stream_timeout_seconds(scene_count or job.config.scene_count)
            deadline = loop.time() + timeout
            while True:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError
                    event = await asyncio.wait_for(queue.get(), remaining)
                except asyncio.TimeoutError:
                    logger.warning("Stream for job %s timed out after %.0fs", job_id, timeout)
                    progress = job.progress
                    yield StreamEvent(
                        type=EventType.ERROR,
                        data={
                            "type": ErrorType.TIMEOUT.value,
                            "message": f"Stream timed out after {timeout:.0f}s",
                            "retryable": True,
                            "failed_batch": progress.completed_batches + 1,
                            "total_batches": progress.total_batches,
                            "scenes_completed": len(progress.scenes),
                            "completed_batches": progress.completed_batches,
                        },
                        batch=progress.completed_batches,
                    )
                    return
                if event is None:
                    return
                if event.id in replayed:
                    continue
                yield event
                if event.is_terminal:
                    return
        finally:
            if job is not None and queue in job.subscribers:
                job.subscribers.remove(queue)
