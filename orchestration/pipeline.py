"""
Sequential batch orchestration for a scene-generation job.

Each batch depends on the accumulated scenes and characters of all prior
batches, so batches within one job never run concurrently.  Events are
written to an ``EventChannel``; the transport layer reads them.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from ..config import BATCH_DELAY_SECONDS
from ..streaming.events import ChannelClosed, EventChannel, EventType
from .audit import create_completed_log, create_error_log, create_pending_log
from .characters import extract_character_registry
from .continuity import ContinuityCache
from .errors import ErrorType, classify_error, is_retryable_type
from .models import JobConfig, Scene, registry_to_dict
from .parsing import parse_generation_response, token_usage
from .progress import JobProgress, ProgressStatus
from .prompting import build_batch_request
from .retry import RetryPolicy, with_retry
from .scheduler import TimeRange, apply_overlap, calculate_dynamic_overlap, pacing_profile, plan_batches

logger = logging.getLogger(__name__)


class GenerativeBackend(Protocol):
    """Anything that can turn a request body into a generateContent payload."""

    model: str

    async def generate(self, body: Dict[str, Any]) -> Dict[str, Any]:
        ...


def _response_text(payload: Dict[str, Any]) -> str:
    try:
        return payload["candidates"][0]["content"]["parts"][0].get("text") or ""
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""


def _finish_reason(payload: Dict[str, Any]) -> Optional[str]:
    try:
        return payload["candidates"][0].get("finishReason")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None


class ScenePipeline:
    """Runs the batches of one job and reports through an event channel.

    Parameters
    ----------
    client : generative backend with ``async generate(body) -> payload``.
    continuity : per-job continuity memo; one instance may serve many jobs.
    policy : retry policy for each batch call.
    batch_delay : seconds to pause between batches.
    """

    def __init__(
        self,
        client: GenerativeBackend,
        continuity: Optional[ContinuityCache] = None,
        policy: Optional[RetryPolicy] = None,
        batch_delay: float = BATCH_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.continuity = continuity if continuity is not None else ContinuityCache()
        self.policy = policy or RetryPolicy()
        self.batch_delay = batch_delay
        self._sleep = sleep

    @property
    def model(self) -> str:
        return getattr(self.client, "model", "unknown")

    # ── Entry point ──────────────────────────────────────────────────

    async def run(
        self,
        config: JobConfig,
        channel: EventChannel,
        progress: Optional[JobProgress] = None,
    ) -> JobProgress:
        """Process every remaining batch of *config*.

        Returns the progress object.  On failure the progress is marked
        failed with its partial scenes intact and a terminal ``error``
        event is sent; the exception is not re-raised.  Cancellation and
        a closed channel propagate.
        """
        ranges = plan_batches(config)
        total = len(ranges)
        if progress is None:
            progress = JobProgress.create(config.job_id, total)
        else:
            progress.total_batches = total
        started = time.monotonic()
        self.continuity.reset(config.job_id)

        start_batch = 0
        if config.is_resume:
            start_batch = await self._initialize_resume(config, progress, channel, total)

        _, base_overlap = pacing_profile(config.content_pacing)
        prev_count = prev_duration = 0
        if start_batch > 0:
            prev_count = ranges[start_batch - 1].scene_count
            prev_duration = ranges[start_batch - 1].duration

        try:
            for batch_index in range(start_batch, total):
                time_range = ranges[batch_index]
                if batch_index > 0 and not time_range.is_scene_range:
                    overlap = calculate_dynamic_overlap(prev_count, prev_duration, default=base_overlap)
                    time_range = apply_overlap(time_range, overlap)

                new_scenes = await self._run_batch(config, progress, channel, time_range, batch_index, total)
                if new_scenes is None:
                    return progress

                prev_count, prev_duration = len(new_scenes), time_range.duration
                if batch_index < total - 1 and self.batch_delay > 0:
                    await self._sleep(self.batch_delay)
        except asyncio.CancelledError:
            progress.mark_failed("Job cancelled")
            await self._send_quietly(channel, EventType.ERROR, self._error_payload(
                progress, ErrorType.UNKNOWN_ERROR, "Job cancelled", progress.completed_batches + 1,
                retryable=True,
            ))
            raise
        except ChannelClosed:
            progress.mark_failed("Event stream closed")
            raise
        finally:
            self.continuity.reset(config.job_id)

        progress.mark_completed()
        elapsed = time.monotonic() - started
        logger.info(
            "Job %s completed: %d scenes in %d batches (%.1fs)",
            config.job_id, len(progress.scenes), total, elapsed,
        )
        await channel.send(EventType.COMPLETE, {
            "job_id": config.job_id,
            "status": ProgressStatus.COMPLETED.value,
            "total_scenes": len(progress.scenes),
            "total_batches": total,
            "scenes": [s.to_dict() for s in progress.scenes],
            "character_registry": registry_to_dict(progress.characters),
            "processing_time": f"{elapsed:.1f}s",
        }, batch=total)
        return progress

    # ── Batches ──────────────────────────────────────────────────────

    async def _run_batch(
        self,
        config: JobConfig,
        progress: JobProgress,
        channel: EventChannel,
        time_range: TimeRange,
        batch_index: int,
        total: int,
    ) -> Optional[List[Scene]]:
        batch_number = batch_index + 1
        await channel.send(EventType.PROGRESS, {
            "batch": batch_number,
            "total": total,
            "scenes": len(progress.scenes),
            "message": f"Processing batch {batch_number}/{total} ({time_range.label})...",
        }, batch=batch_number)

        context = self.continuity.get_or_build(config.job_id, progress.scenes, progress.characters)
        body, prompt = build_batch_request(config, time_range, batch_index, total, context)
        pending = create_pending_log(batch_number, self.model, prompt, config.video_url)
        await channel.send(EventType.LOG_UPDATE, pending, batch=batch_number)

        retries = 0

        async def _on_retry(attempt: int, exc: BaseException, delay_ms: int) -> None:
            nonlocal retries
            retries = attempt
            await channel.send(EventType.PROGRESS, {
                "batch": batch_number,
                "total": total,
                "scenes": len(progress.scenes),
                "message": f"Batch {batch_number} retry {attempt}...",
            }, batch=batch_number)

        call_started = time.monotonic()
        try:
            payload = await with_retry(
                lambda: self.client.generate(body), self.policy, _on_retry, sleep=self._sleep,
            )
            scenes = parse_generation_response(payload)
        except (asyncio.CancelledError, ChannelClosed):
            raise
        except Exception as exc:
            duration_ms = int((time.monotonic() - call_started) * 1000)
            error_type = classify_error(exc)
            logger.error("Job %s batch %d/%d failed: %s", config.job_id, batch_number, total, exc)
            await channel.send(
                EventType.LOG_UPDATE,
                create_error_log(pending, error_type.value, str(exc), duration_ms, retries),
                batch=batch_number,
            )
            progress.mark_failed(str(exc))
            await channel.send(
                EventType.ERROR,
                self._error_payload(progress, error_type, str(exc), batch_number),
                batch=batch_number,
            )
            return None

        duration_ms = int((time.monotonic() - call_started) * 1000)
        characters = extract_character_registry(scenes)
        progress.update_after_batch(scenes, characters)
        logger.info(
            "Job %s batch %d/%d: %d scenes (%d ms, %d retries)",
            config.job_id, batch_number, total, len(scenes), duration_ms, retries,
        )

        await channel.send(
            EventType.LOG_UPDATE,
            create_completed_log(
                pending,
                _response_text(payload),
                len(scenes),
                duration_ms,
                retries,
                finish_reason=_finish_reason(payload),
                tokens=token_usage(payload),
            ),
            batch=batch_number,
        )
        await channel.send(EventType.BATCH_COMPLETE, {
            "batch": batch_number,
            "total": total,
            "scenes": [s.to_dict() for s in scenes],
            "total_scenes": len(progress.scenes),
            "characters": registry_to_dict(progress.characters),
        }, batch=batch_number)
        return scenes

    # ── Resume / failure helpers ─────────────────────────────────────

    async def _initialize_resume(
        self,
        config: JobConfig,
        progress: JobProgress,
        channel: EventChannel,
        total: int,
    ) -> int:
        start_batch = min(max(config.resume_from_batch or 0, 0), total)
        progress.scenes = []
        for scene in config.existing_scenes:
            scene.position = len(progress.scenes) + 1
            progress.scenes.append(scene)
        progress.characters = dict(config.existing_characters)
        progress.completed_batches = start_batch
        progress.status = ProgressStatus.IN_PROGRESS
        message = (
            f"Resuming from batch {start_batch + 1}/{total} "
            f"with {len(progress.scenes)} existing scenes"
        )
        logger.info("Job %s: %s", config.job_id, message)
        await channel.send(EventType.PROGRESS, {
            "batch": start_batch,
            "total": total,
            "scenes": len(progress.scenes),
            "message": message,
        }, batch=start_batch)
        return start_batch

    @staticmethod
    def _error_payload(
        progress: JobProgress,
        error_type: ErrorType,
        message: str,
        failed_batch: int,
        retryable: Optional[bool] = None,
    ) -> Dict[str, Any]:
        return {
            "type": error_type.value,
            "message": message,
            "retryable": is_retryable_type(error_type) if retryable is None else retryable,
            "failed_batch": failed_batch,
            "total_batches": progress.total_batches,
            "scenes_completed": len(progress.scenes),
            "completed_batches": progress.completed_batches,
        }

    @staticmethod
    async def _send_quietly(channel: EventChannel, type: EventType, data: Dict[str, Any]) -> None:
        try:
            await channel.send(type, data)
        except ChannelClosed:
            logger.debug("Channel closed before %s event could be sent", type.value)
