"""
Batch scheduling: time ranges over the source media and dynamic overlap.

Ranges are contiguous and their union covers ``[0, total)`` exactly.  The
overlap window is analysis look-back only; scenes are emitted for the
canonical range alone.

Hybrid jobs are planned by scene number instead: fixed-size scene ranges,
each paired with a consecutive chunk of the script.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import List, Tuple

from ..config import (
    BATCH_OVERLAP_SECONDS,
    CONTENT_PACING_PROFILES,
    DEFAULT_SECONDS_PER_SCENE,
    FALLBACK_VIDEO_DURATION_SECONDS,
    MAX_OVERLAP_SECONDS,
    MIN_OVERLAP_SECONDS,
    OVERLAP_SCENE_MULTIPLIER,
)
from .models import ContentPacing, JobConfig, PipelineMode, SceneCountMode


@dataclass(frozen=True)
class TimeRange:
    """One batch window over the source media, in seconds."""
    start: float
    end: float
    label: str
    scene_count: int
    overlap_start: float = -1.0
    # hybrid batches: 1-based number of the first scene, and its script lines
    first_scene: int = 0
    script_chunk: str = ""

    def __post_init__(self) -> None:
        if self.overlap_start < 0:
            object.__setattr__(self, "overlap_start", self.start)

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def overlap_seconds(self) -> float:
        return self.start - self.overlap_start

    @property
    def is_scene_range(self) -> bool:
        return self.first_scene > 0

    @property
    def last_scene(self) -> int:
        return self.first_scene + self.scene_count - 1


def format_time(seconds: float) -> str:
    """Format seconds as MM:SS, or HH:MM:SS from one hour up."""
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def generate_time_ranges(
    total_seconds: float,
    chunk_seconds: float,
    seconds_per_scene: float = DEFAULT_SECONDS_PER_SCENE,
) -> List[TimeRange]:
    """Split ``[0, total_seconds)`` into consecutive chunks.

    Each range estimates ``ceil(length / seconds_per_scene)`` scenes.
    """
    if chunk_seconds <= 0:
        raise ValueError(f"chunk_seconds must be positive, got {chunk_seconds}")
    if seconds_per_scene <= 0:
        raise ValueError(f"seconds_per_scene must be positive, got {seconds_per_scene}")

    ranges: List[TimeRange] = []
    start = 0.0
    while start < total_seconds:
        end = min(start + chunk_seconds, total_seconds)
        ranges.append(TimeRange(
            start=start,
            end=end,
            label=f"{format_time(start)}-{format_time(end)}",
            scene_count=math.ceil((end - start) / seconds_per_scene),
        ))
        start = end
    return ranges


def calculate_dynamic_overlap(
    prev_scene_count: int,
    prev_duration: float,
    default: int = BATCH_OVERLAP_SECONDS,
    min_overlap: int = MIN_OVERLAP_SECONDS,
    max_overlap: int = MAX_OVERLAP_SECONDS,
    multiplier: float = OVERLAP_SCENE_MULTIPLIER,
) -> int:
    """Overlap for the next batch from the previous batch's scene density.

    Fast content (short scenes) gets less look-back, slow content more.
    Without prior batch data the fixed *default* applies.
    """
    if prev_scene_count <= 0 or prev_duration <= 0:
        return default
    avg_scene = prev_duration / prev_scene_count
    return round(min(max_overlap, max(min_overlap, avg_scene * multiplier)))


def apply_overlap(time_range: TimeRange, overlap_seconds: float) -> TimeRange:
    """Return *time_range* with its look-back window set."""
    return replace(time_range, overlap_start=max(0.0, time_range.start - overlap_seconds))


def pacing_profile(pacing) -> Tuple[int, int]:
    """Return ``(seconds_per_scene, base_overlap_seconds)`` for a pacing."""
    key = pacing.value if isinstance(pacing, ContentPacing) else str(pacing)
    try:
        return CONTENT_PACING_PROFILES[key]
    except KeyError:
        raise ValueError(f"Unknown content pacing: {pacing!r}") from None


def _distribute(total: int, weights: List[int]) -> List[int]:
    """Largest-remainder split of *total* proportional to *weights*."""
    weight_sum = sum(weights)
    if weight_sum == 0:
        return [0] * len(weights)
    raw = [total * w / weight_sum for w in weights]
    counts = [math.floor(r) for r in raw]
    short = total - sum(counts)
    order = sorted(range(len(raw)), key=lambda i: raw[i] - counts[i], reverse=True)
    for i in order[:short]:
        counts[i] += 1
    return counts


def plan_batches(config: JobConfig) -> List[TimeRange]:
    """Build the batch ranges for a job.

    In exact scene-count mode the per-range estimates are rescaled so they
    sum to ``config.scene_count``.  Hybrid jobs use ``plan_scene_batches``.
    """
    if config.mode == PipelineMode.HYBRID:
        return plan_scene_batches(config)
    seconds_per_scene, _ = pacing_profile(config.content_pacing)
    duration = config.video_duration or FALLBACK_VIDEO_DURATION_SECONDS
    if config.batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {config.batch_size}")
    chunk = config.batch_size * seconds_per_scene
    ranges = generate_time_ranges(duration, chunk, seconds_per_scene)
    if config.scene_count_mode == SceneCountMode.EXACT and ranges:
        counts = _distribute(config.scene_count, [r.scene_count for r in ranges])
        ranges = [replace(r, scene_count=c) for r, c in zip(ranges, counts)]
    return ranges


def split_script(script_text: str, total_batches: int) -> List[str]:
    """Split the non-blank script lines into *total_batches* consecutive chunks.

    Every chunk holds ``ceil(lines / total_batches)`` lines except the tail,
    which may be shorter or empty.
    """
    if total_batches <= 0:
        return []
    lines = [line for line in (script_text or "").split("\n") if line.strip()]
    per_batch = math.ceil(len(lines) / total_batches)
    return ["\n".join(lines[i * per_batch:(i + 1) * per_batch]) for i in range(total_batches)]


def plan_scene_batches(config: JobConfig) -> List[TimeRange]:
    """Scene-numbered batches for a hybrid job.

    ``ceil(scene_count / batch_size)`` batches cover scenes ``1..scene_count``.
    When the video duration is known each batch also gets the proportional
    time span, so the request can point at the matching footage.
    """
    if config.batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {config.batch_size}")
    total = math.ceil(config.scene_count / config.batch_size)
    chunks = split_script(config.script_text or "", total)
    duration = config.video_duration or 0.0
    ranges: List[TimeRange] = []
    for index in range(total):
        first = index * config.batch_size + 1
        last = min((index + 1) * config.batch_size, config.scene_count)
        ranges.append(TimeRange(
            start=duration * (first - 1) / config.scene_count,
            end=duration * last / config.scene_count,
            label=f"scenes {first}-{last}",
            scene_count=last - first + 1,
            first_scene=first,
            script_chunk=chunks[index],
        ))
    return ranges
