"""Batch request assembly for the generative API.

Prompt wording is minimal; callers can swap in richer templates.
"""
from __future__ import annotations

from typing import Any, Dict, List, Tuple

from .models import JobConfig, MediaType
from .scheduler import TimeRange, format_time

_SCENE_SCHEMA_HINT = (
    'Return a JSON array. Each item: {"description": str, "character": '
    '"Name - gender, age, ethnicity, build, face, hair, outfit" or "None", '
    '"visual_specs": {"environment": str, ...}, "audio": {...}}.'
)


def _time_range_instruction(time_range: TimeRange, batch_index: int, total_batches: int) -> List[str]:
    lines = [
        "",
        "=== TIME RANGE INSTRUCTION (CRITICAL) ===",
        f"ANALYZE the video segment from {format_time(time_range.overlap_start)} to {format_time(time_range.end)}.",
        f"Batch {batch_index + 1} of {total_batches}.",
    ]
    if time_range.overlap_seconds > 0:
        lines.append(
            f"The span {format_time(time_range.overlap_start)}-{format_time(time_range.start)} "
            "was covered by the previous batch. Use it for visual continuity only and do "
            "NOT emit scenes for it."
        )
    lines.append(
        f"Generate EXACTLY {time_range.scene_count} scenes for {time_range.label} only."
    )
    if batch_index > 0:
        lines.append("This is a CONTINUATION - maintain character consistency with previous batches.")
    lines.append("=== END TIME RANGE INSTRUCTION ===")
    return lines


def _scene_range_instruction(time_range: TimeRange, batch_index: int, total_batches: int, scene_count: int) -> List[str]:
    lines = [
        "",
        "=== SCRIPT SEGMENT ===",
        time_range.script_chunk or "(no script lines for this batch; continue the story)",
        "=== END SCRIPT SEGMENT ===",
        f"Batch {batch_index + 1} of {total_batches}.",
        f"Generate EXACTLY {time_range.scene_count} scenes, numbered "
        f"{time_range.first_scene}-{time_range.last_scene} of {scene_count}, for this script segment only.",
    ]
    if batch_index > 0:
        lines.append("This is a CONTINUATION - maintain character consistency with previous batches.")
    return lines


def build_batch_prompt(
    config: JobConfig,
    time_range: TimeRange,
    batch_index: int,
    total_batches: int,
    continuity_context: str = "",
) -> str:
    kind = "still-image" if config.media_type == MediaType.IMAGE else "video"
    source = "script" if time_range.is_scene_range else "source video"
    lines = [f"Break the {source} into {kind} generation scenes.", _SCENE_SCHEMA_HINT]
    if config.voice and config.voice != "no-voice":
        lines.append(f"Narration voice: {config.voice}.")
    for key, value in sorted(config.audio.items()):
        lines.append(f"Audio {key}: {value}.")
    prompt = "\n".join(lines)
    prompt += continuity_context
    if time_range.is_scene_range:
        prompt += "\n".join(_scene_range_instruction(time_range, batch_index, total_batches, config.scene_count))
    else:
        prompt += "\n".join(_time_range_instruction(time_range, batch_index, total_batches))
    if config.negative_prompt:
        prompt += "\n".join([
            "",
            "=== GLOBAL NEGATIVE PROMPT (APPLY TO ALL SCENES) ===",
            config.negative_prompt,
            "Include this in EVERY scene's negativePrompt field.",
            "=== END GLOBAL NEGATIVE PROMPT ===",
        ])
    return prompt


def build_batch_request(
    config: JobConfig,
    time_range: TimeRange,
    batch_index: int,
    total_batches: int,
    continuity_context: str = "",
) -> Tuple[Dict[str, Any], str]:
    """Return ``(request_body, prompt_text)`` for one batch."""
    prompt = build_batch_prompt(config, time_range, batch_index, total_batches, continuity_context)
    parts: List[Dict[str, Any]] = []
    if config.video_url:
        video: Dict[str, Any] = {"fileData": {"fileUri": config.video_url, "mimeType": "video/*"}}
        # script-only hybrid jobs have no duration, hence no footage window
        if time_range.end > time_range.start:
            video["videoMetadata"] = {
                "startOffset": f"{int(time_range.overlap_start)}s",
                "endOffset": f"{int(round(time_range.end))}s",
            }
        parts.append(video)
    parts.append({"text": prompt})
    body = {
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": {"responseMimeType": "application/json", "temperature": 0.7},
    }
    return body, prompt
