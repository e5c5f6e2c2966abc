"""
Orchestration module: batch scheduling and resilience for scene generation.

Components:
    - RetryPolicy / with_retry: exponential backoff with jitter and a delay cap
    - generate_time_ranges / calculate_dynamic_overlap: batch planning
    - ContinuityCache: per-job memoised continuity context
    - JobProgress: resumable progress state machine
    - ScenePipeline: sequential batch runner writing to an event channel
    - recover_json: layered JSON recovery for model output
"""
from .continuity import ContinuityCache, build_continuity_context
from .errors import ErrorType, GenerationApiError, OrchestrationError, classify_error
from .models import (
    CharacterSkeleton,
    ContentPacing,
    FreeText,
    JobConfig,
    MediaType,
    PipelineMode,
    Scene,
    SceneCountMode,
    render_character,
)
from .parsing import parse_generation_response, recover_json, repair_truncated_json
from .pipeline import ScenePipeline
from .progress import JobProgress, ProgressStatus, ResumeData
from .retry import RetryPolicy, calculate_delay, is_retryable_error, with_retry
from .scheduler import TimeRange, calculate_dynamic_overlap, generate_time_ranges, plan_batches

__all__ = [
    "CharacterSkeleton",
    "ContentPacing",
    "ContinuityCache",
    "ErrorType",
    "FreeText",
    "GenerationApiError",
    "JobConfig",
    "JobProgress",
    "MediaType",
    "OrchestrationError",
    "PipelineMode",
    "ProgressStatus",
    "ResumeData",
    "RetryPolicy",
    "Scene",
    "SceneCountMode",
    "ScenePipeline",
    "TimeRange",
    "build_continuity_context",
    "calculate_delay",
    "calculate_dynamic_overlap",
    "classify_error",
    "generate_time_ranges",
    "is_retryable_error",
    "parse_generation_response",
    "plan_batches",
    "recover_json",
    "render_character",
    "repair_truncated_json",
    "with_retry",
]
