"""Request schemas for the job endpoints."""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from ...orchestration.models import (
    ContentPacing,
    JobConfig,
    MediaType,
    PipelineMode,
    Scene,
    SceneCountMode,
    registry_from_dict,
)


def new_job_id() -> str:
    return uuid.uuid4().hex[:16]


class StartJobRequest(BaseModel):
    """Body of ``POST /api/jobs``."""

    job_id: Optional[str] = Field(default=None, pattern=r"^[A-Za-z0-9_.:-]{1,128}$")
    video_url: str = ""
    mode: PipelineMode = PipelineMode.DIRECT
    scene_count: int = Field(default=10, ge=1, le=1000)
    scene_count_mode: SceneCountMode = SceneCountMode.AUTO
    batch_size: int = Field(default=10, ge=1, le=100)
    content_pacing: ContentPacing = ContentPacing.STANDARD
    voice: str = "no-voice"
    audio: Dict[str, Any] = Field(default_factory=dict)
    negative_prompt: str = ""
    media_type: MediaType = MediaType.VIDEO
    script_text: Optional[str] = None
    video_duration: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _require_source(self) -> "StartJobRequest":
        if not self.video_url.strip() and not (self.script_text or "").strip():
            raise ValueError("video_url or script_text is required")
        return self

    def to_config(
        self,
        job_id: Optional[str] = None,
        resume_from_batch: Optional[int] = None,
        existing_scenes: Optional[List[Scene]] = None,
        existing_characters: Optional[Dict[str, Any]] = None,
    ) -> JobConfig:
        return JobConfig(
            job_id=job_id or self.job_id or new_job_id(),
            video_url=self.video_url,
            mode=self.mode,
            scene_count=self.scene_count,
            scene_count_mode=self.scene_count_mode,
            batch_size=self.batch_size,
            content_pacing=self.content_pacing,
            voice=self.voice,
            audio=dict(self.audio),
            negative_prompt=self.negative_prompt,
            media_type=self.media_type,
            script_text=self.script_text,
            video_duration=self.video_duration,
            resume_from_batch=resume_from_batch,
            existing_scenes=list(existing_scenes or []),
            existing_characters=registry_from_dict(existing_characters),
        )


def resume_request(config: Dict[str, Any], resume_data: Dict[str, Any]) -> StartJobRequest:
    """Rebuild the original request, letting resume data override the stored config."""
    merged = dict(config)
    for key in ("video_url", "script_text", "mode", "scene_count", "batch_size", "voice"):
        if resume_data.get(key) is not None:
            merged[key] = resume_data[key]
    return StartJobRequest.model_validate(merged)
