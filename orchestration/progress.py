"""
Job progress state machine.

    pending -> in_progress -> completed | failed

``completed_batches`` is monotonically non-decreasing and clamped to
``total_batches``.  Failure keeps accumulated scenes so the job can be
resumed from the last completed batch.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .models import CharacterRegistry, JobConfig, Scene, registry_to_dict


class ProgressStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ResumeData:
    """Everything needed to re-enter the scheduler at ``next_batch``."""
    job_id: str
    video_url: str
    mode: str
    scene_count: int
    batch_size: int
    voice: str
    completed_batches: int
    total_batches: int
    existing_scenes: List[Scene]
    existing_characters: CharacterRegistry
    script_text: Optional[str] = None

    @property
    def next_batch(self) -> int:
        return self.completed_batches

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "video_url": self.video_url,
            "script_text": self.script_text,
            "mode": self.mode,
            "scene_count": self.scene_count,
            "batch_size": self.batch_size,
            "voice": self.voice,
            "completed_batches": self.completed_batches,
            "total_batches": self.total_batches,
            "existing_scenes": [s.to_dict() for s in self.existing_scenes],
            "existing_characters": registry_to_dict(self.existing_characters),
        }


@dataclass
class JobProgress:
    """Mutable per-job progress owned by the orchestrator."""
    job_id: str
    total_batches: int
    completed_batches: int = 0
    scenes: List[Scene] = field(default_factory=list)
    characters: CharacterRegistry = field(default_factory=dict)
    status: ProgressStatus = ProgressStatus.PENDING
    last_error: Optional[str] = None
    last_updated: int = field(default_factory=_now_ms)

    @classmethod
    def create(cls, job_id: str, total_batches: int) -> "JobProgress":
        if total_batches < 0:
            raise ValueError(f"total_batches must be >= 0, got {total_batches}")
        return cls(job_id=job_id, total_batches=total_batches)

    # ── Transitions ──────────────────────────────────────────────────

    def update_after_batch(self, scenes: Iterable[Scene], characters: Optional[CharacterRegistry] = None) -> None:
        """Merge one batch's output and advance the completed count.

        Later registry entries win per name.  The count is clamped so a
        duplicate completion can never push it past ``total_batches``.
        """
        for scene in scenes:
            scene.position = len(self.scenes) + 1
            self.scenes.append(scene)
        if characters:
            self.characters.update(characters)
        self.completed_batches = min(self.completed_batches + 1, self.total_batches)
        self.status = ProgressStatus.IN_PROGRESS
        self.last_error = None
        self.last_updated = _now_ms()

    def mark_failed(self, error: str) -> None:
        self.status = ProgressStatus.FAILED
        self.last_error = error
        self.last_updated = _now_ms()

    def mark_completed(self) -> None:
        self.status = ProgressStatus.COMPLETED
        self.last_updated = _now_ms()

    # ── Queries ──────────────────────────────────────────────────────

    @property
    def can_resume(self) -> bool:
        return (
            self.status == ProgressStatus.IN_PROGRESS
            and 0 < self.completed_batches < self.total_batches
        )

    def resume_data(self, config: JobConfig) -> Optional[ResumeData]:
        """Build resume data, or ``None`` when there is nothing to resume."""
        if self.status == ProgressStatus.COMPLETED:
            return None
        if self.completed_batches == 0 or self.completed_batches >= self.total_batches:
            return None
        return ResumeData(
            job_id=self.job_id,
            video_url=config.video_url,
            script_text=config.script_text,
            mode=config.mode.value,
            scene_count=config.scene_count,
            batch_size=config.batch_size,
            voice=config.voice,
            completed_batches=self.completed_batches,
            total_batches=self.total_batches,
            existing_scenes=list(self.scenes),
            existing_characters=dict(self.characters),
        )

    @property
    def percent(self) -> int:
        if self.total_batches <= 0:
            return 100 if self.status == ProgressStatus.COMPLETED else 0
        return round(self.completed_batches / self.total_batches * 100)

    @property
    def message(self) -> str:
        if self.status == ProgressStatus.PENDING:
            return "Preparing to generate scenes..."
        if self.status == ProgressStatus.IN_PROGRESS:
            return (
                f"Processing batch {self.completed_batches + 1}/{self.total_batches} "
                f"({len(self.scenes)} scenes so far)"
            )
        if self.status == ProgressStatus.COMPLETED:
            return f"Completed! Generated {len(self.scenes)} scenes."
        return f"Failed: {self.last_error or 'Unknown error'}"

    @property
    def is_orphaned(self) -> bool:
        return is_orphaned(self.status.value, len(self.scenes), self.completed_batches, self.total_batches)


def is_orphaned(status: str, scene_count: int, completed_batches: Optional[int], total_batches: Optional[int]) -> bool:
    """An in_progress job that already holds its final content.

    When batch counters are unavailable, any in_progress snapshot with
    scenes is treated as finished by a broken final status write.
    """
    if status != ProgressStatus.IN_PROGRESS.value or scene_count <= 0:
        return False
    if completed_batches is None or total_batches is None or total_batches <= 0:
        return True
    return completed_batches >= total_batches
