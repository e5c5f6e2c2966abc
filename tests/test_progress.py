"""Tests for the job progress state machine and resume data."""
from __future__ import annotations

import pytest

from scene_orchestrator.orchestration.models import JobConfig, Scene
from scene_orchestrator.orchestration.progress import JobProgress, ProgressStatus, is_orphaned


def _config():
    return JobConfig(job_id="job-1", video_url="https://example.com/v.mp4", video_duration=400, batch_size=10)


class TestTransitions:
    def test_new_progress_is_pending(self):
        progress = JobProgress.create("job-1", 5)
        assert progress.status == ProgressStatus.PENDING
        assert progress.percent == 0
        assert progress.message == "Preparing to generate scenes..."

    def test_negative_total_rejected(self):
        with pytest.raises(ValueError):
            JobProgress.create("job-1", -1)

    def test_batches_accumulate_scenes_with_positions(self):
        progress = JobProgress.create("job-1", 3)
        progress.update_after_batch([Scene(description="a"), Scene(description="b")])
        progress.update_after_batch([Scene(description="c")])
        assert [s.position for s in progress.scenes] == [1, 2, 3]
        assert progress.completed_batches == 2
        assert progress.status == ProgressStatus.IN_PROGRESS
        assert progress.percent == 67

    def test_completed_count_is_clamped(self):
        progress = JobProgress.create("job-1", 2)
        for _ in range(4):
            progress.update_after_batch([])
        assert progress.completed_batches == 2

    def test_failure_keeps_scenes(self):
        progress = JobProgress.create("job-1", 3)
        progress.update_after_batch([Scene(description="kept")])
        progress.mark_failed("boom")
        assert progress.status == ProgressStatus.FAILED
        assert [s.description for s in progress.scenes] == ["kept"]
        assert progress.message == "Failed: boom"

    def test_later_registry_entries_win(self):
        progress = JobProgress.create("job-1", 3)
        progress.update_after_batch([], {"Ana": "Ana - v1"})
        progress.update_after_batch([], {"Ana": "Ana - v2", "Bo": "Bo"})
        assert progress.characters == {"Ana": "Ana - v2", "Bo": "Bo"}


class TestResume:
    def test_resume_data_midway(self):
        progress = JobProgress.create("job-1", 5)
        progress.update_after_batch([Scene(description="a")])
        progress.update_after_batch([Scene(description="b")])
        data = progress.resume_data(_config())
        assert data is not None
        assert data.next_batch == 2
        assert data.total_batches == 5
        assert progress.can_resume
        raw = data.to_dict()
        assert raw["completed_batches"] == 2
        assert [s["description"] for s in raw["existing_scenes"]] == ["a", "b"]

    def test_failed_job_still_has_resume_data(self):
        progress = JobProgress.create("job-1", 5)
        progress.update_after_batch([Scene(description="a")])
        progress.mark_failed("timeout")
        assert progress.resume_data(_config()) is not None
        assert not progress.can_resume

    @pytest.mark.parametrize("completed", [0, 5])
    def test_nothing_to_resume_at_the_edges(self, completed):
        progress = JobProgress.create("job-1", 5)
        for _ in range(completed):
            progress.update_after_batch([])
        assert progress.resume_data(_config()) is None

    def test_completed_job_not_resumable(self):
        progress = JobProgress.create("job-1", 5)
        progress.update_after_batch([])
        progress.mark_completed()
        assert progress.resume_data(_config()) is None


class TestOrphanDetection:
    def test_in_progress_with_all_batches_is_orphaned(self):
        assert is_orphaned("in_progress", 10, 5, 5)

    def test_in_progress_midway_is_not(self):
        assert not is_orphaned("in_progress", 4, 2, 5)

    def test_missing_counters_with_scenes_is_orphaned(self):
        assert is_orphaned("in_progress", 3, None, None)

    def test_no_scenes_never_orphaned(self):
        assert not is_orphaned("in_progress", 0, 5, 5)

    def test_other_statuses_never_orphaned(self):
        assert not is_orphaned("completed", 10, 5, 5)
        assert not is_orphaned("failed", 10, 5, 5)

    def test_property_delegates(self):
        progress = JobProgress.create("job-1", 1)
        progress.update_after_batch([Scene(description="a")])
        assert progress.is_orphaned
