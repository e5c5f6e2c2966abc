"""Tests for request/response audit logs and lost-stream repair."""
from __future__ import annotations

from scene_orchestrator.config import ESTIMATED_RESPONSE_MS
from scene_orchestrator.orchestration.audit import (
    LOST_RESPONSE_PLACEHOLDER,
    LOST_RESPONSE_SUMMARY,
    create_completed_log,
    create_error_log,
    create_pending_log,
    fix_pending_log_entries,
)


def _pending(batch=1):
    return create_pending_log(batch, "model-x", "describe scenes", "https://example.com/v.mp4")


def test_pending_log_shape():
    log = _pending(3)
    assert log["status"] == "pending"
    assert log["batch_number"] == 3
    assert log["request"]["prompt_length"] == len("describe scenes")


def test_long_bodies_are_previewed():
    log = create_pending_log(1, "m", "x" * 5000, "u")
    assert log["request"]["body"].endswith("...")
    assert log["request"]["prompt_length"] == 5000


def test_completed_and_error_logs_keep_identity():
    pending = _pending()
    done = create_completed_log(pending, '[{"description": "a"}]', 1, 1200, retries=1, tokens={"total": 5})
    assert done["id"] == pending["id"]
    assert done["response"]["parsed_summary"] == "1 scenes"
    assert done["timing"] == {"duration_ms": 1200, "retries": 1}
    assert done["tokens"] == {"total": 5}
    assert pending["status"] == "pending"

    failed = create_error_log(pending, "TIMEOUT", "took too long", 90000)
    assert failed["status"] == "error"
    assert failed["error"] == {"type": "TIMEOUT", "message": "took too long"}


def test_fix_pending_marks_completed_with_placeholder():
    job = {"status": "completed", "logs": [_pending(1)], "summary": {"processing_time": "Batch 1/1"}}
    fixed = fix_pending_log_entries(job)
    log = fixed["logs"][0]
    assert log["status"] == "completed"
    assert log["response"]["body"] == LOST_RESPONSE_PLACEHOLDER
    assert log["response"]["parsed_summary"] == LOST_RESPONSE_SUMMARY
    assert log["timing"]["duration_ms"] == ESTIMATED_RESPONSE_MS
    assert fixed["summary"]["processing_time"] == f"{ESTIMATED_RESPONSE_MS / 1000:.1f}s"
    assert job["logs"][0]["status"] == "pending"


def test_fix_sums_elapsed_time_over_all_logs():
    done = create_completed_log(_pending(1), "[]", 0, 2000)
    job = {"status": "completed", "logs": [done, _pending(2)], "summary": {"processing_time": "Batch 2/2"}}
    fixed = fix_pending_log_entries(job)
    assert fixed["summary"]["processing_time"] == f"{(2000 + ESTIMATED_RESPONSE_MS) / 1000:.1f}s"


def test_fix_leaves_running_job_summary_alone():
    job = {"status": "in_progress", "logs": [], "summary": {"processing_time": "Batch 1/4"}}
    assert fix_pending_log_entries(job)["summary"]["processing_time"] == "Batch 1/4"


def test_fix_keeps_real_processing_time():
    job = {"status": "completed", "logs": [], "summary": {"processing_time": "42.0s"}}
    assert fix_pending_log_entries(job)["summary"]["processing_time"] == "42.0s"
