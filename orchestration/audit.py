"""Request/response audit trail for generative API calls."""
from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config import ESTIMATED_RESPONSE_MS

LOST_RESPONSE_PLACEHOLDER = "[Response received but SSE disconnected before delivery]"
LOST_RESPONSE_SUMMARY = "Completed (connection lost)"

_BODY_PREVIEW_CHARS = 2000
_STALE_PROCESSING_TIME = re.compile(r"^Batch \d+/\d+$")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _preview(text: Optional[str]) -> str:
    if not text:
        return ""
    return text if len(text) <= _BODY_PREVIEW_CHARS else text[:_BODY_PREVIEW_CHARS] + "..."


def create_pending_log(
    batch_number: int,
    model: str,
    prompt: str,
    video_url: str,
    phase: str = "scenes",
) -> Dict[str, Any]:
    return {
        "id": uuid.uuid4().hex[:12],
        "timestamp": _now_iso(),
        "phase": phase,
        "batch_number": batch_number,
        "status": "pending",
        "request": {
            "model": model,
            "body": _preview(prompt),
            "prompt_length": len(prompt),
            "video_url": video_url,
        },
    }


def create_completed_log(
    pending: Dict[str, Any],
    response_body: str,
    parsed_item_count: int,
    duration_ms: int,
    retries: int = 0,
    finish_reason: Optional[str] = None,
    tokens: Optional[Dict[str, int]] = None,
) -> Dict[str, Any]:
    entry = dict(pending)
    entry.update({
        "status": "completed",
        "response": {
            "success": True,
            "finish_reason": finish_reason,
            "body": _preview(response_body),
            "response_length": len(response_body or ""),
            "parsed_item_count": parsed_item_count,
            "parsed_summary": f"{parsed_item_count} scenes",
        },
        "timing": {"duration_ms": duration_ms, "retries": retries},
    })
    if tokens:
        entry["tokens"] = tokens
    return entry


def create_error_log(
    pending: Dict[str, Any],
    error_type: str,
    message: str,
    duration_ms: int,
    retries: int = 0,
) -> Dict[str, Any]:
    entry = dict(pending)
    entry.update({
        "status": "error",
        "response": {"success": False},
        "timing": {"duration_ms": duration_ms, "retries": retries},
        "error": {"type": error_type, "message": message},
    })
    return entry


def fix_pending_log_entries(job: Dict[str, Any]) -> Dict[str, Any]:
    """Repair a cached snapshot whose stream dropped before logs settled.

    Pending entries become completed with an estimated duration, and a
    stale ``Batch X/Y`` processing time becomes the summed elapsed time
    once the job is done.  Returns a new dict; *job* is not mutated.
    """
    logs: List[Dict[str, Any]] = job.get("logs") or []
    fixed_logs = []
    changed = False
    for log in logs:
        if log.get("status") != "pending":
            fixed_logs.append(log)
            continue
        changed = True
        entry = dict(log)
        entry["status"] = "completed"
        response = dict(entry.get("response") or {})
        if not response.get("body"):
            response["body"] = LOST_RESPONSE_PLACEHOLDER
            response["parsed_summary"] = LOST_RESPONSE_SUMMARY
        response.setdefault("success", True)
        entry["response"] = response
        timing = dict(entry.get("timing") or {})
        if not timing.get("duration_ms"):
            timing["duration_ms"] = ESTIMATED_RESPONSE_MS
        timing.setdefault("retries", 0)
        entry["timing"] = timing
        fixed_logs.append(entry)

    out = dict(job)
    if changed:
        out["logs"] = fixed_logs

    summary = out.get("summary") or {}
    processing = str(summary.get("processing_time") or "")
    if out.get("status") == "completed" and (
        _STALE_PROCESSING_TIME.match(processing) or "progress" in processing.lower()
    ):
        total_ms = sum((log.get("timing") or {}).get("duration_ms") or 0 for log in fixed_logs)
        summary = dict(summary)
        summary["processing_time"] = f"{total_ms / 1000:.1f}s"
        out["summary"] = summary
    return out
