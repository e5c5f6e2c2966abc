"""
Layered recovery of JSON from generative model output.

Order of attempts: direct parse, fenced code block, first JSON
array/object substring, structural repair of truncated JSON.  Only when
all four fail is a PARSE_ERROR raised.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from .errors import ContentBlockedError, GenerationApiError, ResponseParseError
from .models import Scene

logger = logging.getLogger(__name__)

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_ARRAY = re.compile(r"\[\s*\{[\s\S]*\}\s*\]")
_OBJECT = re.compile(r"\{[\s\S]*\}")

_BLOCKED_REASONS = {
    "SAFETY": "Content blocked by safety filters (finish reason: SAFETY).",
    "RECITATION": (
        "Content blocked by recitation policy; the output may contain "
        "significant portions of copyrighted material."
    ),
}


def _scan_structure(text: str):
    """Return (open-bracket stack, inside_string) for *text*."""
    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "[{":
            stack.append(ch)
        elif ch in "]}" and stack:
            stack.pop()
    return stack, in_string


def repair_truncated_json(text: str) -> str:
    """Close a truncated JSON document.

    Closes a dangling string, drops a trailing comma or partial key, fills
    a missing value with ``null`` and appends the closing brackets in
    nesting order.  Balanced input is returned stripped but otherwise
    unchanged.
    """
    repaired = text.strip()
    stack, in_string = _scan_structure(repaired)
    if not stack and not in_string:
        return repaired

    if in_string:
        repaired += '"'
        # a closed dangling key with no value is dropped below
    repaired = re.sub(r",\s*\"[^\"]*\"\s*$", "", repaired)   # trailing partial key
    repaired = re.sub(r",\s*$", "", repaired)                  # trailing comma
    repaired = re.sub(r":\s*$", ": null", repaired)            # missing value

    stack, _ = _scan_structure(repaired)
    closers = {"[": "]", "{": "}"}
    return repaired + "".join(closers[ch] for ch in reversed(stack))


def _try_load(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def recover_json(text: str) -> Any:
    """Return the JSON value embedded in *text*, or raise ``ResponseParseError``."""
    value = _try_load(text)
    if value is not None:
        return value

    fenced = _FENCED.search(text)
    if fenced:
        value = _try_load(fenced.group(1))
        if value is not None:
            return value

    for pattern in (_ARRAY, _OBJECT):
        match = pattern.search(text)
        if match:
            value = _try_load(match.group(0))
            if value is not None:
                return value

    candidate = fenced.group(1) if fenced else text
    start = min((i for i in (candidate.find("["), candidate.find("{")) if i >= 0), default=-1)
    if start >= 0:
        value = _try_load(repair_truncated_json(candidate[start:]))
        if value is not None:
            logger.info("Recovered truncated JSON (%d chars)", len(candidate))
            return value

    preview = text[:100].replace("\n", " ")
    raise ResponseParseError(f"Failed to parse JSON from response. Response starts with: {preview}...")


def response_text(payload: Dict[str, Any]) -> str:
    """Extract the first candidate's text, enforcing finish-reason policy."""
    candidates = payload.get("candidates") or []
    if not candidates:
        raise ResponseParseError(
            "No candidates in response. This may indicate a safety filter block, "
            "API error, or invalid request."
        )
    candidate = candidates[0]
    finish_reason = candidate.get("finishReason")
    if finish_reason in _BLOCKED_REASONS:
        raise ContentBlockedError(_BLOCKED_REASONS[finish_reason])

    parts = (candidate.get("content") or {}).get("parts") or []
    if not parts:
        raise GenerationApiError(
            f"No content parts in response. Finish reason: {finish_reason or 'UNKNOWN'}.",
            status_code=503,
        )
    text = parts[0].get("text") or ""
    if not text.strip():
        raise ResponseParseError(f"Empty text in response. Finish reason: {finish_reason or 'UNKNOWN'}")
    return text


def token_usage(payload: Dict[str, Any]) -> Optional[Dict[str, int]]:
    """Token counts from ``usageMetadata``, or ``None`` when the payload has none."""
    usage = payload.get("usageMetadata") if isinstance(payload, dict) else None
    if not usage:
        return None
    return {
        "prompt": usage.get("promptTokenCount", 0),
        "candidates": usage.get("candidatesTokenCount", 0),
        "total": usage.get("totalTokenCount", 0),
    }


def parse_generation_response(payload: Dict[str, Any]) -> List[Scene]:
    """Turn a generateContent payload into scenes."""
    value = recover_json(response_text(payload))
    if isinstance(value, dict):
        value = value.get("scenes", [value])
    if not isinstance(value, list):
        raise ResponseParseError(f"Expected a JSON array of scenes, got {type(value).__name__}")
    return [Scene.from_dict(item) for item in value if isinstance(item, dict)]
