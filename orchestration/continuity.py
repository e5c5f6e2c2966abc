"""
Continuity context builder.

Produces the text bundle injected into each batch request: established
characters (echoed verbatim on reuse), then scene history, then fixed
instructions.  Long histories collapse into a summary plus the most recent
scenes so prompt size stays bounded.
"""
from __future__ import annotations

import hashlib
import logging
import re
from typing import Dict, List, Sequence, Tuple

from ..config import CONTINUITY_DETAIL_SCENES, CONTINUITY_MAX_ACTIONS, CONTINUITY_MAX_LOCATIONS
from .models import CharacterRegistry, CharacterSkeleton, Scene, render_character

logger = logging.getLogger(__name__)

_GERUND = re.compile(r"\b([a-z]{3,}ing)\b")
_ACTION_STOPLIST = frozenset({
    "something", "nothing", "anything", "everything", "thing",
    "during", "morning", "evening", "clothing", "building",
    "setting", "lighting", "framing", "being", "having",
    "string", "ceiling", "feeling",
})

# Histories longer than this always use summary mode
_FULL_HISTORY_LIMIT = 5


def extract_locations(scenes: Sequence[Scene]) -> List[str]:
    seen: Dict[str, None] = {}
    for scene in scenes:
        if scene.environment:
            seen.setdefault(scene.environment, None)
    return list(seen)


def extract_actions(scenes: Sequence[Scene], limit: int = CONTINUITY_MAX_ACTIONS) -> List[str]:
    """Distinct gerund-form words across scene descriptions, stoplist removed."""
    seen: Dict[str, None] = {}
    for scene in scenes:
        for word in _GERUND.findall(scene.description.lower()):
            if word not in _ACTION_STOPLIST:
                seen.setdefault(word, None)
    return list(seen)[:limit]


def _scene_lines(number: int, scene: Scene) -> List[str]:
    lines = [f"Scene {number}: {scene.description}"]
    if scene.character:
        lines.append(f"  Characters: {scene.character}")
    if scene.environment:
        lines.append(f"  Location: {scene.environment}")
    return lines


def build_continuity_context(
    scenes: Sequence[Scene],
    registry: CharacterRegistry,
    summary_mode: bool = False,
    detail_count: int = CONTINUITY_DETAIL_SCENES,
) -> str:
    """Return the continuity block for the next batch, or ``""`` with no history."""
    if not scenes:
        return ""

    lines = ["", "", "=== CONTINUITY CONTEXT (CRITICAL - MUST MAINTAIN) ===", ""]
    lines.append("ESTABLISHED CHARACTERS (use EXACT descriptions when they reappear):")
    for entry in registry.values():
        prefix = "CHARACTER SKELETON: " if isinstance(entry, CharacterSkeleton) else ""
        lines.append(f"- {prefix}{render_character(entry)}")

    if summary_mode or len(scenes) > _FULL_HISTORY_LIMIT:
        lines += ["", "--- PREVIOUS SCENES (Summary) ---"]
        lines.append(f"Total scenes generated: {len(scenes)}")

        locations = extract_locations(scenes)
        if locations:
            shown = ", ".join(locations[:CONTINUITY_MAX_LOCATIONS])
            extra = len(locations) - CONTINUITY_MAX_LOCATIONS
            lines.append(f"Locations covered: {shown}" + (f", and {extra} more" if extra > 0 else ""))

        actions = extract_actions(scenes)
        if actions:
            lines.append(f"Actions covered: {', '.join(actions)}")

        recent = list(scenes[-detail_count:]) if detail_count > 0 else []
        first_number = len(scenes) - len(recent) + 1
        lines += ["", f"--- LAST {len(recent)} SCENES (Full Detail) ---"]
        for offset, scene in enumerate(recent):
            lines += _scene_lines(first_number + offset, scene)
    else:
        lines += ["", "--- ALL PREVIOUS SCENES ---"]
        for number, scene in enumerate(scenes, start=1):
            lines += _scene_lines(number, scene)

    lines += [
        "",
        "--- CRITICAL INSTRUCTIONS ---",
        "- Do NOT repeat any scene description from above",
        "- Maintain character consistency using EXACT skeleton descriptions",
        "- Continue the narrative flow from where previous scenes ended",
        "- If a location/action was already covered, move to new content",
        "- Avoid creating similar or duplicate scenes",
        "=== END CONTINUITY CONTEXT ===",
        "",
    ]
    return "\n".join(lines)


def _content_digest(scenes: Sequence[Scene], registry: CharacterRegistry) -> str:
    h = hashlib.sha1()
    for scene in scenes:
        h.update(scene.description.encode("utf-8"))
        h.update(b"\x1f")
        h.update(scene.character.encode("utf-8"))
        h.update(b"\x1e")
    for name, entry in registry.items():
        h.update(name.encode("utf-8"))
        h.update(render_character(entry).encode("utf-8"))
        h.update(b"\x1e")
    return h.hexdigest()


class ContinuityCache:
    """Per-job memo of the last continuity context built.

    Keyed by the rendering options plus ``(scene_count, character_count,
    content_digest)`` so two different histories of equal length, or one
    history rendered two ways, never share an entry.  Owners must ``reset`` a
    job when it closes.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[Tuple[bool, int, int, int, str], str]] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._entries

    def get_or_build(
        self,
        job_id: str,
        scenes: Sequence[Scene],
        registry: CharacterRegistry,
        summary_mode: bool = True,
        detail_count: int = CONTINUITY_DETAIL_SCENES,
    ) -> str:
        key = (summary_mode, detail_count, len(scenes), len(registry), _content_digest(scenes, registry))
        cached = self._entries.get(job_id)
        if cached is not None and cached[0] == key:
            self.hits += 1
            return cached[1]
        self.misses += 1
        context = build_continuity_context(scenes, registry, summary_mode, detail_count)
        self._entries[job_id] = (key, context)
        return context

    def reset(self, job_id: str) -> None:
        self._entries.pop(job_id, None)

    def clear(self) -> None:
        self._entries.clear()
