"""
Domain records for scene-generation jobs.

Scenes are append-only and ordered; position is the sole source of temporal
truth.  Character registry entries are a tagged union of free text and a
structured skeleton, rendered through ``render_character``.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class PipelineMode(str, Enum):
    """Alternative generation pipelines."""
    DIRECT = "direct"     # video -> scenes in one pass per batch
    HYBRID = "hybrid"     # transcript-guided scenes


class SceneCountMode(str, Enum):
    EXACT = "exact"
    AUTO = "auto"


class ContentPacing(str, Enum):
    FAST = "fast"
    STANDARD = "standard"
    SLOW = "slow"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


# ── Characters ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class FreeText:
    """Legacy character description stored verbatim."""
    text: str


@dataclass(frozen=True)
class CharacterSkeleton:
    """Structured character attributes echoed verbatim on reuse."""
    name: str
    gender: str = ""
    age: str = ""
    ethnicity: str = ""
    body_type: str = ""
    face_shape: str = ""
    hair: str = ""
    base_outfit: str = ""
    facial_hair: str = ""
    distinctive_features: str = ""


CharacterEntry = Union[FreeText, CharacterSkeleton]
CharacterRegistry = Dict[str, CharacterEntry]

_SKELETON_ORDER = (
    "name", "gender", "age", "ethnicity", "body_type", "face_shape",
    "hair", "facial_hair", "distinctive_features", "base_outfit",
)

# camelCase aliases accepted when reading generated or legacy snapshots
_SKELETON_KEYS = {
    "name": "name",
    "gender": "gender",
    "age": "age",
    "ethnicity": "ethnicity",
    "body_type": "bodyType",
    "face_shape": "faceShape",
    "hair": "hair",
    "base_outfit": "baseOutfit",
    "facial_hair": "facialHair",
    "distinctive_features": "distinctiveFeatures",
}


def render_character(entry: CharacterEntry) -> str:
    """Return the prompt-ready description for either registry variant."""
    if isinstance(entry, FreeText):
        return entry.text
    parts = [getattr(entry, attr) for attr in _SKELETON_ORDER]
    return ", ".join(p for p in parts if p)


def character_to_dict(entry: CharacterEntry) -> Union[str, Dict[str, str]]:
    if isinstance(entry, FreeText):
        return entry.text
    out = {}
    for attr in _SKELETON_KEYS:
        value = getattr(entry, attr)
        if value or attr == "name":
            out[attr] = value
    return out


def character_from_dict(raw: Union[str, Dict[str, Any], CharacterEntry]) -> CharacterEntry:
    if isinstance(raw, (FreeText, CharacterSkeleton)):
        return raw
    if isinstance(raw, str):
        return FreeText(raw)
    kwargs = {}
    for attr, key in _SKELETON_KEYS.items():
        value = raw.get(attr, raw.get(key, ""))
        kwargs[attr] = str(value) if value is not None else ""
    return CharacterSkeleton(**kwargs)


def registry_to_dict(registry: CharacterRegistry) -> Dict[str, Any]:
    return {name: character_to_dict(entry) for name, entry in registry.items()}


def registry_from_dict(raw: Optional[Dict[str, Any]]) -> CharacterRegistry:
    return {name: character_from_dict(value) for name, value in (raw or {}).items()}


# ── Scenes ───────────────────────────────────────────────────────────


@dataclass
class Scene:
    """One generated unit of output."""
    description: str
    character: str = ""
    visual_specs: Dict[str, Any] = field(default_factory=dict)
    audio: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)
    position: int = 0

    @property
    def environment(self) -> str:
        return str(self.visual_specs.get("environment") or "")

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Scene":
        known = {f.name for f in fields(cls)}
        extra = {k: v for k, v in raw.items() if k not in known}
        extra.update(raw.get("extra") or {})
        return cls(
            description=str(raw.get("description") or ""),
            character=str(raw.get("character") or ""),
            visual_specs=dict(raw.get("visual_specs") or {}),
            audio=dict(raw.get("audio") or {}),
            extra=extra,
            position=int(raw.get("position") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extra)
        out.update({
            "description": self.description,
            "character": self.character,
            "visual_specs": self.visual_specs,
            "audio": self.audio,
            "position": self.position,
        })
        return out


# ── Job configuration ────────────────────────────────────────────────


@dataclass(frozen=True)
class JobConfig:
    """Immutable configuration of a single generation job."""
    job_id: str
    video_url: str
    mode: PipelineMode = PipelineMode.DIRECT
    scene_count: int = 10
    scene_count_mode: SceneCountMode = SceneCountMode.AUTO
    batch_size: int = 10
    content_pacing: ContentPacing = ContentPacing.STANDARD
    voice: str = "no-voice"
    audio: Dict[str, Any] = field(default_factory=dict)
    negative_prompt: str = ""
    media_type: MediaType = MediaType.VIDEO
    script_text: Optional[str] = None
    video_duration: Optional[float] = None
    resume_from_batch: Optional[int] = None
    existing_scenes: List[Scene] = field(default_factory=list)
    existing_characters: CharacterRegistry = field(default_factory=dict)

    @property
    def is_resume(self) -> bool:
        return bool(self.resume_from_batch)
