"""Character registry extraction from generated scenes."""
from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional

from .models import CharacterEntry, CharacterRegistry, CharacterSkeleton, FreeText, Scene

_GENDER = re.compile(r"^(male|female|man|woman|boy|girl|non-binary|nb)$", re.I)
_AGE = re.compile(
    r"^(\d+s?|teens?|twenties|thirties|forties|fifties|sixties|seventies|young|"
    r"middle-?aged|elderly|older|senior|\d+-\d+)$",
    re.I,
)
_ETHNICITY = re.compile(
    r"(asian|caucasian|african|latino|latina|hispanic|indian|middle eastern|mixed|"
    r"white|black|olive skin|pale skin|tan skin|dark skin|fair skin)",
    re.I,
)
_BODY = re.compile(
    r"(slim|slender|athletic|muscular|stocky|heavyset|petite|tall|short|medium build|"
    r"average build|curvy|fit)",
    re.I,
)
_FACE = re.compile(
    r"(round face|oval face|square jaw|heart-?shaped|diamond|oblong|rectangle|"
    r"angular features|sharp features|soft features)",
    re.I,
)
_HAIR = re.compile(
    r"(bald|buzz|short|medium|long|very long|curly|wavy|straight|coily|black hair|"
    r"brown hair|blonde|gray|grey|white hair|red hair|auburn|chestnut|brunette|"
    r"salt-?and-?pepper|highlighted)",
    re.I,
)
_FACIAL_HAIR = re.compile(
    r"(beard|goatee|mustache|clean-?shaven|stubble|5 o'?clock shadow|sideburns)",
    re.I,
)
_OUTFIT_KEYWORDS = (
    "shirt", "coat", "jacket", "pants", "dress", "suit", "apron", "uniform",
    "blazer", "jeans", "shorts", "skirt", "blouse", "sweater", "hoodie",
)


def parse_character_skeleton(text: str) -> Optional[CharacterSkeleton]:
    """Parse ``"Name - tag, tag, ..."`` into a skeleton.

    Splits on the first ``" - "`` so hyphenated names survive.  Returns
    ``None`` when no gender, age, hair or outfit could be identified.
    """
    if not text or text.strip().lower() == "none":
        return None
    name, sep, tags_part = text.partition(" - ")
    if not sep:
        return None
    tags = [t.strip().lower() for t in tags_part.split(",") if t.strip()]

    fields: Dict[str, str] = {}
    facial: List[str] = []
    remaining: List[str] = []
    for tag in tags:
        if _GENDER.search(tag) and "gender" not in fields:
            fields["gender"] = tag
        elif _AGE.search(tag) and "age" not in fields:
            fields["age"] = tag
        elif _ETHNICITY.search(tag) and "ethnicity" not in fields:
            fields["ethnicity"] = tag
        elif _BODY.search(tag) and "body_type" not in fields:
            fields["body_type"] = tag
        elif _FACE.search(tag) and "face_shape" not in fields:
            fields["face_shape"] = tag
        elif _HAIR.search(tag) and "hair" not in fields:
            fields["hair"] = tag
        elif _FACIAL_HAIR.search(tag):
            facial.append(tag)
        else:
            remaining.append(tag)

    outfit = [t for t in remaining if any(k in t for k in _OUTFIT_KEYWORDS)]
    features = [t for t in remaining if t not in outfit]

    skeleton = CharacterSkeleton(
        name=name.strip(),
        facial_hair=", ".join(facial),
        base_outfit=", ".join(outfit),
        distinctive_features=", ".join(features),
        **fields,
    )
    if skeleton.gender or skeleton.age or skeleton.hair or skeleton.base_outfit:
        return skeleton
    return None


def character_name(text: str) -> Optional[str]:
    """Name portion of a scene's character field."""
    if not text or text.strip().lower() == "none":
        return None
    if " - " in text:
        head = text.split(" - ", 1)[0].strip()
    else:
        head = text.split("-", 1)[0].strip()
    return head or None


def extract_character_registry(scenes: Iterable[Scene]) -> CharacterRegistry:
    """Build a registry from the first appearance of each named character."""
    registry: CharacterRegistry = {}
    for scene in scenes:
        name = character_name(scene.character)
        if name is None or name in registry:
            continue
        entry: CharacterEntry = parse_character_skeleton(scene.character) or FreeText(scene.character)
        registry[name] = entry
    return registry
