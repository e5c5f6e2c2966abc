"""Tests for character skeleton parsing and registry extraction."""
from __future__ import annotations

from scene_orchestrator.orchestration.characters import (
    character_name,
    extract_character_registry,
    parse_character_skeleton,
)
from scene_orchestrator.orchestration.models import (
    CharacterSkeleton,
    FreeText,
    Scene,
    character_from_dict,
    registry_from_dict,
    registry_to_dict,
    render_character,
)


def test_parse_full_skeleton():
    skeleton = parse_character_skeleton(
        "Maria - female, 30s, latina, slim, oval face, long wavy brown hair, red apron, freckles"
    )
    assert skeleton is not None
    assert skeleton.name == "Maria"
    assert skeleton.gender == "female"
    assert skeleton.age == "30s"
    assert skeleton.ethnicity == "latina"
    assert skeleton.body_type == "slim"
    assert skeleton.face_shape == "oval face"
    assert skeleton.hair == "long wavy brown hair"
    assert skeleton.base_outfit == "red apron"
    assert skeleton.distinctive_features == "freckles"


def test_hyphenated_name_survives():
    skeleton = parse_character_skeleton("Jean-Luc - male, 50s, bald, navy suit")
    assert skeleton.name == "Jean-Luc"
    assert character_name("Jean-Luc - male, 50s") == "Jean-Luc"


def test_unparseable_returns_none():
    assert parse_character_skeleton("None") is None
    assert parse_character_skeleton("A mysterious figure") is None
    assert parse_character_skeleton("Ghost - glowing, translucent") is None


def test_registry_keeps_first_appearance():
    scenes = [
        Scene(description="a", character="Tom - male, 20s, short hair, hoodie"),
        Scene(description="b", character="Tom - male, 20s, short hair, tuxedo"),
        Scene(description="c", character="Crowd of onlookers"),
        Scene(description="d", character="None"),
    ]
    registry = extract_character_registry(scenes)
    assert list(registry) == ["Tom", "Crowd of onlookers"]
    assert isinstance(registry["Tom"], CharacterSkeleton)
    assert registry["Tom"].base_outfit == "hoodie"
    assert registry["Crowd of onlookers"] == FreeText("Crowd of onlookers")


def test_registry_round_trips_through_dicts():
    registry = {
        "Tom": CharacterSkeleton(name="Tom", gender="male", hair="short hair"),
        "Crowd": FreeText("Crowd of onlookers"),
    }
    raw = registry_to_dict(registry)
    assert raw["Crowd"] == "Crowd of onlookers"
    assert raw["Tom"]["name"] == "Tom"
    assert registry_from_dict(raw) == registry


def test_camel_case_skeleton_accepted():
    entry = character_from_dict({"name": "Ana", "gender": "female", "bodyType": "athletic", "baseOutfit": "lab coat"})
    assert entry.body_type == "athletic"
    assert render_character(entry) == "Ana, female, athletic, lab coat"
