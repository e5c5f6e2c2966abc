"""Tests for the continuity context builder and its per-job memo."""
from __future__ import annotations

from scene_orchestrator.orchestration.continuity import (
    ContinuityCache,
    build_continuity_context,
    extract_actions,
    extract_locations,
)
from scene_orchestrator.orchestration.models import CharacterSkeleton, FreeText, Scene


def _scenes(n, environment="kitchen"):
    return [
        Scene(description=f"Chef is chopping onions in the {environment}, step {i}", character="Ana - female, 30s",
              visual_specs={"environment": f"{environment} {i % 3}"})
        for i in range(n)
    ]


def _registry():
    return {
        "Ana": CharacterSkeleton(name="Ana", gender="female", age="30s", hair="long black hair"),
        "Narrator": FreeText("Narrator - deep voice, never seen"),
    }


class TestBuildContext:
    def test_empty_history_is_blank(self):
        assert build_continuity_context([], _registry()) == ""

    def test_short_history_lists_every_scene(self):
        text = build_continuity_context(_scenes(3), _registry())
        assert "=== CONTINUITY CONTEXT (CRITICAL - MUST MAINTAIN) ===" in text
        assert "--- ALL PREVIOUS SCENES ---" in text
        assert "Scene 3: Chef is chopping onions in the kitchen, step 2" in text
        assert "=== END CONTINUITY CONTEXT ===" in text

    def test_characters_echoed_verbatim(self):
        text = build_continuity_context(_scenes(1), _registry())
        assert "- CHARACTER SKELETON: Ana, female, 30s, long black hair" in text
        assert "- Narrator - deep voice, never seen" in text

    def test_long_history_switches_to_summary(self):
        text = build_continuity_context(_scenes(12), _registry(), detail_count=5)
        assert "Total scenes generated: 12" in text
        assert "--- LAST 5 SCENES (Full Detail) ---" in text
        assert "Scene 8:" in text and "Scene 12:" in text
        assert "Scene 7:" not in text
        assert "--- ALL PREVIOUS SCENES ---" not in text

    def test_summary_mode_can_be_forced(self):
        text = build_continuity_context(_scenes(2), {}, summary_mode=True, detail_count=1)
        assert "Total scenes generated: 2" in text
        assert "Scene 2:" in text
        assert "Scene 1:" not in text

    def test_locations_truncated_with_count(self):
        scenes = [Scene(description="x", visual_specs={"environment": f"place {i}"}) for i in range(8)]
        text = build_continuity_context(scenes, {}, summary_mode=True)
        assert "Locations covered: place 0, place 1, place 2, place 3, place 4, and 3 more" in text


class TestExtraction:
    def test_actions_are_gerunds_without_stoplist(self):
        scenes = [Scene(description="Running past the building while something is burning during the morning")]
        assert extract_actions(scenes) == ["running", "burning"]

    def test_actions_limit(self):
        words = " ".join(f"{w}ing" for w in ["walk", "talk", "jump", "sing", "read", "cook"])
        assert len(extract_actions([Scene(description=words)], limit=3)) == 3

    def test_locations_unique_in_order(self):
        scenes = _scenes(6)
        assert extract_locations(scenes) == ["kitchen 0", "kitchen 1", "kitchen 2"]


class TestContinuityCache:
    def test_hit_when_history_unchanged(self):
        cache = ContinuityCache()
        scenes, registry = _scenes(6), _registry()
        first = cache.get_or_build("job", scenes, registry)
        second = cache.get_or_build("job", scenes, registry)
        assert first is second
        assert (cache.hits, cache.misses) == (1, 1)

    def test_miss_when_history_grows(self):
        cache = ContinuityCache()
        registry = _registry()
        cache.get_or_build("job", _scenes(3), registry)
        cache.get_or_build("job", _scenes(4), registry)
        assert cache.misses == 2

    def test_same_counts_different_content_rebuilds(self):
        cache = ContinuityCache()
        registry = _registry()
        a = cache.get_or_build("job", _scenes(3, "kitchen"), registry)
        b = cache.get_or_build("job", _scenes(3, "garden"), registry)
        assert a != b
        assert "garden" in b

    def test_rendering_options_are_part_of_the_key(self):
        cache = ContinuityCache()
        scenes, registry = _scenes(4), _registry()
        summary = cache.get_or_build("job", scenes, registry, summary_mode=True)
        full = cache.get_or_build("job", scenes, registry, summary_mode=False)
        assert "ALL PREVIOUS SCENES" in full
        assert "ALL PREVIOUS SCENES" not in summary
        short = cache.get_or_build("job", scenes, registry, summary_mode=True, detail_count=1)
        assert "LAST 1 SCENES" in short
        assert cache.misses == 3 and cache.hits == 0

    def test_entries_isolated_per_job_and_reset(self):
        cache = ContinuityCache()
        cache.get_or_build("a", _scenes(2), {})
        cache.get_or_build("b", _scenes(2), {})
        assert len(cache) == 2
        cache.reset("a")
        assert "a" not in cache and "b" in cache
