"""Shared test fixtures for the scene_orchestrator test suite."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Union

import pytest


# ── Generative API fakes ─────────────────────────────────────────────


def make_scene(description: str, character: str = "", environment: str = "") -> Dict[str, Any]:
    scene: Dict[str, Any] = {"description": description, "character": character, "visual_specs": {}}
    if environment:
        scene["visual_specs"]["environment"] = environment
    return scene


def make_payload(scenes: Union[List[Dict[str, Any]], str], finish_reason: str = "STOP") -> Dict[str, Any]:
    """A generateContent response whose text is *scenes* (JSON-encoded unless already text)."""
    text = scenes if isinstance(scenes, str) else json.dumps(scenes)
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish_reason}],
        "usageMetadata": {"promptTokenCount": 100, "candidatesTokenCount": 50, "totalTokenCount": 150},
    }


class FakeGenerativeClient:
    """Scripted backend: each call pops the next response or raises it."""

    model = "fake-model"

    def __init__(self, responses: Optional[List[Any]] = None, default: Optional[Dict[str, Any]] = None) -> None:
        self.responses = list(responses or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, body: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(body)
        if self.responses:
            item = self.responses.pop(0)
        elif self.default is not None:
            item = self.default
        else:
            item = make_payload([make_scene(f"Scene from call {len(self.calls)}", "Narrator - male, 40s")])
        if isinstance(item, BaseException):
            raise item
        return item

    def offsets(self) -> List[str]:
        """``startOffset`` of every request, in call order."""
        out = []
        for body in self.calls:
            for part in body["contents"][0]["parts"]:
                if "videoMetadata" in part:
                    out.append(part["videoMetadata"]["startOffset"])
        return out


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def fake_client():
    return FakeGenerativeClient()


# ── Storage / app fixtures ───────────────────────────────────────────


@pytest.fixture
async def job_store():
    from scene_orchestrator.api.jobs.store import JobStore

    store = JobStore(":memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture(autouse=True)
def _reset_sse_app_status():
    """sse_starlette keeps a module-level exit event bound to the first loop."""
    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None


@pytest.fixture
def api_settings(tmp_path):
    from scene_orchestrator.api.config import ApiSettings

    return ApiSettings(
        job_db_path=str(tmp_path / "jobs.db"),
        auth_enabled=False,
        database_access_keys="test-key",
        generative_api_key="",
    )


@pytest.fixture
async def app(api_settings, job_store, fake_client):
    """App with every singleton injected and auth disabled."""
    from scene_orchestrator.api.cache.local import LocalJobCache
    from scene_orchestrator.api.cache.manager import ProgressMap
    from scene_orchestrator.api.cache.tiered import TieredJobCache
    from scene_orchestrator.api.deps import providers
    from scene_orchestrator.api.jobs.runner import JobRunner
    from scene_orchestrator.api.main import create_app
    from scene_orchestrator.orchestration.pipeline import ScenePipeline
    from scene_orchestrator.orchestration.retry import RetryPolicy
    from scene_orchestrator.streaming.recovery import EventTracker

    pipeline = ScenePipeline(
        fake_client,
        policy=RetryPolicy(max_attempts=2, initial_delay_ms=1, max_delay_ms=1),
        batch_delay=0,
        sleep=no_sleep,
    )
    cache = TieredJobCache(LocalJobCache())
    progress_map = ProgressMap()
    tracker = EventTracker()

    providers._job_store = job_store
    providers._job_cache = cache
    providers._progress_map = progress_map
    providers._event_tracker = tracker
    providers._pipeline = pipeline
    providers._job_runner = JobRunner(pipeline, cache, progress_map, tracker)

    application = create_app(api_settings)
    application.dependency_overrides[providers.get_settings] = lambda: api_settings
    yield application
    await providers._job_runner.shutdown()
    providers.reset_providers()


@pytest.fixture
async def client(app):
    import httpx

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
