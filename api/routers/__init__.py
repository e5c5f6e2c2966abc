"""Route modules, imported lazily by the app factory."""
from __future__ import annotations

import importlib
import logging
from typing import List

from fastapi import APIRouter

logger = logging.getLogger(__name__)

# Module paths that provide a ``router`` attribute.
_ROUTER_MODULES = [
    "scene_orchestrator.api.routers.jobs",
    "scene_orchestrator.api.routers.storage",
    "scene_orchestrator.api.routers.system",
]


def all_routers() -> List[APIRouter]:
    """Import and return every router module's ``router``."""
    return [importlib.import_module(mod_path).router for mod_path in _ROUTER_MODULES]
