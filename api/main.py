"""FastAPI application factory and server entry point."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import LOG_FORMAT, validate_config
from .cache.invalidation import run_sweeper
from .config import ApiSettings
from .deps.providers import (
    get_generative_client,
    get_job_cache,
    get_job_runner,
    get_job_store,
    get_progress_map,
    get_settings,
)
from .errors import register_error_handlers

logger = logging.getLogger(__name__)


def configure_logging(level: str, fmt_name: str = LOG_FORMAT) -> None:
    """Install the root log format; ``json`` emits one object per line."""
    if fmt_name == "json":
        fmt = '{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'
    else:
        fmt = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def log_config_issues() -> int:
    """Log ``validate_config`` findings. Returns the number of issues."""
    issues = validate_config()
    for issue in issues:
        if issue.get("level") == "ERROR":
            logger.error("Config validation: %s", issue.get("message", ""))
        else:
            logger.warning("Config validation: %s", issue.get("message", ""))
    if not issues:
        logger.info("Config validation: all checks passed")
    return len(issues)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    settings: ApiSettings = getattr(app.state, "settings", None) or get_settings()
    configure_logging(settings.log_level)
    logger.info("Starting scene orchestrator API on %s:%s", settings.host, settings.port)
    log_config_issues()

    store = get_job_store()
    await store.initialize()
    fixed = await store.fix_orphaned_jobs()
    if fixed:
        logger.info("Repaired %d orphaned job snapshots at startup", len(fixed))

    sweep_task = asyncio.create_task(
        run_sweeper(get_job_cache(), get_progress_map(), settings.sweep_interval_seconds)
    )

    yield

    sweep_task.cancel()
    await asyncio.gather(sweep_task, return_exceptions=True)
    await get_job_runner().shutdown()
    cache = get_job_cache()
    if cache.remote is not None:
        await cache.remote.close()
    await get_generative_client().close()
    await store.close()
    logger.info("Shutting down scene orchestrator API")


def create_app(settings: ApiSettings | None = None) -> FastAPI:
    """Build and return the FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Scene Orchestrator API",
        description="Batched scene generation from long-form video with resumable SSE progress streams.",
        version="1.0.0",
        lifespan=_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS
    origins = [o.strip() for o in settings.cors_origins.split(",")]
    allow_creds = "*" not in origins
    if not allow_creds:
        logger.warning(
            "CORS_ORIGINS contains '*'. Credentials will NOT be allowed. "
            "Set explicit origins for credentialed cross-origin requests."
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_creds,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Job-Id"],
    )

    app.state.settings = settings
    register_error_handlers(app)

    from .routers import all_routers

    for router in all_routers():
        app.include_router(router)

    return app


def run_server() -> None:
    """CLI entry point: ``python -m scene_orchestrator.api.main``."""
    import uvicorn

    settings = get_settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run_server()
