"""API server entry point.

Usage:
    python run_server.py
    python run_server.py --host 0.0.0.0 --port 9000 --log-level debug
"""
from __future__ import annotations

import argparse
import logging

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Scene Orchestrator API Server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"])
    args = parser.parse_args()

    import uvicorn

    from scene_orchestrator.api.config import ApiSettings
    from scene_orchestrator.api.main import create_app

    if args.reload:
        uvicorn.run(
            "scene_orchestrator.api.main:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            reload=True,
            log_level=args.log_level,
        )
        return

    settings = ApiSettings(host=args.host, port=args.port, log_level=args.log_level.upper())
    app = create_app(settings)
    logger.info("Starting Scene Orchestrator API on %s:%s", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
