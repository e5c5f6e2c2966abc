"""Access-key dependency for protected endpoints."""
from __future__ import annotations

import logging
import secrets

from fastapi import Depends, HTTPException, Request

from ..config import ApiSettings
from .providers import get_settings

logger = logging.getLogger(__name__)

ACCESS_KEY_HEADER = "x-database-key"


async def require_access_key(request: Request, settings: ApiSettings = Depends(get_settings)) -> None:
    """FastAPI dependency that enforces the shared access key.

    Reads the key from the ``x-database-key`` header or
    ``Authorization: Bearer <key>``.  Returns immediately when auth is
    disabled (local dev mode).

    Raises
    ------
    HTTPException(401)
        If the key is missing or matches none of the configured keys.
    """
    if not settings.auth_enabled:
        return

    keys = settings.access_keys
    if not keys:
        logger.warning(
            "Auth is enabled but SO_API_DATABASE_ACCESS_KEYS is empty. "
            "All protected requests will be rejected."
        )
        raise HTTPException(status_code=401, detail="Server access keys not configured")

    token = request.headers.get(ACCESS_KEY_HEADER, "").strip() or None
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip() or None

    if not token:
        raise HTTPException(status_code=401, detail="Missing access key")

    if not any(secrets.compare_digest(token, key) for key in keys):
        raise HTTPException(status_code=401, detail="Invalid access key")
