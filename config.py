"""
Central policy configuration for the scene orchestrator.

Flat-constant interface.  These values encode empirically tuned policy
(overlap multiplier, cache TTLs, stream timeouts) rather than invariants,
so every consumer reads them from here and tests may monkeypatch them.

Config Status Legend
====================
  ACTIVE      Imported and used by running code.

Search for ``# STATUS:`` to locate all annotations.
"""
from typing import Dict, Tuple


# ── Logging ───────────────────────────────────────────────────────────
LOG_LEVEL = "INFO"                                # STATUS: ACTIVE - api/main.py lifespan
LOG_FORMAT = "structured"                         # STATUS: ACTIVE - "structured" or "json"

# ── Batch Scheduling ──────────────────────────────────────────────────
DEFAULT_SECONDS_PER_SCENE = 8                     # STATUS: ACTIVE - orchestration/scheduler.py
DEFAULT_BATCH_SIZE = 10                           # STATUS: ACTIVE - scenes per batch when unspecified
BATCH_OVERLAP_SECONDS = 10                        # STATUS: ACTIVE - overlap when no prior batch data
MIN_OVERLAP_SECONDS = 5                           # STATUS: ACTIVE - lower clamp for dynamic overlap
MAX_OVERLAP_SECONDS = 20                          # STATUS: ACTIVE - upper clamp for dynamic overlap
OVERLAP_SCENE_MULTIPLIER = 1.5                    # STATUS: ACTIVE - overlap covers ~1.5 scene transitions
FALLBACK_VIDEO_DURATION_SECONDS = 300             # STATUS: ACTIVE - used when the source duration is unknown
BATCH_DELAY_SECONDS = 2.0                         # STATUS: ACTIVE - pause between sequential batches

# Content pacing -> (seconds per scene, base overlap seconds)
CONTENT_PACING_PROFILES: Dict[str, Tuple[int, int]] = {  # STATUS: ACTIVE - orchestration/scheduler.py
    "fast": (6, 8),
    "standard": (8, 10),
    "slow": (10, 12),
}
DEFAULT_CONTENT_PACING = "standard"               # STATUS: ACTIVE

# ── Continuity ────────────────────────────────────────────────────────
CONTINUITY_DETAIL_SCENES = 5                      # STATUS: ACTIVE - recent scenes shown in full detail
CONTINUITY_MAX_LOCATIONS = 5                      # STATUS: ACTIVE
CONTINUITY_MAX_ACTIONS = 15                       # STATUS: ACTIVE

# ── Retry ─────────────────────────────────────────────────────────────
RETRY_MAX_ATTEMPTS = 3                            # STATUS: ACTIVE - orchestration/retry.py
RETRY_INITIAL_DELAY_MS = 1000                     # STATUS: ACTIVE
RETRY_MAX_DELAY_MS = 30000                        # STATUS: ACTIVE
RETRY_BACKOFF_MULTIPLIER = 2.0                    # STATUS: ACTIVE
RETRY_JITTER_FRACTION = 0.2                       # STATUS: ACTIVE - +/-20% uniform jitter

# ── Generative API ────────────────────────────────────────────────────
GENERATIVE_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models/"  # STATUS: ACTIVE
DEFAULT_GENERATIVE_MODEL = "gemini-2.0-flash-exp"  # STATUS: ACTIVE
GENERATIVE_API_TIMEOUT_SECONDS = 300.0            # STATUS: ACTIVE - per-call abort timeout
ESTIMATED_RESPONSE_MS = 15000                     # STATUS: ACTIVE - duration assumed for logs lost to a disconnect

# ── Streaming ─────────────────────────────────────────────────────────
SSE_KEEPALIVE_INTERVAL_SECONDS = 15               # STATUS: ACTIVE - api/routers/jobs.py
SSE_REPLAY_DELAY_MS = 10                          # STATUS: ACTIVE - spacing between replayed events
BASE_STREAM_TIMEOUT_SECONDS = 10 * 60             # STATUS: ACTIVE - streaming/recovery.py
STREAM_TIMEOUT_PER_SCENE_SECONDS = 30             # STATUS: ACTIVE
MAX_STREAM_TIMEOUT_SECONDS = 60 * 60              # STATUS: ACTIVE
MAX_RECOVERY_EVENTS = 1000                        # STATUS: ACTIVE - per-job replay ring size
EVENT_ID_SEPARATOR = "-"                          # STATUS: ACTIVE

# ── Caching ───────────────────────────────────────────────────────────
FAILED_JOB_CACHE_TTL_SECONDS = 48 * 60 * 60       # STATUS: ACTIVE - failed / partial snapshots
COMPLETED_JOB_CACHE_TTL_SECONDS = 7 * 24 * 60 * 60  # STATUS: ACTIVE - every other status
MAX_CACHED_JOBS = 20                              # STATUS: ACTIVE - local tier capacity
PROGRESS_MAP_TTL_SECONDS = 30 * 60                # STATUS: ACTIVE - api/cache/manager.py
PROGRESS_MAP_MAX_ENTRIES = 100                    # STATUS: ACTIVE
REMOTE_CACHE_TIMEOUT_SECONDS = 10.0               # STATUS: ACTIVE - api/cache/remote.py
REMOTE_WRITE_MAX_ATTEMPTS = 3                     # STATUS: ACTIVE - write-retry queue
REMOTE_WRITE_BASE_DELAY_SECONDS = 1.0             # STATUS: ACTIVE
CACHE_SWEEP_INTERVAL_SECONDS = 15 * 60            # STATUS: ACTIVE - default for ApiSettings.sweep_interval_seconds


def validate_config() -> list:
    """Check config for common misconfigurations.

    Returns a list of dicts: [{"level": "WARNING"|"ERROR", "message": str}].
    Called on server startup and available via /api/config/validate.
    """
    issues = []

    if MIN_OVERLAP_SECONDS > MAX_OVERLAP_SECONDS:
        issues.append({
            "level": "ERROR",
            "message": (
                f"MIN_OVERLAP_SECONDS ({MIN_OVERLAP_SECONDS}) exceeds "
                f"MAX_OVERLAP_SECONDS ({MAX_OVERLAP_SECONDS}); every overlap will clamp to the max."
            ),
        })

    if not MIN_OVERLAP_SECONDS <= BATCH_OVERLAP_SECONDS <= MAX_OVERLAP_SECONDS:
        issues.append({
            "level": "WARNING",
            "message": (
                f"BATCH_OVERLAP_SECONDS ({BATCH_OVERLAP_SECONDS}) is outside "
                f"[{MIN_OVERLAP_SECONDS}, {MAX_OVERLAP_SECONDS}]. First batches will use "
                "a different overlap than the dynamic clamp allows."
            ),
        })

    if FAILED_JOB_CACHE_TTL_SECONDS >= COMPLETED_JOB_CACHE_TTL_SECONDS:
        issues.append({
            "level": "WARNING",
            "message": (
                "FAILED_JOB_CACHE_TTL_SECONDS should be shorter than "
                "COMPLETED_JOB_CACHE_TTL_SECONDS so failed snapshots are evicted first."
            ),
        })

    if RETRY_MAX_ATTEMPTS < 1:
        issues.append({
            "level": "ERROR",
            "message": f"RETRY_MAX_ATTEMPTS must be >= 1 (got {RETRY_MAX_ATTEMPTS}).",
        })

    if RETRY_INITIAL_DELAY_MS > RETRY_MAX_DELAY_MS:
        issues.append({
            "level": "WARNING",
            "message": "RETRY_INITIAL_DELAY_MS exceeds RETRY_MAX_DELAY_MS; every retry waits the cap.",
        })

    if DEFAULT_CONTENT_PACING not in CONTENT_PACING_PROFILES:
        issues.append({
            "level": "ERROR",
            "message": f"DEFAULT_CONTENT_PACING {DEFAULT_CONTENT_PACING!r} has no pacing profile.",
        })

    if BASE_STREAM_TIMEOUT_SECONDS > MAX_STREAM_TIMEOUT_SECONDS:
        issues.append({
            "level": "WARNING",
            "message": "BASE_STREAM_TIMEOUT_SECONDS exceeds MAX_STREAM_TIMEOUT_SECONDS.",
        })

    return issues
