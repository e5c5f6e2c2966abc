"""
Retry executor with exponential backoff, jitter and a max-delay cap.

Delay for attempt ``n`` (1-based)::

    capped = min(initial * multiplier ** (n - 1), max_delay)
    delay  = round(capped + capped * 0.2 * uniform(-1, 1))

The last error is what surfaces once attempts are exhausted or the error is
not retryable.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from ..config import (
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_INITIAL_DELAY_MS,
    RETRY_JITTER_FRACTION,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY_MS,
)
from .errors import OrchestrationError, is_retryable_type, type_for_status

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MARKERS = (
    "econnrefused",
    "etimedout",
    "enotfound",
    "model_overload",
    "rate_limit",
    "rate limit",
    "503",
    "429",
    "overloaded",
    "service unavailable",
)


def is_retryable_error(exc: BaseException) -> bool:
    """Default retryable classifier.

    HTTP statuses win when present and follow the error taxonomy: 408,
    429 and 5xx retry, any other 4xx does not.  Network and timeout errors
    retry.  Anything else is matched against well-known transient markers
    in ``"<Name> <message>"``.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    status = getattr(exc, "status_code", None)
    if status is None and isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    if status is not None:
        return is_retryable_type(type_for_status(status))
    if isinstance(exc, OrchestrationError):
        return exc.retryable
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, httpx.TransportError)):
        return True
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in RETRYABLE_MARKERS)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for a single retried call."""
    max_attempts: int = RETRY_MAX_ATTEMPTS
    initial_delay_ms: float = RETRY_INITIAL_DELAY_MS
    max_delay_ms: float = RETRY_MAX_DELAY_MS
    backoff_multiplier: float = RETRY_BACKOFF_MULTIPLIER
    jitter_fraction: float = RETRY_JITTER_FRACTION
    retryable: Callable[[BaseException], bool] = field(default=is_retryable_error)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")


def calculate_delay(
    attempt: int,
    policy: Optional[RetryPolicy] = None,
    rng: Callable[[], float] = random.random,
) -> int:
    """Return the jittered delay in milliseconds before retrying *attempt*."""
    policy = policy or RetryPolicy()
    exponent = max(attempt - 1, 0)
    capped = min(policy.initial_delay_ms * policy.backoff_multiplier ** exponent, policy.max_delay_ms)
    jitter = capped * policy.jitter_fraction * (rng() * 2 - 1)
    return round(capped + jitter)


OnRetry = Callable[[int, BaseException, int], Any]


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    on_retry: Optional[OnRetry] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Await *operation* until it succeeds or the policy gives up.

    Parameters
    ----------
    on_retry : optional observer ``(attempt, error, delay_ms)`` called
        before each sleep; may be a coroutine function.
    sleep : injectable sleeper, seconds.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if attempt >= policy.max_attempts or not policy.retryable(exc):
                raise
            delay_ms = calculate_delay(attempt, policy)
            if on_retry is not None:
                result = on_retry(attempt, exc, delay_ms)
                if inspect.isawaitable(result):
                    await result
            logger.warning(
                "Attempt %d/%d failed (%s). Retrying in %d ms",
                attempt, policy.max_attempts, exc, delay_ms,
            )
            await sleep(delay_ms / 1000.0)
