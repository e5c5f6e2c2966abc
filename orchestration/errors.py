"""Error taxonomy for the orchestration layer."""
from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Any, Optional

import httpx


class ErrorType(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    RATE_LIMIT = "RATE_LIMIT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    PARSE_ERROR = "PARSE_ERROR"
    CONTENT_BLOCKED = "CONTENT_BLOCKED"
    API_ERROR = "API_ERROR"          # 5xx from the generative API
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_TYPES = frozenset({
    ErrorType.RATE_LIMIT,
    ErrorType.NETWORK_ERROR,
    ErrorType.TIMEOUT,
    ErrorType.API_ERROR,
})


class OrchestrationError(Exception):
    """Base class for classified failures raised inside a job."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.UNKNOWN_ERROR,
        status_code: Optional[int] = None,
    ) -> None:
        self.error_type = error_type
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.error_type in RETRYABLE_TYPES


class GenerationApiError(OrchestrationError):
    """Raised when the external generative API returns an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None) -> None:
        self.body = body
        super().__init__(message, error_type=type_for_status(status_code), status_code=status_code)


class ResponseParseError(OrchestrationError):
    """Model output could not be recovered into JSON."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_type=ErrorType.PARSE_ERROR)


class ContentBlockedError(OrchestrationError):
    """The model refused on safety or recitation grounds."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_type=ErrorType.CONTENT_BLOCKED)


def type_for_status(status_code: Optional[int]) -> ErrorType:
    """Map an HTTP status to the taxonomy."""
    if status_code is None:
        return ErrorType.UNKNOWN_ERROR
    if status_code == 429:
        return ErrorType.RATE_LIMIT
    if status_code == 403:
        return ErrorType.QUOTA_EXCEEDED
    if status_code in (408, 504):
        return ErrorType.TIMEOUT
    if 400 <= status_code < 500:
        return ErrorType.INVALID_INPUT
    if status_code >= 500:
        return ErrorType.API_ERROR
    return ErrorType.UNKNOWN_ERROR


def classify_error(exc: BaseException) -> ErrorType:
    """Return the taxonomy code for any exception raised during a batch."""
    if isinstance(exc, OrchestrationError):
        return exc.error_type
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ErrorType.TIMEOUT
    if isinstance(exc, (ConnectionError, httpx.TransportError)):
        return ErrorType.NETWORK_ERROR
    if isinstance(exc, httpx.HTTPStatusError):
        return type_for_status(exc.response.status_code)
    if isinstance(exc, json.JSONDecodeError):
        return ErrorType.PARSE_ERROR
    if isinstance(exc, (ValueError, TypeError)):
        return ErrorType.INVALID_INPUT
    return ErrorType.UNKNOWN_ERROR


def is_retryable_type(error_type: ErrorType) -> bool:
    return error_type in RETRYABLE_TYPES
