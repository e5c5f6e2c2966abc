"""Async HTTP client for the external multimodal generative API.

One ``generateContent`` call per batch.  HTTP and transport failures are
translated into the orchestration error taxonomy so the retry executor can
decide what to retry.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx

from ...config import (
    DEFAULT_GENERATIVE_MODEL,
    GENERATIVE_API_BASE_URL,
    GENERATIVE_API_TIMEOUT_SECONDS,
)
from ...orchestration.errors import ErrorType, GenerationApiError, OrchestrationError
from ...orchestration.parsing import token_usage

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-goog-api-key"


@dataclass
class GenerationCall:
    """Metadata of one completed call."""
    model: str
    prompt_length: int
    response_length: int
    duration_ms: int
    tokens: Optional[Dict[str, int]] = None


def _prompt_length(body: Dict[str, Any]) -> int:
    total = 0
    for content in body.get("contents", []):
        for part in content.get("parts", []):
            total += len(part.get("text") or "")
    return total


class GenerativeClient:
    """Async client for the generateContent endpoint.

    Usage::

        async with GenerativeClient(api_key="...") as client:
            payload = await client.generate(body)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = GENERATIVE_API_BASE_URL,
        model: str = DEFAULT_GENERATIVE_MODEL,
        timeout: float = GENERATIVE_API_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.model = model
        self.last_call: Optional[GenerationCall] = None
        self._client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def __aenter__(self) -> "GenerativeClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{self.model}:generateContent"

    async def generate(self, body: Dict[str, Any]) -> Dict[str, Any]:
        payload, _ = await self.generate_with_metadata(body)
        return payload

    async def generate_with_metadata(self, body: Dict[str, Any]) -> Tuple[Dict[str, Any], GenerationCall]:
        """POST *body* and return the decoded payload with call metadata.

        Raises
        ------
        GenerationApiError
            On a non-2xx status, or 401 when no API key is configured.
        OrchestrationError
            ``TIMEOUT`` or ``NETWORK_ERROR`` for transport failures,
            ``PARSE_ERROR`` for a body that is not JSON.
        """
        if not self.api_key:
            raise GenerationApiError("Generative API key is not configured", status_code=401)

        started = time.monotonic()
        try:
            response = await self._client.post(
                self.endpoint, json=body, headers={API_KEY_HEADER: self.api_key},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise GenerationApiError(
                f"HTTP {status}: {exc.response.text[:500]}",
                status_code=status,
                body=exc.response.text,
            ) from exc
        except httpx.TimeoutException as exc:
            raise OrchestrationError(f"Request timeout: {exc}", ErrorType.TIMEOUT) from exc
        except httpx.TransportError as exc:
            raise OrchestrationError(f"Network error: {exc}", ErrorType.NETWORK_ERROR) from exc

        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise OrchestrationError(f"Response is not JSON: {exc}", ErrorType.PARSE_ERROR) from exc

        call = GenerationCall(
            model=self.model,
            prompt_length=_prompt_length(body),
            response_length=len(response.text),
            duration_ms=int((time.monotonic() - started) * 1000),
            tokens=token_usage(payload),
        )
        self.last_call = call
        logger.debug(
            "generateContent %s: %d chars in, %d chars out, %d ms",
            self.model, call.prompt_length, call.response_length, call.duration_ms,
        )
        return payload, call
