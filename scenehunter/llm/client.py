"""Gemini transport client for multimodal `generateContent` calls.

Architectural role:
    Executes exactly one HTTP request per `send` call and classifies the
    response for the retry loop in `scenehunter.core.engine`.

Model invocation flow:
    `InferenceProxy.analyze` -> `GeminiVisionClient.send(payload, attempt)` ->
    POST `{base_url}/{model}:generateContent` -> `InferenceCallAttempt`.

Retry behavior:
    No retry loop is implemented here. Retrying, backoff and terminal-state
    mapping live only in the engine.

Response classification:
    - 503 -> `RETRYABLE_OVERLOAD` (body is not read as JSON).
    - Other non-2xx -> `FATAL_ERROR` with `error.message` extracted from the
      body, or a generic message when the body has none. Informational and
      redirect statuses are reported as 502.
    - 2xx -> `SUCCESS` with the parsed JSON body.

Failure handling model:
    Transport errors (`httpx.RequestError`) and undecodable success bodies are
    raised to the caller. The API key travels in the `x-goog-api-key` header, so
    it never appears in a logged request URL.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from scenehunter.core.analysis_types import (
    AttemptOutcome,
    InferenceCallAttempt,
    UpstreamError,
)
from scenehunter.llm.provider_config import GeminiConfig


logger = logging.getLogger(__name__)

OVERLOADED_STATUS = 503
BAD_GATEWAY_STATUS = 502
API_KEY_HEADER = "x-goog-api-key"


def extract_error_message(response: httpx.Response) -> str:
    """Return `error.message` from an upstream error body, or the generic text."""
    try:
        data = response.json()
    except ValueError:
        return UpstreamError.default_message

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message.strip():
            return message
    return UpstreamError.default_message


def extract_text(body: Any) -> str | None:
    """Return `candidates[0].content.parts[0].text` from a success body, if present."""
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) else None


class GeminiVisionClient:
    """Async HTTP client for the Gemini `generateContent` endpoint.

    Args:
        config: Endpoint, credential and timeout settings.
        http_client: Optional pre-built `httpx.AsyncClient` (tests inject one
            with a `MockTransport`). When omitted the client creates and owns
            its own connection pool.
    """

    def __init__(
        self,
        config: GeminiConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=config.attempt_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    async def send(self, payload: dict, attempt_number: int) -> InferenceCallAttempt:
        """POST one generation request and classify the response.

        Raises:
            httpx.RequestError: Network/transport failure.
            ValueError: Success response with a body that is not JSON.
        """
        response = await self._http.post(
            self.config.endpoint_url,
            headers={API_KEY_HEADER: self.config.api_key},
            json=payload,
            timeout=self.config.attempt_timeout_seconds,
        )
        status = response.status_code

        logger.debug(
            "Gemini call attempt=%d url=%s status=%d",
            attempt_number,
            self.config.endpoint_url,
            status,
        )

        if status == OVERLOADED_STATUS:
            return InferenceCallAttempt(
                attempt_number=attempt_number,
                outcome=AttemptOutcome.RETRYABLE_OVERLOAD,
                status_code=status,
            )

        if not response.is_success:
            return InferenceCallAttempt(
                attempt_number=attempt_number,
                outcome=AttemptOutcome.FATAL_ERROR,
                # 1xx/3xx cannot carry the JSON error envelope downstream
                status_code=status if status >= 400 else BAD_GATEWAY_STATUS,
                message=extract_error_message(response),
            )

        return InferenceCallAttempt(
            attempt_number=attempt_number,
            outcome=AttemptOutcome.SUCCESS,
            status_code=status,
            payload=response.json(),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> GeminiVisionClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
