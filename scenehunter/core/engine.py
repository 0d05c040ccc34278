"""Inference proxy engine: validation, retry/backoff and result normalization.

Architectural role:
    Owns the only copy of the request-proxy logic. HTTP adapters in
    `scenehunter.api.http_api` translate their request shape into
    `InferenceProxy.analyze(image_data, prompt)` and the returned
    `AnalysisResult` back into a response.

Request lifecycle:
    1. Reject empty image or prompt (`InvalidRequest`, 400).
    2. Reject a missing credential (`ConfigurationError`, 500).
    3. Parse the data URI (`InvalidRequest`, 400).
    4. Run up to `max_attempts` calls:
       - success -> raw upstream payload, 200
       - 503 -> wait `backoff_base_seconds ** attempt`, retry; after the last
         attempt -> `ServiceOverloaded`, 503
       - other error status -> `UpstreamError`, upstream status passed through
       - exception -> `InternalError`, 500 (not retried)
    5. The whole loop is bounded by `request_deadline_seconds`
       (`DeadlineExceeded`, 504).

    Steps 1-3 never touch the network.

Concurrency:
    Backoff uses the injected awaitable `sleep` (default `asyncio.sleep`), so a
    waiting request only suspends itself. Instances hold no per-request state;
    one proxy serves concurrent requests.

Cancellation:
    `asyncio.CancelledError` from the caller propagates into the in-flight HTTP
    call or the pending backoff and is re-raised, never converted to a result.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from scenehunter.api.multimodal.data_uri import build_generation_payload, parse_data_uri
from scenehunter.core.analysis_types import (
    AnalysisRequest,
    AnalysisResult,
    AttemptOutcome,
    ConfigurationError,
    DeadlineExceeded,
    InferenceProxyError,
    InternalError,
    ServiceOverloaded,
    TerminalState,
    UpstreamError,
)
from scenehunter.llm.client import GeminiVisionClient
from scenehunter.llm.provider_config import GeminiConfig


logger = logging.getLogger(__name__)

RETRIES_EXHAUSTED_MESSAGE = "Failed to generate content after maximum retries."

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class _RetryState:
    """Per-request attempt counter, readable after a deadline cancels the loop."""

    request_id: str
    attempts: int = 0


class InferenceProxy:
    """Retry-aware proxy in front of the Gemini `generateContent` endpoint.

    Args:
        config: Injected configuration (credential, attempts, backoff, deadline).
        client: Transport client; defaults to a `GeminiVisionClient` built from
            `config`.
        sleep: Awaitable used for backoff waits.
    """

    def __init__(
        self,
        config: GeminiConfig,
        client: GeminiVisionClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.config = config
        self.client = client or GeminiVisionClient(config)
        self._sleep = sleep

    async def analyze(self, image_data: str, prompt: str) -> AnalysisResult:
        """Forward an image + prompt to the inference endpoint.

        Returns:
            Exactly one `AnalysisResult`; taxonomy errors are returned, not raised.
        """
        state = _RetryState(request_id=uuid.uuid4().hex[:8])
        request = AnalysisRequest(image_data=image_data, prompt=prompt)

        try:
            request.validate()
            self._require_credential(state)
            image = parse_data_uri(request.image_data)
        except ConfigurationError as err:
            return AnalysisResult.from_error(err)
        except InferenceProxyError as err:
            logger.warning("[%s] Rejected analysis request: %s", state.request_id, err.message)
            return AnalysisResult.from_error(err)

        payload = build_generation_payload(request.prompt, image)

        deadline = self.config.request_deadline_seconds
        if deadline is None:
            return await self._run_attempts(payload, state)

        try:
            return await asyncio.wait_for(self._run_attempts(payload, state), timeout=deadline)
        except asyncio.TimeoutError:
            logger.error(
                "[%s] Request deadline of %.1fs exceeded after %d attempt(s).",
                state.request_id,
                deadline,
                state.attempts,
            )
            return AnalysisResult.from_error(DeadlineExceeded(), state.attempts)

    def _require_credential(self, state: _RetryState) -> None:
        if not self.config.api_key:
            logger.error(
                "[%s] CRITICAL: GEMINI_API_KEY is not configured for the proxy.",
                state.request_id,
            )
            raise ConfigurationError()

    async def _run_attempts(self, payload: dict, state: _RetryState) -> AnalysisResult:
        """Explicit retry loop; every exit path returns a terminal result."""
        max_attempts = self.config.max_attempts

        try:
            for attempt in range(1, max_attempts + 1):
                state.attempts = attempt
                call = await self.client.send(payload, attempt)

                if call.outcome is AttemptOutcome.SUCCESS:
                    return AnalysisResult.success(call.payload, attempts=attempt)

                if call.outcome is AttemptOutcome.FATAL_ERROR:
                    logger.warning(
                        "[%s] Gemini API error status=%d: %s",
                        state.request_id,
                        call.status_code,
                        call.message,
                    )
                    err = UpstreamError(call.message, status_code=call.status_code)
                    return AnalysisResult.from_error(err, attempt)

                if attempt >= max_attempts:
                    logger.error(
                        "[%s] Gemini API overloaded. Final attempt %d/%d failed.",
                        state.request_id,
                        attempt,
                        max_attempts,
                    )
                    return AnalysisResult.from_error(ServiceOverloaded(), attempt)

                delay = self.config.backoff_seconds(attempt)
                logger.info(
                    "[%s] Gemini API overloaded. Retrying in %.1fs (attempt %d/%d).",
                    state.request_id,
                    delay,
                    attempt,
                    max_attempts,
                )
                await self._sleep(delay)

        except Exception:
            logger.exception(
                "[%s] FATAL: exception while calling the Gemini API (attempt %d).",
                state.request_id,
                state.attempts,
            )
            return AnalysisResult.from_error(InternalError(), state.attempts)

        logger.error("[%s] Retry loop exited without a terminal result.", state.request_id)
        return AnalysisResult(
            state=TerminalState.RETRIES_EXHAUSTED,
            status_code=500,
            error=RETRIES_EXHAUSTED_MESSAGE,
            attempts=state.attempts,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
