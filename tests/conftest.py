"""Shared test fixtures and fakes."""

from __future__ import annotations

import base64

import httpx
import pytest

from scenehunter.core.engine import InferenceProxy
from scenehunter.llm.client import GeminiVisionClient
from scenehunter.llm.provider_config import GeminiConfig

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")
IMAGE_DATA_URI = f"data:image/png;base64,{PNG_B64}"

SUCCESS_BODY = {
    "candidates": [
        {
            "content": {
                "parts": [{"text": "A rain-soaked neon street at night."}],
                "role": "model",
            },
            "finishReason": "STOP",
        }
    ]
}


class FakeGemini:
    """MockTransport handler replaying scripted responses.

    The last scripted item repeats once the script is exhausted. Exceptions in
    the script are raised instead of returned.
    """

    def __init__(self, *script: httpx.Response | Exception):
        self._script = list(script)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(item, Exception):
            raise item
        # fresh copy so a repeated script item is never reused across requests
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    @property
    def calls(self) -> int:
        return len(self.requests)


class RecordingSleep:
    """No-op async sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def overloaded() -> httpx.Response:
    return httpx.Response(503, json={"error": {"code": 503, "message": "The model is overloaded."}})


def ok(body=None) -> httpx.Response:
    return httpx.Response(200, json=SUCCESS_BODY if body is None else body)


def build_proxy(config: GeminiConfig, fake: FakeGemini, sleep=None) -> InferenceProxy:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    client = GeminiVisionClient(config, http_client=http_client)
    return InferenceProxy(config, client=client, sleep=sleep or RecordingSleep())


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def gemini_config() -> GeminiConfig:
    return GeminiConfig(api_key="test-key")


@pytest.fixture
def keyless_config() -> GeminiConfig:
    return GeminiConfig(api_key=None)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
