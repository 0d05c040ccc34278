"""Tests for the inference proxy retry/backoff engine."""

import asyncio
import json
import logging

import httpx
import pytest

from conftest import (
    IMAGE_DATA_URI,
    PNG_B64,
    SUCCESS_BODY,
    FakeGemini,
    build_proxy,
    ok,
    overloaded,
)
from scenehunter.core.analysis_types import TerminalState
from scenehunter.core.engine import InferenceProxy
from scenehunter.llm.client import GeminiVisionClient
from scenehunter.llm.provider_config import GeminiConfig


class TestRequestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("image_data", "prompt"),
        [
            ("", "Describe this"),
            (IMAGE_DATA_URI, ""),
            (None, "Describe this"),
            (IMAGE_DATA_URI, None),
            ("   ", "Describe this"),
            (IMAGE_DATA_URI, "  \n"),
        ],
    )
    async def test_missing_fields_rejected_without_network(self, gemini_config, image_data, prompt):
        fake = FakeGemini(ok())
        proxy = build_proxy(gemini_config, fake)

        result = await proxy.analyze(image_data, prompt)

        assert result.status_code == 400
        assert result.state is TerminalState.INVALID_REQUEST
        assert result.to_body() == {"error": "Missing image or prompt"}
        assert fake.calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "image_data",
        [
            "not a data uri",
            "data:image/png,abc",
            "data:image/png;base64",
            "data:;base64,aGVsbG8=",
            "data:image/png;base64,***not-base64***",
        ],
    )
    async def test_malformed_data_uri_is_invalid_request(self, gemini_config, image_data):
        fake = FakeGemini(ok())
        proxy = build_proxy(gemini_config, fake)

        result = await proxy.analyze(image_data, "Describe this")

        assert result.status_code == 400
        assert result.state is TerminalState.INVALID_REQUEST
        assert fake.calls == 0

    @pytest.mark.asyncio
    async def test_missing_credential_is_500_without_network(self, keyless_config):
        fake = FakeGemini(ok())
        proxy = build_proxy(keyless_config, fake)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.status_code == 500
        assert result.state is TerminalState.CONFIGURATION_ERROR
        assert result.error == "API key is not configured on the server"
        assert fake.calls == 0

    @pytest.mark.asyncio
    async def test_validation_runs_before_credential_check(self, keyless_config):
        fake = FakeGemini(ok())
        proxy = build_proxy(keyless_config, fake)

        result = await proxy.analyze("", "Describe this")

        assert result.status_code == 400


class TestRetryLoop:
    @pytest.mark.asyncio
    async def test_success_on_first_call(self, gemini_config, recording_sleep):
        fake = FakeGemini(ok())
        proxy = build_proxy(gemini_config, fake, recording_sleep)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.is_success
        assert result.status_code == 200
        assert result.to_body() == SUCCESS_BODY
        assert result.attempts == 1
        assert fake.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_overload_twice_then_success(self, gemini_config, recording_sleep):
        fake = FakeGemini(overloaded(), overloaded(), ok())
        proxy = build_proxy(gemini_config, fake, recording_sleep)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.is_success
        assert result.payload == SUCCESS_BODY
        assert fake.calls == 3
        assert recording_sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_persistent_overload_returns_503_after_max_attempts(self, gemini_config, recording_sleep):
        fake = FakeGemini(overloaded())
        proxy = build_proxy(gemini_config, fake, recording_sleep)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.status_code == 503
        assert result.state is TerminalState.TERMINAL_OVERLOAD
        assert result.to_body() == {"error": "The model is overloaded. Please try again later."}
        assert fake.calls == 3
        assert result.attempts == 3
        # no wait after the final attempt
        assert recording_sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_upstream_error_passes_through_without_retry(self, gemini_config, recording_sleep):
        fake = FakeGemini(httpx.Response(404, json={"error": {"message": "not found"}}))
        proxy = build_proxy(gemini_config, fake, recording_sleep)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.status_code == 404
        assert result.state is TerminalState.TERMINAL_UPSTREAM_ERROR
        assert result.to_body() == {"error": "not found"}
        assert fake.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_upstream_error_after_overload_stops_loop(self, gemini_config, recording_sleep):
        fake = FakeGemini(
            overloaded(),
            httpx.Response(400, json={"error": {"message": "API key not valid."}}),
            ok(),
        )
        proxy = build_proxy(gemini_config, fake, recording_sleep)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.status_code == 400
        assert result.error == "API key not valid."
        assert fake.calls == 2

    @pytest.mark.asyncio
    async def test_upstream_error_without_message_uses_generic_text(self, gemini_config):
        fake = FakeGemini(httpx.Response(500, text="<html>oops</html>"))
        proxy = build_proxy(gemini_config, fake)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.status_code == 500
        assert result.error == "An unknown error occurred with the Gemini API."

    @pytest.mark.asyncio
    async def test_transport_exception_is_internal_error_not_retried(self, gemini_config, recording_sleep):
        fake = FakeGemini(httpx.ConnectError("connection refused"))
        proxy = build_proxy(gemini_config, fake, recording_sleep)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.status_code == 500
        assert result.state is TerminalState.TERMINAL_INTERNAL_ERROR
        assert result.error == "An unexpected internal server error occurred."
        assert "refused" not in result.error
        assert fake.calls == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_unparsable_success_body_is_internal_error(self, gemini_config):
        fake = FakeGemini(httpx.Response(200, text="not json"))
        proxy = build_proxy(gemini_config, fake)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.status_code == 500
        assert fake.calls == 1

    @pytest.mark.asyncio
    async def test_custom_attempt_budget(self, recording_sleep):
        config = GeminiConfig(api_key="k", max_attempts=5, backoff_base_seconds=3.0)
        fake = FakeGemini(overloaded())
        proxy = build_proxy(config, fake, recording_sleep)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.status_code == 503
        assert fake.calls == 5
        assert recording_sleep.delays == [3.0, 9.0, 27.0, 81.0]


class TestOutboundRequest:
    @pytest.mark.asyncio
    async def test_request_shape(self, gemini_config):
        fake = FakeGemini(ok())
        proxy = build_proxy(gemini_config, fake)

        await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        request = fake.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1beta/models/gemini-1.5-flash:generateContent"
        assert "key" not in request.url.params
        assert request.headers["x-goog-api-key"] == "test-key"
        assert json.loads(request.content) == {
            "contents": [
                {
                    "parts": [
                        {"text": "Describe this"},
                        {"inlineData": {"mimeType": "image/png", "data": PNG_B64}},
                    ]
                }
            ]
        }

    @pytest.mark.asyncio
    async def test_retries_resend_identical_body(self, gemini_config):
        fake = FakeGemini(overloaded(), ok())
        proxy = build_proxy(gemini_config, fake)

        await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert fake.requests[0].content == fake.requests[1].content


class TestIndependence:
    @pytest.mark.asyncio
    async def test_repeated_calls_do_not_share_state(self, gemini_config, recording_sleep):
        fake = FakeGemini(overloaded(), overloaded(), overloaded(), ok())
        proxy = build_proxy(gemini_config, fake, recording_sleep)

        first = await proxy.analyze(IMAGE_DATA_URI, "Describe this")
        second = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert first.status_code == 503
        assert first.attempts == 3
        assert second.is_success
        assert second.attempts == 1
        assert fake.calls == 4

    @pytest.mark.asyncio
    async def test_backoff_does_not_block_concurrent_requests(self, gemini_config):
        release = asyncio.Event()

        async def gated_sleep(delay):
            await release.wait()

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            prompt = body["contents"][0]["parts"][0]["text"]
            return overloaded() if prompt == "slow" else ok()

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        proxy = InferenceProxy(
            gemini_config,
            client=GeminiVisionClient(gemini_config, http_client=http_client),
            sleep=gated_sleep,
        )

        slow = asyncio.create_task(proxy.analyze(IMAGE_DATA_URI, "slow"))
        fast = await proxy.analyze(IMAGE_DATA_URI, "fast")

        assert fast.is_success
        assert not slow.done()

        release.set()
        slow_result = await slow
        assert slow_result.status_code == 503


class TestDeadlineAndCancellation:
    @pytest.mark.asyncio
    async def test_deadline_cancels_pending_backoff(self):
        config = GeminiConfig(api_key="k", request_deadline_seconds=0.05)
        fake = FakeGemini(overloaded())
        proxy = build_proxy(config, fake, sleep=asyncio.sleep)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.status_code == 504
        assert result.state is TerminalState.DEADLINE_EXCEEDED
        assert result.attempts == 1
        assert fake.calls == 1

    @pytest.mark.asyncio
    async def test_caller_cancellation_propagates(self, gemini_config):
        started = asyncio.Event()

        async def blocking_sleep(delay):
            started.set()
            await asyncio.Event().wait()

        fake = FakeGemini(overloaded())
        proxy = build_proxy(gemini_config, fake, sleep=blocking_sleep)

        task = asyncio.create_task(proxy.analyze(IMAGE_DATA_URI, "Describe this"))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert fake.calls == 1

    @pytest.mark.asyncio
    async def test_deadline_disabled(self, recording_sleep):
        config = GeminiConfig(api_key="k", request_deadline_seconds=None)
        fake = FakeGemini(overloaded(), ok())
        proxy = build_proxy(config, fake, recording_sleep)

        result = await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert result.is_success
        assert recording_sleep.delays == [2.0]


class TestCredentialHandling:
    @pytest.mark.asyncio
    async def test_api_key_never_logged(self, caplog, recording_sleep):
        caplog.set_level(logging.DEBUG)
        config = GeminiConfig(api_key="SUPER-SECRET-KEY")
        fake = FakeGemini(overloaded(), httpx.Response(400, json={"error": {"message": "bad"}}))
        proxy = build_proxy(config, fake, recording_sleep)

        await proxy.analyze(IMAGE_DATA_URI, "Describe this")

        assert any(record.name == "httpx" for record in caplog.records)
        assert all("SUPER-SECRET-KEY" not in record.getMessage() for record in caplog.records)
