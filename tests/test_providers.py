"""Tests for the provider layer — backends, retry loop and error classification."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from bizplan_generator.cancellation import CancellationToken
from bizplan_generator.errors import PipelineCancelledError, ProviderError, ProviderErrorKind
from bizplan_generator.models import (
    GenerationRequest,
    ProviderCandidate,
    ProviderId,
    ProviderSettings,
    RetryConfig,
)
from bizplan_generator.providers import BACKENDS, ProviderClient, classify_response, compute_backoff

SETTINGS = ProviderSettings(
    anthropic_api_key="sk-ant-test",
    gemini_api_key="gm-test",
    openai_api_key="sk-oa-test",
    ollama_base_url="http://localhost:11434",
)
REQUEST = GenerationRequest(task_type="full-plan-market", payload="시장 분석을 작성하세요", max_tokens=1000)

CLAUDE = ProviderCandidate(provider_id=ProviderId.CLAUDE, model_id="claude-sonnet-4-6")
OPENAI = ProviderCandidate(provider_id=ProviderId.OPENAI, model_id="gpt-4.1-mini")
GEMINI = ProviderCandidate(provider_id=ProviderId.GEMINI, model_id="gemini-2.5-flash")
OLLAMA = ProviderCandidate(provider_id=ProviderId.OLLAMA, model_id="gemma2:9b")


def _run(coro):
    return asyncio.run(coro)


def _claude_ok(text="분석 결과", stop_reason="end_turn"):
    return httpx.Response(200, json={
        "content": [{"type": "text", "text": text}],
        "stop_reason": stop_reason,
        "usage": {"input_tokens": 10, "output_tokens": 5},
    })


class RecordingSleep:
    """Stands in for the backoff delay and records what was requested."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds, token=None):
        self.delays.append(seconds)


class ScriptedTransport:
    """Returns the scripted responses in order, recording every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        # Fresh response per request; the last one repeats
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    @property
    def transport(self):
        return httpx.MockTransport(self)


def _client(script: ScriptedTransport, sleep=None, retry=None, settings=SETTINGS):
    return ProviderClient(settings, retry or RetryConfig(), transport=script.transport, sleep=sleep or RecordingSleep())


class TestRetryLoop:
    def test_overloaded_twice_then_success(self):
        script = ScriptedTransport(
            httpx.Response(529, json={"error": {"message": "Overloaded"}}),
            httpx.Response(529, json={"error": {"message": "Overloaded"}}),
            _claude_ok(),
        )
        sleep = RecordingSleep()
        result = _run(_client(script, sleep).call(CLAUDE, REQUEST))
        assert result.text == "분석 결과"
        assert result.attempts == 3
        assert sleep.delays == [15.0, 30.0]
        assert len(script.requests) == 3

    def test_rate_limited_exhausts_budget(self):
        script = ScriptedTransport(httpx.Response(429, json={"error": {"message": "slow down"}}))
        sleep = RecordingSleep()
        with pytest.raises(ProviderError) as exc_info:
            _run(_client(script, sleep).call(OPENAI, REQUEST))
        assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED
        assert exc_info.value.attempts == 5
        assert len(script.requests) == 5
        assert len(sleep.delays) == 4

    def test_zero_retries_raises_after_single_attempt(self):
        script = ScriptedTransport(httpx.Response(529, json={"error": {"message": "Overloaded"}}))
        sleep = RecordingSleep()
        client = _client(script, sleep, retry=RetryConfig(max_retries=0))
        with pytest.raises(ProviderError) as exc_info:
            _run(client.call(CLAUDE, REQUEST))
        assert exc_info.value.kind == ProviderErrorKind.OVERLOADED
        assert exc_info.value.attempts == 1
        assert len(script.requests) == 1
        assert sleep.delays == []

    def test_unauthorized_is_not_retried(self):
        script = ScriptedTransport(httpx.Response(401, json={"error": {"message": "invalid x-api-key"}}))
        sleep = RecordingSleep()
        with pytest.raises(ProviderError) as exc_info:
            _run(_client(script, sleep).call(CLAUDE, REQUEST))
        assert exc_info.value.kind == ProviderErrorKind.MISSING_CREDENTIAL
        assert exc_info.value.status_code == 401
        assert len(script.requests) == 1
        assert sleep.delays == []

    def test_other_http_error_is_not_retried(self):
        script = ScriptedTransport(httpx.Response(400, json={"error": {"message": "bad model"}}))
        with pytest.raises(ProviderError) as exc_info:
            _run(_client(script).call(OPENAI, REQUEST))
        assert exc_info.value.kind == ProviderErrorKind.HTTP_ERROR
        assert "bad model" in str(exc_info.value)
        assert len(script.requests) == 1

    def test_network_failure_is_retried(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        script = ScriptedTransport(httpx.ConnectError("connection refused", request=request), _claude_ok())
        sleep = RecordingSleep()
        result = _run(_client(script, sleep).call(CLAUDE, REQUEST))
        assert result.attempts == 2
        assert sleep.delays == [15.0]

    def test_transport_timeout_is_not_retried(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        script = ScriptedTransport(httpx.ReadTimeout("read timed out", request=request))
        with pytest.raises(ProviderError) as exc_info:
            _run(_client(script).call(OPENAI, REQUEST))
        assert exc_info.value.kind == ProviderErrorKind.TIMEOUT
        assert len(script.requests) == 1

    def test_hung_request_times_out(self):
        async def handler(request):
            await asyncio.sleep(5)
            return _claude_ok()

        client = ProviderClient(SETTINGS, transport=httpx.MockTransport(handler), sleep=RecordingSleep())
        with pytest.raises(ProviderError) as exc_info:
            _run(client.call(CLAUDE, REQUEST, timeout_s=0.05))
        assert exc_info.value.kind == ProviderErrorKind.TIMEOUT

    def test_missing_credential_makes_no_request(self):
        script = ScriptedTransport(_claude_ok())
        client = _client(script, settings=ProviderSettings(openai_api_key="sk"))
        with pytest.raises(ProviderError) as exc_info:
            _run(client.call(CLAUDE, REQUEST))
        assert exc_info.value.kind == ProviderErrorKind.MISSING_CREDENTIAL
        assert exc_info.value.attempts == 0
        assert "ANTHROPIC_API_KEY" in str(exc_info.value)
        assert script.requests == []

    def test_retry_after_header_wins(self):
        script = ScriptedTransport(
            httpx.Response(429, headers={"retry-after": "7"}, json={"error": {"message": "rate"}}),
            _claude_ok(),
        )
        sleep = RecordingSleep()
        _run(_client(script, sleep).call(CLAUDE, REQUEST))
        assert sleep.delays == [7.0]

    def test_gemini_fixed_backoff(self):
        script = ScriptedTransport(
            httpx.Response(503, json={"error": {"message": "unavailable"}}),
            httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}, "finishReason": "STOP"}]}),
        )
        sleep = RecordingSleep()
        result = _run(_client(script, sleep).call(GEMINI, REQUEST))
        assert result.text == "ok"
        assert sleep.delays == [18.0]

    def test_gemini_retry_delay_from_body(self):
        body = {"error": {"code": 429, "details": [
            {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "17s"},
        ]}}
        script = ScriptedTransport(
            httpx.Response(429, json=body),
            httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]}),
        )
        sleep = RecordingSleep()
        _run(_client(script, sleep).call(GEMINI, REQUEST))
        assert sleep.delays == [17.0]

    def test_cancel_during_backoff(self):
        script = ScriptedTransport(httpx.Response(429, json={"error": {"message": "rate"}}))
        client = ProviderClient(SETTINGS, RetryConfig(backoff_seconds=30), transport=script.transport)

        async def scenario():
            token = CancellationToken()
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            await client.call(OPENAI, REQUEST, cancel_token=token)

        with pytest.raises(PipelineCancelledError):
            _run(scenario())
        assert len(script.requests) == 1

    def test_cancel_during_request(self):
        async def handler(request):
            await asyncio.sleep(30)
            return _claude_ok()

        client = ProviderClient(SETTINGS, transport=httpx.MockTransport(handler), sleep=RecordingSleep())

        async def scenario():
            token = CancellationToken()
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            await asyncio.wait_for(client.call(CLAUDE, REQUEST, cancel_token=token), 5)

        with pytest.raises(PipelineCancelledError):
            _run(scenario())


class TestBackends:
    def test_claude_request_shape(self):
        script = ScriptedTransport(_claude_ok())
        _run(_client(script).call(CLAUDE, REQUEST))
        sent = script.requests[0]
        assert sent.headers["x-api-key"] == "sk-ant-test"
        assert sent.headers["anthropic-version"] == "2023-06-01"
        body = json.loads(sent.content)
        assert body["max_tokens"] == 1000
        assert body["messages"][0]["content"] == REQUEST.payload

    def test_openai_json_mode(self):
        script = ScriptedTransport(httpx.Response(200, json={
            "choices": [{"message": {"content": "{}"}, "finish_reason": "stop"}],
        }))
        request = GenerationRequest(task_type="extract-idea", payload="p", json_mode=True)
        _run(_client(script).call(OPENAI, request))
        sent = script.requests[0]
        assert sent.headers["authorization"] == "Bearer sk-oa-test"
        body = json.loads(sent.content)
        assert body["response_format"] == {"type": "json_object"}
        assert body["max_completion_tokens"] == 8192

    def test_gemini_key_in_query(self):
        script = ScriptedTransport(httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "x"}]}}]}))
        _run(_client(script).call(GEMINI, REQUEST))
        sent = script.requests[0]
        assert sent.url.params["key"] == "gm-test"
        assert sent.url.path.endswith("/models/gemini-2.5-flash:generateContent")
        assert json.loads(sent.content)["generationConfig"]["maxOutputTokens"] == 1000

    def test_ollama_url_and_options(self):
        script = ScriptedTransport(httpx.Response(200, json={"response": "응답", "done_reason": "stop"}))
        result = _run(_client(script).call(OLLAMA, REQUEST))
        sent = script.requests[0]
        assert str(sent.url) == "http://localhost:11434/api/generate"
        body = json.loads(sent.content)
        assert body["stream"] is False
        assert body["options"]["num_predict"] == 1000
        assert result.usage.cost_usd == 0.0

    @pytest.mark.parametrize("candidate, body", [
        (CLAUDE, {"content": [{"type": "text", "text": "t"}], "stop_reason": "max_tokens"}),
        (OPENAI, {"choices": [{"message": {"content": "t"}, "finish_reason": "length"}]}),
        (GEMINI, {"candidates": [{"content": {"parts": [{"text": "t"}]}, "finishReason": "MAX_TOKENS"}]}),
        (OLLAMA, {"response": "t", "done_reason": "length"}),
    ])
    def test_truncation_detected(self, candidate, body):
        script = ScriptedTransport(httpx.Response(200, json=body))
        result = _run(_client(script).call(candidate, REQUEST))
        assert result.truncated is True
        assert result.text == "t"

    def test_usage_and_cost(self):
        script = ScriptedTransport(_claude_ok())
        result = _run(_client(script).call(CLAUDE, REQUEST))
        assert result.usage.input_tokens == 10
        assert result.usage.output_tokens == 5
        assert result.usage.cost_usd == pytest.approx((10 * 3.0 + 5 * 15.0) / 1_000_000)

    def test_malformed_body(self):
        script = ScriptedTransport(httpx.Response(200, json={"unexpected": True}))
        with pytest.raises(ProviderError) as exc_info:
            _run(_client(script).call(OPENAI, REQUEST))
        assert exc_info.value.kind == ProviderErrorKind.HTTP_ERROR

    def test_non_json_body(self):
        script = ScriptedTransport(httpx.Response(200, text="<html>gateway</html>"))
        with pytest.raises(ProviderError) as exc_info:
            _run(_client(script).call(CLAUDE, REQUEST))
        assert exc_info.value.kind == ProviderErrorKind.HTTP_ERROR


class TestClassifyResponse:
    @pytest.mark.parametrize("status, kind", [
        (401, ProviderErrorKind.MISSING_CREDENTIAL),
        (403, ProviderErrorKind.MISSING_CREDENTIAL),
        (429, ProviderErrorKind.RATE_LIMITED),
        (503, ProviderErrorKind.OVERLOADED),
        (529, ProviderErrorKind.OVERLOADED),
        (500, ProviderErrorKind.HTTP_ERROR),
    ])
    def test_status_mapping(self, status, kind):
        error = classify_response(BACKENDS[ProviderId.CLAUDE], httpx.Response(status, text="err"))
        assert error.kind == kind

    def test_success_is_none(self):
        assert classify_response(BACKENDS[ProviderId.OPENAI], httpx.Response(200, json={})) is None

    def test_retry_after_only_for_retryable(self):
        response = httpx.Response(500, headers={"retry-after": "9"}, text="err")
        assert classify_response(BACKENDS[ProviderId.CLAUDE], response).retry_after is None


class TestComputeBackoff:
    def test_linear(self):
        retry = RetryConfig(backoff_seconds=15)
        assert [compute_backoff("linear", n, None, retry) for n in (1, 2, 3)] == [15, 30, 45]

    def test_fixed(self):
        assert compute_backoff("fixed", 3, None, RetryConfig()) == 18

    def test_retry_after_overrides(self):
        assert compute_backoff("fixed", 1, 2.5, RetryConfig()) == 2.5
