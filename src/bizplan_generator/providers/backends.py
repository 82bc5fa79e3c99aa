"""Wire formats of the supported LLM backends.

Each backend knows how to turn a :class:`GenerationRequest` into an HTTP
request and how to read text, truncation and token usage back out of the
JSON response.  Status handling and retries live in ``client.py``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from ..errors import ProviderError, ProviderErrorKind
from ..models import GenerationRequest, GenerationResult, ProviderId, ProviderSettings
from ..pricing import build_usage

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

LINEAR_BACKOFF = "linear"
FIXED_BACKOFF = "fixed"

_GEMINI_RETRY_DELAY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)s\s*$")


@dataclass(frozen=True)
class HttpCall:
    """A fully built HTTP request for one attempt."""
    url: str
    headers: dict[str, str]
    body: dict[str, Any]
    params: dict[str, str] | None = None


class Backend(Protocol):
    provider_id: ProviderId
    credential_field: str
    credential_env: str
    backoff_style: str

    def build(self, model: str, request: GenerationRequest, credential: str) -> HttpCall: ...
    def parse(self, model: str, data: dict[str, Any]) -> GenerationResult: ...
    def retry_after(self, response: httpx.Response) -> float | None: ...


def parse_retry_after(response: httpx.Response) -> float | None:
    """Seconds from a numeric ``Retry-After`` header, if any."""
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)


def _malformed(provider_id: ProviderId, exc: Exception) -> ProviderError:
    return ProviderError(
        ProviderErrorKind.HTTP_ERROR,
        f"Malformed response body ({type(exc).__name__}: {exc})",
        provider=provider_id.value,
    )


# ---------------------------------------------------------------------------
# Claude (Anthropic Messages API)
# ---------------------------------------------------------------------------

class ClaudeBackend:
    provider_id = ProviderId.CLAUDE
    credential_field = "anthropic_api_key"
    credential_env = "ANTHROPIC_API_KEY"
    backoff_style = LINEAR_BACKOFF

    def build(self, model: str, request: GenerationRequest, credential: str) -> HttpCall:
        return HttpCall(
            url=ANTHROPIC_URL,
            headers={
                "content-type": "application/json",
                "x-api-key": credential,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            body={
                "model": model,
                "max_tokens": request.max_tokens,
                "messages": [{"role": "user", "content": request.payload}],
            },
        )

    def parse(self, model: str, data: dict[str, Any]) -> GenerationResult:
        try:
            blocks = data["content"]
            text = "".join(b.get("text", "") for b in blocks if b.get("type", "text") == "text")
        except (KeyError, TypeError, AttributeError) as exc:
            raise _malformed(self.provider_id, exc) from exc
        usage = data.get("usage") or {}
        return GenerationResult(
            text=text,
            truncated=data.get("stop_reason") == "max_tokens",
            usage=build_usage(self.provider_id, model, usage.get("input_tokens"), usage.get("output_tokens")),
        )

    def retry_after(self, response: httpx.Response) -> float | None:
        return parse_retry_after(response)


# ---------------------------------------------------------------------------
# OpenAI (Chat Completions API)
# ---------------------------------------------------------------------------

class OpenAIBackend:
    provider_id = ProviderId.OPENAI
    credential_field = "openai_api_key"
    credential_env = "OPENAI_API_KEY"
    backoff_style = LINEAR_BACKOFF

    def build(self, model: str, request: GenerationRequest, credential: str) -> HttpCall:
        body: dict[str, Any] = {
            "model": model,
            "max_completion_tokens": request.max_tokens,
            "messages": [{"role": "user", "content": request.payload}],
        }
        if request.json_mode:
            body["response_format"] = {"type": "json_object"}
        return HttpCall(
            url=OPENAI_URL,
            headers={
                "content-type": "application/json",
                "authorization": f"Bearer {credential}",
            },
            body=body,
        )

    def parse(self, model: str, data: dict[str, Any]) -> GenerationResult:
        try:
            choice = data["choices"][0]
            text = choice["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise _malformed(self.provider_id, exc) from exc
        usage = data.get("usage") or {}
        return GenerationResult(
            text=text,
            truncated=choice.get("finish_reason") == "length",
            usage=build_usage(self.provider_id, model, usage.get("prompt_tokens"), usage.get("completion_tokens")),
        )

    def retry_after(self, response: httpx.Response) -> float | None:
        return parse_retry_after(response)


# ---------------------------------------------------------------------------
# Gemini (generateContent API)
# ---------------------------------------------------------------------------

class GeminiBackend:
    provider_id = ProviderId.GEMINI
    credential_field = "gemini_api_key"
    credential_env = "GEMINI_API_KEY"
    backoff_style = FIXED_BACKOFF

    def build(self, model: str, request: GenerationRequest, credential: str) -> HttpCall:
        generation_config: dict[str, Any] = {"maxOutputTokens": request.max_tokens}
        if request.json_mode:
            generation_config["responseMimeType"] = "application/json"
        return HttpCall(
            url=GEMINI_URL.format(model=model),
            headers={"content-type": "application/json"},
            body={
                "contents": [{"parts": [{"text": request.payload}]}],
                "generationConfig": generation_config,
            },
            params={"key": credential},
        )

    def parse(self, model: str, data: dict[str, Any]) -> GenerationResult:
        try:
            candidate = data["candidates"][0]
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(p.get("text", "") for p in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise _malformed(self.provider_id, exc) from exc
        usage = data.get("usageMetadata") or {}
        return GenerationResult(
            text=text,
            truncated=candidate.get("finishReason") == "MAX_TOKENS",
            usage=build_usage(
                self.provider_id, model, usage.get("promptTokenCount"), usage.get("candidatesTokenCount"),
            ),
        )

    def retry_after(self, response: httpx.Response) -> float | None:
        """Header first, then the ``RetryInfo.retryDelay`` detail Gemini puts in 429 bodies."""
        header = parse_retry_after(response)
        if header is not None:
            return header
        try:
            details = response.json().get("error", {}).get("details", [])
        except (ValueError, AttributeError):
            return None
        for detail in details if isinstance(details, list) else []:
            delay = detail.get("retryDelay") if isinstance(detail, dict) else None
            if isinstance(delay, str):
                m = _GEMINI_RETRY_DELAY_RE.match(delay)
                if m:
                    return float(m.group(1))
        return None


# ---------------------------------------------------------------------------
# Ollama (local /api/generate)
# ---------------------------------------------------------------------------

class OllamaBackend:
    provider_id = ProviderId.OLLAMA
    credential_field = "ollama_base_url"
    credential_env = "OLLAMA_BASE_URL"
    backoff_style = LINEAR_BACKOFF

    def build(self, model: str, request: GenerationRequest, credential: str) -> HttpCall:
        body: dict[str, Any] = {
            "model": model,
            "prompt": request.payload,
            "stream": False,
            "options": {"num_predict": request.max_tokens},
        }
        if request.json_mode:
            body["format"] = "json"
        return HttpCall(
            url=f"{credential.rstrip('/')}/api/generate",
            headers={"content-type": "application/json"},
            body=body,
        )

    def parse(self, model: str, data: dict[str, Any]) -> GenerationResult:
        try:
            text = data["response"] or ""
        except (KeyError, TypeError) as exc:
            raise _malformed(self.provider_id, exc) from exc
        return GenerationResult(
            text=text,
            truncated=data.get("done_reason") == "length",
            usage=build_usage(self.provider_id, model, data.get("prompt_eval_count"), data.get("eval_count")),
        )

    def retry_after(self, response: httpx.Response) -> float | None:
        return parse_retry_after(response)


BACKENDS: dict[ProviderId, Backend] = {
    ProviderId.CLAUDE: ClaudeBackend(),
    ProviderId.OPENAI: OpenAIBackend(),
    ProviderId.GEMINI: GeminiBackend(),
    ProviderId.OLLAMA: OllamaBackend(),
}


def credential_for(backend: Backend, settings: ProviderSettings) -> str:
    return getattr(settings, backend.credential_field, "").strip()
