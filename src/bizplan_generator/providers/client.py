"""Provider client: one logical generation with retries and backoff.

``ProviderClient.call`` makes up to ``max_retries + 1`` HTTP attempts against
a single (provider, model) candidate.  Rate limits, overloads and transport
errors are retried; credential problems, other HTTP errors and timeouts are
raised at once so the stage runner can fail over to the next candidate.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from ..cancellation import CancellationToken, cancellable_sleep
from ..errors import ProviderError, ProviderErrorKind
from ..models import GenerationRequest, GenerationResult, ProviderCandidate, ProviderId, ProviderSettings, RetryConfig
from .backends import BACKENDS, FIXED_BACKOFF, Backend, credential_for

logger = logging.getLogger(__name__)

SleepFn = Callable[[float, "CancellationToken | None"], Awaitable[None]]

_OVERLOADED_STATUSES = frozenset({503, 529})
_CREDENTIAL_STATUSES = frozenset({401, 403})


def compute_backoff(style: str, attempt: int, retry_after: float | None, retry: RetryConfig) -> float:
    """Delay before the next attempt; a provider-supplied retry-after always wins."""
    if retry_after is not None:
        return retry_after
    if style == FIXED_BACKOFF:
        return retry.fixed_backoff_seconds + retry.fixed_backoff_buffer_seconds
    return retry.backoff_seconds * attempt


def _error_detail(response: httpx.Response) -> str:
    """Best-effort short error message from a non-2xx response body."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:300]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)[:300]
        if error:
            return str(error)[:300]
    return str(data)[:300]


def classify_response(backend: Backend, response: httpx.Response) -> ProviderError | None:
    """Map a non-2xx response to a ``ProviderError``; ``None`` for success."""
    status = response.status_code
    if 200 <= status < 300:
        return None

    provider = backend.provider_id.value
    detail = _error_detail(response)
    if status in _CREDENTIAL_STATUSES:
        kind = ProviderErrorKind.MISSING_CREDENTIAL
    elif status == 429:
        kind = ProviderErrorKind.RATE_LIMITED
    elif status in _OVERLOADED_STATUSES:
        kind = ProviderErrorKind.OVERLOADED
    else:
        kind = ProviderErrorKind.HTTP_ERROR

    retry_after = backend.retry_after(response) if kind in (
        ProviderErrorKind.RATE_LIMITED, ProviderErrorKind.OVERLOADED,
    ) else None
    return ProviderError(
        kind,
        f"HTTP {status}: {detail}",
        provider=provider,
        status_code=status,
        retry_after=retry_after,
    )


class ProviderClient:
    """Calls LLM backends over HTTP with a fixed retry budget.

    *transport* and *sleep* are injection points for tests: an
    ``httpx.MockTransport`` replaces the network and a recording coroutine
    replaces the backoff delay.
    """

    def __init__(
        self,
        providers: ProviderSettings,
        retry: RetryConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = cancellable_sleep,
        backends: dict[ProviderId, Backend] | None = None,
    ) -> None:
        self.providers = providers
        self.retry = retry or RetryConfig()
        self._transport = transport
        self._sleep = sleep
        self._backends = backends or BACKENDS

    async def call(
        self,
        candidate: ProviderCandidate,
        request: GenerationRequest,
        timeout_s: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationResult:
        backend = self._backends[candidate.provider_id]
        credential = credential_for(backend, self.providers)
        if not credential:
            raise ProviderError(
                ProviderErrorKind.MISSING_CREDENTIAL,
                f"{backend.credential_env} is not set",
                provider=candidate.provider_id.value,
                attempts=0,
            )

        timeout = timeout_s or self.retry.request_timeout_seconds
        max_attempts = self.retry.max_retries + 1
        attempt = 0

        while True:
            attempt += 1
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                result = await self._attempt(backend, candidate, request, credential, timeout, cancel_token)
            except ProviderError as exc:
                exc.attempts = attempt
                if not exc.retryable:
                    raise
                if attempt >= max_attempts:
                    logger.warning("%s gave up after %d attempts: %s", candidate, attempt, exc)
                    raise
                delay = compute_backoff(backend.backoff_style, attempt, exc.retry_after, self.retry)
                logger.warning(
                    "%s attempt %d/%d failed (%s); retrying in %.1fs",
                    candidate, attempt, max_attempts, exc.kind.value, delay,
                )
                await self._sleep(delay, cancel_token)
                continue

            if attempt > 1:
                logger.info("%s succeeded on attempt %d", candidate, attempt)
            return result.model_copy(update={"attempts": attempt})

    async def _attempt(
        self,
        backend: Backend,
        candidate: ProviderCandidate,
        request: GenerationRequest,
        credential: str,
        timeout: float,
        cancel_token: CancellationToken | None,
    ) -> GenerationResult:
        call = backend.build(candidate.model_id, request, credential)
        logger.debug(
            "POST %s (model=%s, task=%s, max_tokens=%d)",
            call.url, candidate.model_id, request.task_type, request.max_tokens,
        )
        provider = candidate.provider_id.value

        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            pending = asyncio.wait_for(
                client.post(call.url, headers=call.headers, params=call.params, json=call.body),
                timeout,
            )
            try:
                if cancel_token is not None:
                    response = await cancel_token.guard(pending)
                else:
                    response = await pending
            except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
                raise ProviderError(
                    ProviderErrorKind.TIMEOUT,
                    f"No response within {timeout:.0f}s",
                    provider=provider,
                ) from exc
            except httpx.TransportError as exc:
                raise ProviderError(
                    ProviderErrorKind.NETWORK_FAILURE,
                    f"{type(exc).__name__}: {exc}",
                    provider=provider,
                ) from exc

        error = classify_response(backend, response)
        if error is not None:
            raise error

        try:
            data: Any = response.json()
        except ValueError as exc:
            raise ProviderError(
                ProviderErrorKind.HTTP_ERROR,
                "Response body is not JSON",
                provider=provider,
                status_code=response.status_code,
            ) from exc
        return backend.parse(candidate.model_id, data if isinstance(data, dict) else {})
