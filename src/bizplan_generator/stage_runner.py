"""Run one stage across its provider fallback chain."""

from __future__ import annotations

import logging
from typing import Protocol

from .cancellation import CancellationToken
from .errors import ProviderError
from .models import GenerationRequest, GenerationResult, ProviderCandidate, StageId, StageOutcome

logger = logging.getLogger(__name__)

TRUNCATION_WARNING = (
    "\n\n> ⚠️ 출력 길이 제한(max tokens)에 도달하여 이 섹션의 내용이 중간에 잘렸을 수 있습니다."
)


class GenerationClient(Protocol):
    async def call(
        self,
        candidate: ProviderCandidate,
        request: GenerationRequest,
        timeout_s: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationResult: ...


class StageRunner:
    """Tries each candidate in order until one returns text.

    Provider errors are logged and turned into a failed ``StageOutcome``;
    ``PipelineCancelledError`` is never caught here.
    """

    def __init__(self, client: GenerationClient, *, timeout_s: float | None = None) -> None:
        self.client = client
        self.timeout_s = timeout_s

    async def run(
        self,
        stage_id: StageId,
        candidates: list[ProviderCandidate],
        request: GenerationRequest,
        cancel_token: CancellationToken | None = None,
    ) -> StageOutcome:
        last_error = "no provider candidates"
        attempts = 0

        for index, candidate in enumerate(candidates, 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            has_next = index < len(candidates)
            try:
                result = await self.client.call(candidate, request, self.timeout_s, cancel_token)
            except ProviderError as exc:
                attempts += exc.attempts
                last_error = str(exc)
                logger.warning(
                    "[%s] %s failed: %s%s",
                    stage_id.value, candidate, exc, "; falling back" if has_next else "",
                )
                continue

            attempts += result.attempts
            if not result.text.strip():
                last_error = f"[{candidate.provider_id.value}] empty response"
                logger.warning(
                    "[%s] %s returned an empty response%s",
                    stage_id.value, candidate, "; falling back" if has_next else "",
                )
                continue

            content = result.text.rstrip()
            if result.truncated:
                logger.warning("[%s] %s output hit the token limit", stage_id.value, candidate)
                content += TRUNCATION_WARNING
            logger.info("[%s] completed with %s (%d attempt(s))", stage_id.value, candidate, attempts)
            return StageOutcome(
                stage_id=stage_id,
                content=content,
                used_provider=candidate.provider_id,
                used_model=candidate.model_id,
                attempts=attempts,
                truncated=result.truncated,
                usage=result.usage,
            )

        logger.error("[%s] all %d candidate(s) failed", stage_id.value, len(candidates))
        return StageOutcome(stage_id=stage_id, failed=True, error=last_error, attempts=attempts)
