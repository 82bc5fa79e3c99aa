"""Exception hierarchy for the business plan generator.

Provider errors carry a :class:`ProviderErrorKind` so the retry loop and the
stage runner can decide between retrying, failing over to the next candidate
and giving up.  Everything raised by this package derives from
:class:`BizplanError` so the CLI can report it uniformly.
"""

from __future__ import annotations

from enum import Enum


class ProviderErrorKind(str, Enum):
    MISSING_CREDENTIAL = "MissingCredential"
    RATE_LIMITED = "RateLimited"
    OVERLOADED = "Overloaded"
    NETWORK_FAILURE = "NetworkFailure"
    HTTP_ERROR = "HttpError"
    TIMEOUT = "Timeout"


RETRYABLE_KINDS = frozenset({
    ProviderErrorKind.RATE_LIMITED,
    ProviderErrorKind.OVERLOADED,
    ProviderErrorKind.NETWORK_FAILURE,
})


class BizplanError(Exception):
    """Base class for every error raised by this package."""


# ---------------------------------------------------------------------------
# Provider layer
# ---------------------------------------------------------------------------

class ProviderError(BizplanError):
    """A single LLM provider call failed."""

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        retry_after: float | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __str__(self) -> str:
        prefix = f"[{self.provider}] " if self.provider else ""
        return f"{prefix}{self.kind.value}: {self.message}"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class PresetError(BizplanError):
    """No usable provider chain for a (tier, task type) pair."""


class UnknownPresetError(PresetError):
    def __init__(self, tier: str, task_type: str) -> None:
        super().__init__(f"No provider chain configured for tier={tier!r}, task_type={task_type!r}")
        self.tier = tier
        self.task_type = task_type


class NoAvailableProviderError(PresetError):
    def __init__(self, tier: str, task_type: str, chain: list[str]) -> None:
        tried = ", ".join(chain) or "(empty chain)"
        super().__init__(
            f"No provider with credentials for tier={tier!r}, task_type={task_type!r}; "
            f"configured chain: {tried}"
        )
        self.tier = tier
        self.task_type = task_type
        self.chain = chain


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class AllStagesFailedError(BizplanError):
    """Every content-bearing stage failed; there is nothing to assemble."""

    def __init__(self, failed_stages: list[str], errors: dict[str, str]) -> None:
        details = "; ".join(f"{stage}: {errors.get(stage) or 'unknown error'}" for stage in failed_stages)
        super().__init__(f"All content stages failed ({details})")
        self.failed_stages = failed_stages
        self.errors = errors


class PipelineCancelledError(BizplanError):
    """The run was cancelled through its cancellation token."""
