"""Pydantic models for the business plan generation pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ProviderId(str, Enum):
    CLAUDE = "claude"
    GEMINI = "gemini"
    OPENAI = "openai"
    OLLAMA = "ollama"


class QualityTier(str, Enum):
    STANDARD = "standard"
    PREMIUM = "premium"


class StageId(str, Enum):
    MARKET = "market"
    COMPETITION = "competition"
    STRATEGY = "strategy"
    FINANCE = "finance"
    DEVIL = "devil"


class PipelineState(str, Enum):
    IDLE = "idle"
    RUNNING_STAGE = "running_stage"
    COMBINING = "combining"
    SANITIZING = "sanitizing"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class Idea(BaseModel):
    """A business idea to expand into a full plan.

    Accepts both snake_case and the camelCase keys produced by the idea
    generation prompt (``oneLiner``, ``revenueModel``).
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Service or product name")
    category: str = Field(default="", description="Business category")
    one_liner: str = Field(default="", alias="oneLiner", description="One sentence pitch")
    target: str = Field(default="", description="Target customers")
    problem: str = Field(default="", description="Problem being solved")
    features: list[str] = Field(default_factory=list, description="Key features")
    differentiation: str = Field(default="", description="Edge over existing alternatives")
    revenue_model: str = Field(default="", alias="revenueModel", description="How the business makes money")
    rationale: str = Field(default="", description="Why this idea is worth pursuing now")

    @field_validator("features", mode="before")
    @classmethod
    def _split_features(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


class SearchResult(BaseModel):
    """One web search hit handed to a stage prompt."""
    title: str = Field(default="")
    url: str = Field(default="")
    snippet: str = Field(default="")


# ---------------------------------------------------------------------------
# Provider layer
# ---------------------------------------------------------------------------

class ProviderCandidate(BaseModel):
    """One (provider, model) pair in a fallback chain.

    YAML chains use the short keys ``provider`` and ``model``; a plain
    ``"provider/model"`` string is accepted as well.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, protected_namespaces=())

    provider_id: ProviderId = Field(..., alias="provider")
    model_id: str = Field(..., alias="model")

    @model_validator(mode="before")
    @classmethod
    def _parse_shorthand(cls, value: Any) -> Any:
        if isinstance(value, str):
            provider, sep, model = value.partition("/")
            if not sep or not model:
                raise ValueError(f"Expected 'provider/model', got {value!r}")
            return {"provider": provider.strip(), "model": model.strip()}
        return value

    def __str__(self) -> str:
        return f"{self.provider_id.value}/{self.model_id}"


class GenerationRequest(BaseModel):
    """Immutable description of one LLM generation."""
    model_config = ConfigDict(frozen=True)

    task_type: str = Field(..., description="Task type used to pick the preset chain")
    payload: str = Field(..., description="Rendered prompt text")
    max_tokens: int = Field(default=8192, description="Output token ceiling")
    json_mode: bool = Field(default=False, description="Ask the backend for a JSON response")


class TokenUsage(BaseModel):
    """Token counts and estimated cost of one call."""
    provider: ProviderId
    model: str
    input_tokens: int = Field(default=0)
    output_tokens: int = Field(default=0)
    cost_usd: float | None = Field(default=None, description="None when the model has no pricing entry")

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class GenerationResult(BaseModel):
    """Text returned by a provider call."""
    text: str = Field(...)
    truncated: bool = Field(default=False, description="The backend stopped at the token ceiling")
    attempts: int = Field(default=1, description="HTTP attempts the call took")
    usage: TokenUsage | None = Field(default=None)


# ---------------------------------------------------------------------------
# Pipeline outputs
# ---------------------------------------------------------------------------

class StageOutcome(BaseModel):
    """Result of running one stage across its fallback chain."""
    stage_id: StageId
    content: str = Field(default="")
    failed: bool = Field(default=False)
    used_provider: ProviderId | None = Field(default=None)
    used_model: str | None = Field(default=None)
    error: str | None = Field(default=None, description="Last provider error when every candidate failed")
    attempts: int = Field(default=0)
    truncated: bool = Field(default=False)
    usage: TokenUsage | None = Field(default=None)
    duration_seconds: float = Field(default=0.0)

    @model_validator(mode="after")
    def _failed_has_no_content(self) -> "StageOutcome":
        if self.failed and self.content:
            raise ValueError("A failed stage outcome must have empty content")
        return self


class CombinedDocument(BaseModel):
    """Final markdown plus diagnostics about how it was assembled."""
    markdown: str = Field(...)
    missing_sections: list[str] = Field(default_factory=list, description="Section keys that could not be extracted")
    failed_stages: list[StageId] = Field(default_factory=list)
    used_fallback: bool = Field(default=False, description="Raw concatenation was used instead of section extraction")
    warnings: list[str] = Field(default_factory=list)
    outcomes: list[StageOutcome] = Field(default_factory=list)
    usage: list[TokenUsage] = Field(default_factory=list)

    @property
    def total_cost_usd(self) -> float:
        return sum(u.cost_usd or 0.0 for u in self.usage)

    @property
    def partial(self) -> bool:
        return bool(self.failed_stages)


class BatchItemResult(BaseModel):
    """Outcome of one idea inside a batch run."""
    idea_name: str
    document: CombinedDocument | None = Field(default=None)
    error: str | None = Field(default=None)

    @property
    def success(self) -> bool:
        return self.document is not None


# ---------------------------------------------------------------------------
# Project Configuration (loaded from YAML)
# ---------------------------------------------------------------------------

class ProviderSettings(BaseModel):
    """Credentials and endpoints for every backend."""
    anthropic_api_key: str = Field(default="", description="Anthropic API key (or ${ENV_VAR})")
    gemini_api_key: str = Field(default="", description="Google Gemini API key")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    ollama_base_url: str = Field(default="", description="Base URL of a local Ollama server")
    tavily_api_key: str = Field(default="", description="Tavily search API key")


class RetryConfig(BaseModel):
    """Retry budget and backoff schedule for provider calls."""
    max_retries: int = Field(default=4, description="Retries after the first attempt")
    backoff_seconds: float = Field(default=15.0, description="Linear backoff step (step x attempt)")
    fixed_backoff_seconds: float = Field(default=15.0, description="Fixed backoff for fixed-style backends")
    fixed_backoff_buffer_seconds: float = Field(default=3.0, description="Extra wait added to fixed backoff")
    request_timeout_seconds: float = Field(default=600.0, description="Wall clock limit per HTTP attempt")


class SearchConfig(BaseModel):
    """Web search enrichment of stage prompts."""
    enabled: bool = Field(default=True)
    count: int = Field(default=5, description="Results per query")
    depth: str = Field(default="basic", description="'basic' or 'advanced'")
    timeout_seconds: float = Field(default=30.0)


class ProjectConfig(BaseModel):
    """Full project configuration loaded from config.yaml."""
    project_name: str = Field(default="bizplan")
    quality_tier: QualityTier = Field(default=QualityTier.STANDARD)

    # File paths
    idea_file: str | None = Field(default=None, description="YAML/JSON file with one idea or a list of ideas")
    existing_plan_file: str | None = Field(default=None, description="Draft plan passed to every stage")
    output_dir: str = Field(default="output/", description="Output directory")

    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)

    # Pipeline settings
    stage_max_tokens: int = Field(default=14000, description="max_tokens for every full-plan stage")
    min_extracted_sections: int = Field(default=7, description="Below this, stage texts are concatenated")
    timing_new_weight: float = Field(default=0.3, description="EWMA weight of the newest stage duration")
    timing_store_path: str | None = Field(default=".bizplan_timings.json", description="None keeps timings in memory")

    # Provider chains
    single_provider: ProviderCandidate | None = Field(
        default=None,
        description="Use this one provider/model for every task, e.g. 'ollama/gemma2:9b'",
    )
    presets: dict[str, dict[str, list[ProviderCandidate]]] = Field(
        default_factory=dict,
        description="Per-tier chain overrides: {tier: {task_type: [{provider, model}, ...]}}",
    )

    @field_validator("single_provider", mode="before")
    @classmethod
    def _empty_single_provider(cls, value: Any) -> Any:
        if value == "" or value == {}:
            return None
        return value
