"""Hydra structured config dataclasses.

These mirror the Pydantic ``ProjectConfig`` for Hydra schema validation.
At runtime the Hydra DictConfig is converted to ``ProjectConfig`` via
``cli._to_project_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from hydra.core.config_store import ConfigStore


@dataclass
class ProvidersConf:
    anthropic_api_key: str = "${oc.env:ANTHROPIC_API_KEY,''}"
    gemini_api_key: str = "${oc.env:GEMINI_API_KEY,''}"
    openai_api_key: str = "${oc.env:OPENAI_API_KEY,''}"
    ollama_base_url: str = "${oc.env:OLLAMA_BASE_URL,''}"
    tavily_api_key: str = "${oc.env:TAVILY_API_KEY,''}"


@dataclass
class RetryConf:
    max_retries: int = 4
    backoff_seconds: float = 15.0
    fixed_backoff_seconds: float = 15.0
    fixed_backoff_buffer_seconds: float = 3.0
    request_timeout_seconds: float = 600.0


@dataclass
class SearchConf:
    enabled: bool = True
    count: int = 5
    depth: str = "basic"
    timeout_seconds: float = 30.0


@dataclass
class BizplanConf:
    # --- Dispatch + CLI-only fields ---
    mode: str = "run"
    verbose: bool = False
    quiet: bool = False
    input: str | None = None
    output: str | None = None

    # --- ProjectConfig fields (1:1 mapping) ---
    project_name: str = "bizplan"
    quality_tier: str = "standard"

    idea_file: str | None = None
    existing_plan_file: str | None = None
    output_dir: str = "output/"

    providers: ProvidersConf = field(default_factory=ProvidersConf)
    retry: RetryConf = field(default_factory=RetryConf)
    search: SearchConf = field(default_factory=SearchConf)

    stage_max_tokens: int = 14000
    min_extracted_sections: int = 7
    timing_new_weight: float = 0.3
    timing_store_path: str | None = ".bizplan_timings.json"

    # "provider/model", e.g. "ollama/gemma2:9b"
    single_provider: str | None = None
    presets: dict[str, Any] = field(default_factory=dict)


# Keys present in BizplanConf that are NOT part of ProjectConfig.
CLI_ONLY_KEYS = frozenset({
    "mode", "verbose", "quiet", "input", "output",
})


def register_configs() -> None:
    """Register the structured config schema with Hydra's ConfigStore."""
    cs = ConfigStore.instance()
    cs.store(name="bizplan_schema", node=BizplanConf)
