"""Configuration loader, credential fallbacks and idea file parsing.

Reads project settings from a YAML config file with ``${ENV_VAR}``
interpolation.  Credentials left empty fall back to the well-known provider
environment variables (``ANTHROPIC_API_KEY``, ``GEMINI_API_KEY``, ...).
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import Idea, ProjectConfig, ProviderId, ProviderSettings

load_dotenv()

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# YAML loading with ${ENV_VAR} interpolation
# ---------------------------------------------------------------------------

_ENV_RE = re.compile(r"\$\{([^}]+)\}")

# ProviderSettings field -> environment variable
CREDENTIAL_ENV_VARS: dict[str, str] = {
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "gemini_api_key": "GEMINI_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "ollama_base_url": "OLLAMA_BASE_URL",
    "tavily_api_key": "TAVILY_API_KEY",
}

# Which credential unlocks which backend
PROVIDER_CREDENTIAL_FIELD: dict[ProviderId, str] = {
    ProviderId.CLAUDE: "anthropic_api_key",
    ProviderId.GEMINI: "gemini_api_key",
    ProviderId.OPENAI: "openai_api_key",
    ProviderId.OLLAMA: "ollama_base_url",
}


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${ENV_VAR}`` references in strings."""
    if isinstance(value, str):
        return _ENV_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(v) for v in value]
    return value


def apply_credential_fallbacks(config: ProjectConfig) -> ProjectConfig:
    """Fill empty provider credentials from environment variables."""
    providers = config.providers
    for field_name, env_name in CREDENTIAL_ENV_VARS.items():
        if not getattr(providers, field_name):
            setattr(providers, field_name, os.getenv(env_name, ""))
    providers.ollama_base_url = providers.ollama_base_url.strip().rstrip("/")
    return config


def load_config(config_path: str | Path) -> ProjectConfig:
    """Load a ``ProjectConfig`` from a YAML file.

    Environment variables referenced as ``${VAR_NAME}`` are resolved.
    Provider credentials still empty after resolution fall back to the
    provider's standard environment variable.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    resolved = _resolve_env_vars(raw)
    config = ProjectConfig.model_validate(resolved)
    return apply_credential_fallbacks(config)


def credential_availability(providers: ProviderSettings) -> dict[ProviderId, bool]:
    """Return which backends have a usable credential (or base URL)."""
    return {
        provider_id: bool(getattr(providers, field_name).strip())
        for provider_id, field_name in PROVIDER_CREDENTIAL_FIELD.items()
    }


# ---------------------------------------------------------------------------
# Idea files
# ---------------------------------------------------------------------------

def load_ideas(idea_path: str | Path) -> list[Idea]:
    """Load ideas from a YAML or JSON file.

    Accepts a single idea mapping, a list of ideas, or a mapping with an
    ``ideas`` list (the shape returned by the idea generation prompt).
    """
    path = Path(idea_path)
    if not path.exists():
        raise FileNotFoundError(f"Idea file not found: {path}")

    # JSON is a subset of YAML, so one parser covers both formats.
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict) and "ideas" in raw:
        raw = raw["ideas"]
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"No ideas found in {path}")

    ideas = [Idea.model_validate(item) for item in raw]
    logger.debug("Loaded %d idea(s) from %s", len(ideas), path)
    return ideas


def read_existing_plan(plan_path: str | Path | None) -> str | None:
    """Read an optional draft plan; ``None`` when no path is configured."""
    if not plan_path:
        return None
    path = Path(plan_path)
    if not path.exists():
        raise FileNotFoundError(f"Existing plan file not found: {path}")
    text = path.read_text(encoding="utf-8").strip()
    return text or None
