"""Provider fallback chains per (quality tier, task type).

The standard tier leans on cheaper OpenAI and Gemini Flash models; the
premium tier puts Claude Sonnet first for Korean narrative stages and Gemini
Pro first for data-heavy stages.  Chains may be overridden from config.
"""

from __future__ import annotations

import logging
from typing import Mapping

from .errors import NoAvailableProviderError, UnknownPresetError
from .models import ProviderCandidate, ProviderId, QualityTier

logger = logging.getLogger(__name__)

_HAIKU = "claude-haiku-4-5-20251001"
_SONNET = "claude-sonnet-4-6"


def _chain(*pairs: tuple[str, str]) -> list[ProviderCandidate]:
    return [ProviderCandidate(provider_id=ProviderId(p), model_id=m) for p, m in pairs]


MODULE_PRESETS: dict[QualityTier, dict[str, list[ProviderCandidate]]] = {
    QualityTier.STANDARD: {
        "generate-ideas": _chain(("openai", "gpt-4.1-mini"), ("gemini", "gemini-2.5-flash"), ("claude", _HAIKU)),
        "business-plan": _chain(("openai", "gpt-5"), ("gemini", "gemini-2.5-pro"), ("claude", _SONNET)),
        "full-plan-market": _chain(("openai", "gpt-4.1-mini"), ("gemini", "gemini-2.5-flash"), ("claude", _HAIKU)),
        "full-plan-competition": _chain(("openai", "gpt-4.1-mini"), ("gemini", "gemini-2.5-flash"), ("claude", _HAIKU)),
        "full-plan-strategy": _chain(("openai", "gpt-5"), ("gemini", "gemini-2.5-pro"), ("claude", _SONNET)),
        "full-plan-finance": _chain(("openai", "gpt-4.1"), ("gemini", "gemini-2.5-flash"), ("claude", _SONNET)),
        "full-plan-devil": _chain(("openai", "gpt-5"), ("gemini", "gemini-2.5-pro"), ("claude", _SONNET)),
        "generate-prd": _chain(("openai", "gpt-4.1"), ("gemini", "gemini-2.5-flash"), ("claude", _SONNET)),
        "extract-idea": _chain(("openai", "gpt-4.1-nano"), ("gemini", "gemini-2.5-flash-lite"), ("claude", _HAIKU)),
        "generate-queries": _chain(("openai", "gpt-4.1-nano"), ("gemini", "gemini-2.5-flash-lite"), ("claude", _HAIKU)),
    },
    QualityTier.PREMIUM: {
        "generate-ideas": _chain(("openai", "gpt-5"), ("gemini", "gemini-2.5-pro"), ("claude", _SONNET)),
        "business-plan": _chain(("claude", _SONNET), ("openai", "gpt-5"), ("gemini", "gemini-2.5-pro")),
        "full-plan-market": _chain(("gemini", "gemini-2.5-pro"), ("openai", "gpt-5"), ("claude", _SONNET)),
        "full-plan-competition": _chain(("gemini", "gemini-2.5-pro"), ("openai", "gpt-5"), ("claude", _SONNET)),
        "full-plan-strategy": _chain(("claude", _SONNET), ("openai", "gpt-5"), ("gemini", "gemini-2.5-pro")),
        "full-plan-finance": _chain(("gemini", "gemini-2.5-pro"), ("openai", "gpt-5"), ("claude", _SONNET)),
        "full-plan-devil": _chain(("claude", _SONNET), ("openai", "gpt-5"), ("gemini", "gemini-2.5-pro")),
        "generate-prd": _chain(("openai", "gpt-4.1"), ("openai", "gpt-5"), ("claude", _SONNET)),
        "extract-idea": _chain(("openai", "gpt-4.1-nano"), ("gemini", "gemini-2.5-flash"), ("claude", _HAIKU)),
        "generate-queries": _chain(("openai", "gpt-4.1-mini"), ("gemini", "gemini-2.5-flash"), ("claude", _HAIKU)),
    },
}


def merge_presets(
    overrides: Mapping[str, Mapping[str, list[ProviderCandidate]]] | None,
) -> dict[QualityTier, dict[str, list[ProviderCandidate]]]:
    """Return the default table with per-task overrides from config applied."""
    merged = {tier: dict(chains) for tier, chains in MODULE_PRESETS.items()}
    for tier_name, chains in (overrides or {}).items():
        try:
            tier = QualityTier(tier_name)
        except ValueError:
            logger.warning("Ignoring preset override for unknown tier %r", tier_name)
            continue
        for task_type, chain in chains.items():
            merged[tier][task_type] = list(chain)
    return merged


class PresetResolver:
    """Resolve a (tier, task type) pair to the usable part of its fallback chain.

    *availability* says which providers have credentials; it is computed once
    by the caller (see ``config.credential_availability``) so resolution stays
    a pure function of its inputs.
    """

    def __init__(
        self,
        availability: Mapping[ProviderId, bool],
        presets: Mapping[str, Mapping[str, list[ProviderCandidate]]] | None = None,
        single_provider: ProviderCandidate | None = None,
    ) -> None:
        self.availability = dict(availability)
        self.table = merge_presets(presets)
        self.single_provider = single_provider

    def chain(self, tier: QualityTier | str, task_type: str) -> list[ProviderCandidate]:
        """The configured chain before credential filtering."""
        try:
            tier_key = QualityTier(tier)
        except ValueError as exc:
            raise UnknownPresetError(str(tier), task_type) from exc
        chain = self.table[tier_key].get(task_type)
        if not chain:
            raise UnknownPresetError(tier_key.value, task_type)
        if self.single_provider is not None:
            return [self.single_provider]
        return list(chain)

    def resolve(self, tier: QualityTier | str, task_type: str) -> list[ProviderCandidate]:
        chain = self.chain(tier, task_type)
        usable = [c for c in chain if self.availability.get(c.provider_id, False)]
        if not usable:
            raise NoAvailableProviderError(str(QualityTier(tier).value), task_type, [str(c) for c in chain])
        if len(usable) < len(chain):
            logger.debug(
                "%s/%s: skipping %d candidate(s) without credentials",
                QualityTier(tier).value, task_type, len(chain) - len(usable),
            )
        return usable

    def describe(self, tier: QualityTier | str, task_types: list[str]) -> dict[str, list[tuple[ProviderCandidate, bool]]]:
        """Chains with per-candidate availability, for display."""
        return {
            task_type: [(c, self.availability.get(c.provider_id, False)) for c in self.chain(tier, task_type)]
            for task_type in task_types
        }
