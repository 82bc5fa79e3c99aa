"""Tests for presets.py — fallback chain resolution."""

from __future__ import annotations

import pytest

from bizplan_generator.errors import NoAvailableProviderError, UnknownPresetError
from bizplan_generator.models import ProviderCandidate, ProviderId, QualityTier
from bizplan_generator.presets import MODULE_PRESETS, PresetResolver, merge_presets
from bizplan_generator.stages import STAGES

ALL = {p: True for p in ProviderId}
NONE = {p: False for p in ProviderId}


class TestModulePresets:
    def test_every_stage_has_a_chain_in_every_tier(self):
        for tier in QualityTier:
            for spec in STAGES:
                assert MODULE_PRESETS[tier][spec.task_type], f"{tier.value}/{spec.task_type} empty"

    def test_premium_strategy_prefers_claude(self):
        chain = MODULE_PRESETS[QualityTier.PREMIUM]["full-plan-strategy"]
        assert chain[0].provider_id == ProviderId.CLAUDE


class TestPresetResolver:
    def test_full_chain_when_all_available(self):
        resolver = PresetResolver(ALL)
        chain = resolver.resolve(QualityTier.STANDARD, "full-plan-market")
        assert [str(c) for c in chain] == [
            "openai/gpt-4.1-mini", "gemini/gemini-2.5-flash", "claude/claude-haiku-4-5-20251001",
        ]

    def test_filters_missing_credentials_keeping_order(self):
        availability = {**NONE, ProviderId.CLAUDE: True, ProviderId.GEMINI: True}
        chain = PresetResolver(availability).resolve("premium", "full-plan-market")
        assert [c.provider_id for c in chain] == [ProviderId.GEMINI, ProviderId.CLAUDE]

    def test_no_available_provider(self):
        with pytest.raises(NoAvailableProviderError) as exc_info:
            PresetResolver(NONE).resolve(QualityTier.STANDARD, "full-plan-devil")
        assert "openai/gpt-5" in str(exc_info.value)

    def test_unknown_task_type(self):
        with pytest.raises(UnknownPresetError):
            PresetResolver(ALL).resolve(QualityTier.STANDARD, "write-poem")

    def test_unknown_tier(self):
        with pytest.raises(UnknownPresetError):
            PresetResolver(ALL).chain("ultra", "full-plan-market")

    def test_single_provider_overrides_every_chain(self):
        local = ProviderCandidate.model_validate("ollama/gemma2:9b")
        resolver = PresetResolver({**NONE, ProviderId.OLLAMA: True}, single_provider=local)
        for spec in STAGES:
            assert resolver.resolve(QualityTier.PREMIUM, spec.task_type) == [local]

    def test_single_provider_still_validates_task(self):
        local = ProviderCandidate.model_validate("ollama/gemma2:9b")
        with pytest.raises(UnknownPresetError):
            PresetResolver(ALL, single_provider=local).resolve(QualityTier.STANDARD, "nope")

    def test_describe_marks_availability(self):
        availability = {**NONE, ProviderId.OPENAI: True}
        described = PresetResolver(availability).describe(QualityTier.STANDARD, ["full-plan-finance"])
        flags = [(c.provider_id, ok) for c, ok in described["full-plan-finance"]]
        assert flags == [(ProviderId.OPENAI, True), (ProviderId.GEMINI, False), (ProviderId.CLAUDE, False)]


class TestMergePresets:
    def test_override_replaces_one_task(self):
        override = [ProviderCandidate.model_validate("ollama/gemma2:9b")]
        merged = merge_presets({"standard": {"full-plan-market": override}})
        assert merged[QualityTier.STANDARD]["full-plan-market"] == override
        assert merged[QualityTier.STANDARD]["full-plan-finance"] == MODULE_PRESETS[QualityTier.STANDARD]["full-plan-finance"]

    def test_defaults_untouched(self):
        merge_presets({"standard": {"full-plan-market": []}})
        assert MODULE_PRESETS[QualityTier.STANDARD]["full-plan-market"]

    def test_unknown_tier_ignored(self):
        merged = merge_presets({"deluxe": {"full-plan-market": []}})
        assert set(merged) == set(QualityTier)
