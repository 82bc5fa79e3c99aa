"""Tests for config.py — YAML loading, credential fallbacks and idea files."""

from __future__ import annotations

import pytest

from bizplan_generator.config import (
    _resolve_env_vars,
    apply_credential_fallbacks,
    credential_availability,
    load_config,
    load_ideas,
    read_existing_plan,
)
from bizplan_generator.models import ProjectConfig, ProviderId, ProviderSettings, QualityTier


class TestResolveEnvVars:
    def test_string_replacement(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "hello")
        assert _resolve_env_vars("${TEST_VAR}") == "hello"

    def test_missing_var_becomes_empty(self, monkeypatch):
        monkeypatch.delenv("NONEXISTENT_VAR", raising=False)
        assert _resolve_env_vars("${NONEXISTENT_VAR}") == ""

    def test_nested_dict(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "secret")
        result = _resolve_env_vars({"api_key": "${MY_KEY}", "other": "plain"})
        assert result == {"api_key": "secret", "other": "plain"}

    def test_list(self, monkeypatch):
        monkeypatch.setenv("X", "val")
        assert _resolve_env_vars(["${X}", "static"]) == ["val", "static"]

    def test_non_string_passthrough(self):
        assert _resolve_env_vars(42) == 42
        assert _resolve_env_vars(None) is None


class TestLoadConfig:
    def test_load_sample_config(self, sample_config_path, monkeypatch):
        monkeypatch.setenv("TEST_ANTHROPIC_KEY", "sk-ant-test")
        config = load_config(sample_config_path)
        assert config.project_name == "greenmeal"
        assert config.quality_tier == QualityTier.PREMIUM
        assert config.providers.anthropic_api_key == "sk-ant-test"
        assert config.retry.max_retries == 2
        assert config.retry.backoff_seconds == 5
        assert config.search.enabled is False

    def test_missing_config_raises(self):
        with pytest.raises(FileNotFoundError):
            load_config("nonexistent.yaml")

    def test_env_fallback(self, sample_config_path, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "gm-fallback")
        config = load_config(sample_config_path)
        assert config.providers.gemini_api_key == "gm-fallback"
        # Trailing slash should be stripped
        assert config.providers.ollama_base_url == "http://localhost:11434"

    def test_preset_overrides_parsed(self, sample_config_path):
        config = load_config(sample_config_path)
        chain = config.presets["premium"]["full-plan-market"]
        assert [str(c) for c in chain] == ["claude/claude-sonnet-4-6", "ollama/gemma2:9b"]


class TestCredentialFallbacks:
    def test_explicit_value_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        config = ProjectConfig(providers={"openai_api_key": "from-config"})
        apply_credential_fallbacks(config)
        assert config.providers.openai_api_key == "from-config"

    def test_all_missing_stay_empty(self):
        config = apply_credential_fallbacks(ProjectConfig())
        assert config.providers.anthropic_api_key == ""
        assert config.providers.tavily_api_key == ""


class TestCredentialAvailability:
    def test_reports_each_backend(self):
        providers = ProviderSettings(anthropic_api_key="k", ollama_base_url="http://localhost:11434")
        availability = credential_availability(providers)
        assert availability == {
            ProviderId.CLAUDE: True,
            ProviderId.GEMINI: False,
            ProviderId.OPENAI: False,
            ProviderId.OLLAMA: True,
        }

    def test_whitespace_is_not_a_credential(self):
        availability = credential_availability(ProviderSettings(openai_api_key="   "))
        assert availability[ProviderId.OPENAI] is False


class TestLoadIdeas:
    def test_ideas_wrapper_with_camel_case(self, ideas_path):
        ideas = load_ideas(ideas_path)
        assert [i.name for i in ideas] == ["그린밀", "펫케어 플러스"]
        assert ideas[0].one_liner == "친환경 식단 구독 서비스"
        assert ideas[0].revenue_model == "월 구독료"
        assert ideas[0].features == ["주 3회 배송", "용기 회수", "영양사 식단"]

    def test_single_json_idea(self, idea_json_path):
        ideas = load_ideas(idea_json_path)
        assert len(ideas) == 1
        assert ideas[0].features == ["학습 계획", "진도 알림"]

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_ideas(tmp_path / "missing.yaml")

    def test_empty_file_raises(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ValueError, match="No ideas"):
            load_ideas(path)


class TestReadExistingPlan:
    def test_none_when_unset(self):
        assert read_existing_plan(None) is None

    def test_reads_text(self, tmp_path):
        path = tmp_path / "draft.md"
        path.write_text("  # 초안\n\n내용\n", encoding="utf-8")
        assert read_existing_plan(path) == "# 초안\n\n내용"

    def test_missing_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_existing_plan(tmp_path / "nope.md")
