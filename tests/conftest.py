"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from bizplan_generator.config import CREDENTIAL_ENV_VARS
from bizplan_generator.models import Idea, StageId, StageOutcome

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SAMPLE_STAGES = FIXTURES_DIR / "stages"
SAMPLE_CONFIG = FIXTURES_DIR / "sample_config.yaml"


@pytest.fixture(autouse=True)
def clean_provider_env(monkeypatch):
    """Keep real credentials from the developer's shell out of the tests."""
    for env_name in CREDENTIAL_ENV_VARS.values():
        monkeypatch.delenv(env_name, raising=False)


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def sample_stages_dir() -> Path:
    return SAMPLE_STAGES


@pytest.fixture
def sample_config_path() -> Path:
    return SAMPLE_CONFIG


@pytest.fixture
def ideas_path() -> Path:
    return FIXTURES_DIR / "ideas.yaml"


@pytest.fixture
def idea_json_path() -> Path:
    return FIXTURES_DIR / "idea.json"


@pytest.fixture
def sample_idea() -> Idea:
    return Idea(
        name="그린밀",
        category="푸드테크",
        one_liner="친환경 식단 구독 서비스",
        target="수도권 1인 직장인",
        problem="평일 저녁 식사 준비 시간 부족",
        features=["주 3회 배송", "용기 회수"],
        differentiation="다회용 용기 회수",
        revenue_model="월 구독료",
    )


@pytest.fixture
def stage_texts() -> dict[StageId, str]:
    return {
        stage_id: (SAMPLE_STAGES / f"{stage_id.value}.md").read_text(encoding="utf-8")
        for stage_id in StageId
    }


@pytest.fixture
def stage_outcomes(stage_texts) -> list[StageOutcome]:
    return [StageOutcome(stage_id=stage_id, content=text) for stage_id, text in stage_texts.items()]


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    out = tmp_path / "output"
    out.mkdir()
    return out
