"""The five full-plan stages and the section numbers each one owns."""

from __future__ import annotations

from dataclasses import dataclass

from .models import StageId

REFERENCES = "references"
DEVIL_SECTION = "14"

# Canonical emission order of the combined document.
SECTION_ORDER: tuple[str, ...] = (
    "1", "2", "3", "4", "5", "6", "7", "8", "9", "10", "11", "12", "13", REFERENCES,
)

SECTION_TITLES: dict[str, str] = {
    "1": "핵심 요약",
    "2": "트렌드",
    "3": "문제 정의",
    "4": "솔루션",
    "5": "경쟁 분석",
    "6": "차별화",
    "7": "플랫폼 전략",
    "8": "시장 규모",
    "9": "로드맵",
    "10": "운영 계획",
    "11": "사업 모델",
    "12": "사업 전망",
    "13": "리스크 분석",
    "14": "비판적 검토",
    REFERENCES: "참고문헌",
}


@dataclass(frozen=True)
class StageSpec:
    stage_id: StageId
    task_type: str
    label: str
    sections: tuple[str, ...]
    search_queries: tuple[str, ...] = ()
    content_bearing: bool = True

    @property
    def number(self) -> int:
        return STAGES.index(self) + 1


STAGES: tuple[StageSpec, ...] = (
    StageSpec(
        StageId.MARKET, "full-plan-market", "시장 분석",
        ("2", "3", "8"),
        ("{name} 시장 규모 트렌드", "{target} 시장 동향 통계"),
    ),
    StageSpec(
        StageId.COMPETITION, "full-plan-competition", "경쟁 분석",
        ("5", "6", "7"),
        ("{name} 경쟁사 비교", "{category} {target} 경쟁 서비스"),
    ),
    StageSpec(
        StageId.STRATEGY, "full-plan-strategy", "전략 수립",
        ("1", "4", "9", "10"),
        ("{name} 사업 전략 로드맵",),
    ),
    StageSpec(
        StageId.FINANCE, "full-plan-finance", "재무 계획",
        ("11", "12", "13", REFERENCES),
        ("{name} 가격 정책 수익 모델", "{target} 규제 리스크"),
    ),
    StageSpec(
        StageId.DEVIL, "full-plan-devil", "비판적 검토",
        (DEVIL_SECTION,),
        content_bearing=False,
    ),
)

CONTENT_STAGES: tuple[StageSpec, ...] = tuple(s for s in STAGES if s.content_bearing)

SECTION_OWNERS: dict[str, StageId] = {
    section: spec.stage_id for spec in CONTENT_STAGES for section in spec.sections
}


def stage_spec(stage_id: StageId | str) -> StageSpec:
    stage_id = StageId(stage_id)
    for spec in STAGES:
        if spec.stage_id == stage_id:
            return spec
    raise KeyError(stage_id)


def section_heading(section: str) -> str:
    """Heading text a stage is asked to emit for *section*."""
    if section == REFERENCES:
        return f"## {SECTION_TITLES[REFERENCES]}"
    return f"## {section}. {SECTION_TITLES[section]}"
