"""Prompt builders for the full-plan stages.

Every prompt asks for Korean output and for the exact numbered headings of
the sections the stage owns, so the combiner can find them again.
"""

from __future__ import annotations

from .models import Idea, SearchResult, StageId
from .stages import DEVIL_SECTION, REFERENCES, STAGES, StageSpec, section_heading

# Upper bound on how much earlier-stage text is quoted back into a prompt.
MAX_CONTEXT_CHARS = 50_000

_WRITING_RULES = """**작성 원칙:**
- 모든 수치·통계는 검색 자료 [번호] 형식으로 반드시 출처를 표기하세요.
- 출처 없는 수치는 "~로 추정" 또는 "업계 추정치"로 명시하세요.
- 가상의 기업명·수치를 생성하지 마세요. 실제 경쟁사가 없으면 "직접 경쟁사 미확인"으로 표기하세요.

**작성 규칙:**
- 전체적으로 Bullet point를 활용하고, 항목별 명사형으로 마무리
- 서술형 문장이 길게 이어지는 것을 지양
- 비교표, 차별화 도표 등 시각화 요소 적극 활용 (Markdown 표 형식, 표의 각 행은 반드시 별도의 줄에 작성)"""

_STAGE_INSTRUCTIONS: dict[StageId, str] = {
    StageId.MARKET: """당신은 시장 분석 담당자입니다. 다음 섹션만 작성하세요.
- 트렌드: 검색 자료에서 확인된 최신 트렌드 3~5개
- 문제 정의: 대상 고객이 겪는 구체적인 문제와 현재 대안의 한계
- 시장 규모: TAM / SAM / SOM 3단계 구분 필수, 산출 근거 명시""",
    StageId.COMPETITION: """당신은 경쟁 분석 담당자입니다. 다음 섹션만 작성하세요.
- 경쟁 분석: 실제 경쟁사 최소 3개를 비교표로 제시
- 차별화: 경쟁사 대비 차별화 포인트를 도표로 정리
- 플랫폼 전략: 채널·파트너십·생태계 전략""",
    StageId.STRATEGY: """당신은 사업 전략 담당자입니다. 앞 단계의 분석을 근거로 다음 섹션만 작성하세요.
- 핵심 요약: 문제, 솔루션, 시장, 차별화, 수익 모델을 5줄 이내로 요약
- 솔루션: 핵심 기능과 사용자 흐름
- 로드맵: 단계별(MVP → 확장) 마일스톤과 일정
- 운영 계획: 팀 구성, 핵심 파트너, 운영 프로세스""",
    StageId.FINANCE: """당신은 재무 계획 담당자입니다. 앞 단계의 분석을 근거로 다음 섹션만 작성하세요.
- 사업 모델: 가격 티어 예시(Starter / Pro / Enterprise 등) 포함
- 사업 전망: 3개년 매출·비용 추정과 가정
- 리스크 분석: 규제·법률 리스크 1개 이상 반드시 포함
- 참고문헌: 검색 자료 URL 전체를 표 형식으로 나열""",
    StageId.DEVIL: """당신은 냉정한 투자 심사역(Devil's Advocate)입니다. 아래 사업기획서 초안을 비판적으로 검토하세요.
먼저 "## 리스크 요약" 제목 아래에 가장 치명적인 리스크 3가지를 bullet로 요약하고,
이어서 "## 14. 비판적 검토" 제목 아래에 가정의 허점, 시장·경쟁·재무 측면의 반론, 보완 제안을 작성하세요.
다른 섹션은 다시 작성하지 마세요.""",
}


def format_search_results(results: list[SearchResult]) -> str:
    """Numbered list the model can cite as [1], [2], ..."""
    return "\n\n".join(
        f"{i}. **{r.title}**\n   - URL: {r.url}\n   - 내용: {r.snippet}"
        for i, r in enumerate(results, 1)
    )


def format_idea(idea: Idea) -> str:
    lines = [f"- 서비스명: {idea.name}"]
    if idea.category:
        lines.append(f"- 분류: {idea.category}")
    if idea.one_liner:
        lines.append(f"- 설명: {idea.one_liner}")
    if idea.target:
        lines.append(f"- 대상 고객: {idea.target}")
    problem = idea.problem or idea.rationale
    if problem:
        lines.append(f"- 해결하려는 문제: {problem}")
    if idea.features:
        lines.append(f"- 핵심 기능: {', '.join(idea.features)}")
    if idea.differentiation:
        lines.append(f"- 차별화 포인트: {idea.differentiation}")
    if idea.revenue_model:
        lines.append(f"- 수익 모델: {idea.revenue_model}")
    return "\n".join(lines)


def search_queries(spec: StageSpec, idea: Idea) -> list[str]:
    """Render the stage's query templates, dropping ones with empty fields."""
    fields = {
        "name": idea.name,
        "target": idea.target,
        "category": idea.category,
    }
    queries = []
    for template in spec.search_queries:
        needed = [key for key in fields if "{" + key + "}" in template]
        if all(fields[key].strip() for key in needed):
            queries.append(template.format(**fields).strip())
    return queries


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n\n…(이하 생략)"


def _previous_context(previous: dict[StageId, str]) -> str:
    blocks = [previous[spec.stage_id] for spec in STAGES if previous.get(spec.stage_id)]
    return _clip("\n\n".join(blocks), MAX_CONTEXT_CHARS)


def build_stage_prompt(
    spec: StageSpec,
    idea: Idea,
    *,
    search_results: list[SearchResult] | None = None,
    previous: dict[StageId, str] | None = None,
    existing_plan: str | None = None,
) -> str:
    """Render the prompt for one stage."""
    previous = previous or {}
    parts = ["한국어로만 답변하세요.", ""]

    if search_results:
        parts += [
            "## 시장 조사 및 참고 자료",
            "다음은 이 서비스와 관련된 인터넷 검색 결과입니다. 근거로 활용하고 [번호]로 인용하세요:",
            "",
            format_search_results(search_results),
            "",
        ]

    parts += ["**서비스 정보:**", format_idea(idea), ""]

    if existing_plan:
        parts += [
            "## 기존 사업기획서 초안",
            "다음 초안의 내용을 참고하되, 더 구체적이고 근거 있는 내용으로 보완하세요:",
            "",
            _clip(existing_plan, MAX_CONTEXT_CHARS),
            "",
        ]

    context = _previous_context(previous)
    if context:
        title = "## 검토 대상 사업기획서 초안" if spec.stage_id == StageId.DEVIL else "## 앞 단계 분석 결과"
        parts += [title, "", context, ""]

    parts += [_STAGE_INSTRUCTIONS[spec.stage_id], ""]

    if spec.content_bearing:
        headings = [section_heading(s) for s in spec.sections]
        parts += [
            "**아래 제목을 정확히 그대로 사용하여, 이 순서로 작성하세요:**",
            "\n".join(headings),
            "",
            _WRITING_RULES,
        ]
        if REFERENCES in spec.sections:
            parts += ["- 참고문헌 표에는 본문에서 인용한 모든 검색 자료의 제목과 URL을 포함"]
    else:
        parts += [f"**섹션 {DEVIL_SECTION}의 제목은 정확히 \"{section_heading(DEVIL_SECTION)}\"로 작성하세요.**"]

    return "\n".join(parts).strip() + "\n"
