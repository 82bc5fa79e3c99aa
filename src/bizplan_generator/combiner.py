"""Extract numbered sections from stage outputs and reassemble them in order.

Stage outputs are untrusted free-form markdown.  Each section key has a
compiled heading pattern; a section runs from its heading to the next
heading of the same or a higher level, or to the next heading of another
section owned by the same stage.  When too few sections can be found
the stage texts are concatenated as-is instead.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .models import CombinedDocument, StageId, StageOutcome, TokenUsage
from .sanitizer import fence_mask
from .stages import (
    CONTENT_STAGES,
    DEVIL_SECTION,
    REFERENCES,
    SECTION_ORDER,
    SECTION_OWNERS,
    STAGES,
    stage_spec,
)

logger = logging.getLogger(__name__)

MIN_EXTRACTED_SECTIONS = 7

_ANY_HEADING_RE = re.compile(r"^(#{1,6})\s")

# Heading prefix: "##" or "###", optional bold marker.  Level-1 is the document title.
_HEAD = r"^(?P<hashes>#{2,3})[ \t]*(?:\*\*)?[ \t]*"


def _numbered_pattern(number: str) -> re.Pattern[str]:
    # "## 2. 트렌드", "### **2) 트렌드**", "## 2 트렌드"; never "## 2.1" or "## 12."
    return re.compile(
        _HEAD + re.escape(number) + r"(?:[.:)][ \t]*|[ \t]+)(?:\*\*)?[ \t]*(?=[^\W\d_])",
        re.MULTILINE,
    )


_REFERENCES_RE = re.compile(
    _HEAD + r"(?:\d+[.:)]?[ \t]*)?(?:참고[ \t]*문헌|참고[ \t]*자료|출처|references|sources)",
    re.MULTILINE | re.IGNORECASE,
)
_RISK_SUMMARY_RE = re.compile(
    _HEAD + r"(?:리스크[ \t]*요약|위험[ \t]*요약|risk[ \t]+summary)",
    re.MULTILINE | re.IGNORECASE,
)


@dataclass
class SectionMatcher:
    """Table of heading patterns keyed by section number (plus references)."""
    patterns: dict[str, re.Pattern[str]] = field(default_factory=lambda: {
        **{key: _numbered_pattern(key) for key in SECTION_ORDER if key != REFERENCES},
        DEVIL_SECTION: _numbered_pattern(DEVIL_SECTION),
        REFERENCES: _REFERENCES_RE,
    })

    def find(self, key: str, text: str, siblings: tuple[str, ...] = ()) -> tuple[int, int] | None:
        """Character span of section *key* in *text*, heading included.

        A heading for any of *siblings* also ends the section, whatever its
        level, so a demoted "### 3." never ends up inside section 2.
        """
        stops = [self.patterns[s] for s in siblings if s != key]
        return find_block(self.patterns[key], text, stops)

    def extract(self, key: str, text: str, siblings: tuple[str, ...] = ()) -> str | None:
        span = self.find(key, text, siblings)
        if span is None:
            return None
        block = text[span[0]:span[1]].strip()
        return block or None


def find_block(
    pattern: re.Pattern[str],
    text: str,
    stops: list[re.Pattern[str]] | None = None,
) -> tuple[int, int] | None:
    """Span from the first heading matching *pattern* to the next same-or-higher heading.

    A line matching any of *stops* ends the span regardless of level.
    """
    stops = stops or []
    lines = text.splitlines(keepends=True)
    fenced = fence_mask(lines)
    offsets = []
    pos = 0
    for line in lines:
        offsets.append(pos)
        pos += len(line)

    start_index: int | None = None
    level = 0
    for i, line in enumerate(lines):
        if fenced[i]:
            continue
        m = pattern.match(line)
        if m:
            start_index = i
            level = len(m.group("hashes"))
            break
    if start_index is None:
        return None

    end = len(text)
    for j in range(start_index + 1, len(lines)):
        if fenced[j]:
            continue
        h = _ANY_HEADING_RE.match(lines[j])
        if h and (len(h.group(1)) <= level or any(s.match(lines[j]) for s in stops)):
            end = offsets[j]
            break
    return offsets[start_index], end


def split_devil(text: str, matcher: SectionMatcher | None = None) -> tuple[str, str]:
    """Split devil's-advocate output into (risk summary fragment, section-14 block).

    The fragment is everything before the first section-14 heading.  When a
    risk-summary heading is present the fragment starts there, dropping any
    preamble the model put in front of it.  Without a section-14 heading the
    whole text is treated as the section-14 block.
    """
    matcher = matcher or SectionMatcher()
    text = text.strip()
    span = matcher.find(DEVIL_SECTION, text)
    if span is None:
        return "", text
    head = text[:span[0]]
    risk = _RISK_SUMMARY_RE.search(head)
    if risk is not None:
        head = head[risk.start():]
    section14 = text[span[0]:].strip()
    return head.strip(), section14


def _section_label(key: str) -> str:
    return "참고문헌" if key == REFERENCES else key


def render_warning_banner(
    failed: list[StageOutcome],
    missing: list[str],
) -> str:
    """Blockquote warning put under the title of a partial document."""
    lines: list[str] = []
    if failed:
        owned = [
            _section_label(key) for key in SECTION_ORDER
            if SECTION_OWNERS.get(key) in {o.stage_id for o in failed}
        ]
        lines.append(
            f"> ⚠️ **부분 생성 (partial generation)**: 일부 단계가 실패하여 "
            f"다음 섹션이 누락되었습니다: {', '.join(owned)}"
        )
        for outcome in failed:
            spec = stage_spec(outcome.stage_id)
            lines.append(f"> - {spec.label} ({outcome.stage_id.value}): {outcome.error or '알 수 없는 오류'}")
    failed_ids = {o.stage_id for o in failed}
    unexplained = [key for key in missing if SECTION_OWNERS.get(key) not in failed_ids]
    if unexplained:
        if lines:
            lines.append(">")
        lines.append(
            f"> ⚠️ 다음 섹션을 생성 결과에서 찾지 못했습니다: "
            f"{', '.join(_section_label(k) for k in unexplained)}"
        )
    return "\n".join(lines)


def combine(
    outcomes: list[StageOutcome],
    *,
    title: str | None = None,
    min_sections: int = MIN_EXTRACTED_SECTIONS,
    matcher: SectionMatcher | None = None,
) -> CombinedDocument:
    """Assemble stage outcomes into one document.  Never raises."""
    matcher = matcher or SectionMatcher()
    by_stage: dict[StageId, StageOutcome] = {o.stage_id: o for o in outcomes}

    failed: list[StageOutcome] = []
    for spec in CONTENT_STAGES:
        outcome = by_stage.get(spec.stage_id)
        if outcome is None:
            continue
        if outcome.failed or not outcome.content.strip():
            failed.append(outcome)

    extracted: dict[str, str] = {}
    for key in SECTION_ORDER:
        outcome = by_stage.get(SECTION_OWNERS[key])
        if outcome is None or outcome.failed or not outcome.content.strip():
            continue
        block = matcher.extract(key, outcome.content, stage_spec(outcome.stage_id).sections)
        if block:
            extracted[key] = block

    missing = [key for key in SECTION_ORDER if key not in extracted]

    risk_fragment, devil_block = "", ""
    devil = by_stage.get(StageId.DEVIL)
    if devil is not None and not devil.failed and devil.content.strip():
        risk_fragment, devil_block = split_devil(devil.content, matcher)

    used_fallback = len(extracted) < min_sections
    parts: list[str] = []
    if title:
        parts.append(f"# {title}")

    banner = render_warning_banner(failed, [] if used_fallback else missing)
    if banner:
        parts.append(banner)

    if used_fallback:
        logger.warning(
            "Only %d/%d sections extracted (minimum %d); concatenating stage outputs",
            len(extracted), len(SECTION_ORDER), min_sections,
        )
        for spec in STAGES:
            outcome = by_stage.get(spec.stage_id)
            if outcome is not None and not outcome.failed and outcome.content.strip():
                parts.append(outcome.content.strip())
    else:
        for key in SECTION_ORDER:
            if key == "2" and risk_fragment:
                parts.append(risk_fragment)
            if key == REFERENCES and devil_block:
                parts.append(devil_block)
            if key in extracted:
                parts.append(extracted[key])

    warnings: list[str] = []
    if failed:
        warnings.append(
            "Partial generation: failed stages "
            + ", ".join(f"{o.stage_id.value} ({o.error or 'unknown error'})" for o in failed)
        )
    if missing and not used_fallback:
        warnings.append("Missing sections: " + ", ".join(missing))
    if used_fallback:
        warnings.append(
            f"Section extraction found {len(extracted)}/{len(SECTION_ORDER)} sections; "
            "stage outputs were concatenated"
        )
    if devil is not None and devil.failed:
        logger.info("Devil's advocate stage failed; document has no section 14")

    usage: list[TokenUsage] = [o.usage for o in outcomes if o.usage is not None]
    return CombinedDocument(
        markdown="\n\n".join(p for p in parts if p).strip() + "\n",
        missing_sections=missing,
        failed_stages=[o.stage_id for o in failed],
        used_fallback=used_fallback,
        warnings=warnings,
        outcomes=list(outcomes),
        usage=usage,
    )
