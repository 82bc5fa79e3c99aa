"""Deterministic markdown repair for LLM output.

``sanitize`` is pure and idempotent: ``sanitize(sanitize(m)) == sanitize(m)``.
Passes, in order:

1. normalise line endings and blank out whitespace-only lines
2. split tables an LLM emitted on a single line back into rows
3. drop stray blank lines inside tables; exactly one blank line around
   tables and code fences, and one before headings
4. fence runs of two or more diagram-like lines (box drawing, or arrows
   laid out with wide gaps)
5. cap consecutive blank lines at two

Lines inside existing code fences are never rewritten by passes 2-5.
"""

from __future__ import annotations

import re

_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_HEADING_RE = re.compile(r"^#{1,6}\s")
_SEPARATOR_RUN_RE = re.compile(r"\|(?:[ \t]*:?-{3,}:?[ \t]*\|){2,}")
_SEPARATOR_CELL_RE = re.compile(r"^:?-{3,}:?$")

# Box drawing (U+2500-257F) and block elements (U+2580-259F).
_BOX_CHARS_RE = re.compile(r"[\u2500-\u259F]")
_ARROW_RE = re.compile(r"-{1,}>|<-{1,}|={1,}>|[→←↑↓↔⇒⇐⇄▶◀▲▼]")
_WIDE_GAP_RE = re.compile(r"\S[ \t]{3,}\S")

MAX_BLANK_LINES = 2

_BLANK = "blank"
_TEXT = "text"
_HEADING = "heading"
_TABLE = "table"
_CODE = "code"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def fence_mask(lines: list[str]) -> list[bool]:
    """True for every line inside (or delimiting) a fenced code block.

    An unclosed fence runs to the end of the document.
    """
    mask: list[bool] = []
    marker: str | None = None
    for line in lines:
        if marker is None:
            m = _FENCE_RE.match(line)
            if m:
                marker = m.group(1)
            mask.append(m is not None)
        else:
            mask.append(True)
            if line.lstrip().startswith(marker):
                marker = None
    return mask


def _cells(text: str) -> list[str]:
    return [c.strip() for c in text.split("|") if c.strip()]


def _row(cells: list[str]) -> str:
    return "| " + " | ".join(cells) + " |"


def _is_table_line(line: str) -> bool:
    stripped = line.strip()
    return stripped.startswith("|") and stripped.count("|") >= 2


def _is_separator_row(line: str) -> bool:
    cells = _cells(line)
    return _is_table_line(line) and bool(cells) and all(_SEPARATOR_CELL_RE.match(c) for c in cells)


def _is_diagram_line(line: str) -> bool:
    stripped = line.strip()
    if not stripped or stripped.startswith("|") or _HEADING_RE.match(stripped):
        return False
    if _BOX_CHARS_RE.search(stripped):
        return True
    return bool(_ARROW_RE.search(stripped) and _WIDE_GAP_RE.search(stripped))


# ---------------------------------------------------------------------------
# Pass 1: normalisation
# ---------------------------------------------------------------------------

def _normalize(text: str) -> list[str]:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return ["" if not line.strip() else line for line in text.split("\n")]


# ---------------------------------------------------------------------------
# Pass 2: single-line tables
# ---------------------------------------------------------------------------

def split_inline_table(line: str) -> list[str] | None:
    """Re-split a table squashed onto one line; ``None`` if *line* is not one.

    The column count comes from the ``|---|---|`` separator run.  Empty cells
    are treated as row boundaries, and a short final row is padded.
    """
    m = _SEPARATOR_RUN_RE.search(line)
    if m is None:
        return None
    header = _cells(line[:m.start()])
    data = _cells(line[m.end():])
    if not header and not data:
        return None

    separator = _cells(m.group(0))
    columns = len(separator)
    if header and len(header) != columns:
        return None
    if len(data) % columns:
        data += [""] * (columns - len(data) % columns)

    rows = [_row(header)] if header else []
    rows.append("|" + "|".join(separator) + "|")
    rows.extend(_row(data[i:i + columns]) for i in range(0, len(data), columns))
    return rows


def _repair_tables(lines: list[str]) -> list[str]:
    out: list[str] = []
    for line, fenced in zip(lines, fence_mask(lines)):
        rows = None if fenced else split_inline_table(line)
        out.extend(rows or [line])
    return out


# ---------------------------------------------------------------------------
# Pass 3: block spacing
# ---------------------------------------------------------------------------

def _starts_new_table(lines: list[str], index: int) -> bool:
    return index + 1 < len(lines) and _is_separator_row(lines[index + 1])


def _units(lines: list[str]) -> list[tuple[str, list[str]]]:
    """Group lines into blank / text / heading / table / code units."""
    units: list[tuple[str, list[str]]] = []
    i = 0
    n = len(lines)
    while i < n:
        line = lines[i]
        fence = _FENCE_RE.match(line)
        if fence:
            marker = fence.group(1)
            j = i + 1
            while j < n and not lines[j].lstrip().startswith(marker):
                j += 1
            units.append((_CODE, lines[i:j + 1]))
            i = j + 1
            continue
        if _is_table_line(line):
            block = [line]
            j = i + 1
            while j < n:
                if _is_table_line(lines[j]):
                    block.append(lines[j])
                    j += 1
                    continue
                if not lines[j].strip():
                    k = j
                    while k < n and not lines[k].strip():
                        k += 1
                    if k < n and _is_table_line(lines[k]) and not _starts_new_table(lines, k):
                        j = k
                        continue
                break
            units.append((_TABLE, block))
            i = j
            continue
        if not line.strip():
            units.append((_BLANK, [""]))
        elif _HEADING_RE.match(line):
            units.append((_HEADING, [line]))
        else:
            units.append((_TEXT, [line]))
        i += 1
    return units


def _space_blocks(lines: list[str]) -> list[str]:
    out: list[tuple[str, list[str]]] = []
    after_block = False
    for kind, block in _units(lines):
        if kind == _BLANK:
            if not after_block:
                out.append((kind, block))
            continue
        if kind in (_TABLE, _CODE, _HEADING):
            while out and out[-1][0] == _BLANK:
                out.pop()
            if out:
                out.append((_BLANK, [""]))
        elif after_block:
            out.append((_BLANK, [""]))
        out.append((kind, block))
        after_block = kind in (_TABLE, _CODE)
    return [line for _, block in out for line in block]


# ---------------------------------------------------------------------------
# Pass 4: diagrams
# ---------------------------------------------------------------------------

def _fence_diagrams(lines: list[str]) -> list[str]:
    fenced = fence_mask(lines)
    out: list[str] = []
    i = 0
    n = len(lines)
    while i < n:
        if not fenced[i] and _is_diagram_line(lines[i]):
            j = i
            while j < n and not fenced[j] and _is_diagram_line(lines[j]):
                j += 1
            if j - i >= 2:
                while out and not out[-1].strip():
                    out.pop()
                if out:
                    out.append("")
                out.append("```")
                out.extend(lines[i:j])
                out.append("```")
                k = j
                while k < n and not lines[k].strip():
                    k += 1
                if k < n:
                    out.append("")
                i = k
                continue
        out.append(lines[i])
        i += 1
    return out


# ---------------------------------------------------------------------------
# Pass 5: blank line cap
# ---------------------------------------------------------------------------

def _cap_blank_lines(lines: list[str]) -> list[str]:
    out: list[str] = []
    run = 0
    for line, fenced in zip(lines, fence_mask(lines)):
        if not fenced and not line.strip():
            run += 1
            if run > MAX_BLANK_LINES:
                continue
        else:
            run = 0
        out.append(line)
    return out


def sanitize(markdown: str) -> str:
    """Repair common LLM markdown defects.  Pure and idempotent."""
    lines = _normalize(markdown)
    lines = _repair_tables(lines)
    lines = _space_blocks(lines)
    lines = _fence_diagrams(lines)
    lines = _cap_blank_lines(lines)
    text = "\n".join(lines).strip("\n")
    return text + "\n" if text else ""
