"""Deterministic, content-aware compression of oversized context items.

Cascade (first stage that reaches the target wins):
  1. strip_comments       -- code and mixed content only
  2. abbreviate_json      -- JSON content only
  3. collapse_patterns    -- runs of structurally similar lines
  4. head_tail            -- keep first 60% / last 40% of a line budget
  5. hard_truncate        -- slice to the target character count

Every stage is a pure function of its input. A stage whose output is
longer than its input is discarded, so the cascade never grows an item.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

from contextfeeder.budget.profiles import ContentCategory, ModelProfile
from contextfeeder.budget.tracker import TokenBudgetTracker
from contextfeeder.config import CompressionConfig
from contextfeeder.context.models import CompressionStage, ContextItem

TRUNCATION_NOTICE = "\n[... truncated to fit budget]"

_BLANK_RUN = re.compile(r"\n{3,}")
_LINE_PREFIX = re.compile(r"^(\s*\w+[\s:({]*)")

# Stages gated on content category. Keyed by every ContentCategory.
_CATEGORY_STAGES: dict[ContentCategory, tuple[CompressionStage, ...]] = {
    ContentCategory.CODE: (CompressionStage.STRIP_COMMENTS,),
    ContentCategory.MIXED: (CompressionStage.STRIP_COMMENTS,),
    ContentCategory.JSON: (CompressionStage.ABBREVIATE_JSON,),
    ContentCategory.MARKDOWN: (),
    ContentCategory.NATURAL_TEXT: (),
}

_UNGATED_STAGES = (
    CompressionStage.COLLAPSE_PATTERNS,
    CompressionStage.HEAD_TAIL,
    CompressionStage.HARD_TRUNCATE,
)

_unmapped = set(ContentCategory) - set(_CATEGORY_STAGES)
if _unmapped:
    raise RuntimeError(
        "No compression stages declared for: "
        + ", ".join(sorted(c.value for c in _unmapped))
    )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def strip_comments(code: str) -> str:
    """Remove // line comments and /* */ block comments.

    Scans character by character, tracking single-quote, double-quote and
    backtick strings so comment markers inside literals survive. Runs of
    three or more newlines left behind are collapsed to two.
    """
    if not code:
        return ""

    out: list[str] = []
    n = len(code)
    i = 0
    quote: str | None = None

    while i < n:
        ch = code[i]
        nxt = code[i + 1] if i + 1 < n else ""

        if quote is None:
            if ch in ("'", '"', "`"):
                quote = ch
            elif ch == "/" and nxt == "/":
                while i < n and code[i] != "\n":
                    i += 1
                continue
            elif ch == "/" and nxt == "*":
                end = code.find("*/", i + 2)
                i = n if end == -1 else end + 2
                continue
        else:
            if ch == "\\" and i + 1 < n:
                out.append(code[i : i + 2])
                i += 2
                continue
            if ch == quote:
                quote = None
            elif ch == "\n" and quote != "`":
                # Plain quotes cannot span lines; recover from stray apostrophes
                quote = None

        out.append(ch)
        i += 1

    return _BLANK_RUN.sub("\n\n", "".join(out))


def _abbreviate(value: Any, max_string: int, max_items: int) -> Any:
    if isinstance(value, str):
        return value[: max_string - 3] + "..." if len(value) > max_string else value
    if isinstance(value, list):
        short = [_abbreviate(v, max_string, max_items) for v in value[:max_items]]
        if len(value) > max_items:
            short.append(f"[+{len(value) - max_items} more]")
        return short
    if isinstance(value, dict):
        return {
            k: _abbreviate(v, max_string, max_items)
            for k, v in value.items()
            if v is not None
        }
    return value


def abbreviate_json(text: str, max_string: int = 50, max_items: int = 5) -> str:
    """Drop null fields, shorten long strings and long arrays.

    Text that does not parse as JSON, or is nested too deeply to walk, is
    returned unchanged.
    """
    if not text:
        return ""
    try:
        parsed = json.loads(text)
        if parsed is None:
            return text
        return json.dumps(
            _abbreviate(parsed, max_string, max_items), indent=1, ensure_ascii=False
        )
    except (ValueError, RecursionError):
        return text


def _line_prefix(line: str) -> str:
    """Structural prefix of a line, e.g. "import {" or "backgroundColor:"."""
    if not line:
        return ""
    match = _LINE_PREFIX.match(line)
    return match.group(1).strip() if match else ""


def collapse_repeated_patterns(text: str, min_run: int = 3, min_prefix: int = 4) -> str:
    """Collapse runs of lines sharing a structural prefix.

    The first and last line of each run are kept; the interior becomes
    "[N similar entries]".
    """
    if not text:
        return ""

    lines = text.split("\n")
    if len(lines) <= 3:
        return text

    result: list[str] = []
    i = 0
    while i < len(lines):
        prefix = _line_prefix(lines[i].strip())
        if len(prefix) >= min_prefix:
            j = i + 1
            while j < len(lines) and _line_prefix(lines[j].strip()) == prefix:
                j += 1
            run = j - i
            if run >= min_run:
                result.append(lines[i])
                result.append(f"[{run - 2} similar entries]")
                result.append(lines[j - 1])
                i = j
                continue

        result.append(lines[i])
        i += 1

    return "\n".join(result)


def truncate_head_tail(content: str, max_lines: int, head_ratio: float = 0.6) -> str:
    """Keep the first 60% and last 40% of `max_lines` lines."""
    if not content:
        return ""

    lines = content.split("\n")
    if len(lines) <= max_lines:
        return content

    head_count = math.ceil(max_lines * head_ratio)
    tail_count = max(1, max_lines - head_count)
    omitted = len(lines) - head_count - tail_count

    return "\n".join([
        *lines[:head_count],
        f"[... {omitted} lines omitted ...]",
        *lines[-tail_count:],
    ])


def hard_truncate(text: str, max_chars: int) -> str:
    """Slice to `max_chars`, preferring a line boundary past the halfway mark."""
    cut = text[:max_chars]
    last_newline = cut.rfind("\n")
    if last_newline > max_chars * 0.5:
        cut = cut[:last_newline]
    return cut + TRUNCATION_NOTICE


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------

def stages_for(category: ContentCategory) -> tuple[CompressionStage, ...]:
    """Ordered cascade stages applicable to a content category."""
    return _CATEGORY_STAGES[category] + _UNGATED_STAGES


class CompressionCascade:
    """Applies compression stages to one item until it fits a token target.

    Usage:
        cascade = CompressionCascade(tracker)
        smaller = cascade.compress(item, target_tokens=400)
        smaller.compression  # stage that got it under target
    """

    def __init__(
        self,
        tracker: TokenBudgetTracker,
        config: CompressionConfig | None = None,
    ) -> None:
        self.tracker = tracker
        self.config = config or CompressionConfig()

    def compress(
        self,
        item: ContextItem,
        target_tokens: int,
        profile: ModelProfile | None = None,
    ) -> ContextItem:
        """Return a copy of `item` compressed toward `target_tokens`.

        The original item is never modified. Always returns; the result
        may still exceed the target if every stage falls short.
        """
        profile = profile or self.tracker.current_profile
        category = item.content_type

        def estimate(text: str) -> int:
            return self.tracker.estimate_tokens(text, category, profile)

        if estimate(item.content) <= target_tokens:
            return item.model_copy(update={"estimated_tokens": estimate(item.content)})

        text = item.content
        last_stage: CompressionStage | None = None

        for stage in stages_for(category):
            candidate = self._apply(stage, text, target_tokens, profile.ratio_for(category))
            if len(candidate) < len(text):
                text = candidate
                last_stage = stage
            if estimate(text) <= target_tokens:
                break

        return item.model_copy(
            update={
                "content": text,
                "estimated_tokens": estimate(text),
                "compression": last_stage,
            }
        )

    def _apply(
        self,
        stage: CompressionStage,
        text: str,
        target_tokens: int,
        chars_per_token: float,
    ) -> str:
        cfg = self.config
        if stage == CompressionStage.STRIP_COMMENTS:
            return strip_comments(text)
        if stage == CompressionStage.ABBREVIATE_JSON:
            return abbreviate_json(text, cfg.max_string_length, cfg.max_array_items)
        if stage == CompressionStage.COLLAPSE_PATTERNS:
            return collapse_repeated_patterns(text, cfg.min_run_length, cfg.min_prefix_length)
        if stage == CompressionStage.HEAD_TAIL:
            target_chars = target_tokens * cfg.line_chars_per_token
            max_lines = max(cfg.min_lines, target_chars // cfg.chars_per_line)
            return truncate_head_tail(text, max_lines, cfg.head_ratio)
        if stage == CompressionStage.HARD_TRUNCATE:
            max_chars = max(0, math.floor(target_tokens * chars_per_token) - len(TRUNCATION_NOTICE))
            return hard_truncate(text, max_chars)
        raise ValueError(f"Unknown compression stage: {stage}")
