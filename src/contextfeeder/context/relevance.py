"""Deterministic relevance scoring of context items.

Formula:
    raw = 3 * title_matches + 2 * description_matches + 1 * content_matches
        + 4 * file_path_matches + recency_bonus + same_task_bonus
        - staleness_penalty

    score = round(clamp(raw / max(3 * keyword_count, 20) * 100, 0, 100))

Title is the item label, description the first 500 characters of its
content. Task and domain keywords match label, description and content;
file keywords match label, content and the item's related file patterns.
The denominator is a heuristic ceiling, so strong matches saturate at 100.
All weights live in `ScoringConfig`.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from contextfeeder.config import ScoringConfig
from contextfeeder.context.models import ContextItem, RelevanceKeywordSet
from contextfeeder.context.sources import Plan, Task

STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "shall", "can", "need", "dare", "ought",
    "used", "to", "of", "in", "for", "on", "with", "at", "by", "from",
    "as", "into", "through", "during", "before", "after", "above", "below",
    "between", "out", "off", "over", "under", "again", "further", "then",
    "once", "here", "there", "when", "where", "why", "how", "all", "each",
    "every", "both", "few", "more", "most", "other", "some", "such", "no",
    "nor", "not", "only", "own", "same", "so", "than", "too", "very",
    "just", "because", "but", "and", "or", "if", "while", "that", "this",
    "it", "its", "they", "them", "their", "what", "which", "who", "whom",
    "these", "those", "i", "me", "my", "we", "our", "you", "your", "he",
    "him", "his", "she", "her",
})

_NON_WORD = re.compile(r"[^a-z0-9_\-./\\]")
_CAMEL_PART = re.compile(r"[A-Z]?[a-z]+")
_EXTENSION = re.compile(r"\.[^.]+$")


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _keep(word: str) -> bool:
    return len(word) > 2 and word not in STOP_WORDS


def extract_words(text: str | None) -> list[str]:
    """Meaningful lower-case words of `text`, plus camelCase/snake_case parts."""
    if not text:
        return []

    words = [w for w in _NON_WORD.sub(" ", text.lower()).split() if _keep(w)]
    words.extend(p.lower() for p in _CAMEL_PART.findall(text) if _keep(p.lower()))
    return list(dict.fromkeys(words))


def _string_values(value: Any) -> Iterable[str]:
    """All string leaves of a parsed JSON value."""
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for v in value.values():
            yield from _string_values(v)
    elif isinstance(value, list):
        for v in value:
            yield from _string_values(v)


def _plan_config_text(config_json: str) -> str:
    try:
        return " ".join(_string_values(json.loads(config_json)))
    except (ValueError, RecursionError):
        return config_json


def extract_keywords(
    task: Task | None = None,
    message: str | None = None,
    plan: Plan | None = None,
) -> RelevanceKeywordSet:
    """Build the three keyword groups for a request.

    Groups are disjoint: a word already in the file group is dropped from
    the task group, and one in either is dropped from the domain group.
    """
    task_words: dict[str, None] = {}
    file_words: dict[str, None] = {}
    domain_words: dict[str, None] = {}

    if task:
        for text in (task.title, task.description, task.acceptance_criteria):
            task_words.update(dict.fromkeys(extract_words(text)))

        for file_path in task.files_modified:
            if not file_path:
                continue
            file_words[file_path.lower()] = None
            filename = file_path.replace("\\", "/").split("/")[-1]
            stem = _EXTENSION.sub("", filename)
            if len(stem) > 2:
                file_words[stem.lower()] = None

    if message:
        domain_words.update(dict.fromkeys(extract_words(message)))

    if plan:
        domain_words.update(dict.fromkeys(extract_words(plan.name)))
        if plan.config_json:
            domain_words.update(dict.fromkeys(extract_words(_plan_config_text(plan.config_json))))

    files = list(file_words)
    tasks = [w for w in task_words if w not in file_words]
    domain = [w for w in domain_words if w not in file_words and w not in task_words]
    return RelevanceKeywordSet(task_keywords=tasks, file_keywords=files, domain_keywords=domain)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RelevanceScorer:
    """Scores context items 0-100 against a request's keywords.

    Usage:
        scorer = RelevanceScorer()
        keywords = extract_keywords(task, message, plan)
        item.relevance_score = scorer.score(item, keywords)
    """

    def __init__(
        self,
        config: ScoringConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or ScoringConfig()
        self.clock = clock or _utc_now

    def score(self, item: ContextItem, keywords: RelevanceKeywordSet) -> int:
        cfg = self.config
        keyword_count = len(keywords)
        if keyword_count == 0:
            return cfg.neutral_score

        label = item.label.lower()
        content = item.content.lower()
        description = content[: cfg.description_chars]
        patterns = [p.lower() for p in item.metadata.related_file_patterns]

        title_matches = 0
        description_matches = 0
        content_matches = 0
        file_path_matches = 0

        for kw in (*keywords.task_keywords, *keywords.domain_keywords):
            kw = kw.lower()
            title_matches += kw in label
            description_matches += kw in description
            content_matches += kw in content

        for kw in keywords.file_keywords:
            kw = kw.lower()
            title_matches += kw in label
            file_path_matches += sum(1 for p in patterns if kw in p)
            content_matches += kw in content

        raw = (
            title_matches * cfg.title_weight
            + description_matches * cfg.description_weight
            + content_matches * cfg.content_weight
            + file_path_matches * cfg.file_path_weight
        )
        raw += self.recency_bonus(item.metadata.created_at)
        raw += self.same_task_bonus(item, keywords)
        raw -= self.staleness_penalty(item.metadata.created_at, item.metadata.is_stale)

        ceiling = max(keyword_count * cfg.normalizer_per_keyword, cfg.normalizer_floor)
        return min(100, max(0, _round_half_up(raw / ceiling * 100)))

    def same_task_bonus(self, item: ContextItem, keywords: RelevanceKeywordSet) -> int:
        task_ids = [t.lower() for t in item.metadata.related_task_ids]
        if not task_ids:
            return 0
        for kw in keywords.task_keywords:
            kw = kw.lower()
            if any(kw in tid for tid in task_ids):
                return self.config.same_task_bonus
        return 0

    def recency_bonus(self, created_at: datetime | None) -> int:
        """+10 within the hour, +5 within the day, +2 within the week."""
        age = self._age(created_at)
        if age is None:
            return 0
        cfg = self.config
        if age < timedelta(hours=1):  # future timestamps land here too
            return cfg.recency_hour_bonus
        if age < timedelta(days=1):
            return cfg.recency_day_bonus
        if age < timedelta(weeks=1):
            return cfg.recency_week_bonus
        return 0

    def staleness_penalty(self, created_at: datetime | None, is_stale: bool) -> int:
        """Flat penalty for the stale flag plus an age penalty past the threshold."""
        cfg = self.config
        penalty = cfg.stale_flag_penalty if is_stale else 0

        age = self._age(created_at)
        threshold = timedelta(days=cfg.staleness_threshold_days)
        if age is not None and age > threshold:
            weeks_over = (age - threshold) / timedelta(weeks=1)
            penalty += min(
                cfg.max_age_penalty,
                _round_half_up(cfg.age_penalty_base + weeks_over * cfg.age_penalty_per_week),
            )

        return min(cfg.max_staleness_penalty, penalty)

    def _age(self, created_at: datetime | None) -> timedelta | None:
        if created_at is None:
            return None
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now - created_at
