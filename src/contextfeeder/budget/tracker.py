"""Token budget tracking with content-type-aware estimation.

A budget models one request's share of a model's context window:

    reserved_for_output = max_output_tokens (or an explicit override)
    available_for_input = (context_window - reserved_for_output) * (1 - buffer)
    remaining           = max(0, available_for_input - consumed)

Estimation is a calibrated heuristic (characters per token, per content
category) rather than a real tokenizer, so it is cheap and deterministic.
`add_item` trusts its caller: it records and charges whatever it is given,
and callers check `can_fit` first.
"""

from __future__ import annotations

import json
import logging
import math
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field

from contextfeeder.budget.profiles import ContentCategory, ModelProfile, ModelRegistry, validate_profile
from contextfeeder.config import BudgetConfig
from contextfeeder.exceptions import ConfigurationError

logger = logging.getLogger("contextfeeder.budget.tracker")

# Only the head of a text is inspected when detecting its category
_DETECTION_SAMPLE_CHARS = 1000
_MAX_USAGE_RECORDS = 500

_JSON_START = re.compile(r"^\s*[\[{]")
_JSON_KEY = re.compile(r'"[^"]*"\s*:')

_CODE_SIGNALS = [
    re.compile(p)
    for p in (
        r"\bfunction\b", r"\bconst\b", r"\blet\b", r"\bvar\b",
        r"\bclass\b", r"\bimport\b", r"\bexport\b", r"\breturn\b",
        r"\bif\s*\(", r"\bfor\s*\(", r"\bwhile\s*\(",
        r"=>\s*{", r"\{\s*\n", r";\s*\n",
        r"//\s", r"/\*", r"\*/",
    )
]

_MARKDOWN_SIGNALS = [
    re.compile(p, re.MULTILINE)
    for p in (
        r"^#{1,6}\s", r"^\s*[-*+]\s", r"\[.*\]\(.*\)",
        r"^\s*>\s", r"```", r"\*\*.*\*\*",
    )
]

_WORD = re.compile(r"\b[a-zA-Z]+\b")


def _looks_like_json(sample: str, text: str) -> bool:
    if not _JSON_START.match(sample):
        return False
    if _JSON_KEY.search(sample):
        return True
    try:
        return isinstance(json.loads(text), (dict, list))
    except (ValueError, RecursionError):
        return False


def detect_content_category(text: str) -> ContentCategory:
    """Classify text from surface signals. No model calls.

    Code and markdown signals are counted separately; when both are
    strong the text is `mixed`.
    """
    if not text:
        return ContentCategory.MIXED

    sample = text[:_DETECTION_SAMPLE_CHARS]

    if _looks_like_json(sample, text):
        return ContentCategory.JSON

    code_score = sum(1 for r in _CODE_SIGNALS if r.search(sample))
    md_score = sum(1 for r in _MARKDOWN_SIGNALS if r.search(sample))

    if code_score >= 3 and md_score >= 2:
        return ContentCategory.MIXED
    if code_score >= 3:
        return ContentCategory.CODE
    if md_score >= 2:
        return ContentCategory.MARKDOWN

    chunks = sample.split()
    word_ratio = len(_WORD.findall(sample)) / max(len(chunks), 1)
    if word_ratio > 0.7:
        return ContentCategory.NATURAL_TEXT

    return ContentCategory.MIXED


class WarningLevel(str, Enum):
    """How much of the input budget has been consumed."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


class TokenBudgetItem(BaseModel):
    """Audit record of one item charged to a budget."""

    label: str
    content_type: ContentCategory
    char_count: int
    estimated_tokens: int
    priority: int
    included: bool = True


class TokenBudget(BaseModel):
    """Per-request token accumulator. Mutated only through the tracker."""

    model_profile: ModelProfile
    total_context_window: int
    reserved_for_output: int
    available_for_input: int
    consumed: int = 0
    remaining: int = 0
    warning_level: WarningLevel = WarningLevel.OK
    items: list[TokenBudgetItem] = Field(default_factory=list)

    @property
    def used_percent(self) -> float:
        if self.available_for_input <= 0:
            return 100.0 if self.consumed > 0 else 0.0
        return self.consumed / self.available_for_input * 100


class TokenBudgetWarning(BaseModel):
    """Emitted to warning callbacks when a threshold is crossed."""

    level: WarningLevel
    message: str
    budget_used_percent: float
    remaining_tokens: int
    suggestion: str = ""


@dataclass
class UsageRecord:
    """Estimated input vs. actual output for one completed LLM call."""

    timestamp: float
    input_tokens_estimated: int
    output_tokens_actual: int
    agent_type: str


class TokenBudgetTracker:
    """Creates budgets and charges items against them.

    Usage:
        tracker = TokenBudgetTracker(ModelRegistry())
        budget = tracker.create_budget()
        if tracker.can_fit(budget, text):
            tracker.add_item(budget, "Task", text, priority=1)
    """

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        model_id: str | None = None,
        config: BudgetConfig | None = None,
    ) -> None:
        self.registry = registry or ModelRegistry()
        self.config = config or BudgetConfig()
        self._current_model_id = model_id or self.registry.default_model_id
        # Resolve eagerly so an unknown id fails at construction
        self.registry.get(self._current_model_id)
        self._warning_callbacks: list[Callable[[TokenBudgetWarning], None]] = []
        self._usage: list[UsageRecord] = []

    # -------------------------------------------------------------------
    # Model profiles
    # -------------------------------------------------------------------

    @property
    def current_profile(self) -> ModelProfile:
        return self.registry.get(self._current_model_id)

    def set_current_model(self, model_id: str) -> None:
        """Switch the default model for new budgets and estimates."""
        self.registry.get(model_id)
        self._current_model_id = model_id

    def register_model(self, profile: ModelProfile) -> None:
        self.registry.register(profile)

    # -------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------

    def detect_content_type(self, text: str) -> ContentCategory:
        return detect_content_category(text)

    def estimate_tokens(
        self,
        text: str,
        category: ContentCategory | None = None,
        profile: ModelProfile | None = None,
    ) -> int:
        """Estimate tokens as ceil(chars / chars_per_token[category]).

        Per-message overhead is not included; `add_item` charges it.
        """
        if not text:
            return 0
        ct = category or detect_content_category(text)
        ratio = (profile or self.current_profile).ratio_for(ct)
        return math.ceil(len(text) / ratio)

    # -------------------------------------------------------------------
    # Budget management
    # -------------------------------------------------------------------

    def create_budget(
        self,
        profile: ModelProfile | None = None,
        max_output_tokens: int | None = None,
        agent_type: str | None = None,
    ) -> TokenBudget:
        """Create an empty budget for an upcoming LLM call.

        Raises:
            ConfigurationError: If the profile is malformed or the output
                reservation leaves no room for input.
        """
        profile = validate_profile(profile or self.current_profile)
        reserved = profile.max_output_tokens if max_output_tokens is None else max_output_tokens
        if reserved < 0 or reserved >= profile.context_window_tokens:
            raise ConfigurationError(
                f"Output reservation {reserved} does not fit the "
                f"{profile.context_window_tokens}-token window of '{profile.id}'"
            )

        total_available = profile.context_window_tokens - reserved
        buffer_fraction = self.config.input_buffer_percent / 100
        available = math.floor(total_available * (1 - buffer_fraction))

        logger.info(
            "Budget created for %s: %d input tokens available "
            "(%d window - %d output - %d buffer)",
            agent_type or "unknown", available, profile.context_window_tokens,
            reserved, total_available - available,
        )

        return TokenBudget(
            model_profile=profile,
            total_context_window=profile.context_window_tokens,
            reserved_for_output=reserved,
            available_for_input=available,
            remaining=available,
        )

    def add_item(
        self,
        budget: TokenBudget,
        label: str,
        content: str,
        priority: int,
        category: ContentCategory | None = None,
    ) -> TokenBudgetItem:
        """Charge `content` plus per-message overhead to the budget."""
        ct = category or detect_content_category(content)
        tokens = (
            self.estimate_tokens(content, ct, budget.model_profile)
            + budget.model_profile.overhead_tokens_per_message
        )

        item = TokenBudgetItem(
            label=label,
            content_type=ct,
            char_count=len(content),
            estimated_tokens=tokens,
            priority=int(priority),
        )
        budget.items.append(item)

        previous = budget.warning_level
        budget.consumed += tokens
        budget.remaining = max(0, budget.available_for_input - budget.consumed)
        budget.warning_level = self._warning_level(budget)

        if budget.warning_level == WarningLevel.EXCEEDED and previous != WarningLevel.EXCEEDED:
            logger.info(
                'Budget exceeded by "%s": %d consumed of %d available',
                label, budget.consumed, budget.available_for_input,
            )

        if budget.warning_level != previous:
            warning = self.check_warnings(budget)
            if warning:
                for callback in self._warning_callbacks:
                    callback(warning)

        return item

    def can_fit(
        self,
        budget: TokenBudget,
        content: str,
        category: ContentCategory | None = None,
    ) -> bool:
        """Whether the estimated cost of `content` fits what remains."""
        return self.estimate_tokens(content, category, budget.model_profile) <= budget.remaining

    def get_remaining(self, budget: TokenBudget) -> int:
        return max(0, budget.remaining)

    # -------------------------------------------------------------------
    # Warnings
    # -------------------------------------------------------------------

    def on_warning(self, callback: Callable[[TokenBudgetWarning], None]) -> None:
        """Register a callback fired when a budget crosses a threshold."""
        self._warning_callbacks.append(callback)

    def check_warnings(self, budget: TokenBudget) -> TokenBudgetWarning | None:
        used = budget.used_percent

        if used >= self.config.critical_threshold_percent:
            return TokenBudgetWarning(
                level=WarningLevel.EXCEEDED if used >= 100 else WarningLevel.CRITICAL,
                message=f"Input token budget at {round(used)}% - context compression may be needed",
                budget_used_percent=used,
                remaining_tokens=budget.remaining,
                suggestion="Apply context compression or reduce context items",
            )

        if used >= self.config.warning_threshold_percent:
            return TokenBudgetWarning(
                level=WarningLevel.WARNING,
                message=f"Input token budget at {round(used)}% - approaching limit",
                budget_used_percent=used,
                remaining_tokens=budget.remaining,
                suggestion="Consider reducing supplementary context",
            )

        return None

    def _warning_level(self, budget: TokenBudget) -> WarningLevel:
        used = budget.used_percent
        if used >= 100:
            return WarningLevel.EXCEEDED
        if used >= self.config.critical_threshold_percent:
            return WarningLevel.CRITICAL
        if used >= self.config.warning_threshold_percent:
            return WarningLevel.WARNING
        return WarningLevel.OK

    # -------------------------------------------------------------------
    # Usage tracking
    # -------------------------------------------------------------------

    def record_usage(
        self, input_tokens_estimated: int, output_tokens_actual: int, agent_type: str
    ) -> None:
        """Record actual usage after an LLM call, for calibrating estimates."""
        self._usage.append(
            UsageRecord(
                timestamp=time.time(),
                input_tokens_estimated=input_tokens_estimated,
                output_tokens_actual=output_tokens_actual,
                agent_type=agent_type,
            )
        )
        if len(self._usage) > _MAX_USAGE_RECORDS:
            self._usage = self._usage[-_MAX_USAGE_RECORDS:]

    def get_usage_stats(self) -> dict[str, int]:
        total_in = sum(r.input_tokens_estimated for r in self._usage)
        total_out = sum(r.output_tokens_actual for r in self._usage)
        count = len(self._usage)
        return {
            "total_input_estimated": total_in,
            "total_output_actual": total_out,
            "call_count": count,
            "avg_input_per_call": round(total_in / count) if count else 0,
            "avg_output_per_call": round(total_out / count) if count else 0,
        }

    def get_usage_by_agent(self) -> dict[str, dict[str, int]]:
        by_agent: dict[str, dict[str, int]] = {}
        for record in self._usage:
            entry = by_agent.setdefault(
                record.agent_type, {"calls": 0, "input_tokens": 0, "output_tokens": 0}
            )
            entry["calls"] += 1
            entry["input_tokens"] += record.input_tokens_estimated
            entry["output_tokens"] += record.output_tokens_actual
        return by_agent
