"""Data models for context feeding."""

from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, Field

from contextfeeder.budget.profiles import ContentCategory
from contextfeeder.budget.tracker import TokenBudget


class ContextCategory(str, Enum):
    """What a piece of context is."""

    SYSTEM_PROMPT = "system_prompt"
    CURRENT_TASK = "current_task"
    USER_MESSAGE = "user_message"
    ACTIVE_PLAN = "active_plan"
    RELATED_TICKET = "related_ticket"
    RECENT_HISTORY = "recent_history"
    OLDER_HISTORY = "older_history"
    DESIGN_COMPONENTS = "design_components"
    COMPONENT_SCHEMAS = "component_schemas"
    ETHICS_RULES = "ethics_rules"
    SYNC_STATE = "sync_state"
    SUPPLEMENTARY = "supplementary"


class ContextPriority(IntEnum):
    """Loading tier. Lower loads first."""

    MANDATORY = 1
    IMPORTANT = 2
    SUPPLEMENTARY = 3  # may be compressed
    OPTIONAL = 4  # dropped first, never compressed


CATEGORY_TIER: dict[ContextCategory, ContextPriority] = {
    ContextCategory.SYSTEM_PROMPT: ContextPriority.MANDATORY,
    ContextCategory.CURRENT_TASK: ContextPriority.MANDATORY,
    ContextCategory.USER_MESSAGE: ContextPriority.MANDATORY,
    ContextCategory.ACTIVE_PLAN: ContextPriority.IMPORTANT,
    ContextCategory.RELATED_TICKET: ContextPriority.IMPORTANT,
    ContextCategory.RECENT_HISTORY: ContextPriority.IMPORTANT,
    ContextCategory.DESIGN_COMPONENTS: ContextPriority.SUPPLEMENTARY,
    ContextCategory.COMPONENT_SCHEMAS: ContextPriority.SUPPLEMENTARY,
    ContextCategory.ETHICS_RULES: ContextPriority.SUPPLEMENTARY,
    ContextCategory.SYNC_STATE: ContextPriority.SUPPLEMENTARY,
    ContextCategory.OLDER_HISTORY: ContextPriority.OPTIONAL,
    ContextCategory.SUPPLEMENTARY: ContextPriority.OPTIONAL,
}

HISTORY_CATEGORIES = frozenset({ContextCategory.RECENT_HISTORY, ContextCategory.OLDER_HISTORY})


def tier_for(category: ContextCategory) -> ContextPriority:
    """Loading tier for a context category."""
    return CATEGORY_TIER.get(category, ContextPriority.OPTIONAL)


class CompressionStage(str, Enum):
    """Stages of the compression cascade, in the order they run."""

    STRIP_COMMENTS = "strip_comments"
    ABBREVIATE_JSON = "abbreviate_json"
    COLLAPSE_PATTERNS = "collapse_patterns"
    HEAD_TAIL = "head_tail"
    HARD_TRUNCATE = "hard_truncate"


class ItemMetadata(BaseModel):
    """Where a context item came from and how fresh it is."""

    source_type: str = "custom"  # task, ticket, plan, history, component, custom
    source_id: str = ""
    created_at: datetime | None = None
    is_stale: bool = False
    related_task_ids: list[str] = Field(default_factory=list)
    related_file_patterns: list[str] = Field(default_factory=list)


class ContextItem(BaseModel):
    """A candidate piece of context for one request."""

    id: str
    label: str
    content: str
    content_type: ContentCategory = ContentCategory.NATURAL_TEXT
    category: ContextCategory
    priority: ContextPriority = ContextPriority.OPTIONAL
    relevance_score: int = 0  # 0-100, recomputed per request
    estimated_tokens: int = 0
    metadata: ItemMetadata = Field(default_factory=ItemMetadata)
    compression: CompressionStage | None = None  # stage that produced `content`

    @property
    def tier(self) -> ContextPriority:
        return tier_for(self.category)

    @property
    def is_compressed(self) -> bool:
        return self.compression is not None


class RelevanceKeywordSet(BaseModel):
    """Keywords extracted once per request for relevance scoring."""

    task_keywords: list[str] = Field(default_factory=list)
    file_keywords: list[str] = Field(default_factory=list)
    domain_keywords: list[str] = Field(default_factory=list)

    @property
    def all_keywords(self) -> list[str]:
        return [*self.task_keywords, *self.file_keywords, *self.domain_keywords]

    def __len__(self) -> int:
        return len(self.task_keywords) + len(self.file_keywords) + len(self.domain_keywords)


class Message(BaseModel):
    """A message handed to the language-model client."""

    role: str  # "system", "user", "assistant"
    content: str = ""


class ContextFeedResult(BaseModel):
    """Everything produced for one request."""

    messages: list[Message] = Field(default_factory=list)
    budget: TokenBudget
    included_items: list[ContextItem] = Field(default_factory=list)
    excluded_items: list[ContextItem] = Field(default_factory=list)
    compression_applied: bool = False
    total_items_considered: int = 0

    def summary(self) -> str:
        """Human-readable summary of what made it into the context."""
        budget = self.budget
        lines = [
            f"Context feed for model: {budget.model_profile.display_name}",
            f"Tokens: {budget.consumed:,} / {budget.available_for_input:,} "
            f"({budget.used_percent:.0f}%, {budget.warning_level.value})",
            f"Items: {len(self.included_items)} included, "
            f"{len(self.excluded_items)} excluded, "
            f"{self.total_items_considered} considered",
        ]
        if self.compression_applied:
            lines.append("Compression applied")
        lines.append("")
        lines.append("Included:")
        for item in self.included_items:
            marker = "*" if item.is_compressed else ">"
            lines.append(
                f"  {marker} {item.label} [{item.category.value}] "
                f"tier={int(item.tier)} score={item.relevance_score} ~{item.estimated_tokens}tok"
            )
            if item.compression:
                lines.append(f"    compressed: {item.compression.value}")
        if self.excluded_items:
            lines.append("Excluded:")
            for item in self.excluded_items:
                lines.append(
                    f"  - {item.label} [{item.category.value}] "
                    f"tier={int(item.tier)} score={item.relevance_score}"
                )
        return "\n".join(lines)
