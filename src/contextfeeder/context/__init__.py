"""Relevance-scored, tiered, budget-aware context assembly.

Usage:
    from contextfeeder.context import ContextFeeder, AgentContext

    feeder = ContextFeeder(tracker)
    result = feeder.build_optimized_messages(message, system_prompt, AgentContext())
    print(result.summary())
"""

from contextfeeder.context.feeder import ContextFeeder
from contextfeeder.context.models import (
    CATEGORY_TIER,
    CompressionStage,
    ContextCategory,
    ContextFeedResult,
    ContextItem,
    ContextPriority,
    ItemMetadata,
    Message,
    RelevanceKeywordSet,
)
from contextfeeder.context.sources import (
    AgentContext,
    ConversationEntry,
    DesignComponent,
    FeedRequest,
    Plan,
    Task,
    Ticket,
)

__all__ = [
    "CATEGORY_TIER",
    "AgentContext",
    "CompressionStage",
    "ContextCategory",
    "ContextFeedResult",
    "ContextFeeder",
    "ContextItem",
    "ContextPriority",
    "ConversationEntry",
    "DesignComponent",
    "FeedRequest",
    "ItemMetadata",
    "Message",
    "Plan",
    "RelevanceKeywordSet",
    "Task",
    "Ticket",
]
