"""Context feeding: budgeted, relevance-ordered context for one agent request.

Pipeline:
  1. Create a token budget from the model profile
  2. Build candidate items from the agent context (+ caller extras)
  3. Extract keywords from task, message and plan; score every item
  4. Force-include the system prompt and user message
  5. Pack remaining items by tier then relevance, compressing tiers 1-3
     before dropping them
  6. Assemble the ordered message list

Nothing here calls a model or touches storage; given the same inputs and
clock the result is identical.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime

from contextfeeder.budget.tracker import TokenBudget, TokenBudgetTracker, WarningLevel
from contextfeeder.config import ProjectConfig
from contextfeeder.context.assembler import build_messages
from contextfeeder.context.builder import ContextItemBuilder
from contextfeeder.context.compression import CompressionCascade
from contextfeeder.context.models import (
    ContextFeedResult,
    ContextItem,
    RelevanceKeywordSet,
)
from contextfeeder.context.packer import TieredPacker
from contextfeeder.context.relevance import RelevanceScorer, extract_keywords
from contextfeeder.context.sources import AgentContext, DesignComponent, Plan, Task

logger = logging.getLogger("contextfeeder.context.feeder")


class ContextFeeder:
    """Builds optimized LLM messages within a token budget.

    Usage:
        tracker = TokenBudgetTracker(ModelRegistry.from_config(config), config=config.budget)
        feeder = ContextFeeder(tracker, config)
        result = feeder.build_optimized_messages(message, system_prompt, context)
        client.complete(result.messages)
    """

    def __init__(
        self,
        tracker: TokenBudgetTracker,
        config: ProjectConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.tracker = tracker
        self.config = config or ProjectConfig()
        self.builder = ContextItemBuilder(
            tracker, self.config.packing, self.config.compression, clock=clock
        )
        self.scorer = RelevanceScorer(self.config.scoring, clock=clock)
        self.cascade = CompressionCascade(tracker, self.config.compression)
        self.packer = TieredPacker(tracker, self.cascade, self.config.packing)

    # -------------------------------------------------------------------
    # Main entry point
    # -------------------------------------------------------------------

    def build_optimized_messages(
        self,
        user_message: str,
        system_prompt: str,
        context: AgentContext,
        additional_items: list[ContextItem] | None = None,
        agent_type: str | None = None,
        model_id: str | None = None,
    ) -> ContextFeedResult:
        """Assemble the message list for one request.

        Args:
            user_message: The incoming message. Always included, last.
            system_prompt: The agent's system prompt. Always included, first.
            context: Task, ticket, plan, history and supplementary data.
            additional_items: Extra caller-built items (e.g. design context).
            agent_type: Name used in log lines.
            model_id: Profile to budget against; defaults to the tracker's.

        Raises:
            UnknownModelError: If `model_id` is not registered.
        """
        start_time = time.time()

        # Phase 1: Budget
        profile = self.tracker.registry.get(model_id) if model_id else None
        budget = self.tracker.create_budget(profile, agent_type=agent_type)

        # Phase 2: Candidate items
        items = self.builder.build_items(context, additional_items)

        # Phase 3: Relevance
        keywords = self.extract_keywords(context.task, user_message, context.plan)
        for item in items:
            item.relevance_score = self.scorer.score(item, keywords)

        # Phase 4-5: Forced items, then tiered packing
        packed = self.packer.pack(
            budget,
            items,
            self.builder.system_prompt_item(system_prompt),
            self.builder.user_message_item(user_message),
        )

        # Phase 6: Messages
        messages = build_messages(packed.included)

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(
            "Context feed for %s: %d items included, %d excluded, %d/%d tokens consumed%s (%.1fms)",
            agent_type or "unknown", len(packed.included), len(packed.excluded),
            budget.consumed, budget.available_for_input,
            " (compression applied)" if packed.compression_applied else "",
            elapsed_ms,
        )
        if budget.warning_level in (WarningLevel.CRITICAL, WarningLevel.EXCEEDED):
            logger.warning(
                "Token budget %s for %s: %.0f%% of input used",
                budget.warning_level.value, agent_type or "unknown", budget.used_percent,
            )

        return ContextFeedResult(
            messages=messages,
            budget=budget,
            included_items=packed.included,
            excluded_items=packed.excluded,
            compression_applied=packed.compression_applied,
            total_items_considered=len(items) + 2,
        )

    # -------------------------------------------------------------------
    # Component access
    # -------------------------------------------------------------------

    def extract_keywords(
        self,
        task: Task | None = None,
        message: str | None = None,
        plan: Plan | None = None,
    ) -> RelevanceKeywordSet:
        return extract_keywords(task, message, plan)

    def score_relevance(self, item: ContextItem, keywords: RelevanceKeywordSet) -> int:
        return self.scorer.score(item, keywords)

    def compress_item(self, item: ContextItem, target_tokens: int) -> ContextItem:
        return self.cascade.compress(item, target_tokens)

    def summarize_component_tree(self, components: list[DesignComponent]) -> str:
        return self.builder.summarize_component_tree(components)

    def build_design_context(
        self,
        page_id: str,
        components: list[DesignComponent],
        budget: TokenBudget,
    ) -> list[ContextItem]:
        return self.builder.build_design_context(page_id, components, budget)
