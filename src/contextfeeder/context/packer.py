"""Greedy tiered packing of context items into a token budget."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from contextfeeder.budget.tracker import TokenBudget, TokenBudgetTracker
from contextfeeder.config import PackingConfig
from contextfeeder.context.compression import CompressionCascade
from contextfeeder.context.models import (
    ContextCategory,
    ContextItem,
    ContextPriority,
)

logger = logging.getLogger("contextfeeder.context.packer")

_FORCED_CATEGORIES = frozenset({ContextCategory.SYSTEM_PROMPT, ContextCategory.USER_MESSAGE})


def sort_by_tier_and_relevance(items: list[ContextItem]) -> list[ContextItem]:
    """Mandatory tier first, then highest relevance within a tier.

    The sort is stable, so equal items keep their input order.
    """
    return sorted(items, key=lambda item: (int(item.tier), -item.relevance_score))


@dataclass
class PackResult:
    """Outcome of packing one request's items."""

    included: list[ContextItem] = field(default_factory=list)
    excluded: list[ContextItem] = field(default_factory=list)
    compression_applied: bool = False


class TieredPacker:
    """Adds items to a budget in tier/relevance order, compressing before dropping.

    The budget passed to `pack` is owned by the caller's request and is
    only mutated through the tracker.
    """

    def __init__(
        self,
        tracker: TokenBudgetTracker,
        cascade: CompressionCascade,
        config: PackingConfig | None = None,
    ) -> None:
        self.tracker = tracker
        self.cascade = cascade
        self.config = config or PackingConfig()

    def pack(
        self,
        budget: TokenBudget,
        items: list[ContextItem],
        system_item: ContextItem,
        user_item: ContextItem,
    ) -> PackResult:
        """Pack `items` after force-including the system prompt and user message.

        Items are sorted here; callers pass them in any order. Extra items in
        the system prompt or user message categories are reported as excluded.
        Every packed item leaves with an estimate for the budget's profile.
        """
        result = PackResult()
        profile = budget.model_profile

        for forced in (system_item, user_item):
            self.tracker.add_item(
                budget, forced.label, forced.content, forced.tier, forced.content_type
            )
            forced.estimated_tokens = self.tracker.estimate_tokens(
                forced.content, forced.content_type, profile
            )
            result.included.append(forced)

        cfg = self.config
        for item in sort_by_tier_and_relevance(items):
            tokens = self.tracker.estimate_tokens(item.content, item.content_type, profile)
            item.estimated_tokens = tokens

            if item.category in _FORCED_CATEGORIES:
                result.excluded.append(item)
                logger.debug('Excluded duplicate %s item "%s"', item.category.value, item.label)
                continue

            remaining = self.tracker.get_remaining(budget)

            if self.tracker.can_fit(budget, item.content, item.content_type):
                self.tracker.add_item(budget, item.label, item.content, item.tier, item.content_type)
                result.included.append(item)
                continue

            if item.tier > ContextPriority.SUPPLEMENTARY or remaining <= cfg.compression_min_remaining:
                result.excluded.append(item)
                logger.info('Excluded "%s": %d tokens (budget: %d)', item.label, tokens, remaining)
                continue

            target = math.floor(remaining * cfg.compression_target_ratio)
            compressed = self.cascade.compress(item, target, profile)
            if compressed.estimated_tokens <= remaining - cfg.compression_margin:
                self.tracker.add_item(
                    budget, compressed.label, compressed.content, compressed.tier,
                    compressed.content_type,
                )
                result.included.append(compressed)
                result.compression_applied = True
                logger.info(
                    'Compressed "%s": %d -> %d tokens (%s)',
                    item.label, tokens, compressed.estimated_tokens,
                    compressed.compression.value if compressed.compression else "unchanged",
                )
            else:
                result.excluded.append(item)
                logger.info(
                    'Excluded "%s": %d tokens (even compressed: %d, budget: %d)',
                    item.label, tokens, compressed.estimated_tokens, remaining,
                )

        return result
