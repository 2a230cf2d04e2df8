"""Tests for packing, message assembly and the full context feed."""

from __future__ import annotations

import pytest

from contextfeeder.budget.profiles import ContentCategory, ModelProfile
from contextfeeder.budget.tracker import WarningLevel
from contextfeeder.context.assembler import build_messages
from contextfeeder.context.feeder import ContextFeeder
from contextfeeder.context.models import (
    CompressionStage,
    ContextCategory,
    ContextItem,
    ContextPriority,
)
from contextfeeder.context.packer import sort_by_tier_and_relevance
from contextfeeder.context.sources import AgentContext
from contextfeeder.exceptions import UnknownModelError

SYSTEM_PROMPT = "You are a careful coding agent. Keep changes small."
USER_MESSAGE = "Please fix the login redirect loop."


def _item(item_id: str, category: ContextCategory, tokens: int, score: int = 0) -> ContextItem:
    """An item of exactly `tokens` tokens at 4 chars/token."""
    return ContextItem(
        id=item_id,
        label=item_id.title(),
        content="x" * (tokens * 4),
        content_type=ContentCategory.NATURAL_TEXT,
        category=category,
        relevance_score=score,
        estimated_tokens=tokens,
    )


class TestSortByTierAndRelevance:
    def test_tier_then_score(self):
        items = [
            _item("older", ContextCategory.OLDER_HISTORY, 1, score=90),
            _item("ticket", ContextCategory.RELATED_TICKET, 1, score=10),
            _item("plan", ContextCategory.ACTIVE_PLAN, 1, score=60),
            _item("task", ContextCategory.CURRENT_TASK, 1, score=0),
        ]
        assert [i.id for i in sort_by_tier_and_relevance(items)] == [
            "task", "plan", "ticket", "older",
        ]

    def test_stable_for_ties(self):
        items = [_item(f"s{i}", ContextCategory.SYNC_STATE, 1, score=5) for i in range(4)]
        assert sort_by_tier_and_relevance(items) == items


class TestBuildMessages:
    def test_order_and_labels(self, feeder: ContextFeeder):
        items = [
            _item("task", ContextCategory.CURRENT_TASK, 2),
            feeder.builder.user_message_item("hi"),
            _item("history", ContextCategory.RECENT_HISTORY, 2),
            feeder.builder.system_prompt_item("sys"),
        ]
        messages = build_messages(items)

        assert [m.role for m in messages] == ["system", "system", "system", "user"]
        assert messages[0].content == "sys"
        assert messages[1].content == "[Task]\n" + "x" * 8
        assert messages[2].content.startswith("[Conversation History]\n")
        assert messages[3].content == "hi"


class TestContextFeeder:
    def test_full_context(self, feeder: ContextFeeder, agent_context: AgentContext):
        result = feeder.build_optimized_messages(
            USER_MESSAGE, SYSTEM_PROMPT, agent_context, agent_type="coder"
        )

        assert result.messages[0].role == "system"
        assert result.messages[0].content == SYSTEM_PROMPT
        assert result.messages[-1].role == "user"
        assert result.messages[-1].content == USER_MESSAGE
        assert len(result.messages) == len(result.included_items)

        assert result.excluded_items == []
        assert not result.compression_applied
        assert result.total_items_considered == 9
        assert result.budget.warning_level == WarningLevel.OK

        contents = [m.content for m in result.messages]
        assert any(c.startswith("[Current Task: Fix login redirect loop]\n") for c in contents)
        assert sum(c.startswith("[Conversation History]\n") for c in contents) == 2

    def test_budget_matches_included(self, feeder: ContextFeeder, agent_context: AgentContext):
        result = feeder.build_optimized_messages(USER_MESSAGE, SYSTEM_PROMPT, agent_context)
        budget = result.budget
        assert len(budget.items) == len(result.included_items)
        assert budget.consumed == sum(i.estimated_tokens for i in budget.items)
        assert budget.remaining == budget.available_for_input - budget.consumed

    def test_tier_ordering(self, feeder: ContextFeeder, agent_context: AgentContext):
        result = feeder.build_optimized_messages(USER_MESSAGE, SYSTEM_PROMPT, agent_context)
        packed = result.included_items[2:]

        tiers = [int(i.tier) for i in packed]
        assert tiers == sorted(tiers)
        for tier in set(tiers):
            scores = [i.relevance_score for i in packed if int(i.tier) == tier]
            assert scores == sorted(scores, reverse=True)

    def test_relevance_scored(self, feeder: ContextFeeder, agent_context: AgentContext):
        result = feeder.build_optimized_messages(USER_MESSAGE, SYSTEM_PROMPT, agent_context)
        by_id = {i.id: i for i in result.included_items}

        assert by_id["system-prompt"].relevance_score == 100
        assert by_id["task-task-42"].relevance_score > by_id["additional-notes"].relevance_score
        assert all(0 <= i.relevance_score <= 100 for i in result.included_items)

    def test_deterministic(self, make_feeder, agent_context: AgentContext):
        first = make_feeder(400).build_optimized_messages(USER_MESSAGE, SYSTEM_PROMPT, agent_context)
        second = make_feeder(400).build_optimized_messages(USER_MESSAGE, SYSTEM_PROMPT, agent_context)

        assert first.messages == second.messages
        assert [i.id for i in first.excluded_items] == [i.id for i in second.excluded_items]
        assert first.budget.consumed == second.budget.consumed


class TestPackingScenarios:
    def _feed(self, feeder: ContextFeeder, *items: ContextItem):
        # 50-token system prompt and 20-token user message
        return feeder.build_optimized_messages("u" * 80, "s" * 200, AgentContext(), list(items))

    def test_large_budget_includes_uncompressed(self, make_feeder):
        result = self._feed(make_feeder(5000), _item("task", ContextCategory.CURRENT_TASK, 600))
        task = next(i for i in result.included_items if i.id == "task")

        assert task.estimated_tokens == 600
        assert task.compression is None
        assert not result.compression_applied

    def test_small_budget_compresses_or_excludes(self, make_feeder):
        result = self._feed(make_feeder(500), _item("task", ContextCategory.CURRENT_TASK, 600))
        # 50 + 4 and 20 + 4 charged for the forced messages
        remaining = 500 - 78

        included = [i for i in result.included_items if i.id == "task"]
        excluded = [i for i in result.excluded_items if i.id == "task"]
        assert len(included) + len(excluded) == 1
        if included:
            task = included[0]
            assert task.is_compressed
            assert task.estimated_tokens < remaining
            assert result.compression_applied

    def test_small_budget_compression_outcome(self, make_feeder):
        result = self._feed(make_feeder(500), _item("task", ContextCategory.CURRENT_TASK, 600))
        task = next(i for i in result.included_items if i.id == "task")

        # target is floor(422 * 0.8); a single line can only be truncated
        assert task.compression == CompressionStage.HARD_TRUNCATE
        assert task.estimated_tokens == 337
        assert result.budget.consumed == 78 + 337 + 4

    def test_no_room_to_compress(self, make_feeder):
        result = self._feed(make_feeder(100), _item("task", ContextCategory.CURRENT_TASK, 600))
        assert [i.id for i in result.excluded_items] == ["task"]
        assert not result.compression_applied

    def test_optional_tier_never_compressed(self, make_feeder):
        result = self._feed(
            make_feeder(500),
            _item("extra", ContextCategory.SUPPLEMENTARY, 600),
            _item("older", ContextCategory.OLDER_HISTORY, 600),
        )
        assert {i.id for i in result.excluded_items} == {"extra", "older"}
        assert not result.compression_applied
        assert all(i.compression is None for i in result.excluded_items)

    def test_fits_after_others_excluded(self, make_feeder):
        result = self._feed(
            make_feeder(500),
            _item("big", ContextCategory.SUPPLEMENTARY, 600),
            _item("small", ContextCategory.SUPPLEMENTARY, 50),
        )
        assert [i.id for i in result.included_items][2:] == ["small"]
        assert [i.id for i in result.excluded_items] == ["big"]

    def test_mandatory_items_always_included(self, make_feeder, agent_context: AgentContext):
        result = make_feeder(100).build_optimized_messages("u" * 80, "s" * 2000, agent_context)

        assert [i.category for i in result.included_items] == [
            ContextCategory.SYSTEM_PROMPT,
            ContextCategory.USER_MESSAGE,
        ]
        assert [m.role for m in result.messages] == ["system", "user"]
        assert len(result.excluded_items) == 7
        assert len(result.included_items) + 7 == result.total_items_considered
        assert result.budget.warning_level == WarningLevel.EXCEEDED
        assert result.budget.remaining == 0

    def test_duplicate_forced_category_excluded(self, make_feeder):
        duplicate = _item("dup", ContextCategory.SYSTEM_PROMPT, 5)
        result = self._feed(make_feeder(500), duplicate)

        assert "dup" not in {i.id for i in result.included_items}
        assert [i.id for i in result.excluded_items] == ["dup"]
        assert len(result.messages) == 2
        assert (
            len(result.included_items) + len(result.excluded_items)
            == result.total_items_considered
        )

    def test_excluded_item_estimated_for_request_model(self, make_feeder):
        feeder = make_feeder(500)
        feeder.tracker.register_model(ModelProfile(
            id="small/model",
            context_window_tokens=1100,
            max_output_tokens=1000,
            chars_per_token={c: 1.0 for c in ContentCategory},
        ))
        extra = ContextItem(
            id="extra",
            label="Extra",
            content="x" * 400,
            category=ContextCategory.SUPPLEMENTARY,
        )
        result = feeder.build_optimized_messages(
            "hi", "sys", AgentContext(), [extra], model_id="small/model"
        )

        assert [i.id for i in result.excluded_items] == ["extra"]
        assert result.excluded_items[0].estimated_tokens == 400

    def test_caller_item_tier_follows_category(self, make_feeder):
        item = _item("schema", ContextCategory.COMPONENT_SCHEMAS, 10)
        item.priority = ContextPriority.OPTIONAL
        result = self._feed(make_feeder(500), item)
        assert result.included_items[-1].tier == ContextPriority.SUPPLEMENTARY


class TestModelSelection:
    def test_model_id(self, make_feeder, make_profile):
        feeder = make_feeder(500)
        feeder.tracker.register_model(make_profile(2000, model_id="big/model"))
        result = feeder.build_optimized_messages(
            USER_MESSAGE, SYSTEM_PROMPT, AgentContext(), model_id="big/model"
        )
        assert result.budget.model_profile.id == "big/model"
        assert result.budget.available_for_input == 2000

    def test_unknown_model(self, feeder: ContextFeeder):
        with pytest.raises(UnknownModelError):
            feeder.build_optimized_messages(
                USER_MESSAGE, SYSTEM_PROMPT, AgentContext(), model_id="ghost"
            )


class TestSummary:
    def test_summary(self, make_feeder):
        feeder = make_feeder(500)
        result = feeder.build_optimized_messages(
            "u" * 80, "s" * 200, AgentContext(),
            [_item("task", ContextCategory.CURRENT_TASK, 600),
             _item("extra", ContextCategory.SUPPLEMENTARY, 600)],
        )
        summary = result.summary()

        assert "Context feed for model: Test Model" in summary
        assert "Compression applied" in summary
        assert "compressed: hard_truncate" in summary
        assert "Excluded:" in summary
        assert "- Extra [supplementary]" in summary


class TestFeederComponents:
    def test_delegates(self, feeder: ContextFeeder, agent_context: AgentContext):
        keywords = feeder.extract_keywords(agent_context.task, USER_MESSAGE, agent_context.plan)
        assert "src/auth/loginredirect.ts" in keywords.file_keywords

        item = _item("task", ContextCategory.CURRENT_TASK, 100)
        assert 0 <= feeder.score_relevance(item, keywords) <= 100
        assert feeder.compress_item(item, 10).estimated_tokens <= 10
        assert feeder.summarize_component_tree([]) == "[No components]"

        budget = feeder.tracker.create_budget()
        assert feeder.build_design_context("home", [], budget) == []
