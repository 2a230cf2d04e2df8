"""Turns an agent's structured context into uniform candidate items."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone

import networkx as nx

from contextfeeder.budget.profiles import ContentCategory
from contextfeeder.budget.tracker import TokenBudget, TokenBudgetTracker, detect_content_category
from contextfeeder.config import CompressionConfig, PackingConfig
from contextfeeder.context.models import (
    ContextCategory,
    ContextItem,
    ItemMetadata,
    tier_for,
)
from contextfeeder.context.sources import AgentContext, ConversationEntry, DesignComponent


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _num(value: float) -> str:
    return f"{value:g}"


def _format_history(entries: list[ConversationEntry]) -> str:
    return "\n---\n".join(f"[{e.role}] {e.content}" for e in entries)


class ContextItemBuilder:
    """Builds request-scoped ContextItems from an AgentContext.

    Every item's priority is the tier of its category, and its token
    estimate uses the tracker's current profile.
    """

    def __init__(
        self,
        tracker: TokenBudgetTracker,
        packing: PackingConfig | None = None,
        compression: CompressionConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.tracker = tracker
        self.packing = packing or PackingConfig()
        self.compression = compression or CompressionConfig()
        self.clock = clock or _utc_now

    def _item(
        self,
        item_id: str,
        label: str,
        content: str,
        content_type: ContentCategory,
        category: ContextCategory,
        metadata: ItemMetadata,
        relevance_score: int = 0,
    ) -> ContextItem:
        return ContextItem(
            id=item_id,
            label=label,
            content=content,
            content_type=content_type,
            category=category,
            priority=tier_for(category),
            relevance_score=relevance_score,
            estimated_tokens=self.tracker.estimate_tokens(content, content_type),
            metadata=metadata,
        )

    # -------------------------------------------------------------------
    # Mandatory items
    # -------------------------------------------------------------------

    def system_prompt_item(self, system_prompt: str) -> ContextItem:
        return self._item(
            "system-prompt", "System Prompt", system_prompt,
            ContentCategory.NATURAL_TEXT, ContextCategory.SYSTEM_PROMPT,
            ItemMetadata(source_id="system", created_at=self.clock()),
            relevance_score=100,
        )

    def user_message_item(self, user_message: str) -> ContextItem:
        return self._item(
            "user-message", "User Message", user_message,
            ContentCategory.NATURAL_TEXT, ContextCategory.USER_MESSAGE,
            ItemMetadata(source_id="user", created_at=self.clock()),
            relevance_score=100,
        )

    # -------------------------------------------------------------------
    # Candidate items
    # -------------------------------------------------------------------

    def build_items(
        self,
        context: AgentContext,
        additional_items: list[ContextItem] | None = None,
    ) -> list[ContextItem]:
        """Candidate items for the task, ticket, plan, history and extras."""
        items: list[ContextItem] = []
        now = self.clock()

        task = context.task
        if task:
            content = "\n".join(filter(None, [
                f"Task: {task.title}",
                f"Description: {task.description}",
                f"Priority: {task.priority}",
                f"Status: {task.status}",
                f"Acceptance Criteria: {task.acceptance_criteria}",
                f"Files: {', '.join(task.files_modified)}" if task.files_modified else "",
            ]))
            items.append(self._item(
                f"task-{task.id}", f"Current Task: {task.title}", content,
                ContentCategory.NATURAL_TEXT, ContextCategory.CURRENT_TASK,
                ItemMetadata(
                    source_type="task",
                    source_id=task.id,
                    created_at=task.created_at or now,
                    related_task_ids=[task.id],
                    related_file_patterns=list(task.files_modified),
                ),
            ))

        ticket = context.ticket
        if ticket:
            content = "\n".join([
                f"Ticket TK-{ticket.ticket_number}: {ticket.title}",
                f"Status: {ticket.status} | Priority: {ticket.priority}",
                f"Body: {ticket.body}",
            ])
            items.append(self._item(
                f"ticket-{ticket.id}", f"Related Ticket: TK-{ticket.ticket_number}", content,
                ContentCategory.NATURAL_TEXT, ContextCategory.RELATED_TICKET,
                ItemMetadata(
                    source_type="ticket",
                    source_id=ticket.id,
                    created_at=ticket.created_at or now,
                    related_task_ids=[ticket.task_id] if ticket.task_id else [],
                ),
            ))

        plan = context.plan
        if plan:
            content = "\n".join([
                f"Plan: {plan.name}",
                f"Status: {plan.status}",
                f"Config: {plan.config_json}",
            ])
            items.append(self._item(
                f"plan-{plan.id}", f"Active Plan: {plan.name}", content,
                ContentCategory.MIXED, ContextCategory.ACTIVE_PLAN,
                ItemMetadata(source_type="plan", source_id=plan.id, created_at=plan.created_at or now),
            ))

        items.extend(self._history_items(context.conversation_history, now))

        for key, value in context.additional_context.items():
            if value is None:
                continue
            text = value if isinstance(value, str) else json.dumps(value, indent=1, default=str)
            items.append(self._item(
                f"additional-{key}", f"Additional: {key}", text,
                detect_content_category(text), ContextCategory.SUPPLEMENTARY,
                ItemMetadata(source_type="custom", source_id=key, created_at=now),
            ))

        if additional_items:
            items.extend(additional_items)

        return items

    def _history_items(
        self, history: list[ConversationEntry], now: datetime
    ) -> list[ContextItem]:
        """Split history into a recent block (tier 2) and an older block (tier 4)."""
        if not history:
            return []

        cutoff = max(0, len(history) - self.packing.recent_history_size)
        blocks = [
            ("recent", "Recent", ContextCategory.RECENT_HISTORY, history[cutoff:]),
            ("older", "Older", ContextCategory.OLDER_HISTORY, history[:cutoff]),
        ]

        items = []
        for source_id, title, category, entries in blocks:
            if not entries:
                continue
            stale = (
                category == ContextCategory.OLDER_HISTORY
                and len(entries) > self.packing.stale_history_size
            )
            items.append(self._item(
                f"history-{source_id}", f"{title} History ({len(entries)} messages)",
                _format_history(entries),
                ContentCategory.NATURAL_TEXT, category,
                ItemMetadata(
                    source_type="history",
                    source_id=source_id,
                    created_at=entries[-1].created_at or now,
                    is_stale=stale,
                    related_task_ids=[e.task_id for e in entries if e.task_id],
                ),
            ))
        return items

    # -------------------------------------------------------------------
    # Design-aware context
    # -------------------------------------------------------------------

    def summarize_component_tree(self, components: list[DesignComponent]) -> str:
        """Compact indented outline of a component hierarchy.

        Format per line: ``Name [type] (x,y WxH)``. A parent with more than
        five children shows the first three, a "[N children collapsed]"
        marker and the last one.
        """
        if not components:
            return "[No components]"

        tree = nx.DiGraph()
        for comp in components:
            tree.add_node(comp.id, component=comp)
        for comp in components:
            if comp.parent_id is not None and comp.parent_id in tree:
                tree.add_edge(comp.parent_id, comp.id)

        roots = sorted(
            (c for c in components if c.parent_id is None),
            key=lambda c: c.sort_order,
        )
        lines = self._tree_lines(tree, roots, 0)
        return "\n".join(lines) if lines else "[No root components]"

    def _tree_lines(
        self, tree: nx.DiGraph, siblings: list[DesignComponent], depth: int
    ) -> list[str]:
        cfg = self.compression
        indent = "  " * depth

        if len(siblings) > cfg.max_visible_children:
            shown_first = siblings[: cfg.collapsed_show_first]
            shown_last = siblings[len(siblings) - cfg.collapsed_show_last:]
            collapsed = len(siblings) - len(shown_first) - len(shown_last)
        else:
            shown_first, shown_last, collapsed = siblings, [], 0

        lines: list[str] = []
        for comp in shown_first:
            lines.extend(self._component_lines(tree, comp, depth))
        if collapsed:
            lines.append(f"{indent}[{collapsed} children collapsed]")
        for comp in shown_last:
            lines.extend(self._component_lines(tree, comp, depth))
        return lines

    def _component_lines(
        self, tree: nx.DiGraph, comp: DesignComponent, depth: int
    ) -> list[str]:
        indent = "  " * depth
        lines = [
            f"{indent}{comp.name} [{comp.type}] "
            f"({_num(comp.x)},{_num(comp.y)} {_num(comp.width)}x{_num(comp.height)})"
        ]
        children = sorted(
            (tree.nodes[c]["component"] for c in tree.successors(comp.id)),
            key=lambda c: c.sort_order,
        )
        lines.extend(self._tree_lines(tree, children, depth + 1))
        return lines

    def build_design_context(
        self,
        page_id: str,
        components: list[DesignComponent],
        budget: TokenBudget,
    ) -> list[ContextItem]:
        """Full detail for the active page, a tree summary for the rest.

        The summary of other pages is only produced while the budget has
        more than 200 tokens left.
        """
        if not components:
            return []

        now = self.clock()
        items: list[ContextItem] = []
        on_page = [c for c in components if c.page_id == page_id]
        elsewhere = [c for c in components if c.page_id != page_id]

        if on_page:
            detail_lines = []
            for c in on_page:
                line = f"{c.name} [{c.type}] ({_num(c.x)},{_num(c.y)} {_num(c.width)}x{_num(c.height)})"
                if c.content:
                    line += f' content="{c.content[:80]}"'
                line += f" parent={c.parent_id}" if c.parent_id else " (root)"
                detail_lines.append(line)
            items.append(self._item(
                f"design-page-{page_id}", f"Page Components ({page_id})", "\n".join(detail_lines),
                ContentCategory.NATURAL_TEXT, ContextCategory.DESIGN_COMPONENTS,
                ItemMetadata(source_type="component", source_id=page_id, created_at=now),
                relevance_score=80,
            ))

        if elsewhere and budget.remaining > self.packing.design_summary_min_remaining:
            items.append(self._item(
                "design-other-pages", "Other Page Components (summary)",
                self.summarize_component_tree(elsewhere),
                ContentCategory.NATURAL_TEXT, ContextCategory.DESIGN_COMPONENTS,
                ItemMetadata(source_type="component", source_id="other-pages", created_at=now),
                relevance_score=30,
            ))

        return items
