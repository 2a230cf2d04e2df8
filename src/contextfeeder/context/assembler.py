"""Turns included context items into the final message sequence."""

from __future__ import annotations

from contextfeeder.context.models import (
    HISTORY_CATEGORIES,
    ContextCategory,
    ContextItem,
    Message,
)


def build_messages(items: list[ContextItem]) -> list[Message]:
    """System prompt first, context as system messages, user message last.

    History blocks are kept as single system messages labelled
    "[Conversation History]" rather than replayed as user/assistant turns.
    """
    messages: list[Message] = []

    system_item = next((i for i in items if i.category == ContextCategory.SYSTEM_PROMPT), None)
    if system_item:
        messages.append(Message(role="system", content=system_item.content))

    for item in items:
        if item.category in (ContextCategory.SYSTEM_PROMPT, ContextCategory.USER_MESSAGE):
            continue
        label = "Conversation History" if item.category in HISTORY_CATEGORIES else item.label
        messages.append(Message(role="system", content=f"[{label}]\n{item.content}"))

    user_item = next((i for i in items if i.category == ContextCategory.USER_MESSAGE), None)
    if user_item:
        messages.append(Message(role="user", content=user_item.content))

    return messages
