"""Structured context supplied by the agent framework for one request."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from contextfeeder.context.models import ContextItem


class Task(BaseModel):
    id: str
    title: str
    description: str = ""
    status: str = "open"
    priority: str = "P2"
    acceptance_criteria: str = ""
    files_modified: list[str] = Field(default_factory=list)
    created_at: datetime | None = None


class Ticket(BaseModel):
    id: str
    ticket_number: int
    title: str
    body: str = ""
    status: str = "open"
    priority: str = "P2"
    task_id: str | None = None
    created_at: datetime | None = None


class Plan(BaseModel):
    id: str
    name: str
    status: str = "active"
    config_json: str = ""
    created_at: datetime | None = None


class ConversationEntry(BaseModel):
    role: str
    content: str
    task_id: str | None = None
    ticket_id: str | None = None
    created_at: datetime | None = None


class DesignComponent(BaseModel):
    """A node of a page's visual component hierarchy."""

    id: str
    name: str
    type: str = "container"
    page_id: str | None = None
    parent_id: str | None = None
    sort_order: int = 0
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    content: str = ""


class AgentContext(BaseModel):
    """Everything the caller knows about the current request."""

    task: Task | None = None
    ticket: Ticket | None = None
    plan: Plan | None = None
    conversation_history: list[ConversationEntry] = Field(default_factory=list)
    additional_context: dict[str, Any] = Field(default_factory=dict)


class FeedRequest(BaseModel):
    """A complete request as read from JSON by the command line."""

    system_prompt: str
    user_message: str
    agent_type: str | None = None
    model: str | None = None
    context: AgentContext = Field(default_factory=AgentContext)
    additional_items: list[ContextItem] = Field(default_factory=list)
