"""Shared test fixtures for contextfeeder."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from contextfeeder.budget.profiles import ContentCategory, ModelProfile, ModelRegistry
from contextfeeder.budget.tracker import TokenBudgetTracker
from contextfeeder.config import BudgetConfig, ProjectConfig, save_config
from contextfeeder.context.feeder import ContextFeeder
from contextfeeder.context.sources import (
    AgentContext,
    ConversationEntry,
    Plan,
    Task,
    Ticket,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
OUTPUT_TOKENS = 1000


def _make_profile(available: int, model_id: str = "test/model", overhead: int = 4) -> ModelProfile:
    """A profile at 4 chars/token for every category.

    With a zero input buffer its budget has exactly `available` input tokens.
    """
    return ModelProfile(
        id=model_id,
        name="Test Model",
        context_window_tokens=available + OUTPUT_TOKENS,
        max_output_tokens=OUTPUT_TOKENS,
        chars_per_token={c: 4.0 for c in ContentCategory},
        overhead_tokens_per_message=overhead,
    )


def _make_tracker(available: int = 1000) -> TokenBudgetTracker:
    profile = _make_profile(available)
    registry = ModelRegistry([profile], default_model_id=profile.id)
    return TokenBudgetTracker(registry, config=BudgetConfig(input_buffer_percent=0))


def _make_feeder(available: int = 1000) -> ContextFeeder:
    tracker = _make_tracker(available)
    config = ProjectConfig(budget=BudgetConfig(input_buffer_percent=0))
    return ContextFeeder(tracker, config, clock=lambda: NOW)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def profile() -> ModelProfile:
    return _make_profile(1000)


@pytest.fixture
def tracker() -> TokenBudgetTracker:
    """Tracker with exactly 1000 input tokens per budget."""
    return _make_tracker(1000)


@pytest.fixture
def feeder() -> ContextFeeder:
    return _make_feeder(5000)


@pytest.fixture
def agent_context() -> AgentContext:
    """A realistic request: task, ticket, plan, history and extras."""
    history = [
        ConversationEntry(
            role="user" if i % 2 == 0 else "assistant",
            content=f"Message {i} about the login redirect",
            task_id="task-42" if i >= 10 else None,
            created_at=NOW - timedelta(minutes=60 - i),
        )
        for i in range(14)
    ]
    return AgentContext(
        task=Task(
            id="task-42",
            title="Fix login redirect loop",
            description="Users bounce between /login and /dashboard after auth.",
            priority="P1",
            status="in_progress",
            acceptance_criteria="Login lands on the dashboard exactly once.",
            files_modified=["src/auth/loginRedirect.ts", "src/routes.ts"],
            created_at=NOW - timedelta(minutes=30),
        ),
        ticket=Ticket(
            id="ticket-7",
            ticket_number=7,
            title="Redirect loop after login",
            body="Reported by three customers on Safari.",
            task_id="task-42",
            created_at=NOW - timedelta(hours=5),
        ),
        plan=Plan(
            id="plan-1",
            name="Auth hardening",
            config_json='{"focus": "session cookies", "steps": ["audit redirects"]}',
            created_at=NOW - timedelta(days=3),
        ),
        conversation_history=history,
        additional_context={
            "browser_matrix": {"safari": "broken", "chrome": "ok"},
            "notes": "Cookie SameSite changed last release.",
            "empty": None,
        },
    )


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """A project directory with a .contextfeeder config and sample inputs."""
    save_config(tmp_path, ProjectConfig(name="sample", root_path=str(tmp_path)))

    (tmp_path / "app.js").write_text(
        "// Entry point\n"
        "import { start } from './server';\n"
        "const port = 3000;\n"
        "function main() {\n"
        "  /* boot the server */\n"
        "  return start(port);\n"
        "}\n"
    )
    (tmp_path / "notes.txt").write_text(
        "The login page redirects users back to the dashboard after auth.\n" * 40
    )
    return tmp_path


@pytest.fixture
def make_profile():
    """Factory: make_profile(available, model_id=..., overhead=...)."""
    return _make_profile


@pytest.fixture
def make_tracker():
    """Factory: make_tracker(available) with a zero input buffer."""
    return _make_tracker


@pytest.fixture
def make_feeder():
    """Factory: make_feeder(available) with a frozen clock."""
    return _make_feeder
