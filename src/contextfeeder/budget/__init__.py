"""Token budgets over a model's context window.

Usage:
    from contextfeeder.budget import ModelRegistry, TokenBudgetTracker

    tracker = TokenBudgetTracker(ModelRegistry())
    budget = tracker.create_budget()
"""

from contextfeeder.budget.profiles import (
    DEFAULT_MODEL_PROFILE,
    ContentCategory,
    ModelProfile,
    ModelRegistry,
)
from contextfeeder.budget.tracker import (
    TokenBudget,
    TokenBudgetItem,
    TokenBudgetTracker,
    TokenBudgetWarning,
    WarningLevel,
    detect_content_category,
)

__all__ = [
    "DEFAULT_MODEL_PROFILE",
    "ContentCategory",
    "ModelProfile",
    "ModelRegistry",
    "TokenBudget",
    "TokenBudgetItem",
    "TokenBudgetTracker",
    "TokenBudgetWarning",
    "WarningLevel",
    "detect_content_category",
]
