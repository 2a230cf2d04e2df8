"""Model profiles: context windows and per-content-type token costs."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from contextfeeder.exceptions import ConfigurationError, UnknownModelError

if TYPE_CHECKING:
    from contextfeeder.config import ProjectConfig

logger = logging.getLogger("contextfeeder.budget.profiles")


class ContentCategory(str, Enum):
    """Classification of text used to pick token ratios and compression."""

    CODE = "code"
    NATURAL_TEXT = "natural_text"
    JSON = "json"
    MARKDOWN = "markdown"
    MIXED = "mixed"


# Characters per token when a profile has no ratio for a category
FALLBACK_CHARS_PER_TOKEN = 3.6

DEFAULT_CHARS_PER_TOKEN: dict[ContentCategory, float] = {
    ContentCategory.CODE: 3.2,
    ContentCategory.NATURAL_TEXT: 4.0,
    ContentCategory.JSON: 3.5,
    ContentCategory.MARKDOWN: 3.8,
    ContentCategory.MIXED: 3.6,
}


class ModelProfile(BaseModel):
    """Static facts about a model's context window."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    context_window_tokens: int
    max_output_tokens: int
    chars_per_token: dict[ContentCategory, float] = Field(
        default_factory=lambda: dict(DEFAULT_CHARS_PER_TOKEN)
    )
    overhead_tokens_per_message: int = 4

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def ratio_for(self, category: ContentCategory) -> float:
        """Characters per token for a content category."""
        return self.chars_per_token.get(category, FALLBACK_CHARS_PER_TOKEN)


DEFAULT_MODEL_PROFILE = ModelProfile(
    id="mistralai/ministral-3-14b-reasoning",
    name="Ministral 3 14B Reasoning",
    context_window_tokens=32768,
    max_output_tokens=4096,
    overhead_tokens_per_message=4,
)


def validate_profile(profile: ModelProfile) -> ModelProfile:
    """Check that a profile can produce a usable budget.

    Raises:
        ConfigurationError: If any limit or ratio is out of range.
    """
    if not profile.id:
        raise ConfigurationError("Model profile has no id")
    if profile.context_window_tokens <= 0:
        raise ConfigurationError(
            f"Model '{profile.id}': context window must be positive, "
            f"got {profile.context_window_tokens}"
        )
    if profile.max_output_tokens < 0:
        raise ConfigurationError(
            f"Model '{profile.id}': max output tokens cannot be negative"
        )
    if profile.max_output_tokens >= profile.context_window_tokens:
        raise ConfigurationError(
            f"Model '{profile.id}': max output tokens ({profile.max_output_tokens}) "
            f"must be smaller than the context window ({profile.context_window_tokens})"
        )
    if profile.overhead_tokens_per_message < 0:
        raise ConfigurationError(
            f"Model '{profile.id}': per-message overhead cannot be negative"
        )
    for category, ratio in profile.chars_per_token.items():
        if ratio <= 0:
            raise ConfigurationError(
                f"Model '{profile.id}': chars per token for {category.value} "
                f"must be positive, got {ratio}"
            )
    return profile


class ModelRegistry:
    """Read-only lookup of model profiles by identifier.

    Built once at startup and handed to every component that needs token
    costs. Always contains the default profile.

    Usage:
        registry = ModelRegistry.from_config(load_config(root))
        profile = registry.get("mistralai/ministral-3-14b-reasoning")
    """

    def __init__(
        self,
        profiles: list[ModelProfile] | None = None,
        default_model_id: str | None = None,
    ) -> None:
        self._profiles: dict[str, ModelProfile] = {}
        self.register(DEFAULT_MODEL_PROFILE)
        for profile in profiles or []:
            self.register(profile)

        self.default_model_id = default_model_id or DEFAULT_MODEL_PROFILE.id
        if self.default_model_id not in self._profiles:
            raise UnknownModelError(self.default_model_id)

    @classmethod
    def from_config(cls, config: ProjectConfig) -> ModelRegistry:
        """Build a registry from the `models` section of a project config."""
        profiles = []
        for model_id, override in config.models.items():
            ratios = dict(DEFAULT_CHARS_PER_TOKEN)
            for key, ratio in override.chars_per_token.items():
                try:
                    ratios[ContentCategory(key)] = ratio
                except ValueError:
                    raise ConfigurationError(
                        f"Model '{model_id}': unknown content category '{key}'"
                    ) from None
            try:
                profile = ModelProfile(
                    id=model_id,
                    name=override.name or model_id,
                    context_window_tokens=override.context_window_tokens,
                    max_output_tokens=override.max_output_tokens,
                    chars_per_token=ratios,
                    overhead_tokens_per_message=override.overhead_tokens_per_message,
                )
            except ValidationError as e:
                raise ConfigurationError(f"Invalid profile for model '{model_id}': {e}") from e
            profiles.append(profile)
        return cls(profiles, default_model_id=config.default_model or None)

    def register(self, profile: ModelProfile) -> None:
        """Add or replace a profile."""
        validate_profile(profile)
        self._profiles[profile.id] = profile
        logger.debug(
            "Model registered: %s (%d context window)",
            profile.display_name, profile.context_window_tokens,
        )

    def get(self, model_id: str) -> ModelProfile:
        """Look up a profile.

        Raises:
            UnknownModelError: If no profile is registered under `model_id`.
        """
        try:
            return self._profiles[model_id]
        except KeyError:
            raise UnknownModelError(model_id) from None

    @property
    def default(self) -> ModelProfile:
        return self._profiles[self.default_model_id]

    def profiles(self) -> list[ModelProfile]:
        return sorted(self._profiles.values(), key=lambda p: p.id)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)
