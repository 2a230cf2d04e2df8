"""Configuration management for contextfeeder."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from contextfeeder.exceptions import ConfigurationError

FEEDER_DIR = ".contextfeeder"
CONFIG_FILE = "config.json"


class BudgetConfig(BaseModel):
    """Token budget thresholds for input context management."""

    warning_threshold_percent: float = 70
    critical_threshold_percent: float = 90
    input_buffer_percent: float = 5  # safety margin off the input window

    @model_validator(mode="after")
    def _check_thresholds(self) -> BudgetConfig:
        if not 0 <= self.warning_threshold_percent < self.critical_threshold_percent <= 100:
            raise ValueError(
                "thresholds must satisfy 0 <= warning < critical <= 100"
            )
        if not 0 <= self.input_buffer_percent < 100:
            raise ValueError("input_buffer_percent must be in [0, 100)")
        return self


class ScoringConfig(BaseModel):
    """Relevance scoring weights. Tuning parameters, not contracts."""

    title_weight: int = 3
    description_weight: int = 2
    content_weight: int = 1
    file_path_weight: int = 4
    description_chars: int = 500
    same_task_bonus: int = 8
    recency_hour_bonus: int = 10
    recency_day_bonus: int = 5
    recency_week_bonus: int = 2
    stale_flag_penalty: int = 5
    age_penalty_base: int = 5
    age_penalty_per_week: float = 2
    max_age_penalty: int = 10
    max_staleness_penalty: int = 15
    staleness_threshold_days: float = 7
    normalizer_per_keyword: int = 3
    normalizer_floor: int = 20
    neutral_score: int = 50


class PackingConfig(BaseModel):
    """Tiered packing and history splitting."""

    compression_min_remaining: int = 50
    compression_target_ratio: float = 0.8
    compression_margin: int = 10
    recent_history_size: int = 10
    stale_history_size: int = 20  # older history beyond this is flagged stale
    design_summary_min_remaining: int = 200


class CompressionConfig(BaseModel):
    """Limits used by the compression cascade."""

    max_string_length: int = 50
    max_array_items: int = 5
    min_run_length: int = 3
    min_prefix_length: int = 4
    head_ratio: float = 0.6
    line_chars_per_token: int = 4
    chars_per_line: int = 80
    min_lines: int = 5
    max_visible_children: int = 5
    collapsed_show_first: int = 3
    collapsed_show_last: int = 1


class ModelOverride(BaseModel):
    """A model entry in the `models` section of the config file."""

    context_window_tokens: int
    max_output_tokens: int
    name: str = ""
    chars_per_token: dict[str, float] = Field(default_factory=dict)
    overhead_tokens_per_message: int = 4


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    default_model: str = ""  # empty = built-in default profile
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    packing: PackingConfig = Field(default_factory=PackingConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    models: dict[str, ModelOverride] = Field(default_factory=dict)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .contextfeeder directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / FEEDER_DIR).is_dir():
            return current
        current = current.parent
    if (current / FEEDER_DIR).is_dir():
        return current
    return None


def get_feeder_dir(root: Path) -> Path:
    """Get the .contextfeeder directory for a project root."""
    return root / FEEDER_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .contextfeeder/config.json.

    Raises:
        ConfigurationError: If the file is not valid JSON or fails validation.
    """
    config_path = get_feeder_dir(root) / CONFIG_FILE
    if not config_path.exists():
        return ProjectConfig(name=root.name, root_path=str(root))
    try:
        data = json.loads(config_path.read_text())
        return ProjectConfig(**data)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{config_path} is not valid JSON: {e}") from e
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .contextfeeder/config.json."""
    feeder_dir = get_feeder_dir(root)
    feeder_dir.mkdir(parents=True, exist_ok=True)
    config_path = feeder_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'budget.input_buffer_percent').

    Raises:
        KeyError: If the key does not exist.
        ConfigurationError: If the new value fails validation.
    """
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    try:
        return ProjectConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid value for {key}: {e}") from e
