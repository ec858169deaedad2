"""Workflow configuration loading from .skill-exchange/config.yaml."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

CONFIG_DIR = ".skill-exchange"


class BadgeThresholds(BaseModel):
    first_exchange: int = 1
    mentor: int = 5
    skill_master: int = 10
    community_helper: int = 5


class WorkflowConfig(BaseModel):
    completion_cooldown_hours: float = 24.0
    cancel_description_min_length: int = 20
    review_comment_max_length: int = 1000
    badges: BadgeThresholds = Field(default_factory=BadgeThresholds)
    state_file: str | None = None


def default_state_file(base_dir: str | Path | None = None) -> Path:
    base = Path(base_dir) if base_dir else Path.cwd()
    return base / CONFIG_DIR / "runtime" / "state.json"


def load_config(path: str | Path | None = None) -> WorkflowConfig:
    """Load config from an explicit YAML file or from ./.skill-exchange/config.yaml.

    Missing files and empty documents yield the defaults.
    """
    config_file = Path(path) if path else Path.cwd() / CONFIG_DIR / "config.yaml"

    if not config_file.exists():
        return WorkflowConfig()

    raw = yaml.safe_load(config_file.read_text(encoding="utf-8"))
    if not raw:
        return WorkflowConfig()
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {config_file} must contain a mapping")

    return WorkflowConfig.model_validate(raw)
