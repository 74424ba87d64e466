"""Engine config loading utilities."""

from __future__ import annotations

import re
from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError

from bullets.config.models import EngineConfig


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load and validate engine tunables from YAML."""

    config_path = path or Path(__file__).with_name("engine.yaml")

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"Engine config file not found: {config_path}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in engine config file: {config_path}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Engine config file must contain a mapping: {config_path}")

    try:
        config = EngineConfig.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid engine config schema: {config_path}") from exc

    try:
        re.compile(config.uid_pattern)
    except re.error as exc:
        raise ValueError(
            f"Invalid uid_pattern '{config.uid_pattern}' in {config_path}: {exc}"
        ) from exc
    return config
