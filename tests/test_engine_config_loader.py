from __future__ import annotations

from pathlib import Path

import pytest

from bullets.config.loader import load_engine_config


def test_load_default_engine_config() -> None:
    config = load_engine_config()

    assert config.cache_max_entries == 2000
    assert config.strip_verify_delay_s == pytest.approx(0.09)
    assert config.render_budget_ms == pytest.approx(10)
    assert config.render_max_items_per_cycle == 300
    assert config.render_light_cap == 250
    assert config.uid_pattern == r"^[-_A-Za-z0-9]{9}$"


def test_load_engine_config_partial_file_keeps_defaults(tmp_path: Path) -> None:
    path = tmp_path / "engine.yaml"
    path.write_text("render_light_cap: 10\n", encoding="utf-8")

    config = load_engine_config(path)

    assert config.render_light_cap == 10
    assert config.cache_max_entries == 2000


def test_load_engine_config_empty_file_uses_defaults(tmp_path: Path) -> None:
    path = tmp_path / "engine.yaml"
    path.write_text("", encoding="utf-8")

    assert load_engine_config(path).render_max_items_per_cycle == 300


def test_load_engine_config_raises_for_invalid_type(tmp_path: Path) -> None:
    path = tmp_path / "engine.yaml"
    path.write_text("cache_max_entries: lots\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid engine config schema"):
        load_engine_config(path)


def test_load_engine_config_raises_for_unknown_key(tmp_path: Path) -> None:
    path = tmp_path / "engine.yaml"
    path.write_text("render_budget: 5\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid engine config schema"):
        load_engine_config(path)


def test_load_engine_config_raises_for_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "engine.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")

    with pytest.raises(ValueError, match="must contain a mapping"):
        load_engine_config(path)


def test_load_engine_config_raises_for_bad_uid_pattern(tmp_path: Path) -> None:
    path = tmp_path / "engine.yaml"
    path.write_text("uid_pattern: '^[a-z'\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid uid_pattern"):
        load_engine_config(path)


def test_load_engine_config_raises_for_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="not found"):
        load_engine_config(tmp_path / "missing.yaml")


def test_load_engine_config_raises_for_invalid_yaml(tmp_path: Path) -> None:
    path = tmp_path / "engine.yaml"
    path.write_text("cache_max_entries: [1,\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid YAML"):
        load_engine_config(path)
