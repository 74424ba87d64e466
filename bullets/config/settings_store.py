"""Flat key/value settings persistence and hydration into ``Settings``.

Keys:
- ``stripEnabled`` (bool)
- ``requireTrailingWhitespace`` (bool)
- ``enabled:<patternId>`` (bool, default true)
- ``override:<patternId>`` (string, configurable patterns only)
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from bullets.config.models import Settings
from bullets.patterns.models import PatternDefinition
from bullets.patterns.table import PATTERN_TABLE

STRIP_ENABLED_KEY = "stripEnabled"
REQUIRE_WHITESPACE_KEY = "requireTrailingWhitespace"
_STORE_VERSION = 1


def enabled_key(pattern_id: str) -> str:
    return f"enabled:{pattern_id}"


def override_key(pattern_id: str) -> str:
    return f"override:{pattern_id}"


class SettingsBackend(Protocol):
    """Flat get/set surface offered by the host for settings persistence."""

    def get(self, key: str) -> Any:
        """Return the stored value or None."""

    def set(self, key: str, value: Any) -> None:
        """Store one value."""


class DictSettingsBackend:
    """In-memory settings backend."""

    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self.values: dict[str, Any] = dict(values or {})

    def get(self, key: str) -> Any:
        return self.values.get(key)

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value


class JsonSettingsBackend:
    """Persist settings in a JSON file, rewritten atomically on every set."""

    def __init__(self, store_path: Path) -> None:
        self._store_path = store_path

    def get(self, key: str) -> Any:
        return self._read_data().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read_data()
        data[key] = value
        self._write_data(data)

    def items(self) -> dict[str, Any]:
        return dict(sorted(self._read_data().items()))

    def _read_data(self) -> dict[str, Any]:
        if not self._store_path.exists():
            return {}

        try:
            raw = json.loads(self._store_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid settings JSON: {self._store_path}") from exc

        if not isinstance(raw, dict):
            raise ValueError(f"Settings file must contain an object: {self._store_path}")
        settings_raw = raw.get("settings", {})
        if not isinstance(settings_raw, dict):
            raise ValueError(f"Settings entry must be an object: {self._store_path}")
        return dict(settings_raw)

    def _write_data(self, data: dict[str, Any]) -> None:
        self._store_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._store_path.with_suffix(f"{self._store_path.suffix}.tmp")

        payload = {
            "version": _STORE_VERSION,
            "settings": {key: data[key] for key in sorted(data.keys())},
        }
        temp_path.write_text(
            json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False),
            encoding="utf-8",
        )
        temp_path.replace(self._store_path)


def coerce_bool(value: Any, default: bool) -> bool:
    if value is True or value == "true":
        return True
    if value is False or value == "false":
        return False
    return default


def hydrate_settings(
    backend: SettingsBackend, table: Sequence[PatternDefinition] = PATTERN_TABLE
) -> Settings:
    """Build ``Settings`` from persisted values, applying defaults."""

    settings = Settings(
        strip_enabled=coerce_bool(backend.get(STRIP_ENABLED_KEY), False),
        require_trailing_whitespace=coerce_bool(backend.get(REQUIRE_WHITESPACE_KEY), True),
    )
    for definition in table:
        settings.enabled_by_id[definition.id] = coerce_bool(
            backend.get(enabled_key(definition.id)), True
        )
        if not definition.configurable:
            continue
        override = backend.get(override_key(definition.id))
        if isinstance(override, str) and override:
            settings.pattern_override_by_id[definition.id] = override
    return settings


def persist_settings(
    backend: SettingsBackend,
    settings: Settings,
    table: Sequence[PatternDefinition] = PATTERN_TABLE,
) -> None:
    """Write every settings key back to the backend."""

    backend.set(STRIP_ENABLED_KEY, settings.strip_enabled)
    backend.set(REQUIRE_WHITESPACE_KEY, settings.require_trailing_whitespace)
    for definition in table:
        backend.set(enabled_key(definition.id), settings.is_enabled(definition.id))
        if definition.configurable:
            backend.set(override_key(definition.id), settings.effective_trigger(definition))
