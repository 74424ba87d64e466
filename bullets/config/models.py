"""Data models for user settings and engine tunables."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from bullets.patterns.models import PatternDefinition


class Settings(BaseModel):
    """Process-wide user settings read on every classification."""

    model_config = ConfigDict(extra="forbid")

    enabled_by_id: dict[str, bool] = Field(default_factory=dict)
    strip_enabled: bool = False
    require_trailing_whitespace: bool = True
    pattern_override_by_id: dict[str, str] = Field(default_factory=dict)

    def is_enabled(self, pattern_id: str) -> bool:
        return self.enabled_by_id.get(pattern_id, True)

    def effective_trigger(self, definition: PatternDefinition) -> str:
        """Return the override for configurable patterns, else the default trigger."""

        if definition.configurable:
            override = self.pattern_override_by_id.get(definition.id)
            if override:
                return override
        return definition.pattern


class EngineConfig(BaseModel):
    """Timing and bound tunables loaded from YAML."""

    model_config = ConfigDict(extra="forbid")

    cache_max_entries: int = Field(default=2000, gt=0)
    cache_evict_interval_s: float = Field(default=5.0, gt=0)
    strip_verify_delay_s: float = Field(default=0.09, ge=0)
    focused_strip_retry_s: float = Field(default=0.25, gt=0)
    focus_out_strip_delay_s: float = Field(default=0.14, ge=0)
    render_budget_ms: float = Field(default=10.0, gt=0)
    render_max_items_per_cycle: int = Field(default=300, gt=0)
    render_light_cap: int = Field(default=250, gt=0)
    render_continuation_s: float = Field(default=0.025, ge=0)
    render_cleanup_cap: int = Field(default=300, ge=0)
    watch_refresh_interval_s: float = Field(default=1.2, gt=0)
    collision_settle_s: float = Field(default=0.18, ge=0)
    uid_pattern: str = r"^[-_A-Za-z0-9]{9}$"
