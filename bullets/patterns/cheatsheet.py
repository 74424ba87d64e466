"""Human-readable list of bullet types and their active triggers."""

from __future__ import annotations

from collections.abc import Sequence

from bullets.config.models import Settings
from bullets.patterns.models import PatternDefinition
from bullets.patterns.table import PATTERN_TABLE


def cheat_sheet_lines(
    settings: Settings, table: Sequence[PatternDefinition] = PATTERN_TABLE
) -> list[str]:
    lines = ["Better Bullets cheat sheet", "-" * 40]
    for definition in table:
        status = "" if settings.is_enabled(definition.id) else " (disabled)"
        trigger = settings.effective_trigger(definition)
        lines.append(
            f"{definition.icon}  {definition.id}  -  {trigger}  -  {definition.label}{status}"
        )
    return lines
