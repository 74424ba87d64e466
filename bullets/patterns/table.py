"""Declared bullet types.

Declaration order is the classification tie-break: when two enabled triggers
overlap, the earlier entry wins.
"""

from __future__ import annotations

from collections.abc import Sequence

from bullets.patterns.models import PatternDefinition
from bullets.utils.errors import UnknownPatternError

PATTERN_TABLE: tuple[PatternDefinition, ...] = (
    PatternDefinition("equal", 'Equal / definition (prefix "=")', "=", "≡"),
    PatternDefinition("arrow", 'Single arrow / leads to (prefix "->")', "->", "→"),
    PatternDefinition("doubleArrow", 'Double arrow / result (prefix "=>")', "=>", "⇒"),
    PatternDefinition("question", 'Question (prefix "?")', "?", "?"),
    PatternDefinition("important", 'Important / warning (prefix "!")', "!", "!"),
    PatternDefinition("plus", 'Idea / addition (prefix "+")', "+", "+"),
    PatternDefinition(
        "downRight90", 'Right-angle arrow (prefix "v>")', "v>", "⤷", configurable=True
    ),
    PatternDefinition("contrast", 'Contrast / however (prefix "~")', "~", "≠"),
    PatternDefinition("evidence", 'Evidence / support (prefix "^")', "^", "▸"),
    PatternDefinition(
        "conclusion", 'Conclusion / synthesis (prefix "∴")', "∴", "∴", configurable=True
    ),
    PatternDefinition("hypothesis", 'Hypothesis / tentative (prefix "??")', "??", "◊"),
    PatternDefinition("depends", 'Depends on / prerequisite (prefix "<-")', "<-", "↤"),
    PatternDefinition("decision", 'Decision / choice (prefix "|")', "|", "⎇"),
    PatternDefinition("reference", 'Reference / related (prefix "@")', "@", "↗"),
    PatternDefinition("process", 'Process / ongoing (prefix "...")', "...", "↻"),
)


def find_pattern(
    pattern_id: str | None, table: Sequence[PatternDefinition] = PATTERN_TABLE
) -> PatternDefinition | None:
    """Return the declared pattern for ``pattern_id`` or None."""

    if not pattern_id:
        return None
    for definition in table:
        if definition.id == pattern_id:
            return definition
    return None


def require_pattern(
    pattern_id: str, table: Sequence[PatternDefinition] = PATTERN_TABLE
) -> PatternDefinition:
    definition = find_pattern(pattern_id, table)
    if definition is None:
        raise UnknownPatternError(pattern_id)
    return definition


def _assert_table_ids_unique(table: Sequence[PatternDefinition]) -> None:
    """Fail fast when two declarations share an id."""

    ids = [definition.id for definition in table]
    duplicates = sorted({pattern_id for pattern_id in ids if ids.count(pattern_id) > 1})
    if duplicates:
        raise RuntimeError(f"Pattern table ids must be unique: duplicates={duplicates}")


_assert_table_ids_unique(PATTERN_TABLE)
