"""Trigger detection against the declared pattern table.

Rules:
- Leading whitespace and invisible formatting marks are ignored.
- Patterns are tried in declaration order; the first enabled match wins.
- With ``require_trailing_whitespace`` the trigger must be followed by a
  visible space (space, tab, NBSP, narrow NBSP) or the end of the text.
  Zero-width marks right after a trigger do not confirm it.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from functools import lru_cache

from bullets.config.models import Settings
from bullets.patterns.models import PatternDefinition
from bullets.patterns.table import PATTERN_TABLE

INVISIBLE_CHARS = (
    r"\s\u00A0\u202F\u200B\u200C\u200D\uFEFF\u2060\u200E\u200F\u202A-\u202E\u2066-\u2069"
)
VISIBLE_SPACE_AFTER = r"(?:[\t \u00A0\u202F]|\Z)"

_LEADING_INVISIBLES_RE = re.compile(f"^[{INVISIBLE_CHARS}]+")


def strip_leading_invisibles(text: str | None) -> str:
    return _LEADING_INVISIBLES_RE.sub("", text or "", count=1)


@lru_cache(maxsize=256)
def _trigger_regex(trigger: str, require_trailing_whitespace: bool) -> re.Pattern[str]:
    suffix = VISIBLE_SPACE_AFTER if require_trailing_whitespace else ""
    return re.compile(f"^{re.escape(trigger)}{suffix}")


@lru_cache(maxsize=256)
def build_strip_regex(trigger: str) -> re.Pattern[str]:
    """Match one or more leading repetitions of ``trigger`` with invisible padding."""

    return re.compile(
        f"^[{INVISIBLE_CHARS}]*(?:{re.escape(trigger)}[{INVISIBLE_CHARS}]*)+"
    )


def classify(
    text: str | None,
    settings: Settings,
    table: Sequence[PatternDefinition] = PATTERN_TABLE,
) -> PatternDefinition | None:
    """Return the first enabled pattern whose trigger starts ``text``."""

    trimmed = strip_leading_invisibles(text)
    if not trimmed:
        return None

    for definition in table:
        if not settings.is_enabled(definition.id):
            continue
        trigger = settings.effective_trigger(definition)
        if not trigger:
            continue
        if _trigger_regex(trigger, settings.require_trailing_whitespace).match(trimmed):
            return definition
    return None
