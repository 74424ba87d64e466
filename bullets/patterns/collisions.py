"""Trigger collision detection for the enabled pattern set.

Detection is deduplicated by a signature over ``(id, effective trigger)`` of
enabled patterns and debounced by a settle delay, so rapid setting changes
produce at most one report per distinct configuration.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from bullets.config.models import Settings
from bullets.patterns.models import CollisionIssue, CollisionReport, PatternDefinition
from bullets.patterns.table import PATTERN_TABLE
from bullets.utils.events import log_event
from bullets.utils.scheduling import Scheduler

logger = logging.getLogger("bullets.collisions")

_TIMER_KEY = "collisions.detect"


def compute_signature(
    settings: Settings, table: Sequence[PatternDefinition] = PATTERN_TABLE
) -> str:
    parts = [
        f"{definition.id}:{settings.effective_trigger(definition)}"
        for definition in table
        if settings.is_enabled(definition.id)
    ]
    return "|".join(sorted(parts))


def detect_collisions(
    settings: Settings, table: Sequence[PatternDefinition] = PATTERN_TABLE
) -> CollisionReport:
    """Report duplicate triggers and prefix overlaps among enabled patterns."""

    enabled = [definition for definition in table if settings.is_enabled(definition.id)]
    triggers = {definition.id: settings.effective_trigger(definition) for definition in enabled}
    issues: list[CollisionIssue] = []

    by_trigger: dict[str, list[str]] = {}
    for definition in enabled:
        trigger = triggers[definition.id]
        if trigger:
            by_trigger.setdefault(trigger, []).append(definition.id)

    for trigger, ids in by_trigger.items():
        for index, first in enumerate(ids):
            for second in ids[index + 1 :]:
                issues.append(
                    CollisionIssue(
                        code="DUPLICATE_TRIGGER",
                        severity="error",
                        message=(
                            f'Prefix "{trigger}" is duplicated between "{first}" and "{second}"; '
                            f'only "{first}" will ever match.'
                        ),
                        pattern_ids=[first, second],
                        triggers=[trigger, trigger],
                    )
                )

    for longer in enabled:
        for shorter in enabled:
            long_trigger = triggers[longer.id]
            short_trigger = triggers[shorter.id]
            if longer.id == shorter.id or not long_trigger or not short_trigger:
                continue
            if long_trigger == short_trigger or not long_trigger.startswith(short_trigger):
                continue
            issues.append(
                CollisionIssue(
                    code="PREFIX_OVERLAP",
                    severity="note",
                    message=(
                        f'Prefix "{long_trigger}" ({longer.id}) starts with '
                        f'"{short_trigger}" ({shorter.id})'
                    ),
                    pattern_ids=[longer.id, shorter.id],
                    triggers=[long_trigger, short_trigger],
                )
            )

    return CollisionReport(signature=compute_signature(settings, table), issues=issues)


class CollisionAdvisor:
    """Debounced, signature-deduplicated collision reporting."""

    def __init__(
        self,
        settings: Settings,
        scheduler: Scheduler,
        *,
        settle_s: float,
        table: Sequence[PatternDefinition] = PATTERN_TABLE,
    ) -> None:
        self._settings = settings
        self._scheduler = scheduler
        self._settle_s = settle_s
        self._table = table
        self._last_signature = ""
        self._listeners: list[Callable[[CollisionReport], None]] = []
        self.last_report: CollisionReport | None = None

    def add_listener(self, listener: Callable[[CollisionReport], None]) -> None:
        self._listeners.append(listener)

    def schedule(self, *, force: bool = False) -> bool:
        """Schedule a report unless the enabled-trigger signature is unchanged."""

        signature = compute_signature(self._settings, self._table)
        if not force and signature == self._last_signature:
            return False
        self._last_signature = signature
        self._scheduler.call_later(_TIMER_KEY, self._settle_s, self.report_now)
        return True

    def report_now(self) -> CollisionReport:
        report = detect_collisions(self._settings, self._table)
        self.last_report = report
        log_event(
            logger,
            logging.INFO,
            "collision_report",
            duplicates=len(report.duplicates),
            overlaps=len(report.overlaps),
        )
        if report.issues:
            for issue in report.issues:
                prefix = "WARNING" if issue.severity == "error" else "note"
                logger.info(" - %s: %s", prefix, issue.message)
        else:
            logger.info(" - none detected")
        for listener in self._listeners:
            listener(report)
        return report

    def cancel(self) -> None:
        self._scheduler.cancel(_TIMER_KEY)
