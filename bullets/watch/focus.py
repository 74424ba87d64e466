"""Deferred stripping for nodes that are being edited.

Each uid moves through ``pending -> check -> done | reschedule`` driven by a
single keyed timer; scheduling again supersedes the pending timer. A stale
attempt (classification changed before the timer fired) is left to run: the
stripper re-reads the text and finds nothing to remove.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from bullets.config.models import Settings
from bullets.host.contracts import HostUI, capability
from bullets.patterns.classifier import classify
from bullets.patterns.models import PatternDefinition
from bullets.patterns.table import PATTERN_TABLE, find_pattern
from bullets.store.classification_store import ClassificationStore
from bullets.text.stripper import Stripper
from bullets.utils.events import log_event
from bullets.utils.scheduling import Scheduler

logger = logging.getLogger("bullets.watch")

_FOCUSED_KEY = "strip.focused:"
_FOCUS_OUT_KEY = "strip.focusout:"

StripCallback = Callable[[str, bool], None]


def current_focus(ui: HostUI | None) -> str | None:
    focused_uid = capability(ui, "focused_uid")
    if focused_uid is None:
        return None
    try:
        value = focused_uid()
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.DEBUG, "focus_lookup_failed", error=repr(exc))
        return None
    return value if isinstance(value, str) and value else None


class DeferredStripper:
    """Strip a focused node only once focus has moved elsewhere."""

    def __init__(
        self,
        scheduler: Scheduler,
        stripper: Stripper,
        classifications: ClassificationStore,
        settings: Settings,
        ui: HostUI | None,
        *,
        retry_s: float,
        focus_out_delay_s: float,
        on_stripped: StripCallback,
        table: Sequence[PatternDefinition] = PATTERN_TABLE,
    ) -> None:
        self._scheduler = scheduler
        self._stripper = stripper
        self._classifications = classifications
        self._settings = settings
        self._ui = ui
        self._retry_s = retry_s
        self._focus_out_delay_s = focus_out_delay_s
        self._on_stripped = on_stripped
        self._table = table

    def schedule(self, uid: str, pattern: PatternDefinition) -> None:
        if not self._settings.strip_enabled or not self._classifications.is_valid_uid(uid):
            return
        self._scheduler.call_later(f"{_FOCUSED_KEY}{uid}", self._retry_s, self._check, uid, pattern)

    def on_focus_out(self, uid: str) -> None:
        if not self._settings.strip_enabled or not self._classifications.is_valid_uid(uid):
            return
        self._scheduler.call_later(
            f"{_FOCUS_OUT_KEY}{uid}", self._focus_out_delay_s, self._start_focus_out, uid
        )

    def is_pending(self, uid: str) -> bool:
        return self._scheduler.pending(f"{_FOCUSED_KEY}{uid}")

    def pending_uids(self) -> list[str]:
        return [key[len(_FOCUSED_KEY) :] for key in self._scheduler.pending_keys(_FOCUSED_KEY)]

    def _check(self, uid: str, pattern: PatternDefinition) -> None:
        if current_focus(self._ui) == uid:
            self.schedule(uid, pattern)
            return
        self._scheduler.spawn(self._strip(uid, pattern), name=f"strip:{uid}")

    async def _strip(self, uid: str, pattern: PatternDefinition) -> None:
        ok = await self._stripper.strip(uid, pattern, None)
        self._on_stripped(uid, ok)

    def _start_focus_out(self, uid: str) -> None:
        self._scheduler.spawn(self._strip_after_focus_out(uid), name=f"focusout:{uid}")

    async def _strip_after_focus_out(self, uid: str) -> None:
        persisted = find_pattern(self._classifications.read(uid), self._table)
        if persisted is not None and self._settings.is_enabled(persisted.id):
            await self._strip(uid, persisted)
            return

        text = self._stripper.read_text(uid)
        if text is None:
            return
        detected = classify(text, self._settings, self._table)
        if detected is None:
            return
        self._classifications.write(uid, detected.id)
        await self._strip(uid, detected)
