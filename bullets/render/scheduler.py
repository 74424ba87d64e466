"""Time-sliced repaint of visual markers from persisted classifications.

Dirty handles are drained in FIFO order, at most ``max_items`` per cycle and
within ``budget_ms``. Leftovers are picked up by a continuation timer so a
large backlog never holds the paint loop for longer than one slice.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from itertools import islice

from bullets.config.models import Settings
from bullets.host.contracts import VisualHandle, VisualTree, capability
from bullets.patterns.classifier import classify
from bullets.patterns.models import PatternDefinition
from bullets.patterns.table import PATTERN_TABLE, find_pattern
from bullets.store.classification_store import ClassificationStore
from bullets.utils.events import log_event
from bullets.utils.scheduling import Scheduler

logger = logging.getLogger("bullets.render")

_FRAME_KEY = "render.frame"
_CONTINUE_KEY = "render.continue"


class RenderScheduler:
    """Dirty-set driven marker painter."""

    def __init__(
        self,
        scheduler: Scheduler,
        visual: VisualTree | None,
        classifications: ClassificationStore,
        settings: Settings,
        *,
        budget_ms: float,
        max_items: int,
        light_cap: int,
        continuation_s: float,
        clock: Callable[[], float] = time.perf_counter,
        table: Sequence[PatternDefinition] = PATTERN_TABLE,
    ) -> None:
        self._scheduler = scheduler
        self._visual = visual
        self._classifications = classifications
        self._settings = settings
        self._budget_s = budget_ms / 1000.0
        self._max_items = max_items
        self._light_cap = light_cap
        self._continuation_s = continuation_s
        self._clock = clock
        self._table = table
        self._dirty: dict[VisualHandle, None] = {}
        self._queued = False
        self.cycles = 0

    def __len__(self) -> int:
        return len(self._dirty)

    @property
    def queued(self) -> bool:
        return self._queued or self._scheduler.pending(_CONTINUE_KEY)

    def mark_dirty(self, handle: VisualHandle | None) -> None:
        if handle is not None:
            self._dirty[handle] = None

    def mark_many(self, handles: Iterable[VisualHandle]) -> None:
        for handle in handles:
            self.mark_dirty(handle)

    def mark_light(self) -> int:
        """Mark up to ``light_cap`` visible handles."""

        handles = list(islice(self._visible_handles(), self._light_cap))
        self.mark_many(handles)
        return len(handles)

    def mark_full(self) -> int:
        handles = list(self._visible_handles())
        self.mark_many(handles)
        return len(handles)

    def mark_uids(self, uids: Sequence[str]) -> None:
        """Mark the handles showing ``uids``; fall back to a light sweep."""

        handles_for_uid = capability(self._visual, "handles_for_uid")
        if handles_for_uid is None or len(uids) > self._light_cap:
            self.mark_light()
            return
        try:
            for uid in uids:
                self.mark_many(handles_for_uid(uid))
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "handle_lookup_failed", error=repr(exc))
            self.mark_light()

    def schedule(self) -> None:
        """Coalesce repaint requests into one pending cycle."""

        if self._queued:
            return
        self._queued = True
        request_frame = capability(self._visual, "request_frame")
        if request_frame is not None:
            try:
                request_frame(self._run_frame)
                return
            except Exception as exc:  # noqa: BLE001
                log_event(logger, logging.DEBUG, "frame_request_failed", error=repr(exc))
        self._scheduler.call_soon(_FRAME_KEY, self._run_frame)

    def drain(self) -> int:
        """Paint one slice of the dirty set; return how many handles were processed."""

        self.cycles += 1
        started = self._clock()
        processed = 0
        while self._dirty:
            handle = next(iter(self._dirty))
            del self._dirty[handle]
            try:
                self.apply_effective(handle)
            except Exception as exc:  # noqa: BLE001
                log_event(logger, logging.DEBUG, "apply_failed", error=repr(exc))
            processed += 1
            if processed >= self._max_items:
                break
            if self._clock() - started > self._budget_s:
                break

        if self._dirty:
            self._scheduler.call_later(_CONTINUE_KEY, self._continuation_s, self.schedule)
        return processed

    def apply_effective(self, handle: VisualHandle) -> str | None:
        """Resolve and apply the marker for one handle; return the pattern id used."""

        apply_marker = capability(self._visual, "apply_marker")
        if apply_marker is None:
            return None

        uid_of = capability(self._visual, "uid_of")
        uid = uid_of(handle) if uid_of is not None else None
        if uid:
            persisted = find_pattern(self._classifications.read(uid), self._table)
            if persisted is not None and self._settings.is_enabled(persisted.id):
                apply_marker(handle, persisted.visual_id)
                return persisted.id

        text_of = capability(self._visual, "text_of")
        text = text_of(handle) if text_of is not None else None
        detected = classify(text, self._settings, self._table) if text else None
        apply_marker(handle, detected.visual_id if detected else None)
        return detected.id if detected else None

    def clear_markers(self, cap: int) -> int:
        apply_marker = capability(self._visual, "apply_marker")
        if apply_marker is None:
            return 0
        cleared = 0
        for handle in islice(self._visible_handles(), cap):
            try:
                apply_marker(handle, None)
            except Exception as exc:  # noqa: BLE001
                log_event(logger, logging.DEBUG, "clear_failed", error=repr(exc))
            cleared += 1
        return cleared

    def reset(self) -> None:
        self._dirty.clear()
        self._queued = False
        self._scheduler.cancel(_FRAME_KEY)
        self._scheduler.cancel(_CONTINUE_KEY)

    def _run_frame(self) -> None:
        self._queued = False
        self.drain()

    def _visible_handles(self) -> Iterable[VisualHandle]:
        visible_handles = capability(self._visual, "visible_handles")
        if visible_handles is None:
            return ()
        try:
            return visible_handles() or ()
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "visible_handles_failed", error=repr(exc))
            return ()
