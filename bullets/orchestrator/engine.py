"""Engine state for one running session.

``BulletEngine`` is constructed at startup and torn down with ``shutdown``;
every component receives its collaborators from here instead of reaching for
module globals.

Flow: store change -> WatchManager diff -> classify -> ClassificationStore
write -> Stripper -> RenderScheduler repaint.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence

from bullets.config.loader import load_engine_config
from bullets.config.models import EngineConfig
from bullets.config.settings_store import (
    REQUIRE_WHITESPACE_KEY,
    STRIP_ENABLED_KEY,
    DictSettingsBackend,
    SettingsBackend,
    enabled_key,
    hydrate_settings,
    override_key,
)
from bullets.host.contracts import (
    DocumentStore,
    HostUI,
    Unsubscribe,
    VisualHandle,
    VisualTree,
    capability,
)
from bullets.patterns.cheatsheet import cheat_sheet_lines
from bullets.patterns.collisions import CollisionAdvisor
from bullets.patterns.models import PatternDefinition
from bullets.patterns.table import PATTERN_TABLE, require_pattern
from bullets.render.scheduler import RenderScheduler
from bullets.store.classification_store import ClassificationStore
from bullets.text.stripper import Stripper
from bullets.utils.events import WarnOnce, log_event
from bullets.utils.scheduling import Scheduler
from bullets.watch.focus import DeferredStripper, current_focus
from bullets.watch.manager import WatchManager

logger = logging.getLogger("bullets.engine")

_EVICT_KEY = "cache.evict"
_REFRESH_KEY = "watch.refresh"


class BulletEngine:
    """Watch, classify, persist, strip and repaint for one host session."""

    def __init__(
        self,
        store: DocumentStore | None,
        ui: HostUI | None,
        visual: VisualTree | None,
        *,
        settings_backend: SettingsBackend | None = None,
        config: EngineConfig | None = None,
        table: Sequence[PatternDefinition] = PATTERN_TABLE,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.config = config or load_engine_config()
        self.table = table
        self.settings_backend = settings_backend or DictSettingsBackend()
        self.settings = hydrate_settings(self.settings_backend, table)
        self.scheduler = Scheduler()
        self.warn_once = WarnOnce(logger)
        self._ui = ui
        self._visual = visual
        self._unobserve: Unsubscribe | None = None
        self.running = False

        self.classifications = ClassificationStore(
            store,
            max_entries=self.config.cache_max_entries,
            uid_pattern=self.config.uid_pattern,
        )
        self.stripper = Stripper(
            store,
            self.settings,
            verify_delay_s=self.config.strip_verify_delay_s,
            is_valid_uid=self.classifications.is_valid_uid,
        )
        self.render = RenderScheduler(
            self.scheduler,
            visual,
            self.classifications,
            self.settings,
            budget_ms=self.config.render_budget_ms,
            max_items=self.config.render_max_items_per_cycle,
            light_cap=self.config.render_light_cap,
            continuation_s=self.config.render_continuation_s,
            clock=clock,
            table=table,
        )
        self.deferred = DeferredStripper(
            self.scheduler,
            self.stripper,
            self.classifications,
            self.settings,
            ui,
            retry_s=self.config.focused_strip_retry_s,
            focus_out_delay_s=self.config.focus_out_strip_delay_s,
            on_stripped=self._after_strip,
            table=table,
        )
        self.watches = WatchManager(
            self.scheduler,
            store,
            ui,
            self.classifications,
            self.stripper,
            self.deferred,
            self.settings,
            on_nodes_changed=self.repaint_uids,
            warn_once=self.warn_once,
            table=table,
        )
        self.collisions = CollisionAdvisor(
            self.settings,
            self.scheduler,
            settle_s=self.config.collision_settle_s,
            table=table,
        )

    def start(self) -> None:
        """Open watches and timers; must run inside the event loop."""

        if self.running:
            return
        self.running = True
        self.scheduler.open()

        observe = capability(self._visual, "observe_insertions")
        if observe is not None:
            try:
                self._unobserve = observe(self._on_visual_inserted)
            except Exception as exc:  # noqa: BLE001
                log_event(logger, logging.DEBUG, "observe_failed", error=repr(exc))

        self.scheduler.every(
            _EVICT_KEY, self.config.cache_evict_interval_s, self.classifications.evict_if_oversized
        )
        self.scheduler.every(
            _REFRESH_KEY, self.config.watch_refresh_interval_s, self.watches.request_refresh
        )
        self.watches.request_refresh()
        self.render.mark_light()
        self.render.schedule()
        self.collisions.schedule(force=True)
        log_event(logger, logging.INFO, "engine_started", patterns=len(self.table))

    def shutdown(self) -> None:
        if not self.running:
            return
        self.running = False

        if self._unobserve is not None:
            try:
                self._unobserve()
            except Exception as exc:  # noqa: BLE001
                log_event(logger, logging.DEBUG, "unobserve_failed", error=repr(exc))
            self._unobserve = None

        self.scheduler.close()
        self.watches.close_all()
        self.render.clear_markers(self.config.render_cleanup_cap)
        self.render.reset()
        self.classifications.evict_all()
        self.warn_once.reset()
        log_event(logger, logging.INFO, "engine_stopped")

    async def idle(self) -> None:
        """Wait for spawned pipeline tasks and background writes."""

        await self.scheduler.idle()
        await self.classifications.flush()

    async def settle(self, timeout_s: float = 5.0) -> bool:
        """Wait until no task, strip retry or repaint is outstanding.

        Returns False on timeout, e.g. while a focused node keeps a strip deferred.
        """

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        while True:
            await self.idle()
            await asyncio.sleep(0)
            busy = (
                len(self.render) > 0
                or self.render.queued
                or bool(self.scheduler.pending_keys("strip."))
                or self.classifications.pending_writes > 0
            )
            if not busy and self.scheduler.task_count == 0:
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.005)

    # Navigation and focus signals from the host.

    def notify_navigation(self) -> None:
        if self.running:
            self.watches.request_refresh()

    def notify_focus_out(self, uid: str) -> None:
        if self.running:
            self.deferred.on_focus_out(uid)

    # Settings changes.

    def set_enabled(self, pattern_id: str, enabled: bool) -> None:
        definition = require_pattern(pattern_id, self.table)
        self.settings.enabled_by_id[definition.id] = enabled
        self.settings_backend.set(enabled_key(definition.id), enabled)
        self._settings_changed(triggers_changed=True)

    def set_override(self, pattern_id: str, trigger: str) -> None:
        definition = require_pattern(pattern_id, self.table)
        if not definition.configurable:
            raise ValueError(f"Pattern trigger is not configurable: {pattern_id}")
        value = trigger or definition.pattern
        self.settings.pattern_override_by_id[definition.id] = value
        self.settings_backend.set(override_key(definition.id), value)
        self._settings_changed(triggers_changed=True)

    def set_strip_enabled(self, enabled: bool) -> None:
        self.settings.strip_enabled = enabled
        self.settings_backend.set(STRIP_ENABLED_KEY, enabled)
        self._settings_changed(triggers_changed=False)
        if enabled and self.running:
            self.watches.rescan()

    def set_require_trailing_whitespace(self, enabled: bool) -> None:
        self.settings.require_trailing_whitespace = enabled
        self.settings_backend.set(REQUIRE_WHITESPACE_KEY, enabled)
        self._settings_changed(triggers_changed=False)

    def enable_all(self) -> None:
        self._set_all(True)

    def disable_all(self) -> None:
        self._set_all(False)

    # Commands.

    def clear_focused(self) -> str | None:
        """Drop the classification of the focused node; return its uid."""

        uid = current_focus(self._ui)
        if uid is None:
            return None
        self.clear_classification(uid)
        return uid

    def clear_classification(self, uid: str) -> None:
        self.classifications.write(uid, None)
        self.repaint_uids([uid])

    def cheat_sheet(self) -> list[str]:
        lines = cheat_sheet_lines(self.settings, self.table)
        for line in lines:
            logger.info(line)
        return lines

    def repaint_uids(self, uids: list[str]) -> None:
        if not self.running:
            return
        self.render.mark_uids(uids)
        self.render.schedule()

    def _set_all(self, enabled: bool) -> None:
        for definition in self.table:
            self.settings.enabled_by_id[definition.id] = enabled
            self.settings_backend.set(enabled_key(definition.id), enabled)
        self._settings_changed(triggers_changed=True, force_collisions=True)

    def _settings_changed(self, *, triggers_changed: bool, force_collisions: bool = False) -> None:
        self.classifications.evict_all()
        if not self.running:
            return
        if triggers_changed:
            self.collisions.schedule(force=force_collisions)
        self.render.mark_full()
        self.render.schedule()

    def _after_strip(self, uid: str, ok: bool) -> None:
        if not ok:
            self.warn_once.warn("strip_unverified", uid)
        self.repaint_uids([uid])

    def _on_visual_inserted(self, handles: list[VisualHandle]) -> None:
        self.render.mark_many(handles)
        self.render.schedule()
