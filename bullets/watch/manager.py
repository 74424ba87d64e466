"""Subscriptions on the visible subtrees and the classify -> persist -> strip pipeline.

Each logical view slot (``main`` or ``sidebar:<panelId>``) is either
unwatched or watched with exactly one subscription. ``refresh`` recomputes
the desired slots and only touches subscriptions when the signature of the
desired set changed.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from bullets.config.models import Settings
from bullets.host.contracts import DocumentStore, HostUI, Unsubscribe, capability
from bullets.host.models import DocumentSnapshotNode, PanelView
from bullets.patterns.classifier import classify
from bullets.patterns.models import PatternDefinition
from bullets.patterns.table import PATTERN_TABLE
from bullets.store.classification_store import ClassificationStore
from bullets.text.stripper import Stripper
from bullets.utils.events import WarnOnce, log_event
from bullets.utils.scheduling import Scheduler
from bullets.watch.diff import diff_changed_uids, flatten
from bullets.watch.focus import DeferredStripper, current_focus

logger = logging.getLogger("bullets.watch")

MAIN_KEY = "main"
WATCHED_PANEL_KINDS = frozenset({"outline", "block"})


def panel_key(panel_id: str) -> str:
    return f"sidebar:{panel_id}"


def watch_signature(desired: dict[str, str]) -> str:
    return "|".join(sorted(f"{key}={uid}" for key, uid in desired.items()))


@dataclass
class WatchEntry:
    """One open subscription for a view slot."""

    key: str
    root_uid: str
    unsubscribe: Unsubscribe


class WatchManager:
    """Keep subscriptions aligned with what is visible and process changes."""

    def __init__(
        self,
        scheduler: Scheduler,
        store: DocumentStore | None,
        ui: HostUI | None,
        classifications: ClassificationStore,
        stripper: Stripper,
        deferred: DeferredStripper,
        settings: Settings,
        *,
        on_nodes_changed: Callable[[list[str]], None],
        warn_once: WarnOnce,
        table: Sequence[PatternDefinition] = PATTERN_TABLE,
    ) -> None:
        self._scheduler = scheduler
        self._store = store
        self._ui = ui
        self._classifications = classifications
        self._stripper = stripper
        self._deferred = deferred
        self._settings = settings
        self._on_nodes_changed = on_nodes_changed
        self._warn_once = warn_once
        self._table = table
        self._active: dict[str, WatchEntry] = {}
        self._last_signature = ""
        self._refresh_in_flight = False

    @property
    def active(self) -> dict[str, str]:
        return {key: entry.root_uid for key, entry in self._active.items()}

    @property
    def signature(self) -> str:
        return self._last_signature

    def request_refresh(self) -> None:
        self._scheduler.spawn(self.refresh(), name="watch.refresh")

    async def compute_desired(self) -> dict[str, str]:
        desired: dict[str, str] = {}
        main_uid = await self._main_uid()
        if main_uid:
            desired[MAIN_KEY] = main_uid
        for panel in self._panels():
            if panel.kind in WATCHED_PANEL_KINDS and panel.root_uid:
                desired[panel_key(panel.panel_id)] = panel.root_uid
        return desired

    async def refresh(self) -> bool:
        """Apply the desired watch set; return True when subscriptions changed."""

        if self._refresh_in_flight:
            return False
        self._refresh_in_flight = True
        try:
            desired = await self.compute_desired()
            signature = watch_signature(desired)
            if signature == self._last_signature:
                return False

            for key, entry in list(self._active.items()):
                if desired.get(key) != entry.root_uid:
                    self.close(key)
            for key, uid in desired.items():
                if key not in self._active:
                    self.open(key, uid)
            # A failed subscribe leaves the signature unset so the next pass retries.
            opened_all = all(key in self._active for key in desired)
            self._last_signature = signature if opened_all else ""
            return True
        finally:
            self._refresh_in_flight = False

    def open(self, key: str, root_uid: str) -> bool:
        subscribe = capability(self._store, "subscribe")
        if subscribe is None or not root_uid or key in self._active:
            return False

        def on_change(
            before: DocumentSnapshotNode | None, after: DocumentSnapshotNode | None
        ) -> None:
            self._on_change(key, root_uid, before, after)

        try:
            unsubscribe = subscribe(root_uid, on_change)
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "watch_open_failed", key=key, error=repr(exc))
            return False

        self._active[key] = WatchEntry(
            key=key,
            root_uid=root_uid,
            unsubscribe=unsubscribe if callable(unsubscribe) else _noop,
        )
        log_event(logger, logging.INFO, "watch_opened", key=key, root_uid=root_uid)
        self._scheduler.spawn(self.initial_scan(root_uid), name=f"scan:{key}")
        return True

    def close(self, key: str) -> bool:
        entry = self._active.pop(key, None)
        if entry is None:
            return False
        try:
            entry.unsubscribe()
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "watch_close_failed", key=key, error=repr(exc))
        log_event(logger, logging.INFO, "watch_closed", key=key, root_uid=entry.root_uid)
        return True

    def close_all(self) -> None:
        for key in list(self._active):
            self.close(key)
        self._last_signature = ""

    def rescan(self) -> None:
        """Re-run the initial scan for every open subscription."""

        for entry in list(self._active.values()):
            self._scheduler.spawn(self.initial_scan(entry.root_uid), name=f"scan:{entry.key}")

    async def initial_scan(self, root_uid: str) -> list[str]:
        subtree_query = capability(self._store, "subtree_query")
        if subtree_query is None:
            return []
        try:
            snapshot = subtree_query(root_uid)
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "scan_failed", root_uid=root_uid, error=repr(exc))
            return []
        if snapshot is None:
            return []

        flat = flatten(snapshot)
        for uid, entry in flat.items():
            await self.process_node(uid, entry.text)
        uids = list(flat)
        self._on_nodes_changed(uids)
        return uids

    async def process_change(
        self, before: DocumentSnapshotNode | None, after: DocumentSnapshotNode | None
    ) -> list[str]:
        """Diff two snapshots and run the pipeline on every changed uid."""

        after_map = flatten(after)
        changed = diff_changed_uids(flatten(before), after_map)
        for uid in changed:
            await self.process_node(uid, after_map[uid].text)
        if changed:
            self._on_nodes_changed(changed)
        return changed

    async def process_node(self, uid: str, text: str) -> PatternDefinition | None:
        detected = classify(text, self._settings, self._table)
        if detected is None:
            return None

        self._classifications.write(uid, detected.id)
        # Read per node: focus moves while earlier strips await verification.
        focused = current_focus(self._ui)
        if self._settings.strip_enabled and focused == uid:
            self._deferred.schedule(uid, detected)
            return detected

        if not await self._stripper.strip(uid, detected, focused):
            self._warn_once.warn("strip_unverified", uid, pattern=detected.id)
        return detected

    def _on_change(
        self,
        key: str,
        root_uid: str,
        before: DocumentSnapshotNode | None,
        after: DocumentSnapshotNode | None,
    ) -> None:
        entry = self._active.get(key)
        if entry is None or entry.root_uid != root_uid:
            return
        self._scheduler.spawn(self.process_change(before, after), name=f"change:{key}")

    async def _main_uid(self) -> str | None:
        get_main_uid = capability(self._ui, "get_main_uid")
        if get_main_uid is None:
            return None
        try:
            value = get_main_uid()
            if inspect.isawaitable(value):
                value = await value
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "main_uid_failed", error=repr(exc))
            return None
        return value if isinstance(value, str) and value else None

    def _panels(self) -> list[PanelView]:
        list_panels = capability(self._ui, "list_panels")
        if list_panels is None:
            return []
        try:
            return list(list_panels() or [])
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "panel_list_failed", error=repr(exc))
            return []


def _noop() -> None:
    return None
