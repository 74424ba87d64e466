"""In-memory reference host used by the CLI and the test suite.

The store keeps a tree of nodes, serves point and subtree queries, and
notifies every subscription whose root is the changed node or one of its
ancestors with ``(before, after)`` subtree snapshots. Notifications are
delivered on the running loop when there is one, mirroring hosts whose
watch callbacks fire after the write returns.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Literal

from bullets.host.contracts import ChangeCallback, Unsubscribe
from bullets.host.models import DocumentSnapshotNode, PanelView
from bullets.utils.errors import HostStoreError


@dataclass
class _StoredNode:
    uid: str
    text: str
    properties: dict[str, Any] = field(default_factory=dict)
    children: list[str] = field(default_factory=list)
    parent: str | None = None


class InMemoryDocumentStore:
    """Tree-shaped document store with per-subtree change subscriptions."""

    def __init__(self, *, write_delay: float = 0.0) -> None:
        self.write_delay = write_delay
        self.query_counts: Counter[str] = Counter()
        self._nodes: dict[str, _StoredNode] = {}
        self._subscriptions: dict[int, tuple[str, ChangeCallback]] = {}
        self._next_subscription = 0

    @classmethod
    def from_outline(cls, raw: dict[str, Any], **kwargs: Any) -> InMemoryDocumentStore:
        store = cls(**kwargs)
        store.load(DocumentSnapshotNode.from_mapping(raw))
        return store

    def load(self, snapshot: DocumentSnapshotNode, parent: str | None = None) -> None:
        if snapshot.uid in self._nodes:
            raise HostStoreError(f"Duplicate uid in outline: {snapshot.uid}", uid=snapshot.uid)
        self._nodes[snapshot.uid] = _StoredNode(
            uid=snapshot.uid,
            text=snapshot.text,
            properties=dict(snapshot.properties or {}),
            parent=parent,
        )
        if parent is not None:
            self._nodes[parent].children.append(snapshot.uid)
        for child in snapshot.children:
            self.load(child, parent=snapshot.uid)

    def to_outline(self, uid: str) -> dict[str, Any]:
        snapshot = self.subtree_query(uid)
        if snapshot is None:
            raise HostStoreError(f"Unknown uid: {uid}", uid=uid)
        return snapshot.to_mapping()

    def __contains__(self, uid: object) -> bool:
        return uid in self._nodes

    def iter_uids(self, root_uid: str) -> Iterator[str]:
        stack = [root_uid]
        while stack:
            uid = stack.pop()
            node = self._nodes.get(uid)
            if node is None:
                continue
            yield uid
            stack.extend(reversed(node.children))

    def text(self, uid: str) -> str | None:
        node = self._nodes.get(uid)
        return node.text if node is not None else None

    def point_query(self, uid: str) -> dict[str, Any] | None:
        self.query_counts[uid] += 1
        node = self._nodes.get(uid)
        if node is None:
            return None
        return {
            "uid": node.uid,
            "text": node.text,
            "properties": dict(node.properties) if node.properties else None,
        }

    def subtree_query(self, uid: str) -> DocumentSnapshotNode | None:
        node = self._nodes.get(uid)
        if node is None:
            return None
        return DocumentSnapshotNode(
            uid=node.uid,
            text=node.text,
            properties=dict(node.properties) if node.properties else None,
            children=tuple(
                child
                for child in (self.subtree_query(child_uid) for child_uid in node.children)
                if child is not None
            ),
        )

    async def mutate(
        self,
        uid: str,
        *,
        text: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> None:
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        self.apply(uid, text=text, properties=properties)

    def apply(
        self,
        uid: str,
        *,
        text: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> None:
        """Write synchronously and notify subscribers."""

        node = self._nodes.get(uid)
        if node is None:
            raise HostStoreError(f"Unknown uid: {uid}", uid=uid)

        befores = self._snapshot_watchers(uid)
        if text is not None:
            node.text = text
        for key, value in (properties or {}).items():
            if value is None:
                node.properties.pop(key, None)
            else:
                node.properties[key] = value
        self._notify(befores)

    def create_node(
        self, parent_uid: str, uid: str, text: str = "", *, index: int | None = None
    ) -> None:
        parent = self._nodes.get(parent_uid)
        if parent is None:
            raise HostStoreError(f"Unknown parent uid: {parent_uid}", uid=parent_uid)
        if uid in self._nodes:
            raise HostStoreError(f"Duplicate uid: {uid}", uid=uid)

        befores = self._snapshot_watchers(parent_uid)
        self._nodes[uid] = _StoredNode(uid=uid, text=text, parent=parent_uid)
        if index is None:
            parent.children.append(uid)
        else:
            parent.children.insert(index, uid)
        self._notify(befores)

    def subscribe(self, root_uid: str, callback: ChangeCallback) -> Unsubscribe:
        subscription_id = self._next_subscription
        self._next_subscription += 1
        self._subscriptions[subscription_id] = (root_uid, callback)

        def unsubscribe() -> None:
            self._subscriptions.pop(subscription_id, None)

        return unsubscribe

    @property
    def subscription_roots(self) -> list[str]:
        return [root_uid for root_uid, _callback in self._subscriptions.values()]

    def _ancestors_or_self(self, uid: str) -> set[str]:
        chain: set[str] = set()
        current: str | None = uid
        while current is not None and current not in chain:
            chain.add(current)
            node = self._nodes.get(current)
            current = node.parent if node is not None else None
        return chain

    def _snapshot_watchers(
        self, uid: str
    ) -> list[tuple[ChangeCallback, str, DocumentSnapshotNode | None]]:
        chain = self._ancestors_or_self(uid)
        return [
            (callback, root_uid, self.subtree_query(root_uid))
            for root_uid, callback in self._subscriptions.values()
            if root_uid in chain
        ]

    def _notify(
        self, befores: list[tuple[ChangeCallback, str, DocumentSnapshotNode | None]]
    ) -> None:
        for callback, root_uid, before in befores:
            after = self.subtree_query(root_uid)
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                callback(before, after)
            else:
                loop.call_soon(callback, before, after)


class InMemoryHostUI:
    """Primary view, open panels and focus state."""

    def __init__(
        self,
        main_uid: str | None = None,
        panels: list[PanelView] | None = None,
        focused: str | None = None,
    ) -> None:
        self.main_uid = main_uid
        self.panels: list[PanelView] = list(panels or [])
        self.focused = focused

    async def get_main_uid(self) -> str | None:
        return self.main_uid

    def list_panels(self) -> list[PanelView]:
        return list(self.panels)

    def focused_uid(self) -> str | None:
        return self.focused

    def open_panel(
        self, panel_id: str, root_uid: str, kind: Literal["outline", "block"] = "outline"
    ) -> None:
        self.panels = [panel for panel in self.panels if panel.panel_id != panel_id]
        self.panels.append(PanelView(panel_id=panel_id, kind=kind, root_uid=root_uid))

    def close_panel(self, panel_id: str) -> None:
        self.panels = [panel for panel in self.panels if panel.panel_id != panel_id]


@dataclass(eq=False)
class VisualNode:
    """Rendered node handle; identity-hashed."""

    uid: str | None
    marker: str | None = None


class InMemoryVisualTree:
    """Rendered tree whose displayed text is read live from the store."""

    def __init__(self, store: InMemoryDocumentStore) -> None:
        self._store = store
        self._handles: list[VisualNode] = []
        self._observers: dict[int, Callable[[list[Any]], None]] = {}
        self._next_observer = 0
        self.marker_writes = 0

    def mount(self, uid: str | None) -> VisualNode:
        handle = VisualNode(uid=uid)
        self._handles.append(handle)
        self._emit([handle])
        return handle

    def mount_subtree(self, root_uid: str) -> list[VisualNode]:
        handles = [VisualNode(uid=uid) for uid in self._store.iter_uids(root_uid)]
        self._handles.extend(handles)
        self._emit(list(handles))
        return handles

    def visible_handles(self) -> list[VisualNode]:
        return list(self._handles)

    def handles_for_uid(self, uid: str) -> list[VisualNode]:
        return [handle for handle in self._handles if handle.uid == uid]

    def uid_of(self, handle: VisualNode) -> str | None:
        return handle.uid

    def text_of(self, handle: VisualNode) -> str:
        if handle.uid is None:
            return ""
        return self._store.text(handle.uid) or ""

    def apply_marker(self, handle: VisualNode, visual_id: str | None) -> None:
        self.marker_writes += 1
        handle.marker = visual_id

    def marker_for(self, uid: str) -> str | None:
        for handle in self._handles:
            if handle.uid == uid:
                return handle.marker
        return None

    def observe_insertions(self, callback: Callable[[list[Any]], None]) -> Unsubscribe:
        observer_id = self._next_observer
        self._next_observer += 1
        self._observers[observer_id] = callback

        def unsubscribe() -> None:
            self._observers.pop(observer_id, None)

        return unsubscribe

    def _emit(self, handles: list[VisualNode]) -> None:
        for callback in list(self._observers.values()):
            callback(handles)
