"""Protocols the host application must offer to the engine.

Every engine entry point checks a capability with ``capability`` before use,
so a host missing part of this surface degrades to a no-op instead of failing.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Hashable, Iterable
from typing import Any, Protocol

from bullets.host.models import DocumentSnapshotNode, PanelView

ChangeCallback = Callable[[DocumentSnapshotNode | None, DocumentSnapshotNode | None], None]
Unsubscribe = Callable[[], None]
VisualHandle = Hashable


class DocumentStore(Protocol):
    """Read, write and watch access to the host document tree."""

    def point_query(self, uid: str) -> dict[str, Any] | None:
        """Return ``{"text": ..., "properties": ...}`` for one node, or None."""

    def subtree_query(self, uid: str) -> DocumentSnapshotNode | None:
        """Return a deep snapshot rooted at ``uid``."""

    def mutate(
        self,
        uid: str,
        *,
        text: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> Awaitable[None] | None:
        """Write text and/or merge properties; may complete asynchronously."""

    def subscribe(self, root_uid: str, callback: ChangeCallback) -> Unsubscribe:
        """Call ``callback(before, after)`` whenever the subtree changes."""


class HostUI(Protocol):
    """Navigation and focus state of the host application."""

    def get_main_uid(self) -> str | None | Awaitable[str | None]:
        """Return the uid of the page or node shown in the primary view."""

    def list_panels(self) -> list[PanelView]:
        """Return the auxiliary panels currently open."""

    def focused_uid(self) -> str | None:
        """Return the uid of the node receiving text input, if any."""


class VisualTree(Protocol):
    """The live rendered tree the engine paints markers on."""

    def visible_handles(self) -> Iterable[VisualHandle]:
        """Return handles of visual nodes currently rendered."""

    def uid_of(self, handle: VisualHandle) -> str | None:
        """Return the document uid a visual node displays."""

    def text_of(self, handle: VisualHandle) -> str:
        """Return the text a visual node currently displays."""

    def apply_marker(self, handle: VisualHandle, visual_id: str | None) -> None:
        """Replace the marker on ``handle``; None clears it."""

    def observe_insertions(
        self, callback: Callable[[list[VisualHandle]], None]
    ) -> Unsubscribe:
        """Call ``callback`` with newly inserted visual nodes."""


def capability(target: object | None, name: str) -> Callable[..., Any] | None:
    """Return ``target.name`` when it is callable, else None."""

    if target is None:
        return None
    member = getattr(target, name, None)
    return member if callable(member) else None
