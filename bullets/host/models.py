"""Data models exchanged with the host document store and UI."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class DocumentSnapshotNode:
    """One node of a subtree snapshot; never mutated after construction."""

    uid: str
    text: str = ""
    properties: dict[str, Any] | None = None
    children: tuple[DocumentSnapshotNode, ...] = ()

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> DocumentSnapshotNode:
        """Build a snapshot from the JSON outline shape used by the CLI."""

        properties = raw.get("properties")
        return cls(
            uid=str(raw["uid"]),
            text=str(raw.get("text") or ""),
            properties=dict(properties) if isinstance(properties, dict) else None,
            children=tuple(cls.from_mapping(child) for child in raw.get("children", [])),
        )

    def to_mapping(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"uid": self.uid, "text": self.text}
        if self.properties:
            payload["properties"] = dict(self.properties)
        if self.children:
            payload["children"] = [child.to_mapping() for child in self.children]
        return payload


@dataclass(frozen=True)
class PanelView:
    """An auxiliary panel currently open next to the primary view."""

    panel_id: str
    kind: Literal["outline", "block"]
    root_uid: str | None


@dataclass(frozen=True)
class SnapshotEntry:
    """Flattened view of one snapshot node, ignoring structure."""

    uid: str
    text: str
    properties: dict[str, Any] | None = field(default=None, compare=False)
