"""CLI I/O helpers for outline files."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any


def load_outline(path: Path) -> dict[str, Any]:
    """Read one outline tree ``{"uid", "text", "properties", "children"}``."""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid outline JSON: {path}") from exc

    if not isinstance(raw, dict):
        raise ValueError(f"Outline file must contain an object: {path}")
    _validate_node(raw, path)
    return raw


def write_outline_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Write the outline through a temporary file + replace."""

    path.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_json(path, payload)


def _validate_node(node: Any, path: Path) -> None:
    if not isinstance(node, dict) or not isinstance(node.get("uid"), str) or not node["uid"]:
        raise ValueError(f"Every outline node needs a non-empty string uid: {path}")
    children = node.get("children", [])
    if not isinstance(children, list):
        raise ValueError(f"Outline children must be a list (uid={node['uid']}): {path}")
    for child in children:
        _validate_node(child, path)


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, indent=2)
        tmp.write("\n")

    tmp_path.replace(path)
