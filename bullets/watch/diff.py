"""Snapshot flattening and text-only change detection."""

from __future__ import annotations

from bullets.host.models import DocumentSnapshotNode, SnapshotEntry


def flatten(root: DocumentSnapshotNode | None) -> dict[str, SnapshotEntry]:
    """Map every uid in the snapshot to its entry, in depth-first pre-order."""

    flat: dict[str, SnapshotEntry] = {}
    if root is None:
        return flat

    stack = [root]
    while stack:
        node = stack.pop()
        if node.uid:
            flat[node.uid] = SnapshotEntry(
                uid=node.uid, text=node.text or "", properties=node.properties
            )
        stack.extend(reversed(node.children))
    return flat


def diff_changed_uids(
    before: dict[str, SnapshotEntry], after: dict[str, SnapshotEntry]
) -> list[str]:
    """Return uids added in ``after`` or whose text differs, in ``after`` order.

    Property-only changes, reordering and deletions are not reported.
    """

    changed: list[str] = []
    for uid, entry in after.items():
        previous = before.get(uid)
        if previous is None or previous.text != entry.text:
            changed.append(uid)
    return changed
