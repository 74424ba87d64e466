from __future__ import annotations

from typing import Any

import pytest

from bullets.host.memory import InMemoryDocumentStore
from bullets.store.classification_store import (
    PERSIST_WRITE_KEY,
    ClassificationStore,
    extract_classification,
)
from bullets.utils.errors import HostStoreError

UID_PATTERN = r"^[-_A-Za-z0-9]{9}$"


def _store(*nodes: dict[str, Any]) -> InMemoryDocumentStore:
    return InMemoryDocumentStore.from_outline(
        {"uid": "page00001", "text": "Page", "children": list(nodes)}
    )


def _classifications(store: object, max_entries: int = 2000) -> ClassificationStore:
    return ClassificationStore(store, max_entries=max_entries, uid_pattern=UID_PATTERN)


class _FailingStore(InMemoryDocumentStore):
    def point_query(self, uid: str) -> dict[str, Any] | None:
        raise HostStoreError("read failed", uid=uid)

    async def mutate(self, uid: str, **kwargs: Any) -> None:
        raise HostStoreError("write failed", uid=uid)


def test_extract_classification_prefers_first_known_alias() -> None:
    properties = {"better-bullets/type": "plus", "::better-bullets/type": "arrow"}

    assert extract_classification(properties) == "arrow"
    assert extract_classification({":better-bullets": "equal"}) == "equal"
    assert extract_classification({"better-bullets/type": 3}) is None
    assert extract_classification({"better-bullets/type": ""}) is None
    assert extract_classification(None) is None


def test_read_uses_legacy_alias_and_caches() -> None:
    store = _store({"uid": "node00001", "text": "x", "properties": {"::better-bullets": "plus"}})
    classifications = _classifications(store)

    assert classifications.read("node00001") == "plus"
    assert classifications.read("node00001") == "plus"
    assert store.query_counts["node00001"] == 1


def test_read_after_eviction_requeries_exactly_once() -> None:
    store = _store({"uid": "node00001", "text": "x", "properties": {PERSIST_WRITE_KEY: "arrow"}})
    classifications = _classifications(store)
    classifications.read("node00001")

    classifications.evict_all()
    first = classifications.read("node00001")
    second = classifications.read("node00001")

    assert first == second == "arrow"
    assert store.query_counts["node00001"] == 2


def test_cache_never_exceeds_bound() -> None:
    uids = [f"node0000{index}" for index in range(1, 8)]
    store = _store(*({"uid": uid, "text": ""} for uid in uids))
    classifications = _classifications(store, max_entries=3)

    for uid in uids:
        classifications.read(uid)
        assert len(classifications) <= 3


def test_evict_if_oversized_only_clears_above_cap() -> None:
    classifications = _classifications(_store(), max_entries=2)
    classifications.read("node00001")
    classifications.read("node00002")

    assert classifications.evict_if_oversized() is False
    assert len(classifications) == 2


def test_malformed_uid_is_a_no_op() -> None:
    store = _store({"uid": "node00001", "text": "x"})
    classifications = _classifications(store)

    assert classifications.read("short") is None
    classifications.write("bad uid!!", "arrow")

    assert len(classifications) == 0
    assert store.query_counts["short"] == 0


@pytest.mark.anyio
async def test_write_updates_cache_then_persists() -> None:
    store = _store({"uid": "node00001", "text": "-> go"})
    classifications = _classifications(store)

    classifications.write("node00001", "arrow")

    assert classifications.read("node00001") == "arrow"
    assert store.query_counts["node00001"] == 0
    await classifications.flush()
    assert classifications.pending_writes == 0
    node = store.point_query("node00001")
    assert node is not None
    assert node["properties"] == {PERSIST_WRITE_KEY: "arrow"}


@pytest.mark.anyio
async def test_write_none_removes_persisted_value() -> None:
    store = _store({"uid": "node00001", "text": "x", "properties": {PERSIST_WRITE_KEY: "plus"}})
    classifications = _classifications(store)

    classifications.write("node00001", None)
    await classifications.flush()

    classifications.evict_all()
    assert classifications.read("node00001") is None


@pytest.mark.anyio
async def test_store_failures_are_swallowed() -> None:
    store = _FailingStore.from_outline({"uid": "node00001", "text": "x"})
    classifications = _classifications(store)

    assert classifications.read("node00001") is None
    assert classifications.cached("node00001")

    classifications.write("node00001", "arrow")
    await classifications.flush()

    assert classifications.read("node00001") == "arrow"


def test_missing_store_capability_reads_none() -> None:
    classifications = _classifications(None)

    assert classifications.read("node00001") is None
    classifications.write("node00001", "plus")
    assert classifications.read("node00001") == "plus"
