from __future__ import annotations

import asyncio
from typing import Any

import pytest

from bullets.config.models import EngineConfig
from bullets.config.settings_store import DictSettingsBackend
from bullets.host.contracts import ChangeCallback, Unsubscribe
from bullets.host.memory import InMemoryDocumentStore, InMemoryHostUI, InMemoryVisualTree
from bullets.host.models import DocumentSnapshotNode, PanelView
from bullets.utils.errors import HostStoreError
from bullets.orchestrator.engine import BulletEngine
from bullets.store.classification_store import PERSIST_WRITE_KEY
from bullets.watch.manager import MAIN_KEY, panel_key, watch_signature

FAST_CONFIG = EngineConfig(
    strip_verify_delay_s=0.0,
    focused_strip_retry_s=0.01,
    focus_out_strip_delay_s=0.0,
    collision_settle_s=0.0,
    render_continuation_s=0.0,
)

OUTLINE: dict[str, Any] = {
    "uid": "page00001",
    "text": "Page",
    "children": [
        {"uid": "node00001", "text": "-> call Sam"},
        {
            "uid": "side00001",
            "text": "Sidebar root",
            "children": [{"uid": "node00002", "text": "+ idea"}],
        },
        {"uid": "page00002", "text": "Other", "children": [{"uid": "node00003", "text": "! hot"}]},
    ],
}


class _SlowHostUI(InMemoryHostUI):
    async def get_main_uid(self) -> str | None:
        await asyncio.sleep(0.01)
        return self.main_uid


class _FlakyStore(InMemoryDocumentStore):
    def __init__(self) -> None:
        super().__init__()
        self.subscribe_failures = 1

    def subscribe(self, root_uid: str, callback: ChangeCallback) -> Unsubscribe:
        if self.subscribe_failures:
            self.subscribe_failures -= 1
            raise HostStoreError("subscribe unavailable", uid=root_uid)
        return super().subscribe(root_uid, callback)


def _engine(
    ui: InMemoryHostUI | None = None,
    settings: dict[str, Any] | None = None,
    *,
    store: InMemoryDocumentStore | None = None,
    config: EngineConfig = FAST_CONFIG,
) -> tuple[BulletEngine, InMemoryDocumentStore, InMemoryHostUI]:
    store = store or InMemoryDocumentStore.from_outline(OUTLINE)
    ui = ui or InMemoryHostUI(main_uid="page00001")
    visual = InMemoryVisualTree(store)
    engine = BulletEngine(
        store,
        ui,
        visual,
        settings_backend=DictSettingsBackend(settings),
        config=config,
    )
    return engine, store, ui


def _persisted(store: InMemoryDocumentStore, uid: str) -> Any:
    node = store.point_query(uid)
    assert node is not None
    return (node["properties"] or {}).get(PERSIST_WRITE_KEY)


def test_watch_signature_is_order_independent() -> None:
    first = watch_signature({"sidebar:b": "x", MAIN_KEY: "page00001"})
    second = watch_signature({MAIN_KEY: "page00001", "sidebar:b": "x"})

    assert first == second == "main=page00001|sidebar:b=x"


@pytest.mark.anyio
async def test_refresh_opens_main_and_panels() -> None:
    ui = InMemoryHostUI(main_uid="page00001")
    ui.open_panel("p1", "side00001")
    engine, store, _ui = _engine(ui)

    changed = await engine.watches.refresh()

    assert changed is True
    assert engine.watches.active == {MAIN_KEY: "page00001", panel_key("p1"): "side00001"}
    assert sorted(store.subscription_roots) == ["page00001", "side00001"]
    await engine.idle()


@pytest.mark.anyio
async def test_repeated_refresh_never_reopens_subscriptions() -> None:
    engine, store, _ui = _engine()
    await engine.watches.refresh()
    entries_before = dict(engine.watches._active)

    assert await engine.watches.refresh() is False
    assert await engine.watches.refresh() is False

    assert engine.watches._active == entries_before
    assert store.subscription_roots == ["page00001"]
    await engine.idle()


@pytest.mark.anyio
async def test_refresh_closes_hidden_panels_and_reopens_moved_main() -> None:
    ui = InMemoryHostUI(main_uid="page00001")
    ui.open_panel("p1", "side00001")
    engine, store, _ui = _engine(ui)
    await engine.watches.refresh()

    ui.close_panel("p1")
    ui.main_uid = "page00002"
    changed = await engine.watches.refresh()

    assert changed is True
    assert engine.watches.active == {MAIN_KEY: "page00002"}
    assert store.subscription_roots == ["page00002"]
    await engine.idle()


@pytest.mark.anyio
async def test_refresh_in_flight_guard_prevents_double_open() -> None:
    engine, store, _ui = _engine(_SlowHostUI(main_uid="page00001"))

    results = await asyncio.gather(engine.watches.refresh(), engine.watches.refresh())

    assert sorted(results) == [False, True]
    assert store.subscription_roots == ["page00001"]
    await engine.idle()


@pytest.mark.anyio
async def test_initial_scan_classifies_existing_nodes() -> None:
    engine, store, _ui = _engine()

    uids = await engine.watches.initial_scan("page00001")
    await engine.idle()

    assert uids[:2] == ["page00001", "node00001"]
    assert _persisted(store, "node00001") == "arrow"
    assert _persisted(store, "node00002") == "plus"
    assert _persisted(store, "node00003") == "important"
    assert _persisted(store, "page00001") is None


@pytest.mark.anyio
async def test_process_change_handles_only_changed_text() -> None:
    engine, store, _ui = _engine()
    before = DocumentSnapshotNode(
        uid="page00001", children=(DocumentSnapshotNode(uid="node00001", text="foo"),)
    )
    after = DocumentSnapshotNode(
        uid="page00001",
        children=(
            DocumentSnapshotNode(uid="node00001", text="-> foo"),
            DocumentSnapshotNode(uid="node00002", text="bar"),
        ),
    )

    changed = await engine.watches.process_change(before, after)
    await engine.idle()

    assert changed == ["node00001", "node00002"]
    assert engine.classifications.read("node00001") == "arrow"
    assert engine.classifications.read("node00002") is None
    assert store.text("node00002") == "+ idea"


@pytest.mark.anyio
async def test_store_edits_flow_through_subscription() -> None:
    engine, store, _ui = _engine()
    engine.start()
    await engine.settle()

    store.apply("node00003", text="=> shipped")
    assert await engine.settle()

    assert _persisted(store, "node00003") == "doubleArrow"
    engine.shutdown()


@pytest.mark.anyio
async def test_focused_node_strip_is_deferred_until_focus_moves() -> None:
    ui = InMemoryHostUI(main_uid="page00001", focused="node00001")
    engine, store, _ui = _engine(ui, {"stripEnabled": True})
    engine.start()

    assert await engine.settle(timeout_s=0.05) is False
    assert store.text("node00001") == "-> call Sam"
    assert _persisted(store, "node00001") == "arrow"
    assert engine.deferred.is_pending("node00001")
    assert store.text("node00002") == "idea"

    ui.focused = None
    assert await engine.settle() is True

    assert store.text("node00001") == "call Sam"
    assert engine.deferred.pending_uids() == []
    engine.shutdown()


@pytest.mark.anyio
async def test_change_after_close_is_ignored() -> None:
    engine, store, _ui = _engine()
    await engine.watches.refresh()
    await engine.idle()

    engine.watches.close(MAIN_KEY)
    store.apply("node00003", text="=> shipped")
    await asyncio.sleep(0.01)
    await engine.idle()

    assert engine.classifications.read("node00003") == "important"
    assert store.subscription_roots == []


@pytest.mark.anyio
async def test_refresh_retries_after_failed_subscribe() -> None:
    engine, store, _ui = _engine(store=_FlakyStore.from_outline(OUTLINE))

    first = await engine.watches.refresh()
    assert engine.watches.active == {}
    second = await engine.watches.refresh()
    third = await engine.watches.refresh()
    await engine.idle()

    assert (first, second, third) == (True, True, False)
    assert engine.watches.active == {MAIN_KEY: "page00001"}
    assert store.subscription_roots == ["page00001"]
    assert _persisted(store, "node00001") == "arrow"


@pytest.mark.anyio
async def test_refresh_ignores_unwatched_panel_kinds() -> None:
    ui = InMemoryHostUI(main_uid="page00001")
    graph = PanelView(panel_id="g1", kind="graph", root_uid="side00001")  # type: ignore[arg-type]
    ui.panels.append(graph)
    ui.open_panel("b1", "page00002", kind="block")
    engine, store, _ui = _engine(ui)

    await engine.watches.refresh()

    assert engine.watches.active == {MAIN_KEY: "page00001", panel_key("b1"): "page00002"}
    assert sorted(store.subscription_roots) == ["page00001", "page00002"]
    await engine.idle()


@pytest.mark.anyio
async def test_scan_rereads_focus_for_each_node() -> None:
    ui = InMemoryHostUI(main_uid="page00001")
    config = FAST_CONFIG.model_copy(update={"strip_verify_delay_s": 0.05})
    engine, store, _ui = _engine(ui, {"stripEnabled": True}, config=config)

    scan = asyncio.ensure_future(engine.watches.initial_scan("page00001"))
    await asyncio.sleep(0.02)
    ui.focused = "node00002"
    await scan

    assert store.text("node00001") == "call Sam"
    assert store.text("node00002") == "+ idea"
    assert store.text("node00003") == "hot"
    assert engine.deferred.is_pending("node00002")
    engine.scheduler.close()
    await engine.idle()
