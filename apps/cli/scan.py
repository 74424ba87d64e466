"""Run the engine once over an outline file using the in-memory host."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from bullets.config.models import EngineConfig
from bullets.config.settings_store import SettingsBackend
from bullets.host.memory import InMemoryDocumentStore, InMemoryHostUI, InMemoryVisualTree
from bullets.orchestrator.engine import BulletEngine


class ScanRow(BaseModel):
    """Classification outcome for one outline node."""

    model_config = ConfigDict(extra="forbid")

    uid: str
    text: str
    classification: str | None = None
    marker: str | None = None


class ScanResult(BaseModel):
    """Scan output plus the outline as it stands after stripping."""

    model_config = ConfigDict(extra="forbid")

    rows: list[ScanRow] = Field(default_factory=list)
    outline: dict[str, Any]
    settled: bool = True


async def run_scan(
    raw_outline: dict[str, Any],
    settings_backend: SettingsBackend,
    config: EngineConfig,
    *,
    strip: bool | None = None,
    timeout_s: float = 10.0,
) -> ScanResult:
    store = InMemoryDocumentStore.from_outline(raw_outline)
    root_uid = str(raw_outline["uid"])
    ui = InMemoryHostUI(main_uid=root_uid)
    visual = InMemoryVisualTree(store)
    visual.mount_subtree(root_uid)

    engine = BulletEngine(store, ui, visual, settings_backend=settings_backend, config=config)
    if strip is not None:
        engine.settings.strip_enabled = strip

    engine.start()
    try:
        settled = await engine.settle(timeout_s)
        rows = [
            ScanRow(
                uid=uid,
                text=store.text(uid) or "",
                classification=engine.classifications.read(uid),
                marker=visual.marker_for(uid),
            )
            for uid in store.iter_uids(root_uid)
        ]
    finally:
        engine.shutdown()

    return ScanResult(rows=rows, outline=store.to_outline(root_uid), settled=settled)


async def clear_classification(raw_outline: dict[str, Any], uid: str) -> dict[str, Any]:
    """Remove the persisted classification of ``uid`` and return the outline."""

    store = InMemoryDocumentStore.from_outline(raw_outline)
    if uid not in store:
        raise KeyError(uid)
    engine = BulletEngine(store, None, None)
    if not engine.classifications.is_valid_uid(uid):
        raise ValueError(f"Malformed uid: {uid}")
    engine.clear_classification(uid)
    await engine.idle()
    return store.to_outline(str(raw_outline["uid"]))
