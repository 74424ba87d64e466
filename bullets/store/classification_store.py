"""Per-node classification persistence with a bounded read-through cache.

The durable value lives in node properties under ``PERSIST_WRITE_KEY``;
reads also accept the legacy keys in ``PERSIST_READ_KEYS`` order. The cache
is cleared wholesale when it overflows instead of evicting entries one by
one, since the store remains the source of truth.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from typing import Any

from bullets.host.contracts import DocumentStore, capability
from bullets.utils.events import log_event

logger = logging.getLogger("bullets.store")

PERSIST_READ_KEYS: tuple[str, ...] = (
    "::better-bullets/type",
    ":better-bullets/type",
    "better-bullets/type",
    "::better-bullets",
    ":better-bullets",
    "better-bullets",
)
PERSIST_WRITE_KEY = "better-bullets/type"


def extract_classification(properties: dict[str, Any] | None) -> str | None:
    """Return the first non-empty string under a known key."""

    if not properties:
        return None
    for key in PERSIST_READ_KEYS:
        if key in properties:
            value = properties[key]
            return value if isinstance(value, str) and value else None
    return None


class ClassificationStore:
    """Read/write classification ids for document nodes."""

    def __init__(
        self,
        store: DocumentStore | None,
        *,
        max_entries: int,
        uid_pattern: str,
    ) -> None:
        self._store = store
        self._max_entries = max_entries
        self._uid_re = re.compile(uid_pattern)
        self._cache: dict[str, str | None] = {}
        self._pending: set[asyncio.Future[Any]] = set()

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    def is_valid_uid(self, uid: object) -> bool:
        return isinstance(uid, str) and bool(self._uid_re.match(uid))

    def cached(self, uid: str) -> bool:
        return uid in self._cache

    def read(self, uid: str) -> str | None:
        if not self.is_valid_uid(uid):
            return None
        if uid in self._cache:
            return self._cache[uid]

        point_query = capability(self._store, "point_query")
        if point_query is None:
            return None

        try:
            node = point_query(uid)
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "read_failed", uid=uid, error=repr(exc))
            self._remember(uid, None)
            return None

        value = extract_classification(node.get("properties") if node else None)
        self._remember(uid, value)
        return value

    def write(self, uid: str, pattern_id: str | None) -> None:
        """Update the cache now and persist in the background; failures are dropped."""

        if not self.is_valid_uid(uid):
            return
        self._remember(uid, pattern_id)

        mutate = capability(self._store, "mutate")
        if mutate is None:
            return
        if pattern_id is None:
            # A legacy alias would otherwise resurface on the next cache miss.
            properties: dict[str, Any] = dict.fromkeys(PERSIST_READ_KEYS)
        else:
            properties = {PERSIST_WRITE_KEY: pattern_id}
        try:
            result = mutate(uid, properties=properties)
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "write_failed", uid=uid, error=repr(exc))
            return
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._pending.add(future)
            future.add_done_callback(lambda done, uid=uid: self._write_done(uid, done))

    def evict_all(self) -> None:
        self._cache.clear()

    def evict_if_oversized(self) -> bool:
        if len(self._cache) <= self._max_entries:
            return False
        log_event(logger, logging.DEBUG, "cache_evicted", size=len(self._cache))
        self._cache.clear()
        return True

    async def flush(self) -> None:
        """Wait for in-flight background writes."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _remember(self, uid: str, value: str | None) -> None:
        if uid not in self._cache and len(self._cache) >= self._max_entries:
            self._cache.clear()
        self._cache[uid] = value

    def _write_done(self, uid: str, future: asyncio.Future[Any]) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            log_event(logger, logging.DEBUG, "write_failed", uid=uid, error=repr(exc))
