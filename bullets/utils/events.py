"""Structured JSON log events shared by engine components."""

from __future__ import annotations

import json
import logging
from typing import Any


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Log one compact JSON payload with an ``event`` name."""

    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, **fields}
    logger.log(level, _dump_json(payload))


class WarnOnce:
    """Log each distinct (event, key) condition at most once.

    The remembered set is cleared once it reaches ``max_entries``, so a long
    session may repeat a warning instead of growing without bound.
    """

    def __init__(self, logger: logging.Logger, *, max_entries: int = 1000) -> None:
        self._logger = logger
        self._max_entries = max_entries
        self._seen: set[tuple[str, str]] = set()

    def __len__(self) -> int:
        return len(self._seen)

    def warn(self, event: str, key: str, **fields: Any) -> bool:
        marker = (event, key)
        if marker in self._seen:
            return False
        if len(self._seen) >= self._max_entries:
            self._seen.clear()
        self._seen.add(marker)
        log_event(self._logger, logging.WARNING, event, key=key, **fields)
        return True

    def reset(self) -> None:
        self._seen.clear()


def _dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str)
