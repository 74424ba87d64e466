"""Removal of a recognized trigger from the start of a node's text.

Safety rules:
- never touch the node that currently has input focus
- re-read the text right before writing instead of trusting a stale copy
- verify after a grace delay, since a write acknowledgement does not
  guarantee the next read reflects it
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable

from bullets.config.models import Settings
from bullets.host.contracts import DocumentStore, capability
from bullets.patterns.classifier import build_strip_regex
from bullets.patterns.models import PatternDefinition
from bullets.utils.events import log_event

logger = logging.getLogger("bullets.strip")


class Stripper:
    """Strip triggers from node text with write-then-verify confirmation."""

    def __init__(
        self,
        store: DocumentStore | None,
        settings: Settings,
        *,
        verify_delay_s: float,
        is_valid_uid: Callable[[object], bool],
    ) -> None:
        self._store = store
        self._settings = settings
        self._verify_delay_s = verify_delay_s
        self._is_valid_uid = is_valid_uid

    async def strip(
        self,
        uid: str,
        pattern: PatternDefinition | None,
        exclude_if_focused_uid: str | None = None,
    ) -> bool:
        """Return True when the text is clean (or there was nothing to do).

        False means the trigger could not be confirmed removed; callers must
        not assume success and should wait for the next change notification.
        """

        if not self._settings.strip_enabled:
            return True
        if not self._is_valid_uid(uid) or pattern is None:
            return True
        if exclude_if_focused_uid is not None and uid == exclude_if_focused_uid:
            return True

        trigger = self._settings.effective_trigger(pattern)
        if not trigger:
            return True

        mutate = capability(self._store, "mutate")
        if mutate is None or capability(self._store, "point_query") is None:
            return False

        strip_re = build_strip_regex(trigger)
        current = self.read_text(uid)
        if current is None:
            return False
        if not strip_re.match(current):
            return True

        stripped = strip_re.sub("", current, count=1)
        if stripped == current:
            return True

        try:
            result = mutate(uid, text=stripped)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "strip_write_failed", uid=uid, error=repr(exc))

        await asyncio.sleep(self._verify_delay_s)
        after = self.read_text(uid)
        if after is None or strip_re.match(after):
            log_event(logger, logging.DEBUG, "strip_unverified", uid=uid, pattern=pattern.id)
            return False
        log_event(logger, logging.DEBUG, "strip_done", uid=uid, pattern=pattern.id)
        return True

    def read_text(self, uid: str) -> str | None:
        point_query = capability(self._store, "point_query")
        if point_query is None:
            return None
        try:
            node = point_query(uid)
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "strip_read_failed", uid=uid, error=repr(exc))
            return None
        text = node.get("text") if node else None
        return text if isinstance(text, str) else None
