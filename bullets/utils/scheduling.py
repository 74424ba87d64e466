"""Cooperative scheduling helpers on top of the running asyncio loop.

All engine timers and background tasks go through one ``Scheduler`` so that
shutdown can cancel every pending callback explicitly.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from bullets.utils.events import log_event

logger = logging.getLogger("bullets.engine")


class Scheduler:
    """Keyed timers, intervals and tracked tasks for one engine instance.

    Scheduling a timer under a key that already has a pending timer replaces
    it, so callbacks for the same subject never run concurrently.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, key: str, delay: float, callback: Callable[..., Any], *args: Any) -> None:
        self.cancel(key)
        if self._closed:
            return
        self._timers[key] = self.loop.call_later(
            max(0.0, delay), self._fire, key, callback, args
        )

    def call_soon(self, key: str, callback: Callable[..., Any], *args: Any) -> None:
        self.call_later(key, 0.0, callback, *args)

    def every(self, key: str, interval: float, callback: Callable[[], Any]) -> None:
        """Run ``callback`` every ``interval`` seconds until cancelled."""

        def tick() -> None:
            self.call_later(key, interval, tick)
            callback()

        self.call_later(key, interval, tick)

    def pending(self, key: str) -> bool:
        return key in self._timers

    def pending_keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._timers if key.startswith(prefix)]

    def cancel(self, key: str) -> bool:
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_prefix(self, prefix: str) -> int:
        keys = self.pending_keys(prefix)
        for key in keys:
            self.cancel(key)
        return len(keys)

    def cancel_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def open(self) -> None:
        self._closed = False

    def close(self) -> None:
        """Cancel every timer and refuse new ones until reopened."""

        self._closed = True
        self.cancel_all()

    def spawn(
        self, coro: Coroutine[Any, Any, Any], *, name: str | None = None
    ) -> asyncio.Task[Any]:
        task = self.loop.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    @property
    def task_count(self) -> int:
        return len(self._tasks)

    async def idle(self) -> None:
        """Wait until every tracked task, including ones spawned meanwhile, is done."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self, key: str, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self._timers.pop(key, None)
        try:
            callback(*args)
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.DEBUG, "timer_error", key=key, error=repr(exc))

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_event(
                logger, logging.DEBUG, "task_error", task=task.get_name(), error=repr(exc)
            )
