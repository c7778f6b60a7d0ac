"""
projectguard.services.maintenance

Background periodic tasks.

Responsibilities:
- Run a coroutine on a fixed interval until stopped (session sweep, bucket eviction).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from projectguard.observability.logging import get_logger

log = get_logger(__name__)


class PeriodicTask:
    def __init__(
        self,
        *,
        name: str,
        interval_seconds: float,
        action: Callable[[], Awaitable[object]],
    ) -> None:
        self._name = name
        self._interval = interval_seconds
        self._action = action
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self._name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                result = await self._action()
                log.debug("periodic_task_ran", task=self._name, result=result)
            except Exception:
                # One failed pass must not end the loop; the next tick retries.
                log.exception("periodic_task_failed", task=self._name)


# --- Module Notes -----------------------------------------------------------
# The tasks share the backend lock with foreground calls, so a sweep never
# interleaves with an admit/validate on the same entry.
